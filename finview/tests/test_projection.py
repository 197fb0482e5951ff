import unittest
from decimal import Decimal

from finview.models import Account, Institution, TransactionLine
from finview.projection import (
    TransactionFilter,
    net_by_account,
    pick_sides,
    project_transaction,
    project_transactions,
)


def make_account(account_id, kind="asset", currency="USD", institution_id=None):
    return Account(
        id=account_id,
        name=f"Account {account_id}",
        kind=kind,
        base_currency=currency,
        institution_id=institution_id,
    )


class ProjectionTests(unittest.TestCase):
    def setUp(self) -> None:
        self.accounts = {
            "chk": make_account("chk", institution_id="bank"),
            "sav": make_account("sav", currency="INR"),
            "card": make_account("card", kind="liability", institution_id="amex"),
        }
        self.institutions = {
            "bank": Institution(id="bank", name="First Bank", kind="bank"),
            "amex": Institution(id="amex", name="Amex", kind="card"),
        }

    def test_transfer_between_two_accounts(self) -> None:
        row = {
            "id": "t1",
            "kind": "transfer",
            "lines": [
                {"account_id": "chk", "amount_minor": 5000, "direction": "debit"},
                {"account_id": "sav", "amount_minor": 5000, "direction": "credit"},
            ],
        }

        result = project_transaction(row, self.accounts, self.institutions)

        self.assertEqual(result.from_account_id, "chk")
        self.assertEqual(result.to_account_id, "sav")
        self.assertEqual(result.from_institution, "First Bank")
        self.assertEqual(result.to_institution, "-")
        self.assertEqual(result.overall, "credit")
        self.assertEqual(result.amount_major, Decimal("50"))
        self.assertEqual(result.currency, "INR")
        self.assertEqual(result.pl, 0)

    def test_single_account_netting_to_zero_is_neutral(self) -> None:
        row = {
            "id": "t2",
            "lines": [
                {"account_id": "chk", "amount_minor": 700, "direction": "credit"},
                {"account_id": "chk", "amount_minor": 700, "direction": "debit"},
            ],
        }

        result = project_transaction(row, self.accounts, self.institutions)

        self.assertIsNone(result.from_account_id)
        self.assertIsNone(result.to_account_id)
        self.assertEqual(result.from_account_name, "-")
        self.assertEqual(result.to_account_name, "-")
        self.assertEqual(result.overall, "neutral")
        self.assertEqual(result.amount_major, Decimal("0"))
        self.assertEqual(result.currency, "INR")
        self.assertEqual(result.pl, 0)

    def test_aggregates_multiple_lines_per_account(self) -> None:
        lines = [
            TransactionLine(account_id="a", amount_minor=300, direction="credit"),
            TransactionLine(account_id="b", amount_minor=500, direction="debit"),
            TransactionLine(account_id="a", amount_minor=200, direction="credit"),
        ]

        totals = net_by_account(lines)

        self.assertEqual(totals, {"a": 500, "b": -500})
        self.assertEqual(pick_sides(totals), ("a", 500, "b", -500))

    def test_ties_keep_first_seen_account(self) -> None:
        totals = {"x": 100, "y": 100, "z": -100, "w": -100}

        self.assertEqual(pick_sides(totals), ("x", 100, "z", -100))

    def test_unknown_account_degrades_to_placeholder(self) -> None:
        row = {
            "id": "t3",
            "lines": [
                {"account_id": "missing", "amount_minor": 1200, "direction": "debit"},
                {"account_id": "chk", "amount_minor": 1200, "direction": "credit"},
            ],
        }

        result = project_transaction(row, self.accounts, self.institutions)

        self.assertIsNone(result.from_account_id)
        self.assertEqual(result.from_account_name, "-")
        self.assertEqual(result.to_account_id, "chk")
        self.assertEqual(result.overall, "credit")
        self.assertEqual(result.pl, 1)

    def test_polarity_for_one_sided_transactions(self) -> None:
        def single(account_id, direction):
            return {
                "id": "t",
                "lines": [
                    {"account_id": account_id, "amount_minor": 100, "direction": direction},
                ],
            }

        cases = [
            (single("chk", "debit"), -1),
            (single("card", "debit"), 1),
            (single("chk", "credit"), 1),
            (single("card", "credit"), -1),
        ]
        for row, expected in cases:
            result = project_transaction(row, self.accounts, self.institutions)
            self.assertEqual(result.pl, expected)

    def test_debit_only_uses_from_magnitude(self) -> None:
        row = {
            "id": "t4",
            "lines": [{"account_id": "card", "amount_minor": 4550, "direction": "debit"}],
        }

        result = project_transaction(row, self.accounts, self.institutions)

        self.assertEqual(result.overall, "debit")
        self.assertEqual(result.amount_major, Decimal("45.5"))
        self.assertEqual(result.from_institution, "Amex")

    def test_malformed_lines_are_skipped(self) -> None:
        row = {
            "id": "t5",
            "reversed_by": "t9",
            "lines": [
                {"account_id": "chk", "amount_minor": "oops", "direction": "credit"},
                "not a line",
                {"account_id": "sav", "amount_minor": "250", "direction": "credit"},
            ],
        }

        result = project_transaction(row, self.accounts, self.institutions)

        self.assertEqual(result.to_account_id, "sav")
        self.assertEqual(result.amount_major, Decimal("2.5"))
        self.assertTrue(result.reversed)

    def test_non_integral_or_negative_amounts_are_skipped(self) -> None:
        row = {
            "id": "t6",
            "lines": [
                {"account_id": "chk", "amount_minor": float("inf"), "direction": "credit"},
                {"account_id": "chk", "amount_minor": 12.5, "direction": "credit"},
                {"account_id": "chk", "amount_minor": -400, "direction": "credit"},
                {"account_id": "sav", "amount_minor": 300, "direction": "credit"},
            ],
        }

        result = project_transaction(row, self.accounts, self.institutions)

        self.assertEqual(result.to_account_id, "sav")
        self.assertEqual(result.amount_major, Decimal("3"))

    def test_filters_rows(self) -> None:
        rows = [
            {
                "id": "a",
                "kind": "expense",
                "lines": [{"account_id": "chk", "amount_minor": 1000, "direction": "debit"}],
            },
            {
                "id": "b",
                "kind": "income",
                "lines": [{"account_id": "sav", "amount_minor": 90000, "direction": "credit"}],
            },
            {
                "id": "c",
                "kind": "expense",
                "lines": [{"account_id": "card", "amount_minor": 2500, "direction": "debit"}],
            },
        ]

        by_institution = project_transactions(
            rows,
            self.accounts.values(),
            self.institutions.values(),
            TransactionFilter(institution_ids=frozenset({"bank", "amex"})),
        )
        by_amount = project_transactions(
            rows,
            self.accounts.values(),
            self.institutions.values(),
            TransactionFilter(kinds=frozenset({"expense"}), min_amount=Decimal("20")),
        )
        by_currency = project_transactions(
            rows,
            self.accounts.values(),
            self.institutions.values(),
            TransactionFilter(currencies=frozenset({"INR"}), overall=frozenset({"credit"})),
        )

        self.assertEqual([row.id for row in by_institution], ["a", "c"])
        self.assertEqual([row.id for row in by_amount], ["c"])
        self.assertEqual([row.id for row in by_currency], ["b"])


if __name__ == "__main__":
    unittest.main()
