import unittest
from decimal import Decimal

from finview.currency_conversion import StaticRateProvider
from finview.errors import BackendUnavailable, RateProviderUnavailable, Unauthenticated
from finview.loading import LoadTracker
from finview.projection import TransactionFilter
from finview.repository import HttpAccountRepository, SqlAccountRepository
from finview.tests.fakes import FakeLedgerClient
from finview.views import AccountsView, TransactionsView

RATES = StaticRateProvider(
    rates={"USD": Decimal("1"), "INR": Decimal("80"), "CAD": Decimal("1.25"), "GBP": Decimal("0.8")}
)


class LoadTrackerTests(unittest.TestCase):
    def test_newer_ticket_supersedes_older(self) -> None:
        tracker = LoadTracker()

        first = tracker.begin()
        second = tracker.begin()

        self.assertTrue(first.cancelled)
        self.assertFalse(second.cancelled)


class AccountsViewTests(unittest.TestCase):
    def setUp(self) -> None:
        self.repository = SqlAccountRepository.in_memory()

    def test_base_currency_comes_from_profile(self) -> None:
        view = AccountsView(self.repository, RATES, lambda: {"base_currency": " inr "})

        snapshot = view.load("base")

        self.assertEqual(snapshot.status, "ready")
        self.assertEqual(snapshot.target_currency, "INR")
        # 2500 USD + 7500 USD at 80, plus 150000 INR
        self.assertEqual(snapshot.kpis.total_assets_minor, 20000000 + 60000000 + 15000000)
        self.assertEqual(snapshot.kpis.total_liabilities_minor, 2500000 + 50000000)
        self.assertEqual(snapshot.kpis.total_investments_minor, 60000000)
        self.assertTrue(all(card.converted for card in snapshot.cards))

    def test_unsupported_profile_currency_degrades(self) -> None:
        view = AccountsView(self.repository, RATES, lambda: {"base_currency": "JPY"})

        snapshot = view.load("base")

        self.assertEqual(snapshot.status, "degraded")
        self.assertIsNone(snapshot.kpis)
        self.assertEqual(snapshot.message, "Select base currency")
        self.assertEqual(len(snapshot.cards), 5)
        self.assertFalse(any(card.converted for card in snapshot.cards))

    def test_unsupported_display_currency_degrades(self) -> None:
        view = AccountsView(self.repository, RATES)

        snapshot = view.load("eur")

        self.assertEqual(snapshot.status, "degraded")
        self.assertIsNone(snapshot.target_currency)
        self.assertIsNone(snapshot.kpis)
        self.assertEqual(snapshot.message, "Unsupported display currency")

        self.assertEqual(view.load(" cad ").target_currency, "CAD")

    def test_published_load_is_logged(self) -> None:
        view = AccountsView(self.repository, RATES)

        with self.assertLogs("finview.views", level="DEBUG") as logs:
            view.load("USD")

        self.assertIn("Accounts load 1 published: ready, 5 cards", logs.output[0])

    def test_rate_failure_degrades_mixed_totals(self) -> None:
        class DownProvider:
            def get_table(self, pivot):
                raise RateProviderUnavailable("down")

        view = AccountsView(self.repository, DownProvider())

        snapshot = view.load("usd")

        self.assertEqual(snapshot.status, "degraded")
        self.assertEqual(snapshot.message, "Exchange rates unavailable")
        self.assertIsNone(snapshot.kpis.total_assets_minor)
        self.assertIsNone(snapshot.kpis.total_liabilities_minor)
        # the only investment account is already in USD
        self.assertEqual(snapshot.kpis.total_investments_minor, 750000)

    def test_superseded_load_is_discarded(self) -> None:
        view = None

        class SwitchingProvider:
            """Simulates the user switching currency while USD rates are in flight."""

            def __init__(self) -> None:
                self.switched = False

            def get_table(self, pivot):
                if pivot == "USD" and not self.switched:
                    self.switched = True
                    view.load("GBP")
                return RATES.get_table(pivot)

        view = AccountsView(self.repository, SwitchingProvider())

        snapshot = view.load("USD")

        self.assertEqual(snapshot.target_currency, "GBP")
        self.assertEqual(view.snapshot.target_currency, "GBP")

    def test_search_filters_cards(self) -> None:
        view = AccountsView(self.repository, RATES)

        snapshot = view.load("INR", search="card")

        self.assertEqual([card.account.name for card in snapshot.cards], ["Credit Card"])

    def test_backend_failure_degrades_and_auth_failure_escapes(self) -> None:
        broken = HttpAccountRepository(FakeLedgerClient(accounts=BackendUnavailable("down")))
        snapshot = AccountsView(broken, RATES).load("USD")

        self.assertEqual(snapshot.status, "degraded")
        self.assertEqual(snapshot.cards, ())

        logged_out = HttpAccountRepository(FakeLedgerClient(token=None))
        with self.assertRaises(Unauthenticated):
            AccountsView(logged_out, RATES).load("USD")


class TransactionsViewTests(unittest.TestCase):
    def make_client(self, **payloads):
        payloads.setdefault(
            "accounts",
            [
                {"id": "a1", "name": "Checking", "kind": "asset", "base_currency": "USD", "institution_id": "i1"},
                {"id": "a2", "name": "Card", "kind": "liability", "base_currency": "USD"},
            ],
        )
        payloads.setdefault("institutions", [{"id": "i1", "name": "First Bank"}, {"name": "broken"}])
        return FakeLedgerClient(**payloads)

    def test_projects_range_and_count(self) -> None:
        client = self.make_client(
            transactions=[
                {
                    "id": "t1",
                    "kind": "payment",
                    "lines": [
                        {"account_id": "a1", "amount_minor": 2000, "direction": "debit"},
                        {"account_id": "a2", "amount_minor": 2000, "direction": "credit"},
                    ],
                }
            ],
            count={"total": 41},
        )
        view = TransactionsView(client, HttpAccountRepository(client))

        snapshot = view.load("1", "10")

        self.assertEqual(snapshot.status, "ready")
        self.assertEqual(snapshot.total_count, 41)
        self.assertEqual(len(snapshot.rows), 1)
        row = snapshot.rows[0]
        self.assertEqual(row.from_account_name, "Checking")
        self.assertEqual(row.from_institution, "First Bank")
        self.assertEqual(row.to_account_name, "Card")
        self.assertEqual(row.amount_major, Decimal("20"))
        self.assertIn(("transactions", "1", "10"), client.calls)

    def test_filters_load_everything(self) -> None:
        client = self.make_client(
            all_transactions=[
                {"id": "t1", "kind": "x", "lines": [{"account_id": "a1", "amount_minor": 1, "direction": "credit"}]},
                {"id": "t2", "kind": "y", "lines": [{"account_id": "a2", "amount_minor": 1, "direction": "credit"}]},
            ]
        )
        view = TransactionsView(client, HttpAccountRepository(client))

        snapshot = view.load(filters=TransactionFilter(kinds=frozenset({"y"})))

        self.assertEqual([row.id for row in snapshot.rows], ["t2"])
        self.assertIn(("all_transactions",), client.calls)

    def test_reference_tables_failing_leaves_rows_unresolved(self) -> None:
        client = self.make_client(
            accounts=BackendUnavailable("down"),
            institutions=BackendUnavailable("down"),
            count=BackendUnavailable("down"),
            transactions=[
                {"id": "t1", "lines": [{"account_id": "a1", "amount_minor": 5, "direction": "credit"}]}
            ],
        )
        view = TransactionsView(client, HttpAccountRepository(client))

        snapshot = view.load()

        self.assertEqual(snapshot.status, "ready")
        self.assertIsNone(snapshot.total_count)
        self.assertEqual(snapshot.rows[0].to_account_name, "-")
        self.assertEqual(snapshot.rows[0].overall, "credit")

    def test_transaction_failure_degrades(self) -> None:
        client = self.make_client(transactions=BackendUnavailable("down"))
        view = TransactionsView(client, HttpAccountRepository(client))

        snapshot = view.load()

        self.assertEqual(snapshot.status, "degraded")
        self.assertEqual(snapshot.rows, ())
        self.assertEqual(snapshot.message, "Failed to load transactions")


if __name__ == "__main__":
    unittest.main()
