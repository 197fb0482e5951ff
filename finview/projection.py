from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Iterable, Mapping

from pydantic import ValidationError

from finview.logging_setup import get_logger
from finview.models import Account, Institution, TransactionLine
from finview.money import to_major

logger = get_logger("finview.projection")

PLACEHOLDER = "-"
FALLBACK_CURRENCY = "INR"


@dataclass(frozen=True)
class DisplayRow:
    id: str
    from_account_id: str | None
    to_account_id: str | None
    from_account_name: str
    to_account_name: str
    from_institution_id: str | None
    to_institution_id: str | None
    from_institution: str
    to_institution: str
    currency: str
    amount_major: Decimal
    overall: str
    pl: int
    kind: str | None
    description: str
    timestamp: str | None
    reversed: bool
    meta: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class TransactionFilter:
    account_ids: frozenset[str] = frozenset()
    institution_ids: frozenset[str] = frozenset()
    overall: frozenset[str] = frozenset()
    kinds: frozenset[str] = frozenset()
    currencies: frozenset[str] = frozenset()
    min_amount: Decimal | None = None
    max_amount: Decimal | None = None

    @property
    def is_empty(self) -> bool:
        return not (
            self.account_ids
            or self.institution_ids
            or self.overall
            or self.kinds
            or self.currencies
            or self.min_amount is not None
            or self.max_amount is not None
        )

    def matches(self, row: DisplayRow) -> bool:
        if self.account_ids and not _either_in(
            row.from_account_id, row.to_account_id, self.account_ids
        ):
            return False
        if self.institution_ids and not _either_in(
            row.from_institution_id, row.to_institution_id, self.institution_ids
        ):
            return False
        if self.overall and row.overall not in self.overall:
            return False
        if self.kinds and row.kind not in self.kinds:
            return False
        if self.currencies and row.currency not in self.currencies:
            return False
        if self.min_amount is not None and row.amount_major < self.min_amount:
            return False
        if self.max_amount is not None and row.amount_major > self.max_amount:
            return False
        return True


def net_by_account(lines: Iterable[TransactionLine]) -> dict[str, int]:
    """Net signed minor amount per account, credit positive, in first-seen order."""
    totals: dict[str, int] = {}
    for line in lines:
        signed = line.amount_minor if line.direction == "credit" else -line.amount_minor
        totals[line.account_id] = totals.get(line.account_id, 0) + signed
    return totals


def pick_sides(totals: Mapping[str, int]) -> tuple[str | None, int, str | None, int]:
    """Return ``(to_id, to_net, from_id, from_net)``.

    The to side is the strictly largest positive net, the from side the
    strictly most negative one; ties keep the first account seen.
    """
    to_id: str | None = None
    to_net = 0
    from_id: str | None = None
    from_net = 0
    for account_id, net in totals.items():
        if net > 0 and net > to_net:
            to_id, to_net = account_id, net
        if net < 0 and net < from_net:
            from_id, from_net = account_id, net
    return to_id, to_net, from_id, from_net


def polarity(from_account: Account | None, to_account: Account | None) -> int:
    """+1 gain, -1 loss, 0 for transfers between two known accounts (or none)."""
    if from_account is not None and to_account is None:
        return 1 if from_account.is_liability else -1
    if to_account is not None and from_account is None:
        return -1 if to_account.is_liability else 1
    return 0


def project_transaction(
    row: Mapping[str, Any],
    accounts: Mapping[str, Account],
    institutions: Mapping[str, Institution],
) -> DisplayRow:
    totals = net_by_account(_parse_lines(row))
    to_id, to_net, from_id, from_net = pick_sides(totals)

    to_account = accounts.get(to_id) if to_id is not None else None
    from_account = accounts.get(from_id) if from_id is not None else None
    to_institution = _institution_for(to_account, institutions)
    from_institution = _institution_for(from_account, institutions)

    currency = (
        (to_account.base_currency if to_account else None)
        or (from_account.base_currency if from_account else None)
        or FALLBACK_CURRENCY
    )
    magnitude = to_net if to_net != 0 else abs(from_net)
    if to_net > 0:
        overall = "credit"
    elif from_net < 0:
        overall = "debit"
    else:
        overall = "neutral"

    return DisplayRow(
        id=str(row.get("id", "")),
        from_account_id=from_account.id if from_account else None,
        to_account_id=to_account.id if to_account else None,
        from_account_name=from_account.name if from_account else PLACEHOLDER,
        to_account_name=to_account.name if to_account else PLACEHOLDER,
        from_institution_id=from_account.institution_id if from_account else None,
        to_institution_id=to_account.institution_id if to_account else None,
        from_institution=from_institution.name if from_institution else PLACEHOLDER,
        to_institution=to_institution.name if to_institution else PLACEHOLDER,
        currency=currency,
        amount_major=to_major(magnitude),
        overall=overall,
        pl=polarity(from_account, to_account),
        kind=row.get("kind"),
        description=row.get("description") or "",
        timestamp=row.get("created_at") or row.get("date"),
        reversed=bool(row.get("reversal_of") or row.get("reversed_by")),
        meta=row.get("meta") or {},
    )


def project_transactions(
    rows: Iterable[Mapping[str, Any]],
    accounts: Iterable[Account],
    institutions: Iterable[Institution],
    transaction_filter: TransactionFilter | None = None,
) -> list[DisplayRow]:
    accounts_by_id = {account.id: account for account in accounts}
    institutions_by_id = {institution.id: institution for institution in institutions}
    projected = []
    for row in rows:
        if not isinstance(row, Mapping):
            logger.warning("Skipping non-object transaction row: %r", row)
            continue
        display = project_transaction(row, accounts_by_id, institutions_by_id)
        if transaction_filter is None or transaction_filter.matches(display):
            projected.append(display)
    return projected


def _parse_lines(row: Mapping[str, Any]) -> list[TransactionLine]:
    raw_lines = row.get("lines")
    if not isinstance(raw_lines, list):
        return []
    lines = []
    for raw in raw_lines:
        if not isinstance(raw, Mapping):
            continue
        try:
            lines.append(
                TransactionLine(
                    account_id=str(raw.get("account_id")),
                    amount_minor=raw.get("amount_minor"),
                    direction=str(raw.get("direction") or "").strip().lower(),
                )
            )
        except ValidationError:
            logger.warning("Skipping malformed line on transaction %s", row.get("id"))
    return lines


def _institution_for(
    account: Account | None, institutions: Mapping[str, Institution]
) -> Institution | None:
    if account is None or account.institution_id is None:
        return None
    return institutions.get(account.institution_id)


def _either_in(first: str | None, second: str | None, wanted: frozenset[str]) -> bool:
    return (first is not None and first in wanted) or (second is not None and second in wanted)
