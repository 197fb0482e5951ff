"""View-models behind the accounts and transactions pages.

Each view keeps its latest snapshot and replaces it whole on every load. A
load that was superseded by a newer one (for example the user switched the
display currency while rates were still being fetched) is dropped instead of
being applied out of order. That only happens on a view instance shared by
successive loads; the HTTP routes build a view per request and read the
snapshot it returns. Failures degrade the snapshot; only ``Unauthenticated``
escapes, so the caller can send the user to log in.
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping

from finview.currency_conversion import RateProvider, RateTable
from finview.errors import FinviewError, Unauthenticated
from finview.ledger_client import LedgerClient
from finview.loading import Loadable, LoadTicket
from finview.logging_setup import get_logger
from finview.models import Account, Institution
from finview.money import SUPPORTED_CURRENCIES
from finview.projection import DisplayRow, TransactionFilter, project_transactions
from finview.repository import AccountRepository
from finview.summary import AccountCard, KpiTotals, account_card, compute_kpis

logger = get_logger("finview.views")

BASE_CURRENCY = "base"


@dataclass(frozen=True)
class AccountsSnapshot:
    status: str = "idle"
    cards: tuple[AccountCard, ...] = ()
    kpis: KpiTotals | None = None
    target_currency: str | None = None
    message: str | None = None


@dataclass(frozen=True)
class TransactionsSnapshot:
    status: str = "idle"
    rows: tuple[DisplayRow, ...] = ()
    total_count: int | None = None
    accounts: tuple[Account, ...] = ()
    institutions: tuple[Institution, ...] = ()
    message: str | None = None
    filters: TransactionFilter = field(default_factory=TransactionFilter)


class AccountsView:
    def __init__(
        self,
        repository: AccountRepository,
        rate_provider: RateProvider,
        profile_loader: Callable[[], Any] | None = None,
    ) -> None:
        self.repository = repository
        self.rate_provider = rate_provider
        self.profile_loader = profile_loader
        self.state: Loadable[AccountsSnapshot] = Loadable(AccountsSnapshot())

    @property
    def snapshot(self) -> AccountsSnapshot:
        return self.state.value

    def load(self, display_currency: str = BASE_CURRENCY, search: str = "") -> AccountsSnapshot:
        ticket = self.state.begin()
        snapshot = self._build(ticket, display_currency, search)
        if snapshot is not None and self.state.publish(ticket, snapshot):
            logger.debug(
                "Accounts load %d published: %s, %d cards",
                ticket.generation,
                snapshot.status,
                len(snapshot.cards),
            )
        return self.state.value

    def _build(self, ticket: LoadTicket, display_currency: str, search: str) -> AccountsSnapshot | None:
        try:
            accounts = self.repository.list()
        except Unauthenticated:
            raise
        except FinviewError as exc:
            logger.warning("Accounts unavailable: %s", exc)
            return AccountsSnapshot(status="degraded", message="Failed to load accounts")
        if ticket.cancelled:
            return None

        query = search.strip().lower()
        if query:
            accounts = [account for account in accounts if query in account.name.lower()]

        target, message = self._resolve_target(display_currency)
        if ticket.cancelled:
            return None

        table: RateTable | None = None
        if target is not None:
            try:
                table = self.rate_provider.get_table(target)
            except FinviewError as exc:
                logger.warning("Rates unavailable for %s: %s", target, exc)
                message = "Exchange rates unavailable"
            if ticket.cancelled:
                return None

        cards = tuple(account_card(account, target, table) for account in accounts)
        kpis = compute_kpis(accounts, target, table) if target is not None else None
        degraded = message is not None or kpis is None or not kpis.complete
        if degraded and message is None:
            message = "Some balances could not be converted"
        return AccountsSnapshot(
            status="degraded" if degraded else "ready",
            cards=cards,
            kpis=kpis,
            target_currency=target,
            message=message,
        )

    def _resolve_target(self, display_currency: str) -> tuple[str | None, str | None]:
        if display_currency.strip().lower() != BASE_CURRENCY:
            candidate = display_currency.strip().upper()
            if candidate not in SUPPORTED_CURRENCIES:
                return None, "Unsupported display currency"
            return candidate, None

        if self.profile_loader is None:
            return None, "Select base currency"
        try:
            profile = self.profile_loader()
        except Unauthenticated:
            raise
        except FinviewError as exc:
            logger.warning("Profile unavailable: %s", exc)
            return None, "Select base currency"

        raw = profile.get("base_currency") if isinstance(profile, Mapping) else None
        candidate = raw.strip().upper() if isinstance(raw, str) else ""
        if candidate not in SUPPORTED_CURRENCIES:
            return None, "Select base currency"
        return candidate, None


class TransactionsView:
    def __init__(self, client: LedgerClient, repository: AccountRepository) -> None:
        self.client = client
        self.repository = repository
        self.state: Loadable[TransactionsSnapshot] = Loadable(TransactionsSnapshot())

    @property
    def snapshot(self) -> TransactionsSnapshot:
        return self.state.value

    def load(
        self,
        lower: str = "1",
        upper: str = "50",
        filters: TransactionFilter | None = None,
    ) -> TransactionsSnapshot:
        ticket = self.state.begin()
        snapshot = self._build(ticket, lower, upper, filters or TransactionFilter())
        if snapshot is not None and self.state.publish(ticket, snapshot):
            logger.debug(
                "Transactions load %d published: %s, %d rows",
                ticket.generation,
                snapshot.status,
                len(snapshot.rows),
            )
        return self.state.value

    def _build(
        self, ticket: LoadTicket, lower: str, upper: str, filters: TransactionFilter
    ) -> TransactionsSnapshot | None:
        with ThreadPoolExecutor(max_workers=2) as pool:
            accounts_future = pool.submit(self.repository.list)
            institutions_future = pool.submit(self._institutions)
            accounts = _result_or_empty(accounts_future.result, "accounts")
            institutions = _result_or_empty(institutions_future.result, "institutions")
        if ticket.cancelled:
            return None

        message = None
        try:
            if filters.is_empty:
                payload = self.client.list_transactions(lower, upper)
            else:
                payload = self.client.list_all_transactions()
            rows = project_transactions(
                payload if isinstance(payload, list) else [],
                accounts,
                institutions,
                None if filters.is_empty else filters,
            )
        except Unauthenticated:
            raise
        except FinviewError as exc:
            logger.warning("Transactions unavailable: %s", exc)
            rows, message = [], "Failed to load transactions"
        if ticket.cancelled:
            return None

        total = self._total_count()
        return TransactionsSnapshot(
            status="degraded" if message else "ready",
            rows=tuple(rows),
            total_count=total,
            accounts=tuple(accounts),
            institutions=tuple(institutions),
            message=message,
            filters=filters,
        )

    def _institutions(self) -> list[Institution]:
        payload = self.client.list_institutions()
        if not isinstance(payload, list):
            return []
        institutions = []
        for row in payload:
            try:
                institutions.append(Institution.from_api(row))
            except (KeyError, TypeError, ValueError):
                logger.warning("Skipping malformed institution row: %r", row)
        return institutions

    def _total_count(self) -> int | None:
        try:
            payload = self.client.count_transactions()
        except Unauthenticated:
            raise
        except FinviewError:
            return None
        total = payload.get("total") if isinstance(payload, Mapping) else None
        return total if isinstance(total, int) and not isinstance(total, bool) else None


def _result_or_empty(result: Callable[[], list], label: str) -> list:
    try:
        return result()
    except Unauthenticated:
        raise
    except FinviewError as exc:
        logger.warning("Failed to load %s: %s", label, exc)
        return []
