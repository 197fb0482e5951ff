from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Iterable

from finview.currency_conversion import RateTable, convert_minor
from finview.models import Account


@dataclass(frozen=True)
class AccountCard:
    account: Account
    display_minor: int
    display_currency: str
    converted: bool
    state: str


@dataclass(frozen=True)
class KpiTotals:
    """Display totals in ``currency``; a bucket is None when unavailable."""

    currency: str
    total_assets_minor: int | None
    total_liabilities_minor: int | None
    total_investments_minor: int | None
    net_worth_minor: int | None
    liquidity_minor: int | None

    @property
    def complete(self) -> bool:
        return None not in (
            self.total_assets_minor,
            self.total_liabilities_minor,
            self.total_investments_minor,
            self.net_worth_minor,
            self.liquidity_minor,
        )


def balance_state(account: Account) -> str:
    balance = account.balance_minor
    if account.is_liability:
        if balance < 0:
            return "owed"
        if balance > 0:
            return "credit"
        return "settled"
    return "overdrawn" if balance < 0 else "positive"


def account_card(account: Account, target_currency: str | None, table: RateTable | None) -> AccountCard:
    """Card for one account, falling back to its own currency when unconvertible."""
    converted = None
    if target_currency is not None:
        converted = convert_minor(account.balance_minor, account.base_currency, target_currency, table)

    if converted is None:
        amount, currency = account.balance_minor, account.base_currency
    else:
        amount, currency = converted, target_currency
    if account.is_liability:
        amount = abs(amount)

    return AccountCard(
        account=account,
        display_minor=amount,
        display_currency=currency,
        converted=converted is not None,
        state=balance_state(account),
    )


def compute_kpis(accounts: Iterable[Account], target_currency: str, table: RateTable | None) -> KpiTotals:
    accounts = list(accounts)
    assets = [account for account in accounts if not account.is_liability]
    liabilities = [account for account in accounts if account.is_liability]
    investments = [account for account in accounts if account.is_investment]

    def bucket(members: list[Account], transform: Callable[[int], int]) -> int | None:
        total = 0
        for account in members:
            converted = convert_minor(account.balance_minor, account.base_currency, target_currency, table)
            if converted is None:
                return None
            total += transform(converted)
        return total

    total_assets = bucket(assets, lambda value: value)
    total_liabilities = bucket(liabilities, abs)
    total_investments = bucket(investments, lambda value: value)

    net_worth = None
    if total_assets is not None and total_liabilities is not None:
        net_worth = total_assets - total_liabilities
    liquidity = None
    if net_worth is not None and total_investments is not None:
        liquidity = net_worth - total_investments

    return KpiTotals(
        currency=target_currency,
        total_assets_minor=total_assets,
        total_liabilities_minor=total_liabilities,
        total_investments_minor=total_investments,
        net_worth_minor=net_worth,
        liquidity_minor=liquidity,
    )
