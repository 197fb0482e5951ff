from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
import json
import time
from typing import Mapping, Protocol
from urllib.error import HTTPError, URLError
from urllib.request import urlopen

from finview.errors import RateProviderUnavailable
from finview.logging_setup import get_logger
from finview.money import normalize_currency, to_major, to_minor

logger = get_logger("finview.currency_conversion")

# Target currency per 1 USD.
DEFAULT_RATES: dict[str, Decimal] = {
    "USD": Decimal("1"),
    "INR": Decimal("83.00"),
    "CAD": Decimal("1.34"),
    "GBP": Decimal("0.79"),
    "EUR": Decimal("0.92"),
}


@dataclass(frozen=True)
class RateTable:
    """Exchange rates expressed as units of each currency per 1 pivot unit."""

    pivot: str
    rates: Mapping[str, Decimal]

    def __post_init__(self) -> None:
        pivot = normalize_currency(self.pivot)
        rates = _coerce_rates(self.rates)
        rates[pivot] = Decimal("1")
        object.__setattr__(self, "pivot", pivot)
        object.__setattr__(self, "rates", rates)

    def rate_for(self, currency: str) -> Decimal | None:
        """Usable rate for ``currency``, or None when missing or invalid."""
        rate = self.rates.get(currency.strip().upper())
        if rate is None or not rate.is_finite() or rate <= 0:
            return None
        return rate

    @classmethod
    def from_payload(cls, pivot: str, payload: Mapping[str, object]) -> "RateTable":
        """Build a table from a raw ``{code: rate}`` mapping, dropping junk entries."""
        return cls(pivot=pivot, rates=payload)


def _coerce_rates(raw: Mapping[str, object]) -> dict[str, Decimal]:
    rates: dict[str, Decimal] = {}
    for code, value in raw.items():
        if isinstance(value, bool) or not isinstance(value, (int, float, str, Decimal)):
            continue
        try:
            rates[normalize_currency(str(code))] = Decimal(str(value))
        except (ValueError, InvalidOperation):
            continue
    return rates


class RateProvider(Protocol):
    def get_table(self, pivot: str) -> RateTable: ...


@dataclass(frozen=True)
class StaticRateProvider:
    """Deterministic, in-memory FX rates.

    Rates are expressed as target currency per 1 unit of ``base_currency``
    and are re-pivoted on request.
    """

    rates: Mapping[str, Decimal] = None
    base_currency: str = "USD"

    def __post_init__(self) -> None:
        object.__setattr__(self, "rates", dict(self.rates or DEFAULT_RATES))

    def get_table(self, pivot: str) -> RateTable:
        normalized = normalize_currency(pivot)
        table = RateTable(pivot=self.base_currency, rates=self.rates)
        pivot_rate = table.rate_for(normalized)
        if pivot_rate is None:
            raise RateProviderUnavailable(f"No static rate for {normalized}")
        return RateTable(
            pivot=normalized,
            rates={
                code: rate / pivot_rate
                for code, rate in table.rates.items()
                if table.rate_for(code) is not None
            },
        )


@dataclass(frozen=True)
class CachedRates:
    table: RateTable
    expires_at: float


@dataclass
class ExchangeRateApiProvider:
    """Live rates from an open.er-api.com compatible service."""

    base_url: str = "https://open.er-api.com/v6"
    cache_ttl_seconds: int = 60 * 60
    timeout: float = 8
    _cache: dict[str, CachedRates] = field(default_factory=dict)

    def get_table(self, pivot: str) -> RateTable:
        normalized = normalize_currency(pivot)
        cached = self._cache.get(normalized)
        now = time.monotonic()
        if cached and cached.expires_at > now:
            return cached.table

        table = self._fetch_table(normalized)
        self._cache[normalized] = CachedRates(table=table, expires_at=now + self.cache_ttl_seconds)
        return table

    def _fetch_table(self, pivot: str) -> RateTable:
        url = f"{self.base_url}/latest/{pivot}"
        try:
            with urlopen(url, timeout=self.timeout) as response:
                payload = json.load(response)
        except (HTTPError, URLError, TimeoutError, json.JSONDecodeError) as exc:
            logger.warning("Rate service unavailable for %s: %s", pivot, exc)
            raise RateProviderUnavailable("Exchange rate service unavailable") from exc

        rates = payload.get("rates") if isinstance(payload, dict) else None
        if not isinstance(rates, dict):
            raise RateProviderUnavailable("Exchange rate response missing rates")

        logger.debug("Fetched %d rates for pivot %s", len(rates), pivot)
        return RateTable.from_payload(pivot, rates)


def convert_minor(
    amount_minor: int,
    source_currency: str,
    target_currency: str,
    table: RateTable | None,
) -> int | None:
    """Convert a minor-unit amount for display.

    Returns None when either rate is missing or unusable; the caller decides
    how to degrade. Same-currency conversion never consults the table.
    """
    try:
        normalized_source = normalize_currency(source_currency)
        normalized_target = normalize_currency(target_currency)
    except ValueError:
        return None

    if normalized_source == normalized_target:
        return amount_minor
    if table is None:
        return None

    source_rate = table.rate_for(normalized_source)
    target_rate = table.rate_for(normalized_target)
    if source_rate is None or target_rate is None:
        return None

    amount_in_pivot = to_major(amount_minor) / source_rate
    return to_minor(amount_in_pivot * target_rate)


def build_rate_provider(kind: str, base_url: str, timeout: float) -> RateProvider:
    if kind == "static":
        return StaticRateProvider()
    return ExchangeRateApiProvider(base_url=base_url, timeout=timeout)
