from __future__ import annotations

import re
from decimal import ROUND_HALF_EVEN, Decimal, InvalidOperation

SUPPORTED_CURRENCIES = ("INR", "USD", "CAD", "GBP")

CURRENCY_SYMBOLS: dict[str, str] = {
    "INR": "₹",
    "USD": "$",
    "CAD": "C$",
    "GBP": "£",
}

# All supported currencies use a two-digit minor unit.
MINOR_FACTOR = Decimal("100")

_NON_NUMERIC = re.compile(r"[^\d.\-]")


def normalize_currency(value: str) -> str:
    normalized = value.strip().upper()
    if len(normalized) != 3 or not normalized.isalpha():
        raise ValueError("Currency must be a 3-letter ISO 4217 code.")
    return normalized


def to_major(amount_minor: int) -> Decimal:
    return Decimal(amount_minor) / MINOR_FACTOR


def to_minor(amount_major: Decimal) -> int:
    return int((amount_major * MINOR_FACTOR).quantize(Decimal("1"), rounding=ROUND_HALF_EVEN))


def format_money(amount_minor: int, currency: str) -> str:
    """Render a minor-unit amount, e.g. ``-$1,234.50`` or ``₹1,50,000.00``."""
    code = currency.strip().upper()
    symbol = CURRENCY_SYMBOLS.get(code, f"{code} ")
    major = to_major(abs(amount_minor)).quantize(Decimal("0.01"))
    whole, fraction = f"{major:.2f}".split(".")
    if code == "INR":
        grouped = _group_indian(whole)
    else:
        grouped = f"{int(whole):,}"
    sign = "-" if amount_minor < 0 else ""
    return f"{sign}{symbol}{grouped}.{fraction}"


def parse_amount(value: str) -> int:
    """Parse user input into minor units, raising ValueError when it is not a number."""
    cleaned = _NON_NUMERIC.sub("", value)
    try:
        amount = Decimal(cleaned)
    except InvalidOperation as exc:
        raise ValueError("Please enter a valid number") from exc
    if not amount.is_finite():
        raise ValueError("Please enter a valid number")
    return to_minor(amount)


def parse_money(value: str, currency: str) -> int:
    """Parse user input into minor units; unparseable input is zero."""
    normalize_currency(currency)
    try:
        return parse_amount(value)
    except ValueError:
        return 0


def _group_indian(digits: str) -> str:
    if len(digits) <= 3:
        return digits
    head, tail = digits[:-3], digits[-3:]
    pairs = []
    while len(head) > 2:
        pairs.insert(0, head[-2:])
        head = head[:-2]
    if head:
        pairs.insert(0, head)
    return ",".join(pairs + [tail])
