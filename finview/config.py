from __future__ import annotations

import os
from dataclasses import dataclass

DEFAULT_API_BASE_URL = "http://localhost:3001"
DEFAULT_RATES_BASE_URL = "https://open.er-api.com/v6"
LEDGER_MODES = {"remote", "local"}
RATE_PROVIDERS = {"live", "static"}


@dataclass(frozen=True)
class Settings:
    api_base_url: str
    rates_base_url: str
    rates_provider: str
    ledger_mode: str
    local_database_url: str
    production: bool
    session_max_age: int
    request_timeout: float
    default_currency: str
    log_level: str | None


def get_settings() -> Settings:
    api_base_url = (
        os.getenv("API_BASE_URL")
        or os.getenv("NEXT_PUBLIC_BASE_URL")
        or DEFAULT_API_BASE_URL
    )
    return Settings(
        api_base_url=api_base_url.rstrip("/"),
        rates_base_url=os.getenv("RATES_BASE_URL", DEFAULT_RATES_BASE_URL).rstrip("/"),
        rates_provider=_choice("RATES_PROVIDER", RATE_PROVIDERS, "live"),
        ledger_mode=_choice("LEDGER_MODE", LEDGER_MODES, "remote"),
        local_database_url=os.getenv("LOCAL_DATABASE_URL", "sqlite:///./finview.db"),
        production=os.getenv("APP_ENV", "").strip().lower() == "production",
        session_max_age=_int("SESSION_MAX_AGE", 60 * 60),
        request_timeout=float(_int("REQUEST_TIMEOUT", 8)),
        default_currency=_currency("DEFAULT_CURRENCY", "USD"),
        log_level=os.getenv("FINVIEW_LOG_LEVEL"),
    )


def _choice(name: str, allowed: set[str], default: str) -> str:
    value = os.getenv(name, default).strip().lower()
    return value if value in allowed else default


def _int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    return value if value > 0 else default


def _currency(name: str, default: str) -> str:
    raw = os.getenv(name, default).strip().upper()
    if len(raw) != 3 or not raw.isalpha():
        return default
    return raw
