from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from finview.money import normalize_currency

INVESTMENT_TYPES = {"fixed deposit", "mutual fund", "other investment"}


class AccountKind:
    values = {"asset", "liability"}

    @classmethod
    def validate(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in cls.values:
            raise ValueError("Invalid account kind.")
        return normalized


class AccountType:
    values = {
        "bank",
        "credit card",
        "fixed deposit",
        "mutual fund",
        "other investment",
        "other asset",
        "other liability",
    }

    @classmethod
    def validate(cls, value: str) -> str:
        normalized = value.strip().lower().replace("_", " ")
        if normalized not in cls.values:
            raise ValueError("Invalid account type.")
        return normalized


class AccountStatus:
    values = {"active", "inactive", "closed"}

    @classmethod
    def validate(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in cls.values:
            raise ValueError("Invalid account status.")
        return normalized


def mask_account_number(full_number: str) -> str:
    if len(full_number) < 4:
        return full_number
    return "****" + full_number[-4:]


class Account(BaseModel):
    id: str
    institution_id: str | None = None
    name: str
    kind: str
    type: str | None = None
    base_currency: str
    number_full: str | None = None
    number_masked: str | None = None
    credit_limit_minor: int | None = None
    balance_minor: int = 0
    status: str = "active"
    meta: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def is_liability(self) -> bool:
        return self.kind == "liability"

    @property
    def is_investment(self) -> bool:
        return self.type in INVESTMENT_TYPES

    @classmethod
    def from_api(cls, row: dict[str, Any]) -> "Account":
        """Build an account from a backend row.

        The backend may return a precomputed ``computed_balance_minor`` next
        to the stored ``balance_minor``; the precomputed value wins.
        """
        if row.get("computed_balance_minor") is not None:
            balance = row["computed_balance_minor"]
        else:
            balance = row.get("balance_minor") or 0
        credit_limit = row.get("credit_limit_minor")
        return cls(
            id=str(row["id"]),
            institution_id=_optional_str(row.get("institution_id")),
            name=row.get("name") or "",
            kind=str(row.get("kind") or "asset").strip().lower(),
            type=row.get("type") or None,
            base_currency=str(row.get("base_currency") or "").strip().upper(),
            number_full=row.get("number_full") or None,
            number_masked=row.get("number_masked") or None,
            credit_limit_minor=int(credit_limit) if credit_limit is not None else None,
            balance_minor=int(balance),
            status=row.get("status") or "active",
            meta=row.get("meta") or {},
            created_at=row.get("created_at"),
            updated_at=row.get("updated_at"),
        )


class CreateAccountData(BaseModel):
    name: str
    kind: str
    base_currency: str
    institution_id: str | None = None
    type: str | None = None
    number_full: str | None = None
    number_masked: str | None = None
    credit_limit_minor: int | None = None
    balance_minor: int = 0
    status: str = "active"
    meta: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def validate_payload(cls, payload: "CreateAccountData") -> "CreateAccountData":
        payload.name = payload.name.strip()
        if not payload.name:
            raise ValueError("Account name required.")
        payload.kind = AccountKind.validate(payload.kind)
        payload.base_currency = normalize_currency(payload.base_currency)
        if payload.type is not None:
            payload.type = AccountType.validate(payload.type)
        payload.status = AccountStatus.validate(payload.status)
        payload.institution_id = payload.institution_id or None
        if payload.number_full:
            payload.number_full = payload.number_full.strip()
            payload.number_masked = mask_account_number(payload.number_full)
        return payload


class Institution(BaseModel):
    id: str
    name: str
    kind: str = "other"
    logo_url: str | None = None
    created_at: datetime | None = None

    @classmethod
    def from_api(cls, row: dict[str, Any]) -> "Institution":
        return cls(
            id=str(row["id"]),
            name=row.get("name") or "",
            kind=row.get("kind") or "other",
            logo_url=row.get("logo_url") or None,
            created_at=row.get("created_at"),
        )


class TransactionLine(BaseModel):
    account_id: str
    amount_minor: int = Field(ge=0)
    direction: str


def _optional_str(value: Any) -> str | None:
    if value is None or value == "":
        return None
    return str(value)
