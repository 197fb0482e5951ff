from __future__ import annotations

from datetime import datetime
from typing import Any, Iterable, Mapping, Protocol
import uuid

from sqlalchemy import (
    JSON,
    BigInteger,
    Column,
    DateTime,
    MetaData,
    String,
    Table,
    create_engine,
    func,
    insert,
    select,
    update,
)
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool

from finview.errors import AccountNotFound, MalformedResponse
from finview.ledger_client import LedgerClient
from finview.logging_setup import get_logger
from finview.models import (
    Account,
    AccountKind,
    AccountStatus,
    AccountType,
    CreateAccountData,
    mask_account_number,
)
from finview.money import normalize_currency

logger = get_logger("finview.repository")

EDITABLE_FIELDS = {
    "name",
    "institution_id",
    "kind",
    "type",
    "base_currency",
    "number_full",
    "credit_limit_minor",
    "status",
    "meta",
}


class AccountRepository(Protocol):
    def list(self) -> list[Account]: ...

    def create(self, data: CreateAccountData) -> Account: ...

    def update(self, account_id: str, changes: Mapping[str, Any]) -> Account: ...

    def set_balance(self, account_id: str, balance_minor: int) -> Account: ...

    def delete(self, account_id: str) -> None: ...


def parse_accounts(rows: Any) -> list[Account]:
    """Accounts from a backend list payload, skipping rows that do not parse."""
    if not isinstance(rows, list):
        raise MalformedResponse("Expected a list of accounts.")
    parsed = []
    for row in rows:
        try:
            parsed.append(Account.from_api(row))
        except (KeyError, TypeError, ValueError):
            logger.warning("Skipping malformed account row: %r", row)
    return parsed


def clean_changes(changes: Mapping[str, Any]) -> dict[str, Any]:
    cleaned: dict[str, Any] = {}
    for key, value in changes.items():
        if key not in EDITABLE_FIELDS:
            continue
        if key == "name":
            value = str(value).strip()
            if not value:
                raise ValueError("Account name required.")
        elif key == "kind":
            value = AccountKind.validate(value)
        elif key == "type" and value is not None:
            value = AccountType.validate(value)
        elif key == "status":
            value = AccountStatus.validate(value)
        elif key == "base_currency":
            value = normalize_currency(value)
        cleaned[key] = value
    if cleaned.get("number_full"):
        cleaned["number_masked"] = mask_account_number(cleaned["number_full"])
    return cleaned


class HttpAccountRepository:
    def __init__(self, client: LedgerClient) -> None:
        self.client = client

    def list(self) -> list[Account]:
        return parse_accounts(self.client.list_accounts())

    def create(self, data: CreateAccountData) -> Account:
        return Account.from_api(self.client.create_account(data.model_dump()))

    def update(self, account_id: str, changes: Mapping[str, Any]) -> Account:
        return Account.from_api(self.client.update_account(account_id, clean_changes(changes)))

    def set_balance(self, account_id: str, balance_minor: int) -> Account:
        payload = self.client.update_account(account_id, {"balance_minor": int(balance_minor)})
        return Account.from_api(payload)

    def delete(self, account_id: str) -> None:
        self.client.delete_account(account_id)


metadata = MetaData()

accounts = Table(
    "accounts",
    metadata,
    Column("id", String(64), primary_key=True),
    Column("institution_id", String(64)),
    Column("name", String(255), nullable=False),
    Column("kind", String(20), nullable=False),
    Column("type", String(50)),
    Column("base_currency", String(3), nullable=False),
    Column("number_full", String(64)),
    Column("number_masked", String(64)),
    Column("credit_limit_minor", BigInteger),
    Column("balance_minor", BigInteger, nullable=False, default=0),
    Column("status", String(20), nullable=False, default="active"),
    Column("meta", JSON, nullable=False, default=dict),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
    Column("updated_at", DateTime, nullable=False, server_default=func.now()),
)

FIXTURE_ACCOUNTS: list[dict[str, Any]] = [
    {
        "id": "1",
        "institution_id": "inst-1",
        "name": "Primary Checking",
        "kind": "asset",
        "type": "bank",
        "base_currency": "USD",
        "number_full": "1234567890123456",
        "balance_minor": 250000,
        "created_at": datetime(2024, 1, 15),
    },
    {
        "id": "2",
        "institution_id": "inst-2",
        "name": "Savings Account",
        "kind": "asset",
        "type": "bank",
        "base_currency": "INR",
        "number_full": "9876543210987654",
        "balance_minor": 15000000,
        "created_at": datetime(2024, 2, 1),
    },
    {
        "id": "3",
        "institution_id": "inst-3",
        "name": "Credit Card",
        "kind": "liability",
        "type": "credit card",
        "base_currency": "INR",
        "number_full": "4532123456789012",
        "credit_limit_minor": 5000000,
        "balance_minor": -2500000,
        "created_at": datetime(2024, 1, 20),
    },
    {
        "id": "4",
        "institution_id": "inst-4",
        "name": "Investment Account",
        "kind": "asset",
        "type": "mutual fund",
        "base_currency": "USD",
        "number_full": "1111222233334444",
        "balance_minor": 750000,
        "created_at": datetime(2024, 3, 1),
    },
    {
        "id": "6",
        "institution_id": "inst-6",
        "name": "Personal Loan",
        "kind": "liability",
        "type": "other liability",
        "base_currency": "INR",
        "number_full": "9999888877776666",
        "balance_minor": -50000000,
        "created_at": datetime(2024, 1, 10),
    },
]


class SqlAccountRepository:
    """Account store on a local database, used for the offline ledger mode."""

    def __init__(self, engine: Engine) -> None:
        self.engine = engine
        metadata.create_all(engine)

    @classmethod
    def from_url(cls, database_url: str) -> "SqlAccountRepository":
        connect_args = {}
        if database_url.startswith("sqlite"):
            connect_args = {"check_same_thread": False}
        return cls(create_engine(database_url, connect_args=connect_args))

    @classmethod
    def in_memory(cls, seed: Iterable[Mapping[str, Any]] | None = None) -> "SqlAccountRepository":
        engine = create_engine(
            "sqlite://",
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
        repository = cls(engine)
        repository.seed(FIXTURE_ACCOUNTS if seed is None else seed)
        return repository

    def seed(self, rows: Iterable[Mapping[str, Any]]) -> None:
        """Insert fixture rows when the store is empty."""
        with self.engine.begin() as conn:
            if conn.execute(select(accounts.c.id).limit(1)).first():
                return
            values = [self._fixture_values(row) for row in rows]
            if values:
                conn.execute(insert(accounts), values)
        logger.debug("Seeded %d local accounts", len(values))

    def list(self) -> list[Account]:
        with self.engine.begin() as conn:
            rows = conn.execute(
                select(accounts).order_by(accounts.c.created_at.asc(), accounts.c.id.asc())
            ).mappings().all()
        return [Account.model_validate(dict(row)) for row in rows]

    def create(self, data: CreateAccountData) -> Account:
        data = CreateAccountData.validate_payload(data)
        account_id = uuid.uuid4().hex
        now = datetime.now()
        with self.engine.begin() as conn:
            conn.execute(
                insert(accounts).values(
                    id=account_id,
                    created_at=now,
                    updated_at=now,
                    **data.model_dump(),
                )
            )
        return self._get(account_id)

    def update(self, account_id: str, changes: Mapping[str, Any]) -> Account:
        values = clean_changes(changes)
        values["updated_at"] = datetime.now()
        self._update(account_id, values)
        return self._get(account_id)

    def set_balance(self, account_id: str, balance_minor: int) -> Account:
        self._update(
            account_id,
            {"balance_minor": int(balance_minor), "updated_at": datetime.now()},
        )
        return self._get(account_id)

    def delete(self, account_id: str) -> None:
        with self.engine.begin() as conn:
            result = conn.execute(accounts.delete().where(accounts.c.id == account_id))
            if result.rowcount == 0:
                raise AccountNotFound(account_id)

    def _update(self, account_id: str, values: Mapping[str, Any]) -> None:
        with self.engine.begin() as conn:
            result = conn.execute(
                update(accounts).where(accounts.c.id == account_id).values(**values)
            )
            if result.rowcount == 0:
                raise AccountNotFound(account_id)

    def _get(self, account_id: str) -> Account:
        with self.engine.begin() as conn:
            row = conn.execute(
                select(accounts).where(accounts.c.id == account_id)
            ).mappings().first()
        if row is None:
            raise AccountNotFound(account_id)
        return Account.model_validate(dict(row))

    @staticmethod
    def _fixture_values(row: Mapping[str, Any]) -> dict[str, Any]:
        created_at = row.get("created_at") or datetime.now()
        # executemany needs the same keys on every row
        values = {
            "institution_id": None,
            "type": None,
            "number_full": None,
            "number_masked": None,
            "credit_limit_minor": None,
            "balance_minor": 0,
            "status": "active",
            "meta": {},
            **row,
            "created_at": created_at,
            "updated_at": row.get("updated_at") or created_at,
        }
        if values["number_full"]:
            values["number_masked"] = mask_account_number(values["number_full"])
        return values
