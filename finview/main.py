from decimal import Decimal, InvalidOperation
from typing import Any, Callable
from urllib.parse import quote

from fastapi import Body, FastAPI, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse, RedirectResponse
from pydantic import BaseModel
from starlette.concurrency import run_in_threadpool
from starlette.datastructures import UploadFile

from finview.config import Settings, get_settings
from finview.currency_conversion import RateProvider, build_rate_provider
from finview.errors import (
    AccountNotFound,
    BackendError,
    FinviewError,
    Unauthenticated,
)
from finview.ledger_client import FilePart, LedgerClient
from finview.logging_setup import configure_logging, get_logger
from finview.models import Account, CreateAccountData
from finview.money import format_money, normalize_currency, parse_amount
from finview.projection import TransactionFilter
from finview.repository import (
    FIXTURE_ACCOUNTS,
    AccountRepository,
    HttpAccountRepository,
    SqlAccountRepository,
)
from finview.session import CookieSession
from finview.summary import AccountCard, KpiTotals
from finview.views import BASE_CURRENCY, AccountsView, TransactionsView

logger = get_logger("finview.main")

ClientFactory = Callable[[str | None], LedgerClient]

UNGATED_PREFIXES = ("/login", "/api/", "/health", "/docs", "/openapi.json", "/favicon.ico")


class LoginPayload(BaseModel):
    username: str | None = None
    password: str | None = None


class BalancePayload(BaseModel):
    balance_minor: int | None = None
    amount: str | None = None
    currency: str | None = None


def create_app(
    settings: Settings | None = None,
    client_factory: ClientFactory | None = None,
    rate_provider: RateProvider | None = None,
    local_repository: SqlAccountRepository | None = None,
) -> FastAPI:
    settings = settings or get_settings()
    configure_logging(settings.log_level)

    app = FastAPI()
    app.state.settings = settings
    app.state.session = CookieSession(
        max_age=settings.session_max_age, production=settings.production
    )
    app.state.client_factory = client_factory or (
        lambda token: LedgerClient(settings.api_base_url, token, settings.request_timeout)
    )
    app.state.rate_provider = rate_provider or build_rate_provider(
        settings.rates_provider, settings.rates_base_url, settings.request_timeout
    )
    if settings.ledger_mode == "local" and local_repository is None:
        local_repository = SqlAccountRepository.from_url(settings.local_database_url)
        local_repository.seed(FIXTURE_ACCOUNTS)
    app.state.local_repository = local_repository

    @app.middleware("http")
    async def require_session(request: Request, call_next):
        path = request.url.path
        if settings.ledger_mode == "local" or path.startswith(UNGATED_PREFIXES):
            return await call_next(request)

        token = app.state.session.get_session_token(request)
        if token is None:
            return _login_redirect(path)
        client = app.state.client_factory(token)
        try:
            await run_in_threadpool(client.profile)
        except FinviewError as exc:
            logger.info("Session rejected for %s: %s", path, exc)
            return _login_redirect(path)
        return await call_next(request)

    @app.get("/health")
    def health() -> dict:
        return {"status": "ok"}

    @app.get("/login")
    def login_page(next: str = "/") -> dict:
        return {"message": "Login required", "next": next}

    @app.post("/api/login")
    def login(request: Request, payload: LoginPayload):
        if not payload.username or not payload.password:
            return JSONResponse({"message": "Missing credentials"}, status_code=400)

        client = app.state.client_factory(None)
        try:
            data = client.login(payload.username, payload.password)
        except (Unauthenticated, BackendError) as exc:
            logger.info("Login failed for %s", payload.username)
            detail = getattr(exc, "detail", "") or str(exc)
            return JSONResponse(
                {"message": "Invalid username or password", "detail": detail[:200]},
                status_code=401,
            )
        except FinviewError as exc:
            logger.warning("Login unavailable: %s", exc)
            return JSONResponse({"message": "Failed to login"}, status_code=500)

        token = data.get("access_token") if isinstance(data, dict) else None
        if not token:
            return JSONResponse({"message": "No access token returned"}, status_code=502)

        response = JSONResponse({"success": True})
        app.state.session.start_session(request, response, token)
        return response

    @app.get("/api/logout")
    def logout(request: Request):
        response = RedirectResponse("/login")
        app.state.session.clear_session(request, response)
        return response

    @app.get("/api/profile")
    def profile(request: Request):
        return _proxy(request, "fetch profile", lambda client: client.profile(), 300)

    @app.get("/api/accounts")
    def list_accounts(request: Request):
        return _with_repository(
            request,
            "fetch accounts",
            lambda repository: [account.model_dump(mode="json") for account in repository.list()],
        )

    @app.post("/api/accounts")
    def create_account(request: Request, payload: CreateAccountData):
        try:
            payload = CreateAccountData.validate_payload(payload)
        except ValueError as exc:
            return JSONResponse({"message": str(exc)}, status_code=400)
        return _with_repository(
            request,
            "create account",
            lambda repository: repository.create(payload).model_dump(mode="json"),
        )

    @app.patch("/api/accounts/{account_id}")
    def update_account(request: Request, account_id: str, changes: dict[str, Any] = Body(...)):
        return _with_repository(
            request,
            "update account",
            lambda repository: repository.update(account_id, changes).model_dump(mode="json"),
        )

    @app.put("/api/accounts/{account_id}/balance")
    def set_balance(request: Request, account_id: str, payload: BalancePayload):
        if payload.balance_minor is None and payload.amount is None:
            return JSONResponse({"message": "Balance required"}, status_code=400)

        def apply(repository: AccountRepository) -> dict:
            if payload.balance_minor is not None:
                balance_minor = payload.balance_minor
            else:
                account = _find_account(repository, account_id)
                normalize_currency(payload.currency or account.base_currency)
                balance_minor = parse_amount(payload.amount)
                if balance_minor < 0:
                    raise ValueError("Balance cannot be negative")
                # Debt is stored negative.
                if account.is_liability:
                    balance_minor = -balance_minor
            return repository.set_balance(account_id, balance_minor).model_dump(mode="json")

        return _with_repository(request, "update balance", apply)

    @app.delete("/api/accounts/{account_id}")
    def delete_account(request: Request, account_id: str):
        def remove(repository: AccountRepository) -> dict:
            repository.delete(account_id)
            return {"success": True}

        return _with_repository(request, "delete account", remove)

    @app.get("/api/institutions")
    def list_institutions(request: Request):
        return _proxy(request, "fetch institutions", lambda client: client.list_institutions(), 300)

    @app.get("/api/institutions/{institution_id}")
    def get_institution(request: Request, institution_id: str):
        return _proxy(
            request,
            "fetch institution",
            lambda client: client.get_institution(institution_id),
            300,
        )

    @app.post("/api/institutions")
    async def create_institution(request: Request):
        form = await request.form()
        fields: dict[str, str] = {}
        files: dict[str, FilePart] = {}
        for key, value in form.multi_items():
            if isinstance(value, UploadFile):
                files[key] = FilePart(
                    filename=value.filename or key,
                    content=await value.read(),
                    content_type=value.content_type or "application/octet-stream",
                )
            else:
                fields[key] = value
        return await run_in_threadpool(
            _proxy,
            request,
            "create institution",
            lambda client: client.create_institution(fields, files),
            300,
        )

    @app.get("/api/transactions")
    def list_transactions(request: Request, lower: str = "1", upper: str = "50"):
        return _proxy(
            request,
            "fetch transactions",
            lambda client: client.list_transactions(lower, upper),
        )

    @app.post("/api/transactions")
    def create_transaction(request: Request, payload: dict[str, Any] = Body(...)):
        return _proxy(
            request,
            "create transaction",
            lambda client: client.create_transaction(payload),
        )

    @app.get("/api/transactions/all")
    def list_all_transactions(request: Request):
        return _proxy(
            request, "fetch transactions", lambda client: client.list_all_transactions()
        )

    @app.get("/api/transactions/count")
    def count_transactions(request: Request):
        return _proxy(
            request,
            "fetch transaction count",
            lambda client: client.count_transactions(),
            300,
        )

    @app.get("/api/transactions/{transaction_id}")
    def get_transaction(request: Request, transaction_id: str):
        return _proxy(
            request,
            "fetch transaction",
            lambda client: client.get_transaction(transaction_id),
        )

    @app.patch("/api/transactions/{transaction_id}")
    def update_transaction(
        request: Request, transaction_id: str, payload: dict[str, Any] = Body(...)
    ):
        return _proxy(
            request,
            "update transaction",
            lambda client: client.update_transaction(transaction_id, payload),
        )

    @app.delete("/api/transactions/{transaction_id}")
    def delete_transaction(request: Request, transaction_id: str):
        return _proxy(
            request,
            "delete transaction",
            lambda client: client.delete_transaction(transaction_id),
        )

    @app.get("/accounts")
    def accounts_page(request: Request, currency: str = BASE_CURRENCY, search: str = ""):
        token = app.state.session.get_session_token(request)
        client = app.state.client_factory(token)
        if settings.ledger_mode == "local":
            profile_loader = lambda: {"base_currency": settings.default_currency}
        else:
            profile_loader = client.profile
        try:
            view = AccountsView(_repository(request), app.state.rate_provider, profile_loader)
            snapshot = view.load(currency, search)
        except Unauthenticated:
            return _login_redirect("/accounts")
        return {
            "status": snapshot.status,
            "message": snapshot.message,
            "target_currency": snapshot.target_currency,
            "cards": [_card_json(card) for card in snapshot.cards],
            "kpis": _kpis_json(snapshot.kpis),
        }

    @app.get("/transactions")
    def transactions_page(
        request: Request,
        lower: str = "1",
        upper: str = "50",
        account_id: list[str] = Query(default=[]),
        institution_id: list[str] = Query(default=[]),
        overall: list[str] = Query(default=[]),
        kind: list[str] = Query(default=[]),
        currency: list[str] = Query(default=[]),
        min_amount: str | None = None,
        max_amount: str | None = None,
    ):
        filters = TransactionFilter(
            account_ids=frozenset(account_id),
            institution_ids=frozenset(institution_id),
            overall=frozenset(value.lower() for value in overall),
            kinds=frozenset(kind),
            currencies=frozenset(value.upper() for value in currency),
            min_amount=_decimal_or_none(min_amount),
            max_amount=_decimal_or_none(max_amount),
        )
        token = app.state.session.get_session_token(request)
        try:
            view = TransactionsView(app.state.client_factory(token), _repository(request))
            snapshot = view.load(lower, upper, filters)
        except Unauthenticated:
            return _login_redirect("/transactions")
        return jsonable_encoder(
            {
                "status": snapshot.status,
                "message": snapshot.message,
                "total_count": snapshot.total_count,
                "rows": list(snapshot.rows),
            }
        )

    @app.get("/institutions")
    def institutions_page(request: Request):
        return _proxy(request, "fetch institutions", lambda client: client.list_institutions(), 300)

    def _repository(request: Request) -> AccountRepository:
        if app.state.local_repository is not None:
            return app.state.local_repository
        token = app.state.session.get_session_token(request)
        if token is None:
            raise Unauthenticated("No session token.")
        return HttpAccountRepository(app.state.client_factory(token))

    def _with_repository(
        request: Request, label: str, call: Callable[[AccountRepository], Any]
    ) -> Any:
        try:
            return call(_repository(request))
        except AccountNotFound:
            return JSONResponse({"message": "Account not found"}, status_code=404)
        except ValueError as exc:
            return JSONResponse({"message": str(exc)}, status_code=400)
        except FinviewError as exc:
            return _error_response(label, exc)

    def _proxy(
        request: Request,
        label: str,
        call: Callable[[LedgerClient], Any],
        detail_limit: int = 500,
    ) -> Any:
        token = app.state.session.get_session_token(request)
        if token is None:
            return JSONResponse({"message": "Unauthorized"}, status_code=401)
        try:
            return call(app.state.client_factory(token))
        except FinviewError as exc:
            return _error_response(label, exc, detail_limit)

    return app


def _error_response(label: str, exc: FinviewError, detail_limit: int = 500) -> JSONResponse:
    if isinstance(exc, BackendError):
        return JSONResponse(
            {"message": f"Failed to {label}", "detail": exc.detail[:detail_limit]},
            status_code=exc.status,
        )
    if isinstance(exc, Unauthenticated):
        return JSONResponse({"message": "Unauthorized"}, status_code=401)
    logger.warning("Failed to %s: %s", label, exc)
    return JSONResponse({"message": "Server error"}, status_code=500)


def _login_redirect(path: str) -> RedirectResponse:
    return RedirectResponse(f"/login?next={quote(path)}", status_code=307)


def _find_account(repository: AccountRepository, account_id: str) -> Account:
    for account in repository.list():
        if account.id == account_id:
            return account
    raise AccountNotFound(account_id)


def _decimal_or_none(value: str | None) -> Decimal | None:
    if value is None or not value.strip():
        return None
    try:
        parsed = Decimal(value.strip())
    except InvalidOperation:
        return None
    return parsed if parsed.is_finite() else None


def _card_json(card: AccountCard) -> dict:
    account = card.account
    return {
        "id": account.id,
        "name": account.name,
        "kind": account.kind,
        "type": account.type,
        "institution_id": account.institution_id,
        "base_currency": account.base_currency,
        "number_masked": account.number_masked,
        "balance_minor": account.balance_minor,
        "display_minor": card.display_minor,
        "display_currency": card.display_currency,
        "display": format_money(card.display_minor, card.display_currency),
        "converted": card.converted,
        "state": card.state,
    }


def _kpis_json(kpis: KpiTotals | None) -> dict | None:
    if kpis is None:
        return None
    buckets = {
        "total_assets": kpis.total_assets_minor,
        "total_liabilities": kpis.total_liabilities_minor,
        "total_investments": kpis.total_investments_minor,
        "net_worth": kpis.net_worth_minor,
        "liquidity": kpis.liquidity_minor,
    }
    return {
        "currency": kpis.currency,
        **{
            name: {
                "minor": value,
                "display": format_money(value, kpis.currency) if value is not None else None,
                "available": value is not None,
            }
            for name, value in buckets.items()
        },
    }


app = create_app()
