from __future__ import annotations

import json
import uuid
from dataclasses import dataclass
from typing import Any, Mapping
from urllib.error import HTTPError, URLError
from urllib.parse import quote, urlencode
from urllib.request import Request, urlopen

from finview.errors import (
    BackendError,
    BackendUnavailable,
    MalformedResponse,
    Unauthenticated,
)
from finview.logging_setup import get_logger

logger = get_logger("finview.ledger_client")

DETAIL_LIMIT = 500


@dataclass(frozen=True)
class FilePart:
    filename: str
    content: bytes
    content_type: str = "application/octet-stream"


@dataclass
class LedgerClient:
    """Bearer-token client for the ledger backend.

    Every method returns the decoded JSON payload. Errors are mapped onto
    ``finview.errors``: 401/403 raise ``Unauthenticated``, other non-2xx
    statuses raise ``BackendError`` and transport failures raise
    ``BackendUnavailable``.
    """

    base_url: str
    token: str | None = None
    timeout: float = 8

    def login(self, username: str, password: str) -> Any:
        return self._request(
            "POST",
            "/auth/login",
            json_body={"username": username, "password": password},
            authenticated=False,
        )

    def profile(self) -> Any:
        return self._request("GET", "/auth/profile")

    def list_accounts(self) -> Any:
        return self._request("GET", "/account")

    def create_account(self, payload: Mapping[str, Any]) -> Any:
        return self._request("POST", "/account", json_body=payload)

    def update_account(self, account_id: str, payload: Mapping[str, Any]) -> Any:
        return self._request("PATCH", f"/account/{quote(account_id)}", json_body=payload)

    def delete_account(self, account_id: str) -> Any:
        return self._request("DELETE", f"/account/{quote(account_id)}", allow_empty=True)

    def list_institutions(self) -> Any:
        return self._request("GET", "/institution")

    def get_institution(self, institution_id: str) -> Any:
        return self._request("GET", f"/institution/{quote(institution_id)}")

    def create_institution(
        self, fields: Mapping[str, str], files: Mapping[str, FilePart] | None = None
    ) -> Any:
        return self._request("POST", "/institution", multipart=(fields, files or {}))

    def list_transactions(self, lower: str = "1", upper: str = "50") -> Any:
        return self._request(
            "GET", "/transaction/range", query={"lower": lower, "upper": upper}
        )

    def list_all_transactions(self) -> Any:
        return self._request("GET", "/transaction/all")

    def count_transactions(self) -> Any:
        return self._request("GET", "/transaction/count")

    def get_transaction(self, transaction_id: str) -> Any:
        return self._request("GET", f"/transaction/{quote(transaction_id)}")

    def create_transaction(self, payload: Mapping[str, Any]) -> Any:
        return self._request("POST", "/transaction", json_body=payload)

    def update_transaction(self, transaction_id: str, payload: Mapping[str, Any]) -> Any:
        return self._request(
            "PATCH", f"/transaction/{quote(transaction_id)}", json_body=payload
        )

    def delete_transaction(self, transaction_id: str) -> Any:
        return self._request(
            "DELETE", f"/transaction/{quote(transaction_id)}", allow_empty=True
        )

    def _request(
        self,
        method: str,
        path: str,
        *,
        json_body: Mapping[str, Any] | None = None,
        multipart: tuple[Mapping[str, str], Mapping[str, FilePart]] | None = None,
        query: Mapping[str, str] | None = None,
        authenticated: bool = True,
        allow_empty: bool = False,
    ) -> Any:
        url = f"{self.base_url}{path}"
        if query:
            url = f"{url}?{urlencode(query)}"

        headers: dict[str, str] = {"Accept": "application/json"}
        if authenticated:
            if not self.token:
                raise Unauthenticated("No session token.")
            headers["Authorization"] = f"Bearer {self.token}"

        data = None
        if json_body is not None:
            data = json.dumps(json_body).encode("utf-8")
            headers["Content-Type"] = "application/json"
        elif multipart is not None:
            data, headers["Content-Type"] = _encode_multipart(*multipart)

        request = Request(url, data=data, headers=headers, method=method)
        try:
            with urlopen(request, timeout=self.timeout) as response:
                body = response.read()
        except HTTPError as exc:
            detail = _read_detail(exc)
            logger.warning("%s %s failed with %s", method, path, exc.code)
            if exc.code in (401, 403):
                raise Unauthenticated(detail or "Unauthorized") from exc
            raise BackendError(exc.code, detail) from exc
        except (URLError, TimeoutError, OSError) as exc:
            logger.warning("%s %s unreachable: %s", method, path, exc)
            raise BackendUnavailable(str(exc)) from exc

        if not body.strip():
            if allow_empty:
                return {}
            raise MalformedResponse(f"Empty response from {path}")
        try:
            return json.loads(body)
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            if allow_empty:
                return {}
            raise MalformedResponse(f"Invalid JSON from {path}") from exc


def _read_detail(exc: HTTPError) -> str:
    try:
        return exc.read().decode("utf-8", errors="replace")[:DETAIL_LIMIT]
    except OSError:
        return ""


def _encode_multipart(
    fields: Mapping[str, str], files: Mapping[str, FilePart]
) -> tuple[bytes, str]:
    boundary = uuid.uuid4().hex
    chunks: list[bytes] = []
    for name, value in fields.items():
        chunks.append(
            f'--{boundary}\r\nContent-Disposition: form-data; name="{name}"\r\n\r\n'.encode("utf-8")
        )
        chunks.append(f"{value}\r\n".encode("utf-8"))
    for name, part in files.items():
        chunks.append(
            (
                f"--{boundary}\r\n"
                f'Content-Disposition: form-data; name="{name}"; filename="{part.filename}"\r\n'
                f"Content-Type: {part.content_type}\r\n\r\n"
            ).encode("utf-8")
        )
        chunks.append(part.content + b"\r\n")
    chunks.append(f"--{boundary}--\r\n".encode("utf-8"))
    return b"".join(chunks), f"multipart/form-data; boundary={boundary}"
