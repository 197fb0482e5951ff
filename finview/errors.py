"""Exceptions raised by the ledger client, repositories and rate providers."""


class FinviewError(Exception):
    """Base exception for finview errors."""

    pass


class BackendUnavailable(FinviewError):
    """The ledger backend could not be reached."""

    pass


class Unauthenticated(FinviewError):
    """Missing session token, or the backend rejected it."""

    pass


class MalformedResponse(FinviewError):
    """A backend or rate service payload could not be decoded."""

    pass


class BackendError(FinviewError):
    """The backend answered with a non-success status."""

    def __init__(self, status: int, detail: str = "") -> None:
        super().__init__(f"Backend returned {status}")
        self.status = status
        self.detail = detail


class RateProviderUnavailable(FinviewError):
    """Raised when a rate provider cannot fetch live rates."""

    pass


class AccountNotFound(FinviewError):
    """No account with the requested id."""

    pass
