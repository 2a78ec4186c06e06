from __future__ import annotations

from enum import Enum


class PipelineError(Exception):
    """Base class for every error the fetch pipeline raises on purpose."""


class AuthorizationError(PipelineError):
    """Raised when the caller credential or invocation context is rejected."""

    def __init__(self, message: str, *, status_code: int = 401) -> None:
        super().__init__(message)
        self.status_code = status_code


class OperationalDisabledError(PipelineError):
    """Raised when the kill switch is on."""

    status_code = 503


class LockContentionError(PipelineError):
    """Raised when another live run holds the job lock."""

    status_code = 423


class PolicyDeniedError(PipelineError):
    """Raised when robots.txt or the domain allow-list denies a URL."""


class PersistenceError(PipelineError):
    """Raised when a store read or write fails."""


class FetchErrorKind(str, Enum):
    UNAUTHORIZED = "unauthorized"
    CLIENT_ERROR = "client_error"
    RATE_LIMITED = "rate_limited"
    SERVER_ERROR = "server_error"
    CONNECTION_RESET = "connection_reset"
    TIMEOUT = "timeout"
    UNKNOWN = "unknown"


RETRYABLE_KINDS = frozenset(
    {
        FetchErrorKind.RATE_LIMITED,
        FetchErrorKind.SERVER_ERROR,
        FetchErrorKind.CONNECTION_RESET,
        FetchErrorKind.TIMEOUT,
    }
)


class FetchError(PipelineError):
    """A failed fetch, tagged with its failure kind at the point of failure."""

    def __init__(self, kind: FetchErrorKind, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.kind = kind
        self.status_code = status_code

    @property
    def retryable(self) -> bool:
        return self.kind in RETRYABLE_KINDS


class TransientFetchError(FetchError):
    """Timeout, connection reset, 429 or 5xx."""


class FatalFetchError(FetchError):
    """4xx other than 429, or anything unclassified."""


def classify_status(status_code: int) -> FetchErrorKind:
    if status_code in {401, 403}:
        return FetchErrorKind.UNAUTHORIZED
    if status_code == 429:
        return FetchErrorKind.RATE_LIMITED
    if 500 <= status_code <= 599:
        return FetchErrorKind.SERVER_ERROR
    if 400 <= status_code <= 499:
        return FetchErrorKind.CLIENT_ERROR
    return FetchErrorKind.UNKNOWN


def fetch_error(kind: FetchErrorKind, message: str, *, status_code: int | None = None) -> FetchError:
    error_cls = TransientFetchError if kind in RETRYABLE_KINDS else FatalFetchError
    return error_cls(kind, message, status_code=status_code)


def http_status_error(status_code: int, reason: str = "") -> FetchError:
    message = f"HTTP {status_code}: {reason}" if reason else f"HTTP {status_code}"
    return fetch_error(classify_status(status_code), message, status_code=status_code)
