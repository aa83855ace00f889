"""
Error taxonomy and tagged results for the Wild Apricot adapter.

Every HTTP-facing layer returns an :class:`ApiResult` rather than raising,
so callers can branch on :class:`ApiErrorKind`. ``ApiResult.unwrap()``
converts a failure into the matching exception for code that prefers
fail-fast behavior (CLI commands, Celery tasks).
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

T = TypeVar("T")


class ApiErrorKind(str, enum.Enum):
    AUTH_FAILED = "AUTH_FAILED"
    RATE_LIMITED = "RATE_LIMITED"
    API_ERROR = "API_ERROR"
    TIMEOUT = "TIMEOUT"
    CONNECTION_FAILED = "CONNECTION_FAILED"
    ASYNC_FAILED = "ASYNC_FAILED"
    ASYNC_TIMEOUT = "ASYNC_TIMEOUT"


class WildApricotError(RuntimeError):
    """Base error for Wild Apricot adapter failures."""

    kind: ApiErrorKind = ApiErrorKind.API_ERROR

    def __init__(self, message: str, *, status_code: int | None = None, details: Any = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.details = details


class AuthenticationError(WildApricotError):
    """Token exchange failed or a request was rejected with 401 twice."""

    kind = ApiErrorKind.AUTH_FAILED


class RateLimitedError(WildApricotError):
    """429 responses persisted past the retry budget."""

    kind = ApiErrorKind.RATE_LIMITED


class TransientApiError(WildApricotError):
    """5xx or timeout responses persisted past the retry budget."""


class NonTransientApiError(WildApricotError):
    """Non-retryable 4xx (or otherwise unexpected) response."""


class ApiConnectionError(WildApricotError):
    """The API could not be reached at all."""

    kind = ApiErrorKind.CONNECTION_FAILED


class AsyncQueryFailedError(WildApricotError):
    """The server reported an asynchronous query as Failed."""

    kind = ApiErrorKind.ASYNC_FAILED


class AsyncQueryTimeoutError(WildApricotError):
    """An asynchronous query never reached a terminal state."""

    kind = ApiErrorKind.ASYNC_TIMEOUT


@dataclass(frozen=True)
class ApiError:
    kind: ApiErrorKind
    message: str
    status_code: int | None = None
    details: Any = None

    @property
    def is_transient(self) -> bool:
        if self.kind is ApiErrorKind.TIMEOUT:
            return True
        return self.kind is ApiErrorKind.API_ERROR and (self.status_code or 0) >= 500

    def to_exception(self) -> WildApricotError:
        if self.kind is ApiErrorKind.AUTH_FAILED:
            exc_cls: type[WildApricotError] = AuthenticationError
        elif self.kind is ApiErrorKind.RATE_LIMITED:
            exc_cls = RateLimitedError
        elif self.kind is ApiErrorKind.CONNECTION_FAILED:
            exc_cls = ApiConnectionError
        elif self.kind is ApiErrorKind.ASYNC_FAILED:
            exc_cls = AsyncQueryFailedError
        elif self.kind is ApiErrorKind.ASYNC_TIMEOUT:
            exc_cls = AsyncQueryTimeoutError
        elif self.is_transient:
            exc_cls = TransientApiError
        else:
            exc_cls = NonTransientApiError
        exc = exc_cls(self.message, status_code=self.status_code, details=self.details)
        exc.kind = self.kind
        return exc

    def as_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "message": self.message,
            "status_code": self.status_code,
            "details": self.details,
        }


@dataclass(frozen=True)
class ApiResult(Generic[T]):
    value: T | None = None
    error: ApiError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: T) -> "ApiResult[T]":
        return cls(value=value)

    @classmethod
    def failure(
        cls,
        kind: ApiErrorKind,
        message: str,
        *,
        status_code: int | None = None,
        details: Any = None,
    ) -> "ApiResult[T]":
        return cls(error=ApiError(kind=kind, message=message, status_code=status_code, details=details))

    def unwrap(self) -> T:
        if self.error is not None:
            raise self.error.to_exception()
        return self.value  # type: ignore[return-value]


__all__ = [
    "ApiError",
    "ApiErrorKind",
    "ApiResult",
    "ApiConnectionError",
    "AsyncQueryFailedError",
    "AsyncQueryTimeoutError",
    "AuthenticationError",
    "NonTransientApiError",
    "RateLimitedError",
    "TransientApiError",
    "WildApricotError",
]
