"""
OAuth client-credentials handshake and token ownership.

An :class:`AuthContext` belongs to one sync run (or one CLI invocation);
it is passed explicitly to the HTTP executor rather than living in module
state. Concurrent refreshes are not deduplicated: a redundant exchange is
harmless.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable

import requests

from clubsync.importer.metrics import record_wildapricot_auth_attempt

from .errors import ApiErrorKind, ApiResult


@dataclass(frozen=True)
class AccessToken:
    value: str
    expires_at_ms: float


class AuthContext:
    """Cache a bearer token and refresh it once ``now + buffer`` passes its expiry."""

    def __init__(
        self,
        *,
        api_key: str,
        auth_url: str,
        session: requests.Session,
        expiry_buffer_ms: int = 60000,
        timeout_seconds: float = 30.0,
        clock: Callable[[], float] = time.time,
        logger: logging.Logger | None = None,
    ) -> None:
        self.api_key = api_key
        self.auth_url = auth_url
        self.session = session
        self.expiry_buffer_ms = expiry_buffer_ms
        self.timeout_seconds = timeout_seconds
        self.clock = clock
        self.logger = logger or logging.getLogger(__name__)
        self._token: AccessToken | None = None
        self.exchange_count = 0

    def _now_ms(self) -> float:
        return self.clock() * 1000.0

    @property
    def token(self) -> AccessToken | None:
        return self._token

    def has_valid_token(self) -> bool:
        return self._token is not None and self._token.expires_at_ms > self._now_ms() + self.expiry_buffer_ms

    def invalidate(self) -> None:
        """Drop the cached token; the next call performs a fresh exchange."""

        self._token = None

    def get_token(self) -> ApiResult[str]:
        if self.has_valid_token():
            return ApiResult.success(self._token.value)  # type: ignore[union-attr]
        return self._exchange()

    def _exchange(self) -> ApiResult[str]:
        if not self.api_key:
            record_wildapricot_auth_attempt("failure")
            return ApiResult.failure(ApiErrorKind.AUTH_FAILED, "WA_API_KEY is not configured.")

        self.exchange_count += 1
        try:
            response = self.session.post(
                self.auth_url,
                auth=("APIKEY", self.api_key),
                data={"grant_type": "client_credentials", "scope": "auto"},
                headers={"Accept": "application/json"},
                timeout=self.timeout_seconds,
            )
        except requests.Timeout as exc:
            record_wildapricot_auth_attempt("failure")
            return ApiResult.failure(ApiErrorKind.TIMEOUT, f"Token request timed out: {exc}", status_code=408)
        except requests.RequestException as exc:
            record_wildapricot_auth_attempt("failure")
            return ApiResult.failure(ApiErrorKind.CONNECTION_FAILED, f"Token request failed: {exc}")

        if not 200 <= response.status_code < 300:
            record_wildapricot_auth_attempt("failure")
            self.logger.error(
                "Wild Apricot token exchange rejected",
                extra={"wa_status_code": response.status_code},
            )
            return ApiResult.failure(
                ApiErrorKind.AUTH_FAILED,
                f"Token request failed with status {response.status_code}",
                status_code=response.status_code,
                details=getattr(response, "text", None),
            )

        try:
            payload = response.json()
        except ValueError:
            payload = {}
        access_token = payload.get("access_token") if isinstance(payload, dict) else None
        if not access_token:
            record_wildapricot_auth_attempt("failure")
            return ApiResult.failure(
                ApiErrorKind.AUTH_FAILED,
                "Token response did not include an access_token.",
                status_code=response.status_code,
            )

        try:
            expires_in = float(payload.get("expires_in") or 0)
        except (TypeError, ValueError):
            expires_in = 0.0
        self._token = AccessToken(value=access_token, expires_at_ms=self._now_ms() + expires_in * 1000.0)
        record_wildapricot_auth_attempt("success")
        self.logger.debug("Obtained Wild Apricot access token", extra={"wa_token_expires_in": expires_in})
        return ApiResult.success(access_token)


__all__ = ["AccessToken", "AuthContext"]
