"""
Authenticated request execution and offset pagination for Wild Apricot.

Retry policy, evaluated per response:

* ``429``: honour ``Retry-After`` (default 60s) up to ``max_retries``.
* ``401``: drop the token and retry exactly once with a fresh one.
* ``5xx`` and client-side timeouts: exponential backoff with jitter,
  capped at ``retry_max_delay_ms``, up to ``max_retries``.
* any other non-2xx: fail immediately.

429/5xx/timeout retries share one budget per request. Nothing here loops
without a bound.
"""

from __future__ import annotations

import logging
import random
import time
from typing import Any, Callable, List, Mapping, Sequence

import requests

from clubsync.importer.metrics import record_wildapricot_retry

from .auth import AuthContext
from .errors import ApiErrorKind, ApiResult

DEFAULT_RETRY_AFTER_SECONDS = 60
ITEM_KEYS: Sequence[str] = ("Items", "Contacts", "Events", "Invoices")


def parse_retry_after(value: str | None, default: int = DEFAULT_RETRY_AFTER_SECONDS) -> int:
    """Return the Retry-After header as whole seconds, falling back to ``default``."""

    if value is None:
        return default
    try:
        seconds = int(str(value).strip())
    except ValueError:
        return default
    return max(0, seconds)


def compute_backoff_delay_ms(
    attempt: int,
    *,
    base_delay_ms: int,
    max_delay_ms: int,
    random_fn: Callable[[], float] = random.random,
) -> float:
    """``base * 2^attempt`` plus up to one second of jitter, capped at ``max_delay_ms``."""

    delay = base_delay_ms * (2**attempt)
    jitter = random_fn() * 1000
    return min(delay + jitter, max_delay_ms)


def extract_items(payload: Any, items_key: str | None = None) -> List[Any]:
    """Pull the record list out of a Wild Apricot list response."""

    if isinstance(payload, list):
        return payload
    if not isinstance(payload, Mapping):
        return []
    if items_key and isinstance(payload.get(items_key), list):
        return payload[items_key]
    for key in ITEM_KEYS:
        value = payload.get(key)
        if isinstance(value, list) and value:
            return value
    return []


class HttpExecutor:
    """Issue authenticated requests and apply the status-driven retry policy."""

    def __init__(
        self,
        *,
        auth: AuthContext,
        session: requests.Session,
        base_url: str,
        max_retries: int = 3,
        retry_base_delay_ms: int = 1000,
        retry_max_delay_ms: int = 30000,
        request_timeout_ms: int = 30000,
        sleep_fn: Callable[[float], None] = time.sleep,
        random_fn: Callable[[], float] = random.random,
        logger: logging.Logger | None = None,
    ) -> None:
        self.auth = auth
        self.session = session
        self.base_url = base_url.rstrip("/")
        self.max_retries = max(0, int(max_retries))
        self.retry_base_delay_ms = retry_base_delay_ms
        self.retry_max_delay_ms = retry_max_delay_ms
        self.request_timeout = request_timeout_ms / 1000.0
        self.sleep = sleep_fn
        self.random_fn = random_fn
        self.logger = logger or logging.getLogger(__name__)
        self.request_count = 0

    # Public API -----------------------------------------------------------------

    def request(
        self,
        method: str,
        path: str,
        *,
        params: Mapping[str, Any] | None = None,
        body: Any = None,
    ) -> ApiResult[Any]:
        url = self._build_url(path)
        retries = 0
        auth_retried = False

        while True:
            token = self.auth.get_token()
            if not token.ok:
                return ApiResult(error=token.error)

            self.request_count += 1
            try:
                response = self.session.request(
                    method,
                    url,
                    params=dict(params) if params else None,
                    json=body,
                    headers={"Authorization": f"Bearer {token.value}", "Accept": "application/json"},
                    timeout=self.request_timeout,
                )
            except requests.Timeout as exc:
                if retries < self.max_retries:
                    self._backoff(retries, reason="timeout", url=url)
                    retries += 1
                    continue
                return ApiResult.failure(
                    ApiErrorKind.TIMEOUT,
                    f"Request to {path} timed out after {retries} retries: {exc}",
                    status_code=408,
                )
            except requests.RequestException as exc:
                return ApiResult.failure(ApiErrorKind.CONNECTION_FAILED, f"Could not reach {url}: {exc}")

            status = response.status_code
            if status == 429:
                if retries < self.max_retries:
                    wait_seconds = parse_retry_after(response.headers.get("Retry-After"))
                    record_wildapricot_retry("rate_limited")
                    self.logger.warning(
                        "Wild Apricot rate limited; waiting before retry",
                        extra={"wa_url": url, "wa_retry_after": wait_seconds, "wa_retry": retries + 1},
                    )
                    self.sleep(wait_seconds)
                    retries += 1
                    continue
                return ApiResult.failure(
                    ApiErrorKind.RATE_LIMITED,
                    f"Rate limited by Wild Apricot after {retries} retries",
                    status_code=429,
                )

            if status == 401:
                self.auth.invalidate()
                if not auth_retried:
                    auth_retried = True
                    record_wildapricot_retry("unauthorized")
                    self.logger.info("Wild Apricot token rejected; re-authenticating", extra={"wa_url": url})
                    continue
                return ApiResult.failure(
                    ApiErrorKind.AUTH_FAILED,
                    "Authentication failed after token refresh",
                    status_code=401,
                )

            if status >= 500:
                if retries < self.max_retries:
                    self._backoff(retries, reason="server_error", url=url, status_code=status)
                    retries += 1
                    continue
                return ApiResult.failure(
                    ApiErrorKind.API_ERROR,
                    f"Wild Apricot returned {status} after {retries} retries",
                    status_code=status,
                    details=_response_text(response),
                )

            if not 200 <= status < 300:
                return ApiResult.failure(
                    ApiErrorKind.API_ERROR,
                    f"Wild Apricot returned {status} for {method} {path}",
                    status_code=status,
                    details=_response_text(response),
                )

            return self._decode(response, path)

    # Internal helpers -----------------------------------------------------------

    def _build_url(self, path: str) -> str:
        if path.startswith("http://") or path.startswith("https://"):
            return path
        return f"{self.base_url}/{path.lstrip('/')}"

    def _backoff(self, attempt: int, *, reason: str, url: str, status_code: int | None = None) -> None:
        delay_ms = compute_backoff_delay_ms(
            attempt,
            base_delay_ms=self.retry_base_delay_ms,
            max_delay_ms=self.retry_max_delay_ms,
            random_fn=self.random_fn,
        )
        record_wildapricot_retry(reason)  # type: ignore[arg-type]
        self.logger.warning(
            "Retrying Wild Apricot request",
            extra={
                "wa_url": url,
                "wa_retry_reason": reason,
                "wa_status_code": status_code,
                "wa_retry": attempt + 1,
                "wa_delay_ms": round(delay_ms),
            },
        )
        self.sleep(delay_ms / 1000.0)

    @staticmethod
    def _decode(response, path: str) -> ApiResult[Any]:
        if response.status_code == 204 or not getattr(response, "content", b"x"):
            return ApiResult.success(None)
        try:
            return ApiResult.success(response.json())
        except ValueError as exc:
            return ApiResult.failure(
                ApiErrorKind.API_ERROR,
                f"Invalid JSON from {path}: {exc}",
                status_code=response.status_code,
            )


def _response_text(response) -> str | None:
    text = getattr(response, "text", None)
    if text is None:
        return None
    return str(text)[:500]


class Paginator:
    """Walk a ``$top``/``$skip`` list endpoint until a short or empty page."""

    def __init__(self, executor: HttpExecutor, *, page_size: int = 100, logger: logging.Logger | None = None) -> None:
        self.executor = executor
        self.page_size = max(1, int(page_size))
        self.logger = logger or logging.getLogger(__name__)

    def fetch_all(
        self,
        path: str,
        params: Mapping[str, Any] | None = None,
        *,
        items_key: str | None = None,
    ) -> ApiResult[List[Any]]:
        collected: List[Any] = []
        skip = 0
        while True:
            page_params = dict(params or {})
            page_params["$top"] = self.page_size
            page_params["$skip"] = skip
            result = self.executor.request("GET", path, params=page_params)
            if not result.ok:
                return ApiResult(error=result.error)

            items = extract_items(result.value, items_key)
            if not items:
                break
            collected.extend(items)
            # Bare-array endpoints ignore $top/$skip and return everything at once.
            if isinstance(result.value, list):
                break
            if len(items) < self.page_size:
                break
            skip += self.page_size

        self.logger.debug("Fetched paginated collection", extra={"wa_path": path, "wa_item_count": len(collected)})
        return ApiResult.success(collected)


__all__ = [
    "DEFAULT_RETRY_AFTER_SECONDS",
    "HttpExecutor",
    "Paginator",
    "compute_backoff_delay_ms",
    "extract_items",
    "parse_retry_after",
]
