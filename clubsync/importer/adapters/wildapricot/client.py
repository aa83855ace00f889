"""
Typed entity fetchers for the Wild Apricot v2.2 API.

Contacts are requested with ``$async=true``; large result sets come back
as a ``ResultUrl`` that the :class:`AsyncQueryPoller` follows. Everything
else is a plain paginated list.
"""

from __future__ import annotations

import logging
import random
import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List

import requests

from .auth import AuthContext
from .errors import ApiResult
from .polling import AsyncQueryPoller
from .settings import WildApricotSettings
from .transport import HttpExecutor, Paginator, extract_items


def _to_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def build_contacts_modified_filter(since: datetime) -> str:
    """``$filter`` clause selecting contacts whose profile changed after ``since``."""

    iso = _to_utc(since).strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3] + "Z"
    return f"'Profile last updated' gt {iso}"


def build_events_from_filter(start: datetime) -> str:
    """``$filter`` clause selecting events starting on or after ``start`` (date precision)."""

    return f"StartDate ge {_to_utc(start).date().isoformat()}"


class WildApricotClient:
    """Wild Apricot API facade composed of auth, executor, paginator, and poller."""

    def __init__(
        self,
        settings: WildApricotSettings,
        *,
        session: requests.Session | None = None,
        auth: AuthContext | None = None,
        sleep_fn: Callable[[float], None] = time.sleep,
        random_fn: Callable[[], float] = random.random,
        clock: Callable[[], float] = time.time,
        logger: logging.Logger | None = None,
    ) -> None:
        self.settings = settings
        self.session = session or requests.Session()
        self.logger = logger or logging.getLogger(__name__)
        self.auth = auth or AuthContext(
            api_key=settings.api_key,
            auth_url=settings.auth_url,
            session=self.session,
            expiry_buffer_ms=settings.token_expiry_buffer_ms,
            timeout_seconds=settings.request_timeout_ms / 1000.0,
            clock=clock,
            logger=self.logger,
        )
        self.executor = HttpExecutor(
            auth=self.auth,
            session=self.session,
            base_url=settings.api_base_url,
            max_retries=settings.max_retries,
            retry_base_delay_ms=settings.retry_base_delay_ms,
            retry_max_delay_ms=settings.retry_max_delay_ms,
            request_timeout_ms=settings.request_timeout_ms,
            sleep_fn=sleep_fn,
            random_fn=random_fn,
            logger=self.logger,
        )
        self.paginator = Paginator(self.executor, page_size=settings.page_size, logger=self.logger)
        self.poller = AsyncQueryPoller(
            self.executor,
            poll_interval_ms=settings.async_poll_interval_ms,
            max_attempts=settings.async_max_attempts,
            sleep_fn=sleep_fn,
            logger=self.logger,
        )

    @property
    def account_path(self) -> str:
        return self.settings.account_path

    # Contacts -------------------------------------------------------------------

    def fetch_contacts(self, *, filter_expr: str | None = None) -> ApiResult[List[Dict[str, Any]]]:
        params: Dict[str, Any] = {"$async": "true"}
        if filter_expr:
            params["$filter"] = filter_expr

        response = self.executor.request("GET", f"{self.account_path}/contacts", params=params)
        if not response.ok:
            return response
        body = response.value
        if isinstance(body, dict) and body.get("ResultUrl"):
            self.logger.info("Contacts query is asynchronous; polling for results")
            return self.poller.poll(body["ResultUrl"])
        return ApiResult.success(extract_items(body, "Contacts"))

    def fetch_contacts_modified_since(self, since: datetime) -> ApiResult[List[Dict[str, Any]]]:
        return self.fetch_contacts(filter_expr=build_contacts_modified_filter(since))

    # Events ---------------------------------------------------------------------

    def fetch_events(self, *, filter_expr: str | None = None) -> ApiResult[List[Dict[str, Any]]]:
        params: Dict[str, Any] = {}
        if filter_expr:
            params["$filter"] = filter_expr
        return self.paginator.fetch_all(f"{self.account_path}/events", params, items_key="Events")

    def fetch_events_from(self, start: datetime) -> ApiResult[List[Dict[str, Any]]]:
        return self.fetch_events(filter_expr=build_events_from_filter(start))

    def fetch_event(self, event_id: int) -> ApiResult[Dict[str, Any]]:
        return self.executor.request("GET", f"{self.account_path}/events/{int(event_id)}")

    def fetch_event_registrations(self, event_id: int) -> ApiResult[List[Dict[str, Any]]]:
        return self.paginator.fetch_all(f"{self.account_path}/eventregistrations", {"eventId": int(event_id)})

    # Reference data -------------------------------------------------------------

    def fetch_membership_levels(self) -> ApiResult[List[Dict[str, Any]]]:
        return self.paginator.fetch_all(f"{self.account_path}/membershiplevels")

    def fetch_contact_fields(self) -> ApiResult[List[Dict[str, Any]]]:
        # Returns a bare array; no pagination parameters.
        response = self.executor.request("GET", f"{self.account_path}/contactfields")
        if not response.ok:
            return response
        return ApiResult.success(extract_items(response.value))

    # Health ---------------------------------------------------------------------

    def health_check(self) -> Dict[str, Any]:
        """Verify credentials and account access without raising."""

        token = self.auth.get_token()
        if not token.ok:
            return {
                "ok": False,
                "account_id": self.settings.account_id,
                "error": token.error.message,  # type: ignore[union-attr]
                "error_kind": token.error.kind.value,  # type: ignore[union-attr]
            }
        levels = self.fetch_membership_levels()
        if not levels.ok:
            return {
                "ok": False,
                "account_id": self.settings.account_id,
                "error": levels.error.message,  # type: ignore[union-attr]
                "error_kind": levels.error.kind.value,  # type: ignore[union-attr]
            }
        return {
            "ok": True,
            "account_id": self.settings.account_id,
            "membership_levels": len(levels.value or []),
        }


def create_wildapricot_client(settings: WildApricotSettings, **kwargs: Any) -> WildApricotClient:
    """Instantiate a client after validating that credentials are configured."""

    from . import ensure_wildapricot_adapter_ready

    ensure_wildapricot_adapter_ready(
        env={"WA_API_KEY": settings.api_key, "WA_ACCOUNT_ID": settings.account_id},
    )
    return WildApricotClient(settings, **kwargs)


__all__ = [
    "WildApricotClient",
    "build_contacts_modified_filter",
    "build_events_from_filter",
    "create_wildapricot_client",
]
