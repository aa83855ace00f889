"""Typed settings for the Wild Apricot adapter, resolved from Flask config."""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any, Mapping

DEFAULT_API_BASE_URL = "https://api.wildapricot.org/v2.2"
DEFAULT_AUTH_URL = "https://oauth.wildapricot.org/auth/token"
DEFAULT_REPORT_PATH = "/tmp/clubos/wa_full_sync_report.json"


def _int_setting(config: Mapping[str, Any], key: str, default: int, *, minimum: int = 0) -> int:
    raw = config.get(key)
    if raw is None or raw == "":
        return default
    try:
        value = int(raw)
    except (TypeError, ValueError):
        return default
    return max(minimum, value)


@dataclass(frozen=True)
class WildApricotSettings:
    api_key: str
    account_id: str
    api_base_url: str = DEFAULT_API_BASE_URL
    auth_url: str = DEFAULT_AUTH_URL
    page_size: int = 100
    max_retries: int = 3
    retry_base_delay_ms: int = 1000
    retry_max_delay_ms: int = 30000
    request_timeout_ms: int = 30000
    async_poll_interval_ms: int = 2000
    async_max_attempts: int = 60
    token_expiry_buffer_ms: int = 60000
    db_batch_size: int = 100
    contacts_lookback_days: int = 7
    events_lookback_days: int = 365
    report_path: str = DEFAULT_REPORT_PATH

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> "WildApricotSettings":
        """Build settings from a Flask config (or any mapping of WA_* keys)."""

        return cls(
            api_key=str(config.get("WA_API_KEY") or ""),
            account_id=str(config.get("WA_ACCOUNT_ID") or ""),
            api_base_url=str(config.get("WA_API_BASE_URL") or DEFAULT_API_BASE_URL).rstrip("/"),
            auth_url=str(config.get("WA_AUTH_URL") or DEFAULT_AUTH_URL),
            page_size=_int_setting(config, "WA_PAGE_SIZE", 100, minimum=1),
            max_retries=_int_setting(config, "WA_MAX_RETRIES", 3),
            retry_base_delay_ms=_int_setting(config, "WA_RETRY_BASE_DELAY_MS", 1000),
            retry_max_delay_ms=_int_setting(config, "WA_RETRY_MAX_DELAY_MS", 30000),
            request_timeout_ms=_int_setting(config, "WA_REQUEST_TIMEOUT_MS", 30000, minimum=1),
            async_poll_interval_ms=_int_setting(config, "WA_ASYNC_POLL_INTERVAL_MS", 2000),
            async_max_attempts=_int_setting(config, "WA_ASYNC_MAX_ATTEMPTS", 60, minimum=1),
            token_expiry_buffer_ms=_int_setting(config, "WA_TOKEN_EXPIRY_BUFFER_MS", 60000),
            db_batch_size=_int_setting(config, "WA_DB_BATCH_SIZE", 100, minimum=1),
            contacts_lookback_days=_int_setting(config, "WA_CONTACTS_LOOKBACK_DAYS", 7),
            events_lookback_days=_int_setting(config, "WA_EVENTS_LOOKBACK_DAYS", 365),
            report_path=str(config.get("WA_SYNC_REPORT_PATH") or DEFAULT_REPORT_PATH),
        )

    @property
    def account_path(self) -> str:
        return f"/accounts/{self.account_id}"

    def with_overrides(self, **overrides: Any) -> "WildApricotSettings":
        return replace(self, **overrides)


__all__ = ["WildApricotSettings", "DEFAULT_API_BASE_URL", "DEFAULT_AUTH_URL", "DEFAULT_REPORT_PATH"]
