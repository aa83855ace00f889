"""Wild Apricot adapter readiness and configuration validation utilities."""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Literal, Mapping, Tuple

REQUIRED_ENV_VARS: Tuple[str, ...] = ("WA_API_KEY", "WA_ACCOUNT_ID")


class WildApricotAdapterError(RuntimeError):
    """Base error for Wild Apricot adapter readiness issues."""


class WildApricotAdapterConfigError(WildApricotAdapterError):
    """Raised when required configuration or environment variables are missing."""


class WildApricotAdapterAuthError(WildApricotAdapterError):
    """Raised when credentials fail the token exchange."""


@dataclass(frozen=True)
class WildApricotAdapterReadiness:
    missing_env_vars: Tuple[str, ...]
    auth_status: Literal["skipped", "ok", "failed"]
    auth_error: str | None = None
    notes: Tuple[str, ...] = ()

    @property
    def status(self) -> str:
        if self.missing_env_vars:
            return "missing-env"
        if self.auth_status == "failed":
            return "auth-error"
        return "ready"

    def messages(self) -> Tuple[str, ...]:
        messages: list[str] = []
        if self.missing_env_vars:
            messages.append(f"Missing required Wild Apricot env vars: {', '.join(self.missing_env_vars)}")
        if self.auth_status == "failed" and self.auth_error:
            messages.append(self.auth_error)
        messages.extend(self.notes)
        return tuple(messages)

    def as_dict(self) -> dict[str, object]:
        payload: dict[str, object] = {
            "status": self.status,
            "missing_env_vars": list(self.missing_env_vars),
            "auth_status": self.auth_status,
            "messages": list(self.messages()),
        }
        if self.auth_error:
            payload["auth_error"] = self.auth_error
        return payload


def check_wildapricot_adapter_readiness(
    env: Mapping[str, str] | None = None,
    *,
    require_auth_ping: bool = False,
    session=None,
) -> WildApricotAdapterReadiness:
    """
    Perform a non-raising readiness check for the Wild Apricot adapter.

    Args:
        env: Optional mapping of environment variables to inspect. Defaults to os.environ.
        require_auth_ping: Whether to attempt a token exchange to validate the API key.
        session: Optional requests session used for the auth ping.
    """

    env = os.environ if env is None else env
    missing_env = tuple(sorted(var for var in REQUIRED_ENV_VARS if not env.get(var)))

    auth_status: Literal["skipped", "ok", "failed"] = "skipped"
    auth_error: str | None = None
    if require_auth_ping and not missing_env:
        import requests

        from .auth import AuthContext
        from .settings import DEFAULT_AUTH_URL

        auth = AuthContext(
            api_key=env["WA_API_KEY"],
            auth_url=env.get("WA_AUTH_URL") or DEFAULT_AUTH_URL,
            session=session or requests.Session(),
        )
        token = auth.get_token()
        if token.ok:
            auth_status = "ok"
        else:
            auth_status = "failed"
            auth_error = f"Wild Apricot authentication failed: {token.error.message}"  # type: ignore[union-attr]

    return WildApricotAdapterReadiness(
        missing_env_vars=missing_env,
        auth_status=auth_status,
        auth_error=auth_error,
    )


def ensure_wildapricot_adapter_ready(
    env: Mapping[str, str] | None = None,
    *,
    require_auth_ping: bool = False,
    session=None,
) -> WildApricotAdapterReadiness:
    """
    Validate Wild Apricot adapter readiness, raising actionable errors when not ready.
    """

    readiness = check_wildapricot_adapter_readiness(env=env, require_auth_ping=require_auth_ping, session=session)
    if readiness.missing_env_vars:
        raise WildApricotAdapterConfigError(
            "Wild Apricot adapter configured but missing required env vars: "
            + ", ".join(readiness.missing_env_vars)
            + ". Set these or disable the adapter."
        )
    if readiness.auth_status == "failed":
        raise WildApricotAdapterAuthError(readiness.auth_error or "Wild Apricot authentication failed.")
    return readiness


__all__ = [
    "REQUIRED_ENV_VARS",
    "WildApricotAdapterError",
    "WildApricotAdapterConfigError",
    "WildApricotAdapterAuthError",
    "WildApricotAdapterReadiness",
    "check_wildapricot_adapter_readiness",
    "ensure_wildapricot_adapter_ready",
]
