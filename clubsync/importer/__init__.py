"""
Importer feature package.

Registers the importer CLI and Celery app and validates configured adapters,
staying inert when the importer is disabled.
"""

from __future__ import annotations

from typing import Any, Dict, Iterable, Mapping, Tuple

from flask import Flask

from clubsync.utils.importer import get_importer_adapters, is_importer_enabled

from .metrics import record_wildapricot_adapter_status, record_wildapricot_auth_attempt
from .celery_app import ensure_celery_app, get_celery_app
from .cli import get_disabled_importer_group, importer_cli
from .registry import AdapterDescriptor, get_adapter_registry, resolve_adapters

IMPORTER_EXTENSION_KEY = "importer"

__all__ = [
    "init_importer",
    "IMPORTER_EXTENSION_KEY",
    "get_celery_app",
    "get_adapter_readiness",
    "refresh_adapter_readiness",
]


def _ensure_extension_state(app: Flask) -> dict:
    return app.extensions.setdefault(
        IMPORTER_EXTENSION_KEY,
        {
            "enabled": False,
            "configured_adapters": (),
            "active_adapters": (),
            "worker_enabled": False,
            "celery_app": None,
            "adapter_readiness": {},
        },
    )


def _compute_adapter_readiness(
    app: Flask,
    descriptors: Iterable[AdapterDescriptor],
    *,
    require_auth_ping: bool = False,
) -> Dict[str, Dict[str, Any]]:
    readiness: Dict[str, Dict[str, Any]] = {}
    wildapricot_ready: bool | None = None
    for descriptor in descriptors:
        payload: Dict[str, Any] = {
            "name": descriptor.name,
            "title": descriptor.title,
            "optional_dependencies": descriptor.optional_dependencies,
        }
        if descriptor.name == "wildapricot":
            from clubsync.importer.adapters.wildapricot import check_wildapricot_adapter_readiness

            readiness_result = check_wildapricot_adapter_readiness(
                env=app.config,
                require_auth_ping=require_auth_ping,
            )
            payload.update(readiness_result.as_dict())
            if require_auth_ping and readiness_result.auth_status in ("ok", "failed"):
                record_wildapricot_auth_attempt("success" if readiness_result.auth_status == "ok" else "failure")
            wildapricot_ready = readiness_result.status == "ready"
        else:
            payload.update({"status": "ready", "missing_env_vars": [], "auth_status": "skipped", "messages": []})
        readiness[descriptor.name] = payload
    record_wildapricot_adapter_status(bool(wildapricot_ready))
    return readiness


def _set_cli(app: Flask, enabled: bool) -> None:
    """Register the appropriate CLI group based on flag state."""
    command_name = importer_cli.name
    if command_name in app.cli.commands:
        app.cli.commands.pop(command_name)

    if enabled:
        app.cli.add_command(importer_cli)
    else:
        app.cli.add_command(get_disabled_importer_group())


def init_importer(app: Flask) -> None:
    """
    Mount the importer CLI and Celery app based on configuration.

    Records importer state inside ``app.extensions['importer']`` for reuse by
    the CLI, tasks, and health helpers.
    """
    enabled = is_importer_enabled(app)
    configured_adapters: Tuple[str, ...] = get_importer_adapters(app)

    state = _ensure_extension_state(app)
    state.update(
        {
            "enabled": enabled,
            "configured_adapters": configured_adapters,
            "worker_enabled": bool(app.config.get("IMPORTER_WORKER_ENABLED", False)),
        }
    )

    if not enabled:
        record_wildapricot_adapter_status(False)
        state["active_adapters"] = ()
        _set_cli(app, enabled=False)
        app.logger.info("Importer disabled via IMPORTER_ENABLED flag; skipping registration.")
        return

    state["active_adapters"] = tuple(resolve_adapters(configured_adapters, get_adapter_registry()))
    ensure_celery_app(app, state)

    readiness_map = _compute_adapter_readiness(app, state["active_adapters"])
    state["adapter_readiness"] = readiness_map
    for descriptor in state["active_adapters"]:
        payload = readiness_map.get(descriptor.name, {})
        status = payload.get("status")
        if status and status != "ready":
            messages = list(payload.get("messages") or ())
            app.logger.warning(
                "Importer adapter '%s' not ready (status=%s). %s",
                descriptor.name,
                status,
                "; ".join(messages) if messages else "No additional context provided.",
                extra={
                    "importer_adapter": descriptor.name,
                    "importer_adapter_status": status,
                    "importer_adapter_missing_env": payload.get("missing_env_vars"),
                },
            )

    _set_cli(app, enabled=True)
    adapter_names = ", ".join(adapter.name for adapter in state["active_adapters"]) or "none"
    app.logger.info("Importer enabled with adapters: %s", adapter_names)


def get_adapter_readiness(app: Flask) -> Mapping[str, Dict[str, Any]]:
    """Return cached adapter readiness information."""
    state = _ensure_extension_state(app)
    return dict(state.get("adapter_readiness", {}))


def refresh_adapter_readiness(app: Flask, *, require_auth_ping: bool = False) -> Mapping[str, Dict[str, Any]]:
    """
    Recompute adapter readiness and persist the results on the importer extension state.
    """
    state = _ensure_extension_state(app)
    readiness_map = _compute_adapter_readiness(app, state.get("active_adapters", ()), require_auth_ping=require_auth_ping)
    state["adapter_readiness"] = readiness_map
    return dict(readiness_map)
