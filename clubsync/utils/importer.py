"""
Utility helpers for importer feature flag and safety checks.
"""

from __future__ import annotations

import os
from typing import Iterable, Mapping, Tuple

from flask import current_app

_PRODUCTION_URL_MARKERS = ("production", "prod.", "neon.tech", "supabase.co")


def _get_config(app=None):
    if app is not None:
        return app.config
    return current_app.config


def is_importer_enabled(app=None) -> bool:
    """Return True when the importer feature flag is enabled."""
    config = _get_config(app)
    return bool(config.get("IMPORTER_ENABLED", False))


def get_importer_adapters(app=None) -> Tuple[str, ...]:
    """Return the configured importer adapter identifiers."""
    config = _get_config(app)
    adapters: Iterable[str] = config.get("IMPORTER_ADAPTERS", ())
    return tuple(adapters)


def is_dry_run_requested(env: Mapping[str, str] | None = None) -> bool:
    """``DRY_RUN=1`` forces preview mode regardless of CLI flags."""
    env = os.environ if env is None else env
    return env.get("DRY_RUN") == "1"


def looks_like_production_database(database_url: str | None, env: Mapping[str, str] | None = None) -> bool:
    """Heuristic used to guard live imports against production databases."""
    env = os.environ if env is None else env
    url = database_url or ""
    if env.get("FLASK_ENV") == "production":
        return True
    if any(marker in url for marker in _PRODUCTION_URL_MARKERS):
        return True
    return ".com" in url and "localhost" not in url
