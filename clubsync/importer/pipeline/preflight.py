"""
Preflight checks run before any sync writes, plus the production-database guard.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping

from sqlalchemy import inspect, select
from sqlalchemy.exc import SQLAlchemyError

from clubsync.models import MembershipStatus, WaIdMapping, WaSyncState
from clubsync.utils.importer import looks_like_production_database

from .store import LocalStore
from .transform import REQUIRED_STATUS_CODES

SEED_COMMAND = "flask importer seed-membership-statuses"


class PreflightError(RuntimeError):
    """Raised when a sync must not start."""


@dataclass
class PreflightResult:
    ok: bool = False
    checks: Dict[str, bool] = field(
        default_factory=lambda: {
            "database": False,
            "wa_id_mapping_table": False,
            "wa_sync_state_table": False,
            "membership_statuses": False,
        }
    )
    missing_statuses: List[str] = field(default_factory=list)
    error: str | None = None

    def as_dict(self) -> Dict[str, Any]:
        return {
            "ok": self.ok,
            "checks": dict(self.checks),
            "missing_statuses": list(self.missing_statuses),
            "error": self.error,
        }

    def raise_for_status(self) -> None:
        if not self.ok:
            raise PreflightError(self.error or "Preflight checks failed")


def run_preflight(store: LocalStore | None = None, *, client=None) -> PreflightResult:
    """
    Confirm the database is reachable, the sync tables exist, and every
    required membership status is seeded. When ``client`` is given the
    Wild Apricot credentials are exercised too.
    """

    store = store or LocalStore()
    result = PreflightResult()
    if client is not None:
        result.checks["wildapricot"] = False

    try:
        store.ping()
        result.checks["database"] = True

        inspector = inspect(store.session.get_bind())
        for key, model in (("wa_id_mapping_table", WaIdMapping), ("wa_sync_state_table", WaSyncState)):
            if not inspector.has_table(model.__tablename__):
                result.error = f"{model.__tablename__} table does not exist. Create the schema before syncing."
                return result
            result.checks[key] = True

        existing = set(
            store.session.scalars(select(MembershipStatus.code).where(MembershipStatus.code.in_(REQUIRED_STATUS_CODES)))
        )
        result.missing_statuses = [code for code in REQUIRED_STATUS_CODES if code not in existing]
        if result.missing_statuses:
            result.error = (
                f"Missing MembershipStatus codes: {', '.join(result.missing_statuses)}. Run: {SEED_COMMAND}"
            )
            return result
        result.checks["membership_statuses"] = True
    except SQLAlchemyError as exc:
        store.session.rollback()
        result.error = f"Database check failed: {exc}"
        return result

    if client is not None:
        health = client.health_check()
        if not health.get("ok"):
            result.error = f"Wild Apricot health check failed: {health.get('error')}"
            return result
        result.checks["wildapricot"] = True

    result.ok = True
    return result


def validate_production_safety(database_url: str | None, env: Mapping[str, str] | None = None) -> None:
    """Refuse live imports into what looks like a production database unless explicitly allowed."""

    env = os.environ if env is None else env
    if not looks_like_production_database(database_url, env):
        return
    if env.get("ALLOW_PROD_IMPORT") == "1":
        return
    raise PreflightError(
        "Refusing to import into what looks like a production database. "
        "Set ALLOW_PROD_IMPORT=1 to proceed, or use --dry-run."
    )


__all__ = ["PreflightError", "PreflightResult", "REQUIRED_STATUS_CODES", "run_preflight", "validate_production_safety"]
