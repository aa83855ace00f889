"""
Entry points shared by the CLI and Celery task for running a Wild Apricot sync.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Any, Dict, Mapping

from flask import Flask

from clubsync.importer.adapters.wildapricot.client import WildApricotClient, create_wildapricot_client
from clubsync.importer.adapters.wildapricot.settings import WildApricotSettings
from clubsync.importer.pipeline import (
    LocalStore,
    SyncMode,
    SyncOrchestrator,
    SyncRun,
    build_sync_report,
    run_preflight,
    validate_production_safety,
    write_sync_report,
)
from clubsync.utils.importer import is_dry_run_requested


@dataclass
class SyncOutcome:
    run: SyncRun
    report: Dict[str, Any]
    report_path: str | None


def get_wildapricot_settings(app: Flask) -> WildApricotSettings:
    return WildApricotSettings.from_config(app.config)


def build_wildapricot_client(app: Flask, **kwargs: Any) -> WildApricotClient:
    """Create a client from app config; raises the adapter config error when credentials are missing."""

    return create_wildapricot_client(get_wildapricot_settings(app), logger=app.logger, **kwargs)


def execute_wildapricot_sync(
    app: Flask,
    *,
    mode: SyncMode | str = SyncMode.FULL,
    dry_run: bool = False,
    report_path: str | None = None,
    write_report: bool = True,
    client: WildApricotClient | None = None,
    env: Mapping[str, str] | None = None,
) -> SyncOutcome:
    """
    Guard, preflight, sync, and write the report.

    Raises :class:`PreflightError` before any fetch or write when the
    database is not ready or looks like production without consent.
    """

    env = os.environ if env is None else env
    dry_run = dry_run or is_dry_run_requested(env)
    settings = get_wildapricot_settings(app)

    if not dry_run:
        validate_production_safety(app.config.get("SQLALCHEMY_DATABASE_URI"), env)

    store = LocalStore()
    preflight = run_preflight(store)
    if not preflight.ok:
        app.logger.error("Wild Apricot preflight failed", extra={"preflight": preflight.as_dict()})
    preflight.raise_for_status()

    client = client or build_wildapricot_client(app)
    orchestrator = SyncOrchestrator(client, settings, store=store, dry_run=dry_run, logger=app.logger)
    run = orchestrator.run(mode)
    report = build_sync_report(run)

    path = None
    if write_report:
        path = write_sync_report(report, report_path or settings.report_path)
        app.logger.info("Wild Apricot sync report written", extra={"importer_run_id": run.run_id, "report_path": path})
    return SyncOutcome(run=run, report=report, report_path=path)


__all__ = [
    "SyncOutcome",
    "build_wildapricot_client",
    "execute_wildapricot_sync",
    "get_wildapricot_settings",
]
