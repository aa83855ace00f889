"""
Importer Celery tasks.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from celery import shared_task
from flask import current_app

from clubsync.importer.pipeline import SyncMode
from clubsync.importer.wildapricot_sync import execute_wildapricot_sync
from clubsync.models.base import db


@shared_task(name="importer.healthcheck", bind=True)
def importer_healthcheck(self) -> dict[str, Any]:
    """
    Heartbeat task used by worker health checks.
    """
    now = datetime.now(timezone.utc)
    return {
        "status": "ok",
        "timestamp": now.isoformat(),
        "worker_hostname": self.request.hostname,
    }


@shared_task(name="importer.wildapricot.sync", bind=True)
def wildapricot_sync(
    self,
    *,
    mode: str = SyncMode.FULL.value,
    dry_run: bool = False,
    report_path: str | None = None,
) -> dict[str, Any]:
    """
    Run a Wild Apricot sync on the importer worker and return the run report.
    """

    app = current_app._get_current_object()  # type: ignore[attr-defined]
    try:
        outcome = execute_wildapricot_sync(app, mode=mode, dry_run=dry_run, report_path=report_path)
    except Exception:
        db.session.rollback()
        current_app.logger.exception(
            "Wild Apricot sync task failed",
            extra={
                "importer_task_id": self.request.id,
                "importer_sync_mode": mode,
                "importer_dry_run": dry_run,
            },
        )
        raise

    current_app.logger.info(
        "Wild Apricot sync task completed",
        extra={
            "importer_task_id": self.request.id,
            "importer_run_id": outcome.run.run_id,
            "importer_success": outcome.run.success,
            "importer_report_path": outcome.report_path,
        },
    )
    report = dict(outcome.report)
    report["reportPath"] = outcome.report_path
    return report
