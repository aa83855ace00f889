"""
Celery wiring for background Wild Apricot syncs.

Falls back to a SQLite broker/result backend in the Flask instance folder
so a worker can run locally without Redis.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Mapping

from celery import Celery
from flask import Flask
from kombu import Queue

DEFAULT_QUEUE_NAME = "imports"
DEFAULT_SQLITE_FILENAME = "celery.sqlite"
# A full sync with registrations for a year of events can take a while.
DEFAULT_TASK_TIME_LIMIT = 60 * 60
DEFAULT_TASK_SOFT_TIME_LIMIT = 55 * 60


def _quiet_worker_loggers(app: Flask) -> None:
    if not app.config.get("SQLALCHEMY_ECHO", False):
        logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("celery.worker.strategy").setLevel(logging.WARNING)


def _sqlite_path(app: Flask) -> Path:
    configured = app.config.get("CELERY_SQLITE_PATH")
    path = Path(configured) if configured else Path(app.instance_path) / DEFAULT_SQLITE_FILENAME
    if not path.is_absolute():
        path = Path(app.instance_path) / path
    path.parent.mkdir(parents=True, exist_ok=True)
    return path


def _connection_urls(app: Flask) -> tuple[str, str]:
    """Return ``(broker_url, result_backend)``, filling gaps with SQLite transports."""

    broker_url = app.config.get("CELERY_BROKER_URL")
    result_backend = app.config.get("CELERY_RESULT_BACKEND")
    if broker_url and result_backend:
        return broker_url, result_backend

    sqlite_uri = _sqlite_path(app).as_posix()
    return broker_url or f"sqla+sqlite:///{sqlite_uri}", result_backend or f"db+sqlite:///{sqlite_uri}"


def _extra_conf(app: Flask) -> Mapping[str, Any] | None:
    raw: Mapping[str, Any] | str | None = app.config.get("CELERY_CONFIG")
    if not isinstance(raw, str):
        return raw
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        app.logger.warning("CELERY_CONFIG is not valid JSON; ignoring value.", exc_info=True)
        return None


def create_celery_app(app: Flask) -> Celery:
    """Build a Celery app bound to ``app`` whose tasks run inside its app context."""

    broker_url, result_backend = _connection_urls(app)
    celery_app = Celery(
        app.import_name,
        broker=broker_url,
        backend=result_backend,
        include=("clubsync.importer.tasks",),
    )
    celery_app.conf.update(
        task_default_queue=DEFAULT_QUEUE_NAME,
        task_queues=[Queue(DEFAULT_QUEUE_NAME)],
        task_default_exchange=DEFAULT_QUEUE_NAME,
        task_default_routing_key=DEFAULT_QUEUE_NAME,
        task_acks_late=True,
        worker_prefetch_multiplier=1,
        task_track_started=True,
        result_extended=True,
        broker_connection_retry_on_startup=True,
        task_time_limit=app.config.get("IMPORTER_TASK_TIME_LIMIT", DEFAULT_TASK_TIME_LIMIT),
        task_soft_time_limit=app.config.get("IMPORTER_TASK_SOFT_TIME_LIMIT", DEFAULT_TASK_SOFT_TIME_LIMIT),
        worker_hijack_root_logger=False,
    )

    extra_conf = _extra_conf(app)
    if extra_conf:
        celery_app.conf.update(extra_conf)

    app.logger.info(
        "Importer Celery configuration resolved",
        extra={
            "importer_celery_broker_url": broker_url,
            "importer_celery_result_backend": result_backend,
            "importer_celery_extra_conf": extra_conf,
            "importer_worker_enabled": app.config.get("IMPORTER_WORKER_ENABLED"),
        },
    )
    _quiet_worker_loggers(app)

    class FlaskContextTask(celery_app.Task):  # type: ignore[misc]
        def __call__(self, *args, **kwargs):
            with app.app_context():
                return super().__call__(*args, **kwargs)

    celery_app.Task = FlaskContextTask  # type: ignore[assignment]
    celery_app.loader.import_default_modules()
    return celery_app


def ensure_celery_app(app: Flask, state: dict[str, Any]) -> Celery:
    celery_app: Celery | None = state.get("celery_app")
    if celery_app is None:
        celery_app = create_celery_app(app)
        state["celery_app"] = celery_app
    return celery_app


def get_celery_app(app: Flask) -> Celery | None:
    """Return the importer's Celery app, creating it lazily when the importer is enabled."""

    state: dict[str, Any] | None = app.extensions.get("importer")  # type: ignore[arg-type]
    if not state:
        return None
    if state.get("celery_app") is None and state.get("enabled"):
        return ensure_celery_app(app, state)
    return state.get("celery_app")


__all__ = ["DEFAULT_QUEUE_NAME", "create_celery_app", "ensure_celery_app", "get_celery_app"]
