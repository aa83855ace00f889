import json
from typing import Any, Dict

import pytest
from flask import Flask

from clubsync.importer import get_celery_app, init_importer
from clubsync.importer.celery_app import DEFAULT_QUEUE_NAME
from clubsync.importer.pipeline import PreflightError
from wa_fakes import FakeWildApricotClient, make_contact

EAGER = {"task_always_eager": True, "task_eager_propagates": True}


def build_importer_app(tmp_path, **overrides) -> Flask:
    """
    Construct a minimal Flask app with the importer enabled for worker tests.
    """
    app = Flask(__name__, instance_path=str(tmp_path / "instance"))
    app.config.update(
        SECRET_KEY="test-secret",
        TESTING=True,
        IMPORTER_ENABLED=True,
        IMPORTER_ADAPTERS=("wildapricot",),
    )
    app.config.update(overrides)
    init_importer(app)
    return app


def test_celery_defaults_to_sqlite_transport(tmp_path):
    sqlite_path = tmp_path / "broker" / "custom.sqlite"

    app = build_importer_app(tmp_path, CELERY_SQLITE_PATH=str(sqlite_path), CELERY_CONFIG=EAGER)

    celery_app = get_celery_app(app)
    assert celery_app is not None
    assert celery_app.conf.broker_url.startswith("sqla+sqlite:///")
    assert sqlite_path.name in celery_app.conf.broker_url
    assert celery_app.conf.result_backend.startswith("db+sqlite:///")
    assert celery_app.conf.task_default_queue == DEFAULT_QUEUE_NAME
    assert celery_app.conf.worker_prefetch_multiplier == 1
    assert "importer.wildapricot.sync" in celery_app.tasks


def test_celery_config_accepts_json_string(tmp_path):
    app = build_importer_app(tmp_path, CELERY_CONFIG=json.dumps({"task_always_eager": True}))

    assert get_celery_app(app).conf.task_always_eager is True


def test_worker_ping_cli(tmp_path):
    app = build_importer_app(tmp_path, IMPORTER_WORKER_ENABLED=True, CELERY_CONFIG=EAGER)

    runner = app.test_cli_runner()
    result = runner.invoke(args=["importer", "worker", "ping"])

    assert result.exit_code == 0, result.output
    payload = json.loads(result.output)
    assert payload["status"] == "ok"
    assert "timestamp" in payload
    assert "worker_hostname" in payload


def test_worker_run_invokes_celery(tmp_path, monkeypatch):
    app = build_importer_app(tmp_path, IMPORTER_WORKER_ENABLED=True, CELERY_CONFIG=EAGER)
    celery_app = get_celery_app(app)
    assert celery_app is not None

    calls: Dict[str, Any] = {}

    def fake_worker_main(argv=None):
        calls["argv"] = argv

    monkeypatch.setattr(celery_app, "worker_main", fake_worker_main)

    runner = app.test_cli_runner()
    result = runner.invoke(
        args=[
            "importer",
            "worker",
            "run",
            "--loglevel",
            "debug",
            "--concurrency",
            "2",
            "--pool",
            "solo",
            "--queues",
            "imports",
        ]
    )

    assert result.exit_code == 0, result.output
    assert calls["argv"] == [
        "worker",
        "--loglevel",
        "debug",
        "-Q",
        "imports",
        "--concurrency",
        "2",
        "--pool",
        "solo",
    ]


def test_sync_task_runs_inside_app_context(app, seeded_statuses, tmp_path, monkeypatch):
    client = FakeWildApricotClient([make_contact(1)])
    monkeypatch.setattr("clubsync.importer.wildapricot_sync.build_wildapricot_client", lambda flask_app: client)
    celery_app = get_celery_app(app)
    report_path = tmp_path / "task_report.json"

    result = celery_app.tasks["importer.wildapricot.sync"].apply(
        kwargs={"mode": "full", "dry_run": True, "report_path": str(report_path)}
    )

    payload = result.get()
    assert payload["dryRun"] is True
    assert payload["stats"]["members"]["created"] == 1
    assert payload["reportPath"] == str(report_path)
    assert report_path.exists()


def test_sync_task_propagates_preflight_failure(app, tmp_path, monkeypatch):
    monkeypatch.setattr(
        "clubsync.importer.wildapricot_sync.build_wildapricot_client",
        lambda flask_app: FakeWildApricotClient(),
    )
    celery_app = get_celery_app(app)

    with pytest.raises(PreflightError):
        celery_app.tasks["importer.wildapricot.sync"].apply(
            kwargs={"dry_run": True, "report_path": str(tmp_path / "r.json")},
            throw=True,
        )
