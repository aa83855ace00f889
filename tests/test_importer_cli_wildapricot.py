from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select

from clubsync.importer.adapters.wildapricot.errors import ApiErrorKind
from clubsync.importer.pipeline import IdMappingStore
from clubsync.models import Member, MembershipStatus, WaEntityType, WaIdMapping, db
from wa_fakes import FakeWildApricotClient, make_contact, make_event, make_registration


@pytest.fixture
def fake_client(monkeypatch):
    client = FakeWildApricotClient(
        [make_contact(1), make_contact(2)],
        [make_event(100)],
        {100: [make_registration(10, 1), make_registration(11, 404)]},
    )
    monkeypatch.setattr("clubsync.importer.wildapricot_sync.build_wildapricot_client", lambda app: client)
    monkeypatch.setattr("clubsync.importer.cli.build_wildapricot_client", lambda app: client)
    monkeypatch.delenv("DRY_RUN", raising=False)
    return client


def test_seed_membership_statuses_is_idempotent(runner):
    first = runner.invoke(args=["importer", "seed-membership-statuses"])
    second = runner.invoke(args=["importer", "seed-membership-statuses"])

    assert first.exit_code == 0, first.output
    assert "Seeded membership statuses: active" in first.output
    assert second.exit_code == 0, second.output
    assert "already present" in second.output
    assert len(db.session.scalars(select(MembershipStatus)).all()) == 7


def test_preflight_cli_fails_without_statuses(runner):
    result = runner.invoke(args=["importer", "wildapricot-preflight"])

    assert result.exit_code == 1
    assert "Missing MembershipStatus codes" in result.output


def test_preflight_cli_with_api_check(runner, seeded_statuses, fake_client):
    result = runner.invoke(args=["importer", "wildapricot-preflight", "--check-api"])

    assert result.exit_code == 0, result.output
    payload = json.loads(result.output)
    assert payload["ok"] is True
    assert payload["checks"]["wildapricot"] is True


def test_sync_cli_dry_run_writes_report_without_rows(runner, seeded_statuses, fake_client, tmp_path):
    report_path = tmp_path / "dry.json"

    result = runner.invoke(
        args=["importer", "wildapricot-sync", "--dry-run", "--report-path", str(report_path)]
    )

    assert result.exit_code == 0, result.output
    assert "dry run" in result.output
    assert "members: parsed=2 created=2" in result.output
    assert "registrations skipped for missing members: 1" in result.output
    report = json.loads(report_path.read_text())
    assert report["dryRun"] is True
    assert report["plannedCreates"]["members"] == 2
    assert db.session.scalars(select(Member)).all() == []


def test_sync_cli_live_run_then_verify(runner, seeded_statuses, fake_client, tmp_path):
    report_path = tmp_path / "live.json"

    sync = runner.invoke(args=["importer", "wildapricot-sync", "--report-path", str(report_path), "--summary-json"])

    assert sync.exit_code == 0, sync.output
    assert "live" in sync.output
    assert '"runId"' in sync.output
    assert len(db.session.scalars(select(Member)).all()) == 2

    verify = runner.invoke(args=["importer", "wildapricot-verify", str(report_path)])
    assert verify.exit_code == 0, verify.output
    assert json.loads(verify.output)["passed"] is True


def test_sync_cli_exits_non_zero_on_fatal_error(runner, seeded_statuses, fake_client, tmp_path):
    fake_client.failures["contacts"] = ApiErrorKind.AUTH_FAILED

    result = runner.invoke(args=["importer", "wildapricot-sync", "--report-path", str(tmp_path / "r.json")])

    assert result.exit_code == 1
    assert "fatal error: Failed to fetch contacts" in result.output


def test_sync_cli_reports_preflight_failure(runner, fake_client, tmp_path):
    result = runner.invoke(args=["importer", "wildapricot-sync", "--report-path", str(tmp_path / "r.json")])

    assert result.exit_code == 1
    assert "Missing MembershipStatus codes" in result.output
    assert fake_client.calls == []


def test_sync_cli_rejects_summary_json_when_queued(runner):
    result = runner.invoke(args=["importer", "wildapricot-sync", "--no-inline", "--summary-json"])

    assert result.exit_code != 0
    assert "--summary-json is only available" in result.output


def test_sync_cli_queues_task_when_not_inline(app, runner, monkeypatch):
    from clubsync.importer import get_celery_app

    celery_app = get_celery_app(app)
    sent = {}

    class FakeAsyncResult:
        id = "task-123"

    def fake_send_task(name, kwargs=None, **options):
        sent["name"] = name
        sent["kwargs"] = kwargs
        return FakeAsyncResult()

    monkeypatch.setattr(celery_app, "send_task", fake_send_task)

    result = runner.invoke(args=["importer", "wildapricot-sync", "--no-inline", "--mode", "incremental"])

    assert result.exit_code == 0, result.output
    assert json.loads(result.output) == {"task_id": "task-123", "status": "queued", "mode": "incremental", "dry_run": False}
    assert sent["name"] == "importer.wildapricot.sync"
    assert sent["kwargs"]["mode"] == "incremental"


def test_verify_cli_missing_report(runner, tmp_path):
    result = runner.invoke(args=["importer", "wildapricot-verify", str(tmp_path / "nope.json")])

    assert result.exit_code == 1
    assert "Report not found" in result.output


def test_stale_and_cleanup_cli(runner):
    old = datetime.now(timezone.utc) - timedelta(days=60)
    IdMappingStore().create(WaEntityType.MEMBER, 1, 1, synced_at=old)
    db.session.commit()

    stale = runner.invoke(args=["importer", "wildapricot-stale", "--days", "7", "--verbose"])
    assert stale.exit_code == 0, stale.output
    payload = json.loads(stale.output)
    assert payload["members"] == 1
    assert payload["records"][0]["wa_id"] == 1

    preview = runner.invoke(args=["importer", "wildapricot-cleanup-stale", "--days", "30"])
    assert json.loads(preview.output)["removed"] == 0
    assert len(db.session.scalars(select(WaIdMapping)).all()) == 1

    applied = runner.invoke(args=["importer", "wildapricot-cleanup-stale", "--days", "30", "--apply"])
    assert applied.exit_code == 0, applied.output
    assert json.loads(applied.output)["removed"] == 1
    assert db.session.scalars(select(WaIdMapping)).all() == []


def test_probe_cli_flags_all_skipped(runner, seeded_statuses, fake_client):
    result = runner.invoke(args=["importer", "wildapricot-probe-event", "100"])

    # Nothing has been synced yet, so no member mapping exists.
    assert result.exit_code == 1
    assert '"would_skip_missing_member": 2' in result.output


def test_probe_cli_unknown_event(runner, fake_client):
    result = runner.invoke(args=["importer", "wildapricot-probe-event", "999"])

    assert result.exit_code == 1
    assert "Event 999 was not found" in result.output


def test_health_cli_reports_failure(runner, fake_client):
    fake_client.health = {"ok": False, "error": "Invalid API key"}

    result = runner.invoke(args=["importer", "wildapricot-health"])

    assert result.exit_code == 1
    assert "Invalid API key" in result.output


def test_health_cli_requires_credentials(app, runner):
    app.config["WA_API_KEY"] = ""

    result = runner.invoke(args=["importer", "wildapricot-health"])

    assert result.exit_code == 1
    assert "WA_API_KEY" in result.output
