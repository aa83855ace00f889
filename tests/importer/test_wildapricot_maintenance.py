from __future__ import annotations

from datetime import timedelta

import pytest
from sqlalchemy import select

from clubsync.importer.adapters.wildapricot.errors import ApiErrorKind, TransientApiError
from clubsync.importer.pipeline import (
    IdMappingStore,
    PreflightError,
    SkipReason,
    cleanup_stale_mappings,
    detect_stale_mappings,
    get_stale_record_counts,
    load_sync_report,
    run_preflight,
    validate_production_safety,
)
from clubsync.importer.pipeline.preflight import SEED_COMMAND
from clubsync.importer.pipeline.probe import probe_event_registrations
from clubsync.importer.wildapricot_sync import execute_wildapricot_sync
from clubsync.models import Member, WaEntityType, WaIdMapping, db
from wa_fakes import SYNC_NOW, FakeWildApricotClient, make_contact, make_event, make_registration


def _add_mapping(entity_type, wa_id, local_id, age_days):
    IdMappingStore().create(entity_type, wa_id, local_id, synced_at=SYNC_NOW - timedelta(days=age_days))
    db.session.commit()


# Stale mappings ------------------------------------------------------------------


def test_detect_stale_mappings_groups_by_entity(app):
    _add_mapping(WaEntityType.MEMBER, 1, 11, age_days=10)
    _add_mapping(WaEntityType.MEMBER, 2, 12, age_days=1)
    _add_mapping(WaEntityType.EVENT, 3, 13, age_days=40)

    result = detect_stale_mappings(7, now_fn=lambda: SYNC_NOW)

    assert [record.wa_id for record in result.records] == [3, 1]
    assert [record.wa_id for record in result.stale_members] == [1]
    assert result.stale_events[0].stale_days == 40
    assert result.stale_registrations == []
    counts = result.counts()
    assert counts["total"] == 2
    assert counts["threshold"] == (SYNC_NOW - timedelta(days=7)).isoformat()
    assert get_stale_record_counts(30, now_fn=lambda: SYNC_NOW)["total"] == 1


def test_cleanup_stale_mappings_dry_run_then_apply(app, seeded_statuses):
    member = Member(
        first_name="Old",
        last_name="Timer",
        email="old@club.example",
        joined_at=SYNC_NOW,
        membership_status_id=seeded_statuses["active"],
    )
    db.session.add(member)
    db.session.commit()
    _add_mapping(WaEntityType.MEMBER, 1, member.id, age_days=45)
    _add_mapping(WaEntityType.MEMBER, 2, 999, age_days=2)

    preview = cleanup_stale_mappings(30, True, now_fn=lambda: SYNC_NOW)
    assert preview["dry_run"] is True
    assert preview["total"] == 1
    assert preview["removed"] == 0
    assert len(db.session.scalars(select(WaIdMapping)).all()) == 2

    applied = cleanup_stale_mappings(30, False, now_fn=lambda: SYNC_NOW)
    assert applied["removed"] == 1
    remaining = db.session.scalars(select(WaIdMapping)).all()
    assert [row.wa_id for row in remaining] == [2]
    assert db.session.get(Member, member.id) is not None


def test_sync_refreshes_mapping_liveness(make_orchestrator):
    client = FakeWildApricotClient([make_contact(1)])
    make_orchestrator(client).run()

    later = SYNC_NOW + timedelta(days=20)
    assert len(detect_stale_mappings(7, now_fn=lambda: later).records) == 1

    make_orchestrator(client, now=later).run()
    assert detect_stale_mappings(7, now_fn=lambda: later).records == []


# Probe ---------------------------------------------------------------------------


def test_probe_reports_what_a_sync_would_do(make_orchestrator):
    client = FakeWildApricotClient([make_contact(1)], [make_event(100, name="Wine Walk")])
    make_orchestrator(client).run()
    client.registrations[100] = [
        make_registration(1, 1),
        make_registration(2, 404),
        make_registration(3, 1, date="someday"),
    ]
    writes_before = len(db.session.scalars(select(WaIdMapping)).all())

    result = probe_event_registrations(client, 100)

    assert result.event_found and result.event_mapped
    assert result.event_name == "Wine Walk"
    assert result.registrations_from_wa == 3
    assert result.summary == {
        "would_import": 1,
        "would_skip_missing_member": 1,
        "would_skip_missing_event": 0,
        "would_skip_transform_error": 1,
    }
    assert result.registrations[1].skip_reason is SkipReason.MISSING_MEMBER
    assert not result.all_skipped
    assert len(db.session.scalars(select(WaIdMapping)).all()) == writes_before


def test_probe_flags_unmapped_event(make_orchestrator):
    client = FakeWildApricotClient([make_contact(1)])
    make_orchestrator(client).run()
    client.events.append(make_event(300))
    client.registrations[300] = [make_registration(1, 1)]

    result = probe_event_registrations(client, 300)

    assert not result.event_mapped
    assert result.registrations[0].skip_reason is SkipReason.EVENT_NOT_MAPPED
    assert result.all_skipped
    assert result.as_dict()["registrations"][0]["skip_reason"] == "event_not_mapped"


def test_probe_missing_event_returns_not_found(app):
    client = FakeWildApricotClient()

    result = probe_event_registrations(client, 12345)

    assert not result.event_found
    assert client.called("registrations") == []


def test_probe_propagates_other_fetch_errors(app):
    client = FakeWildApricotClient([], [make_event(5)], failures={"event": ApiErrorKind.API_ERROR})

    with pytest.raises(TransientApiError):
        probe_event_registrations(client, 5)


# Preflight and safety ------------------------------------------------------------


def test_preflight_reports_missing_statuses(app):
    result = run_preflight()

    assert not result.ok
    assert result.checks["database"] is True
    assert result.checks["wa_id_mapping_table"] is True
    assert result.checks["membership_statuses"] is False
    assert "active" in result.missing_statuses
    assert SEED_COMMAND in result.error
    with pytest.raises(PreflightError):
        result.raise_for_status()


def test_preflight_passes_and_checks_api_when_asked(app, seeded_statuses):
    assert run_preflight().ok

    healthy = run_preflight(client=FakeWildApricotClient())
    assert healthy.ok and healthy.checks["wildapricot"] is True

    broken = run_preflight(client=FakeWildApricotClient(health={"ok": False, "error": "bad key"}))
    assert not broken.ok
    assert "bad key" in broken.error


@pytest.mark.parametrize(
    "database_url,env,blocked",
    [
        ("sqlite:///instance/clubsync_dev.db", {}, False),
        ("postgresql://club.production.internal/db", {}, True),
        ("postgresql://club.production.internal/db", {"ALLOW_PROD_IMPORT": "1"}, False),
        ("postgresql://db.example.com/club", {}, True),
        ("postgresql://localhost.com/club", {}, False),
        ("sqlite:///tmp/x.db", {"FLASK_ENV": "production"}, True),
    ],
)
def test_validate_production_safety(database_url, env, blocked):
    if blocked:
        with pytest.raises(PreflightError):
            validate_production_safety(database_url, env)
    else:
        validate_production_safety(database_url, env)


# Sync entry point ---------------------------------------------------------------


def test_execute_sync_writes_report(app, seeded_statuses, tmp_path):
    client = FakeWildApricotClient([make_contact(1)], [make_event(100)], {100: [make_registration(1, 1)]})
    report_path = tmp_path / "out" / "report.json"

    outcome = execute_wildapricot_sync(app, client=client, report_path=str(report_path), env={})

    assert outcome.run.success
    assert outcome.report_path == str(report_path)
    assert load_sync_report(str(report_path))["runId"] == outcome.run.run_id
    assert db.session.scalars(select(Member)).one().email == "member1@club.example"


def test_execute_sync_honours_dry_run_env(app, seeded_statuses, tmp_path):
    client = FakeWildApricotClient([make_contact(1)])

    outcome = execute_wildapricot_sync(
        app, client=client, report_path=str(tmp_path / "r.json"), env={"DRY_RUN": "1"}
    )

    assert outcome.report["dryRun"] is True
    assert db.session.scalars(select(Member)).all() == []


def test_execute_sync_stops_before_fetching_when_preflight_fails(app):
    client = FakeWildApricotClient([make_contact(1)])

    with pytest.raises(PreflightError):
        execute_wildapricot_sync(app, client=client, write_report=False, env={})

    assert client.calls == []


def test_execute_sync_refuses_production_database(app, seeded_statuses):
    client = FakeWildApricotClient([make_contact(1)])

    with pytest.raises(PreflightError):
        execute_wildapricot_sync(app, client=client, write_report=False, env={"FLASK_ENV": "production"})

    assert client.calls == []
