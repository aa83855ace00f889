from __future__ import annotations

import re

import pytest

from clubsync.importer.pipeline import (
    InvariantViolationError,
    assert_no_violations,
    build_sync_report,
    generate_warnings,
    load_sync_report,
    validate_determinism_summary,
    validate_id_mappings,
    validate_report,
    write_sync_report,
)
from clubsync.importer.pipeline.diagnostics import RegistrationDiagnostics, generate_run_id
from clubsync.importer.pipeline.invariants import (
    COUNT_MISMATCH,
    DUPLICATE_LOCAL_ID,
    DUPLICATE_WA_ID,
    EMPTY_MAPPING,
    MISSING_LOCAL_ID,
    MISSING_REQUIRED_FIELD,
    MISSING_RUN_ID,
    NEGATIVE_COUNT,
    NON_DETERMINISTIC_COUNTS,
    ORPHANED_MAPPING,
    RECORDS_EXCEED_PARSED,
    validate_entity_stats,
)
from clubsync.importer.pipeline.verification import verify_sync
from wa_fakes import FakeWildApricotClient, make_contact, make_event, make_registration


def balanced(parsed=3, created=1, updated=1, skipped=1, errors=0):
    return {"parsed": parsed, "created": created, "updated": updated, "skipped": skipped, "errors": errors}


def synced_report(make_orchestrator, **kwargs):
    client = FakeWildApricotClient(
        [make_contact(1), make_contact(2)],
        [make_event(100)],
        {100: [make_registration(10, 1), make_registration(11, 2)]},
    )
    return build_sync_report(make_orchestrator(client, **kwargs).run())


def test_generate_run_id_format():
    assert generate_run_id(clock=lambda: 1700000000.5, random_fn=lambda: 0.0) == "sync_1700000000500_000000"
    assert re.fullmatch(r"sync_\d+_[0-9a-z]{6}", generate_run_id())


def test_generate_warnings_by_mode():
    empty = RegistrationDiagnostics()

    full = generate_warnings(mode="full", fetched_contacts=0, fetched_events=0, diagnostics=empty)
    incremental = generate_warnings(mode="incremental", fetched_contacts=0, fetched_events=0, diagnostics=empty)

    assert [warning.code for warning in full] == ["ZERO_CONTACTS"]
    assert incremental == []
    assert full[0].as_dict()["severity"] == "high"


def test_report_contains_required_fields(make_orchestrator):
    report = synced_report(make_orchestrator)

    assert validate_report(report) == []
    assert report["version"] == 1
    assert report["mode"] == "full"
    assert report["fetched"] == {"contacts": 2, "events": 1, "registrations": 2}
    assert report["stats"]["registrations"]["created"] == 2
    assert "plannedCreates" not in report
    assert "fatalError" not in report


def test_report_round_trips_through_disk(make_orchestrator, tmp_path):
    report = synced_report(make_orchestrator)
    path = tmp_path / "nested" / "reports" / "sync.json"

    written = write_sync_report(report, str(path))

    assert written == str(path)
    assert load_sync_report(written) == report
    with pytest.raises(FileNotFoundError):
        load_sync_report(str(tmp_path / "missing.json"))


def test_validate_report_flags_missing_fields_and_unbalanced_counts():
    report = {
        "runId": "",
        "stats": {"members": balanced(created=5), "events": balanced(), "registrations": balanced()},
    }

    codes = {violation.code for violation in validate_report(report)}

    assert MISSING_RUN_ID in codes
    assert MISSING_REQUIRED_FIELD in codes
    assert COUNT_MISMATCH in codes


def test_validate_entity_stats_rules():
    assert validate_entity_stats(balanced(), "stats.members") == []
    assert validate_entity_stats(balanced(errors=-1, parsed=2), "stats.members")[0].code == NEGATIVE_COUNT
    records = validate_entity_stats(dict(balanced(), records=[{}, {}, {}, {}]), "stats.members")
    assert records[0].code == RECORDS_EXCEED_PARSED


def test_violation_error_lists_every_problem():
    violations = validate_entity_stats(balanced(created=4, parsed=3), "stats.members")

    with pytest.raises(InvariantViolationError) as excinfo:
        assert_no_violations(violations)

    message = str(excinfo.value)
    assert message.startswith("Sync invariant violations detected (1):")
    assert "1. [COUNT_MISMATCH] at stats.members:" in message
    assert "= 6, but parsed = 3" in message
    assert_no_violations([])


def test_validate_id_mappings_detects_duplicates_and_orphans():
    entries = [
        {"waId": 1, "localId": 10},
        {"waId": 1, "localId": 11},
        {"waId": 2, "localId": 10},
        {"waId": 3, "localId": None},
        {"waId": 4, "localId": 99},
    ]

    codes = [violation.code for violation in validate_id_mappings(entries, known_local_ids=[10, 11])]

    assert codes == [DUPLICATE_WA_ID, DUPLICATE_LOCAL_ID, MISSING_LOCAL_ID, ORPHANED_MAPPING]
    assert validate_id_mappings([]) == []
    assert validate_id_mappings([], allow_empty=False)[0].code == EMPTY_MAPPING


def test_determinism_summary_flags_count_drift():
    first = {
        "runId": "a",
        "startedAt": "2024-06-01T12:00:00+00:00",
        "stats": {key: balanced() for key in ("members", "events", "registrations")},
    }
    second = {
        "runId": "b",
        "startedAt": "2024-06-02T12:00:00Z",
        "stats": {"members": balanced(created=0, skipped=2), "events": balanced(), "registrations": balanced()},
    }

    violations = validate_determinism_summary(first, second)

    assert [violation.code for violation in violations] == [NON_DETERMINISTIC_COUNTS]
    assert violations[0].path == "stats.members"


def test_verify_sync_passes_after_live_run(make_orchestrator):
    report = synced_report(make_orchestrator)

    result = verify_sync(report)

    assert result.passed, result.as_dict()
    assert result.database_counts == {"members": 2, "events": 1, "registrations": 2}
    names = {check.name for check in result.checks}
    assert {"Report Structure", "Member Count", "Orphaned Registrations", "Duplicate Mappings"} <= names
    assert result.summary["failed"] == 0


def test_verify_sync_fails_when_rows_are_missing(make_orchestrator):
    report = synced_report(make_orchestrator)
    report["stats"]["members"]["created"] = 5
    report["stats"]["members"]["parsed"] = 5

    result = verify_sync(report)

    assert not result.passed
    failed = [check for check in result.checks if not check.passed]
    assert any(check.name == "Member Count" for check in failed)
    member_check = next(check for check in result.checks if check.name == "Member Count")
    assert member_check.expected == 5 and member_check.actual == 2


def test_verify_sync_skips_count_checks_for_dry_runs(make_orchestrator):
    report = synced_report(make_orchestrator, dry_run=True)

    result = verify_sync(report)

    assert result.passed
    assert "Member Count" not in {check.name for check in result.checks}
    assert report["plannedCreates"]["registrations"] == 2
