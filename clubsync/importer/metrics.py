"""Prometheus metrics helpers for the importer."""

from __future__ import annotations

from typing import Literal

from prometheus_client import Counter, Gauge, Histogram

_wildapricot_enabled_gauge = Gauge(
    "importer_wildapricot_adapter_enabled_total",
    "Whether the Wild Apricot importer adapter is enabled (1) or disabled (0).",
)
_wildapricot_auth_attempts = Counter(
    "importer_wildapricot_auth_attempts_total",
    "Wild Apricot token exchanges by outcome.",
    ["outcome"],
)
_wildapricot_http_retries = Counter(
    "importer_wildapricot_http_retries_total",
    "Wild Apricot HTTP retries by trigger.",
    ["reason"],
)
_sync_runs = Counter(
    "importer_wildapricot_sync_runs_total",
    "Wild Apricot sync runs by mode and outcome.",
    ["mode", "outcome"],
)
_sync_duration = Histogram(
    "importer_wildapricot_sync_duration_seconds",
    "Duration of Wild Apricot sync runs in seconds.",
    buckets=(1, 5, 15, 30, 60, 120, 300, 600, 1200, 3600),
)
_entity_outcomes = Counter(
    "importer_wildapricot_entity_outcomes_total",
    "Reconciliation outcomes per entity type.",
    ["entity", "outcome"],
)


def record_wildapricot_adapter_status(enabled: bool) -> None:
    """Set the Wild Apricot adapter enabled gauge."""

    _wildapricot_enabled_gauge.set(1 if enabled else 0)


def record_wildapricot_auth_attempt(outcome: Literal["success", "failure"]) -> None:
    """Increment the token-exchange counter."""

    _wildapricot_auth_attempts.labels(outcome=outcome).inc()


def record_wildapricot_retry(reason: Literal["rate_limited", "server_error", "timeout", "unauthorized"]) -> None:
    _wildapricot_http_retries.labels(reason=reason).inc()


def record_sync_run(*, mode: str, success: bool, duration_seconds: float) -> None:
    """Capture the outcome and duration of a finished sync run."""

    _sync_runs.labels(mode=mode, outcome="success" if success else "failure").inc()
    _sync_duration.observe(max(duration_seconds, 0.0))


def record_entity_outcomes(entity: str, stats: dict[str, int]) -> None:
    """Add per-entity created/updated/skipped/errors counts from a run."""

    for outcome in ("created", "updated", "skipped", "errors"):
        count = int(stats.get(outcome, 0) or 0)
        if count:
            _entity_outcomes.labels(entity=entity, outcome=outcome).inc(count)
