"""Wild Apricot sync pipeline: transform, reconcile, report, verify."""

from .diagnostics import EntityStats, RegistrationDiagnostics, SkipReason, SyncWarning, generate_warnings
from .id_mapping import IdMappingStore
from .invariants import (
    InvariantViolation,
    InvariantViolationError,
    assert_no_violations,
    validate_determinism_summary,
    validate_id_mappings,
    validate_report,
)
from .orchestrator import PlannedEntity, SyncMode, SyncOrchestrator, SyncRun
from .preflight import PreflightError, PreflightResult, run_preflight, validate_production_safety
from .report import build_sync_report, load_sync_report, write_sync_report
from .stale import cleanup_stale_mappings, detect_stale_mappings, get_stale_record_counts
from .store import LocalStore
from .sync_state import SyncStateStore
from .transform import TransformResult, TransformValidationError

__all__ = [
    "EntityStats",
    "IdMappingStore",
    "InvariantViolation",
    "InvariantViolationError",
    "LocalStore",
    "PlannedEntity",
    "PreflightError",
    "PreflightResult",
    "RegistrationDiagnostics",
    "SkipReason",
    "SyncMode",
    "SyncOrchestrator",
    "SyncRun",
    "SyncStateStore",
    "SyncWarning",
    "TransformResult",
    "TransformValidationError",
    "assert_no_violations",
    "build_sync_report",
    "cleanup_stale_mappings",
    "detect_stale_mappings",
    "generate_warnings",
    "get_stale_record_counts",
    "load_sync_report",
    "run_preflight",
    "validate_determinism_summary",
    "validate_id_mappings",
    "validate_production_safety",
    "validate_report",
    "write_sync_report",
]
