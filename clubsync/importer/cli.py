"""
CLI commands for the importer and its Wild Apricot sync.
"""

from __future__ import annotations

import json
from typing import Optional

import click
from celery import Celery
from celery.exceptions import TimeoutError as CeleryTimeoutError
from flask.cli import ScriptInfo

from clubsync.importer.adapters.wildapricot import WildApricotAdapterError
from clubsync.importer.adapters.wildapricot.errors import WildApricotError
from clubsync.importer.celery_app import DEFAULT_QUEUE_NAME, get_celery_app
from clubsync.importer.pipeline import (
    LocalStore,
    PreflightError,
    SyncMode,
    cleanup_stale_mappings,
    detect_stale_mappings,
    load_sync_report,
    run_preflight,
)
from clubsync.importer.pipeline.probe import probe_event_registrations
from clubsync.importer.pipeline.stale import DEFAULT_CLEANUP_DAYS, DEFAULT_STALE_DAYS
from clubsync.importer.pipeline.verification import verify_sync
from clubsync.importer.wildapricot_sync import build_wildapricot_client, execute_wildapricot_sync
from clubsync.utils.importer import get_importer_adapters, is_dry_run_requested, is_importer_enabled


@click.group(name="importer", invoke_without_command=True)
@click.pass_context
def importer_cli(ctx):
    """
    Importer management commands.

    Displays configured adapters when invoked without a subcommand.
    """
    info = ctx.ensure_object(ScriptInfo)
    app = info.load_app()
    if not is_importer_enabled(app):
        raise click.ClickException(
            "Importer is disabled via IMPORTER_ENABLED=false. Enable it to run importer CLI commands."
        )
    if ctx.invoked_subcommand is None:
        adapters = get_importer_adapters(app)
        if not adapters:
            click.echo("No importer adapters configured.")
        else:
            click.echo("Enabled importer adapters:")
            for adapter in adapters:
                click.echo(f"  - {adapter}")


def get_disabled_importer_group() -> click.Group:
    """
    Return a minimal command group that informs the operator the importer is disabled.
    """

    @click.group(name="importer", invoke_without_command=True)
    def disabled_group():
        raise click.ClickException("Importer commands are unavailable because IMPORTER_ENABLED=false.")

    return disabled_group


def _load_app(ctx):
    info = ctx.ensure_object(ScriptInfo)
    return info.load_app()


def _resolve_celery(app) -> Optional[Celery]:
    celery_app = get_celery_app(app)
    if celery_app is None:
        raise click.ClickException(
            "Importer Celery app is unavailable. Ensure IMPORTER_ENABLED=true and the "
            "importer package initialises before running worker commands."
        )
    return celery_app


def _client_or_fail(app):
    try:
        return build_wildapricot_client(app)
    except WildApricotAdapterError as exc:
        raise click.ClickException(str(exc)) from exc


def _format_sync_summary(report: dict, report_path: Optional[str]) -> str:
    stats = report.get("stats") or {}
    diagnostics = report.get("registrationDiagnostics") or {}
    lines = [
        f"Wild Apricot sync {report.get('runId')} ({report.get('mode')}, "
        f"{'dry run' if report.get('dryRun') else 'live'})",
        f"  - success: {report.get('success')}",
        f"  - duration: {report.get('durationMs')} ms",
    ]
    for key in ("members", "events", "registrations"):
        entity = stats.get(key) or {}
        lines.append(
            f"  - {key}: parsed={entity.get('parsed', 0)} created={entity.get('created', 0)} "
            f"updated={entity.get('updated', 0)} skipped={entity.get('skipped', 0)} errors={entity.get('errors', 0)}"
        )
    if diagnostics:
        lines.append(
            f"  - registrations skipped for missing members: {diagnostics.get('registrationsSkippedMissingMember', 0)}"
        )
    if report.get("fatalError"):
        lines.append(f"  - fatal error: {report['fatalError']}")
    for warning in report.get("warnings") or []:
        lines.append(f"  - warning [{warning.get('code')}]: {warning.get('message')}")
    if report_path:
        lines.append(f"  - report: {report_path}")
    return "\n".join(lines)


@importer_cli.group(name="worker")
@click.pass_context
def worker_group(ctx):
    """Manage the importer background worker."""
    app = _load_app(ctx)
    state = app.extensions.get("importer", {})
    if not state.get("worker_enabled") and not app.config.get("IMPORTER_WORKER_ENABLED"):
        click.echo(
            "Warning: IMPORTER_WORKER_ENABLED is false. Commands will still run, "
            "but enable the flag to surface accurate health status.",
            err=True,
        )


@worker_group.command("run")
@click.option("--loglevel", default="info", show_default=True)
@click.option("--concurrency", type=int, help="Number of worker processes/threads.")
@click.option("--pool", type=str, help="Celery pool implementation (e.g., 'prefork', 'solo', 'threads').")
@click.option("--queues", default=DEFAULT_QUEUE_NAME, show_default=True, help="Comma-separated queue list to consume.")
@click.pass_context
def worker_run(ctx, loglevel: str, concurrency: Optional[int], pool: Optional[str], queues: str):
    """
    Start the Celery worker in the current process.
    """
    app = _load_app(ctx)
    celery_app = _resolve_celery(app)

    state = app.extensions.get("importer")
    if state is not None:
        state["worker_enabled"] = True

    argv = ["worker", "--loglevel", loglevel, "-Q", queues]
    if concurrency:
        argv.extend(["--concurrency", str(concurrency)])
    if pool:
        argv.extend(["--pool", pool])

    pool_msg = f", pool: {pool}" if pool else ""
    click.echo(f"Starting importer worker (queues: {queues}, loglevel: {loglevel}{pool_msg})")
    try:
        celery_app.worker_main(argv=argv)
    except KeyboardInterrupt:
        click.echo("Worker shutdown requested. Exiting...")


@worker_group.command("ping")
@click.option("--timeout", default=10.0, show_default=True, help="Seconds to wait for a response.")
@click.pass_context
def worker_ping(ctx, timeout: float):
    """
    Validate worker connectivity by executing the heartbeat task.
    """
    app = _load_app(ctx)
    celery_app = _resolve_celery(app)
    task = celery_app.tasks.get("importer.healthcheck")
    if task is None:
        raise click.ClickException("Heartbeat task 'importer.healthcheck' is not registered.")

    result = task.apply_async()
    try:
        payload = result.get(timeout=timeout)
    except CeleryTimeoutError as exc:
        raise click.ClickException(f"Worker did not respond within {timeout}s") from exc
    except Exception as exc:  # pragma: no cover - surfacing unexpected errors
        raise click.ClickException(f"Worker ping failed: {exc}") from exc

    click.echo(json.dumps(payload, indent=2))


@importer_cli.command("wildapricot-sync")
@click.option(
    "--mode",
    type=click.Choice([mode.value for mode in SyncMode]),
    default=SyncMode.FULL.value,
    show_default=True,
    help="Full sync, or incremental from the last recorded sync.",
)
@click.option("--dry-run", is_flag=True, help="Compute every decision without writing. DRY_RUN=1 also forces this.")
@click.option(
    "--inline/--no-inline",
    default=True,
    help="Run inline within the CLI process instead of queueing via Celery.",
)
@click.option("--report-path", type=click.Path(dir_okay=False), help="Where to write the JSON run report.")
@click.option("--summary-json", is_flag=True, help="Emit the full run report as JSON (inline runs only).")
@click.pass_context
def wildapricot_sync(ctx, mode: str, dry_run: bool, inline: bool, report_path: Optional[str], summary_json: bool):
    """Pull members, events, and registrations from Wild Apricot."""
    app = _load_app(ctx)
    dry_run = dry_run or is_dry_run_requested()

    if summary_json and not inline:
        raise click.ClickException("--summary-json is only available for --inline runs.")

    if not inline:
        celery_app = _resolve_celery(app)
        try:
            async_result = celery_app.send_task(
                "importer.wildapricot.sync",
                kwargs={"mode": mode, "dry_run": dry_run, "report_path": report_path},
            )
        except Exception as exc:  # pragma: no cover - defensive path
            raise click.ClickException(f"Failed to enqueue Wild Apricot sync: {exc}") from exc

        app.logger.info(
            "Wild Apricot sync queued via CLI",
            extra={"importer_task_id": async_result.id, "importer_sync_mode": mode, "importer_dry_run": dry_run},
        )
        click.echo(json.dumps({"task_id": async_result.id, "status": "queued", "mode": mode, "dry_run": dry_run}))
        return

    try:
        outcome = execute_wildapricot_sync(app, mode=mode, dry_run=dry_run, report_path=report_path)
    except (PreflightError, WildApricotAdapterError) as exc:
        raise click.ClickException(str(exc)) from exc

    click.echo(_format_sync_summary(outcome.report, outcome.report_path))
    if summary_json:
        click.echo(json.dumps(outcome.report, indent=2))
    if not outcome.run.success:
        ctx.exit(1)


@importer_cli.command("wildapricot-preflight")
@click.option("--check-api", is_flag=True, help="Also exercise Wild Apricot credentials.")
@click.pass_context
def wildapricot_preflight(ctx, check_api: bool):
    """Check the database is ready for a Wild Apricot sync."""
    app = _load_app(ctx)
    client = _client_or_fail(app) if check_api else None
    result = run_preflight(client=client)
    click.echo(json.dumps(result.as_dict(), indent=2))
    if not result.ok:
        raise click.ClickException(result.error or "Preflight checks failed")


@importer_cli.command("wildapricot-health")
@click.pass_context
def wildapricot_health(ctx):
    """Verify Wild Apricot credentials and account access."""
    app = _load_app(ctx)
    payload = _client_or_fail(app).health_check()
    click.echo(json.dumps(payload, indent=2))
    if not payload.get("ok"):
        raise click.ClickException(f"Wild Apricot health check failed: {payload.get('error')}")


@importer_cli.command("wildapricot-stale")
@click.option("--days", default=DEFAULT_STALE_DAYS, show_default=True, type=click.IntRange(min=0))
@click.option("--verbose", is_flag=True, help="List every stale mapping.")
@click.pass_context
def wildapricot_stale(ctx, days: int, verbose: bool):
    """Report id mappings not touched by a sync within DAYS."""
    _load_app(ctx)
    result = detect_stale_mappings(days)
    payload = result.counts()
    if verbose:
        payload["records"] = [record.as_dict() for record in result.records]
    click.echo(json.dumps(payload, indent=2))


@importer_cli.command("wildapricot-cleanup-stale")
@click.option("--days", default=DEFAULT_CLEANUP_DAYS, show_default=True, type=click.IntRange(min=0))
@click.option("--apply", "apply_changes", is_flag=True, help="Delete the stale mappings instead of counting them.")
@click.pass_context
def wildapricot_cleanup_stale(ctx, days: int, apply_changes: bool):
    """Remove stale id mappings. Local members, events, and registrations are kept."""
    _load_app(ctx)
    summary = cleanup_stale_mappings(days, dry_run=not apply_changes)
    click.echo(json.dumps(summary, indent=2))


@importer_cli.command("wildapricot-probe-event")
@click.argument("event_id", type=int)
@click.pass_context
def wildapricot_probe_event(ctx, event_id: int):
    """Show what a sync would do with one event's registrations."""
    app = _load_app(ctx)
    client = _client_or_fail(app)
    try:
        result = probe_event_registrations(client, event_id)
    except WildApricotError as exc:
        raise click.ClickException(f"Probe failed: {exc}") from exc

    click.echo(json.dumps(result.as_dict(), indent=2))
    if not result.event_found:
        raise click.ClickException(f"Event {event_id} was not found in Wild Apricot.")
    if result.all_skipped:
        click.echo("Every registration for this event would be skipped.", err=True)
        ctx.exit(1)


@importer_cli.command("wildapricot-verify")
@click.argument("report_path", type=click.Path(dir_okay=False))
@click.pass_context
def wildapricot_verify(ctx, report_path: str):
    """Check a sync report against the current database."""
    _load_app(ctx)
    try:
        report = load_sync_report(report_path)
    except FileNotFoundError as exc:
        raise click.ClickException(f"Report not found: {report_path}") from exc
    except ValueError as exc:
        raise click.ClickException(f"Report is not valid JSON: {exc}") from exc

    result = verify_sync(report)
    click.echo(json.dumps(result.as_dict(), indent=2))
    if not result.passed:
        ctx.exit(1)


@importer_cli.command("seed-membership-statuses")
@click.pass_context
def seed_membership_statuses(ctx):
    """Insert the membership status codes a sync relies on."""
    app = _load_app(ctx)
    store = LocalStore()
    with store.transaction():
        created = store.seed_membership_statuses()
    app.logger.info("Seeded membership statuses", extra={"importer_seeded_codes": created})
    if created:
        click.echo(f"Seeded membership statuses: {', '.join(created)}")
    else:
        click.echo("Membership statuses already present.")


__all__ = ["get_disabled_importer_group", "importer_cli"]
