from __future__ import annotations

import itertools

import pytest

from clubsync.importer.adapters.wildapricot.settings import WildApricotSettings
from clubsync.importer.pipeline import SyncOrchestrator
from wa_fakes import SYNC_NOW


@pytest.fixture
def sync_settings(app):
    return WildApricotSettings.from_config(app.config)


@pytest.fixture
def make_orchestrator(app, seeded_statuses, sync_settings):
    counter = itertools.count(1)

    def _factory(client, *, dry_run=False, now=SYNC_NOW, **kwargs):
        return SyncOrchestrator(
            client,
            sync_settings,
            dry_run=dry_run,
            now_fn=lambda: now,
            run_id_factory=lambda: f"sync_test_{next(counter)}",
            **kwargs,
        )

    return _factory
