import pytest
from flask import Flask

from clubsync.importer import (
    IMPORTER_EXTENSION_KEY,
    get_adapter_readiness,
    init_importer,
    refresh_adapter_readiness,
)


def build_app(tmp_path, enabled=False, adapters=(), **overrides):
    app = Flask(__name__, instance_path=str(tmp_path / "instance"))
    app.config.update(
        SECRET_KEY="test-secret",
        TESTING=True,
        IMPORTER_ENABLED=enabled,
        IMPORTER_ADAPTERS=tuple(adapters),
    )
    app.config.update(overrides)

    init_importer(app)
    return app


def test_importer_disabled_registers_stub_cli(tmp_path, monkeypatch):
    called = {"flag": False}

    def record_call(*args, **kwargs):
        called["flag"] = True
        return ()

    monkeypatch.setattr("clubsync.importer.resolve_adapters", record_call)

    app = build_app(tmp_path, enabled=False)

    assert called["flag"] is False, "resolve_adapters should not run when importer disabled"
    assert app.extensions[IMPORTER_EXTENSION_KEY]["enabled"] is False
    assert app.extensions[IMPORTER_EXTENSION_KEY]["celery_app"] is None

    runner = app.test_cli_runner()
    result = runner.invoke(args=["importer"])
    assert result.exit_code != 0
    assert "Importer commands are unavailable" in result.output


def test_importer_enabled_lists_adapters(tmp_path):
    app = build_app(
        tmp_path,
        enabled=True,
        adapters=("wildapricot",),
        WA_API_KEY="key",
        WA_ACCOUNT_ID="42",
    )

    runner = app.test_cli_runner()
    result = runner.invoke(args=["importer"])

    assert result.exit_code == 0, result.output
    assert "Enabled importer adapters:" in result.output
    assert "  - wildapricot" in result.output
    readiness = get_adapter_readiness(app)["wildapricot"]
    assert readiness["status"] == "ready"
    assert readiness["title"] == "Wild Apricot (REST API v2.2)"


def test_readiness_reports_missing_credentials(tmp_path):
    app = build_app(tmp_path, enabled=True, adapters=("wildapricot",))

    readiness = get_adapter_readiness(app)["wildapricot"]

    assert readiness["status"] == "missing-env"
    assert readiness["missing_env_vars"] == ["WA_ACCOUNT_ID", "WA_API_KEY"]

    app.config.update(WA_API_KEY="key", WA_ACCOUNT_ID="42")
    assert refresh_adapter_readiness(app)["wildapricot"]["status"] == "ready"


def test_unknown_adapter_is_rejected(tmp_path):
    with pytest.raises(ValueError):
        build_app(tmp_path, enabled=True, adapters=("salesforce",))
