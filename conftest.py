# conftest.py

import os
import tempfile

import pytest

# Set testing environment BEFORE importing app so app.py picks TestingConfig
os.environ["FLASK_ENV"] = "testing"

from app import app as flask_app  # noqa: E402
from clubsync.importer.pipeline import LocalStore  # noqa: E402
from clubsync.models import db  # noqa: E402


@pytest.fixture(scope="function")
def app(tmp_path):
    """Create and configure a test Flask application"""
    import uuid

    db_fd, temp_db = tempfile.mkstemp(suffix=f"_{uuid.uuid4().hex[:8]}.db")

    try:
        flask_app.config.update(
            {
                "TESTING": True,
                "SQLALCHEMY_DATABASE_URI": f"sqlite:///{temp_db}",
                "SQLALCHEMY_ECHO": False,
                "SECRET_KEY": "test-secret-key-for-testing-only",
                "ENABLE_FILE_LOGGING": False,
                "ENABLE_CONSOLE_LOGGING": False,
                "LOG_LEVEL": "DEBUG",
                "IMPORTER_ENABLED": True,
                "IMPORTER_ADAPTERS": ("wildapricot",),
                "IMPORTER_WORKER_ENABLED": False,
                "WA_API_KEY": "test-api-key",
                "WA_ACCOUNT_ID": "12345",
                "WA_SYNC_REPORT_PATH": str(tmp_path / "reports" / "wa_sync_report.json"),
            }
        )

        from clubsync.utils.logging_config import setup_logging

        setup_logging(flask_app)

        with flask_app.app_context():
            db.drop_all()
            db.create_all()
            yield flask_app
            db.session.remove()
            db.session.close()
            db.drop_all()
    finally:
        try:
            os.close(db_fd)
        except OSError:
            pass
        try:
            if os.path.exists(temp_db):
                os.unlink(temp_db)
        except OSError:
            pass


@pytest.fixture(autouse=True)
def app_context(app):
    """Automatically provide app context for all tests"""
    with app.app_context():
        yield


@pytest.fixture
def runner(app):
    """Create a test CLI runner for the Flask application"""
    return app.test_cli_runner()


@pytest.fixture
def seeded_statuses(app):
    """Insert the membership status codes every sync requires."""
    store = LocalStore()
    store.seed_membership_statuses()
    db.session.commit()
    return store.status_ids_by_code()
