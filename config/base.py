# config/base.py
import os


def _coerce_bool(value, default=False):
    """Convert environment-style truthy/falsey values to bool."""
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    value_str = str(value).strip().lower()
    if value_str in {"1", "true", "yes", "on"}:
        return True
    if value_str in {"0", "false", "no", "off"}:
        return False
    return default


def _parse_adapter_list(value):
    """
    Parse a comma-separated adapter list while keeping order and removing duplicates.

    Returns:
        tuple[str, ...]: Normalized adapter identifiers.
    """
    if not value:
        return ()

    seen = set()
    adapters = []
    for raw_item in value.split(","):
        item = raw_item.strip().lower()
        if not item or item in seen:
            continue
        seen.add(item)
        adapters.append(item)
    return tuple(adapters)


def _int_env(name, default):
    try:
        return int(os.environ.get(name, default))
    except (TypeError, ValueError):
        return default


class Config:
    _flask_env = os.environ.get("FLASK_ENV", "development")
    _is_testing = _flask_env == "testing"
    _is_production = _flask_env == "production"

    SECRET_KEY = os.environ.get("SECRET_KEY")
    if not SECRET_KEY and _is_production:
        raise ValueError(
            "SECRET_KEY environment variable is required in production. "
            'Generate with: python -c "import secrets; print(secrets.token_hex(32))"'
        )
    if not SECRET_KEY:
        SECRET_KEY = "dev-secret-key-change-in-production"

    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {}

    # Importer configuration
    IMPORTER_ENABLED = _coerce_bool(os.environ.get("IMPORTER_ENABLED"), default=False)
    IMPORTER_ADAPTERS = _parse_adapter_list(os.environ.get("IMPORTER_ADAPTERS", ""))

    if IMPORTER_ENABLED and not IMPORTER_ADAPTERS:
        raise ValueError(
            "IMPORTER_ENABLED is true but IMPORTER_ADAPTERS is empty. Provide at least one adapter name."
        )

    IMPORTER_WORKER_ENABLED = _coerce_bool(os.environ.get("IMPORTER_WORKER_ENABLED"), default=False)
    CELERY_BROKER_URL = os.environ.get("CELERY_BROKER_URL")
    CELERY_RESULT_BACKEND = os.environ.get("CELERY_RESULT_BACKEND")
    CELERY_SQLITE_PATH = os.environ.get("CELERY_SQLITE_PATH")
    CELERY_CONFIG = os.environ.get("CELERY_CONFIG")

    # Wild Apricot adapter
    WA_API_KEY = os.environ.get("WA_API_KEY")
    WA_ACCOUNT_ID = os.environ.get("WA_ACCOUNT_ID")
    WA_API_BASE_URL = os.environ.get("WA_API_BASE_URL", "https://api.wildapricot.org/v2.2")
    WA_AUTH_URL = os.environ.get("WA_AUTH_URL", "https://oauth.wildapricot.org/auth/token")
    WA_PAGE_SIZE = _int_env("WA_PAGE_SIZE", 100)
    WA_MAX_RETRIES = _int_env("WA_MAX_RETRIES", 3)
    WA_RETRY_BASE_DELAY_MS = _int_env("WA_RETRY_BASE_DELAY_MS", 1000)
    WA_RETRY_MAX_DELAY_MS = _int_env("WA_RETRY_MAX_DELAY_MS", 30000)
    WA_REQUEST_TIMEOUT_MS = _int_env("WA_REQUEST_TIMEOUT_MS", 30000)
    WA_ASYNC_POLL_INTERVAL_MS = _int_env("WA_ASYNC_POLL_INTERVAL_MS", 2000)
    WA_ASYNC_MAX_ATTEMPTS = _int_env("WA_ASYNC_MAX_ATTEMPTS", 60)
    WA_TOKEN_EXPIRY_BUFFER_MS = _int_env("WA_TOKEN_EXPIRY_BUFFER_MS", 60000)
    WA_DB_BATCH_SIZE = _int_env("WA_DB_BATCH_SIZE", 100)
    WA_CONTACTS_LOOKBACK_DAYS = _int_env("WA_CONTACTS_LOOKBACK_DAYS", 7)
    WA_EVENTS_LOOKBACK_DAYS = _int_env("WA_EVENTS_LOOKBACK_DAYS", 365)
    WA_SYNC_REPORT_PATH = os.environ.get("WA_SYNC_REPORT_PATH", "/tmp/clubos/wa_full_sync_report.json")


class DevelopmentConfig(Config):
    DEBUG = True
    # Keep the dev database in the instance folder beside the project root
    _config_dir = os.path.dirname(os.path.abspath(__file__))
    _project_root = os.path.dirname(_config_dir)
    instance_path = os.path.join(_project_root, "instance")

    if not os.path.exists(instance_path):
        os.makedirs(instance_path, exist_ok=True)

    # SQLite URIs need forward slashes, even on Windows
    db_path = os.path.join(instance_path, "clubsync_dev.db").replace("\\", "/")
    db_uri = f"sqlite:///{db_path}"

    SQLALCHEMY_DATABASE_URI = os.environ.get("DATABASE_URL", db_uri)
    SQLALCHEMY_ECHO = _coerce_bool(os.environ.get("SQLALCHEMY_ECHO"), default=False)
    if SQLALCHEMY_DATABASE_URI.startswith("sqlite"):
        SQLALCHEMY_ENGINE_OPTIONS = {
            "connect_args": {
                "check_same_thread": False,
                "timeout": 5,
            }
        }
    else:
        SQLALCHEMY_ENGINE_OPTIONS = {}


class TestingConfig(Config):
    TESTING = True
    SECRET_KEY = os.environ.get("SECRET_KEY", "test-secret-key-for-testing-only")
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    SQLALCHEMY_ECHO = False
    SQLALCHEMY_ENGINE_OPTIONS = {
        "connect_args": {
            "check_same_thread": False,
            "timeout": 5,
        }
    }
    IMPORTER_ENABLED = True
    IMPORTER_ADAPTERS = ("wildapricot",)
    WA_API_KEY = "test-api-key"
    WA_ACCOUNT_ID = "12345"


class ProductionConfig(Config):
    DEBUG = False
    uri = os.environ.get("DATABASE_URL")
    if uri and uri.startswith("postgres://"):
        uri = uri.replace("postgres://", "postgresql://", 1)
    SQLALCHEMY_DATABASE_URI = uri
    SQLALCHEMY_ECHO = False
