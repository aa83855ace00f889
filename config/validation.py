# config/validation.py

"""
Environment variable validation for clubsync.
Validates required environment variables at startup.
"""

import os
import sys
from typing import List, Mapping, Tuple

WILDAPRICOT_REQUIRED_VARS = ("WA_API_KEY", "WA_ACCOUNT_ID")


def _flag(env: Mapping[str, str], name: str) -> bool:
    return str(env.get(name, "false")).strip().lower() in {"1", "true", "yes", "on"}


def validate_environment(flask_env: str = None, env: Mapping[str, str] = None) -> Tuple[bool, List[str]]:
    """
    Validate required environment variables.

    Args:
        flask_env: Flask environment (development, production, testing)
                  If None, reads from FLASK_ENV environment variable
        env: Mapping to inspect instead of ``os.environ``

    Returns:
        Tuple of (is_valid, list_of_errors)
    """
    env = os.environ if env is None else env
    if flask_env is None:
        flask_env = env.get("FLASK_ENV", "development")

    # Only validate in production
    if flask_env != "production":
        return True, []

    errors = []
    secret_key = env.get("SECRET_KEY", "")
    if not secret_key or secret_key in ("your-secret-key", "your_secret_key"):
        errors.append(
            "SECRET_KEY is required in production and must not be the default value. "
            'Generate a secure key: python -c "import secrets; print(secrets.token_hex(32))"'
        )

    if not env.get("DATABASE_URL"):
        errors.append("DATABASE_URL is required in production. Set it to your PostgreSQL connection string.")

    if _flag(env, "IMPORTER_ENABLED"):
        adapters = [item.strip().lower() for item in env.get("IMPORTER_ADAPTERS", "").split(",") if item.strip()]
        if "wildapricot" in adapters:
            for name in WILDAPRICOT_REQUIRED_VARS:
                if not env.get(name):
                    errors.append(f"{name} is required when the wildapricot importer adapter is enabled")

    return len(errors) == 0, errors


def validate_and_exit(flask_env: str = None) -> None:
    """
    Validate environment variables and exit with error if validation fails.
    Intended to be called at application startup.
    """
    is_valid, errors = validate_environment(flask_env)

    if not is_valid:
        print("=" * 80, file=sys.stderr)
        print("ENVIRONMENT VALIDATION FAILED", file=sys.stderr)
        print("=" * 80, file=sys.stderr)
        print("\nThe following environment variables are missing or invalid:\n", file=sys.stderr)

        for i, error in enumerate(errors, 1):
            print(f"{i}. {error}", file=sys.stderr)

        print("\n" + "=" * 80, file=sys.stderr)
        print("Please check your .env file or environment variables.", file=sys.stderr)
        print("=" * 80, file=sys.stderr)

        sys.exit(1)
