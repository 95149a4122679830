"""Runtime configuration.

Static Flask settings live on ``Config``. Everything that differs between
deployments (and tests) is read from the environment at call time.
"""

import os
from datetime import timedelta
from pathlib import Path

DEFAULT_DB_PATH = str(Path("instance") / "bartab.db")
DEFAULT_BREATHY_MODEL = "gpt-4o-mini"
DEFAULT_BREATHY_TIMEOUT_SECONDS = 15.0


class Config:
    SECRET_KEY = os.environ.get("APP_SECRET_KEY", "dev-only-change-me")
    SESSION_COOKIE_SAMESITE = "Lax"
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SECURE = os.environ.get("SESSION_COOKIE_SECURE", "0") == "1"
    PERMANENT_SESSION_LIFETIME = timedelta(days=30)


def db_path() -> str:
    return os.environ.get("APP_DB_PATH", DEFAULT_DB_PATH)


def openai_api_key() -> str:
    return os.environ.get("OPENAI_API_KEY", "")


def breathy_model() -> str:
    return os.environ.get("BREATHY_MODEL", DEFAULT_BREATHY_MODEL)


def breathy_timeout() -> float:
    try:
        return float(os.environ.get("BREATHY_TIMEOUT_SECONDS", DEFAULT_BREATHY_TIMEOUT_SECONDS))
    except ValueError:
        return DEFAULT_BREATHY_TIMEOUT_SECONDS


def staff_token() -> str:
    return os.environ.get("STAFF_TOKEN", "")


def public_base_url() -> str:
    return os.environ.get("PUBLIC_BASE_URL", "").rstrip("/")
