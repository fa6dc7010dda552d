"""
Shared configuration for Engram core.
"""

from __future__ import annotations

import logging
import os

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("engram")


def _get_bool(env_name: str, default: bool) -> bool:
    value = os.environ.get(env_name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _get_int(env_name: str, default: int) -> int:
    value = os.environ.get(env_name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _get_float(env_name: str, default: float) -> float:
    value = os.environ.get(env_name)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        return default


def _get_list(env_name: str) -> list[str]:
    value = os.environ.get(env_name, "")
    return [item.strip() for item in value.split(",") if item.strip()]


SUPPORTED_STORAGE_DRIVERS = ("sqlite", "postgres", "mongodb")
GATEWAY_STORAGE_DRIVERS = ("postgres", "mongodb")

# Storage settings
STORAGE_DRIVER = os.environ.get("STORAGE_DRIVER", "sqlite").strip().lower()
SQLITE_PATH = os.environ.get("SQLITE_PATH", "/data/memory.db")
SQLITE_BUSY_TIMEOUT_SECONDS = _get_float("SQLITE_BUSY_TIMEOUT_SECONDS", 30.0)
DATABASE_URL = os.environ.get("DATABASE_URL")
DB_POOL_SIZE = _get_int("DB_POOL_SIZE", 5)
DB_MAX_OVERFLOW = _get_int("DB_MAX_OVERFLOW", 10)
MONGODB_URI = os.environ.get("MONGODB_URI")
MONGODB_DATABASE = os.environ.get("MONGODB_DATABASE", "engram")
MONGODB_VECTOR_INDEX = os.environ.get("MONGODB_VECTOR_INDEX", "embedding_index")

# Embedding settings
OLLAMA_URL = os.environ.get("OLLAMA_URL", "http://localhost:11434").rstrip("/")
EMBEDDING_MODEL = os.environ.get("EMBEDDING_MODEL", "nomic-embed-text")
EMBEDDING_DIM = _get_int("EMBEDDING_DIM", 768)
EMBEDDING_TIMEOUT_SECONDS = _get_float("EMBEDDING_TIMEOUT_SECONDS", 30.0)

# Request/input limits
MAX_RESULT_LIMIT = _get_int("ENGRAM_MAX_RESULT_LIMIT", 100)
MAX_TEXT_LENGTH = _get_int("ENGRAM_MAX_TEXT_LENGTH", 8000)
MAX_AREA_LENGTH = _get_int("ENGRAM_MAX_AREA_LENGTH", 100)
MAX_QUERY_LENGTH = _get_int("ENGRAM_MAX_QUERY_LENGTH", 4000)
DEFAULT_SEARCH_LIMIT = 5
DEFAULT_LIST_LIMIT = 10

# Gateway settings
API_HOST = os.environ.get("API_HOST", "0.0.0.0")
API_PORT = _get_int("API_PORT", 8080)
RATE_LIMIT_PER_MINUTE = _get_int("RATE_LIMIT_PER_MINUTE", 100)
RATE_LIMIT_WINDOW_SECONDS = _get_float("RATE_LIMIT_WINDOW_SECONDS", 60.0)
RATE_LIMIT_MAX_ENTRIES = _get_int("RATE_LIMIT_MAX_ENTRIES", 10000)
TRUSTED_PROXY_COUNT = _get_int("TRUSTED_PROXY_COUNT", 0)
TRUSTED_PROXY_IPS = tuple(_get_list("TRUSTED_PROXY_IPS"))
MAX_REQUEST_BODY_BYTES = _get_int("MAX_REQUEST_BODY_BYTES", 1 << 20)
CORS_ALLOWED_ORIGINS = _get_list("CORS_ALLOWED_ORIGINS")
HEALTH_CHECK_TIMEOUT_SECONDS = _get_float("HEALTH_CHECK_TIMEOUT_SECONDS", 5.0)
SHUTDOWN_GRACE_SECONDS = _get_int("SHUTDOWN_GRACE_SECONDS", 10)

# Identity headers shared by the gateway and the shim
AUTHOR_NAME_HEADER = "X-EC-Author-Name"
AUTHOR_EMAIL_HEADER = "X-EC-Author-Email"
PROJECT_SCOPE_HEADER = "X-EC-Repo"
REQUEST_ID_HEADER = "X-Request-ID"

# Shim settings
EC_API_URL = os.environ.get("EC_API_URL", "").rstrip("/")
EC_DEBUG = _get_bool("EC_DEBUG", False)
GATEWAY_TIMEOUT_SECONDS = _get_float("GATEWAY_TIMEOUT_SECONDS", 30.0)

SERVICE_NAME = "engram"
SERVICE_VERSION = "0.1.0"


def validate_and_prepare_config(gateway: bool = False) -> None:
    """Validate configuration at startup."""
    errors = []
    if STORAGE_DRIVER not in SUPPORTED_STORAGE_DRIVERS:
        errors.append("STORAGE_DRIVER must be 'sqlite', 'postgres', or 'mongodb'")

    if gateway and STORAGE_DRIVER == "sqlite":
        errors.append("STORAGE_DRIVER=sqlite is not supported for the gateway; use postgres or mongodb")

    if STORAGE_DRIVER == "sqlite" and not SQLITE_PATH:
        errors.append("SQLITE_PATH environment variable is required for sqlite")

    if STORAGE_DRIVER == "postgres":
        if not DATABASE_URL:
            errors.append("DATABASE_URL environment variable is required for postgres")
        elif DATABASE_URL.lower().startswith("sqlite"):
            errors.append("DATABASE_URL must be a postgres URL when STORAGE_DRIVER=postgres")

    if STORAGE_DRIVER == "mongodb" and not MONGODB_URI:
        errors.append("MONGODB_URI environment variable is required for mongodb")

    if EMBEDDING_DIM <= 0:
        errors.append("EMBEDDING_DIM must be a positive integer")

    if RATE_LIMIT_PER_MINUTE < 0:
        errors.append("RATE_LIMIT_PER_MINUTE must be >= 0 (0 disables limiting)")

    if errors:
        raise RuntimeError("Configuration invalid: " + "; ".join(errors))
