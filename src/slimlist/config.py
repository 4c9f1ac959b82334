from __future__ import annotations
import logging
import os
from typing import Optional

from .database import DatabaseConfig


def _get_env_var(primary: str, fallback: str, default: Optional[str] = None):
    """Get environment variable, checking primary name first, then fallback name.

    Args:
        primary: Primary environment variable name (e.g., SLIMLIST_POSTGRES_HOST)
        fallback: Fallback environment variable name (e.g., PG_HOSTNAME)
        default: Default value if neither is set

    Returns:
        Environment variable value or default
    """
    value = os.getenv(primary)
    if value is not None:
        return value
    value = os.getenv(fallback)
    if value is not None:
        return value
    return default


_YES_OPTIONS = ("y", "yes", "1")

DEBUG = os.getenv("DEBUG", "").lower() in _YES_OPTIONS
VERBOSE = os.getenv("VERBOSE", "").lower() in _YES_OPTIONS

# AWS defaults
AWS_REGION = os.getenv("AWS_REGION", "us-east-1")
DEFAULT_BUCKET = os.getenv("SLIMLIST_BUCKET", "com.brave.research.slim-list")
DEFAULT_QUEUE = os.getenv("SLIMLIST_QUEUE", "brave-slim-list")
DEFAULT_RECORD_QUEUE = os.getenv("SLIMLIST_RECORD_QUEUE", "brave-slim-list-record")
DEFAULT_READ_ACL = os.getenv(
    "SLIMLIST_READ_ACL",
    'uri="http://acs.amazonaws.com/groups/global/AuthenticatedUsers"',
)

DEFAULT_FILTER_LISTS = [
    "https://easylist.to/easylist/easylist.txt",
    "https://easylist.to/easylist/easyprivacy.txt",
]

# Filter rules are upserted in chunks of this many to stay under statement parameter limits
RULE_CHUNK_SIZE = int(os.getenv("SLIMLIST_RULE_CHUNK_SIZE", "5000"))

HTTP_TIMEOUT = int(os.getenv("SLIMLIST_HTTP_TIMEOUT", "60"))
USER_AGENT = os.getenv("SLIMLIST_UA", "slim-list/1.0 (+https://github.com/brave/slim-list-lambda)")
PAGE_TIMEOUT = int(os.getenv("SLIMLIST_PAGE_TIMEOUT", "30"))


def get_database_config() -> DatabaseConfig:
    """Get database configuration based on environment variables.

    Reads environment variables directly to support runtime changes.
    """
    backend = _get_env_var("SLIMLIST_DB_BACKEND", "PG_BACKEND", "postgresql")

    if backend == "sqlite":
        return DatabaseConfig(
            backend="sqlite",
            sqlite_path=os.getenv("SLIMLIST_SQLITE_PATH", os.path.abspath("./slim-list.db")),
        )

    return DatabaseConfig(
        backend="postgresql",
        postgres_host=_get_env_var("SLIMLIST_POSTGRES_HOST", "PG_HOSTNAME", "localhost"),
        postgres_port=int(_get_env_var("SLIMLIST_POSTGRES_PORT", "PG_PORT", "5432")),
        postgres_database=_get_env_var("SLIMLIST_POSTGRES_DB", "PG_DATABASE", "slim-list"),
        postgres_user=_get_env_var("SLIMLIST_POSTGRES_USER", "PG_USERNAME", "postgres"),
        postgres_password=_get_env_var("SLIMLIST_POSTGRES_PASSWORD", "PG_PASSWORD", ""),
    )


def configure_logging(debug: bool = DEBUG, verbose: bool = VERBOSE) -> None:
    """Configure root logging from the DEBUG / VERBOSE flags.

    DEBUG enables pipeline progress messages, VERBOSE adds per-request tracing.
    """
    if verbose:
        level = logging.DEBUG
    elif debug:
        level = logging.INFO
    else:
        level = logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
