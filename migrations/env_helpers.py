"""Database URL helpers for Alembic migrations.

Kept apart from env.py so they can be tested without alembic.context.
DATABASE_URL may be a URL (postgres://, postgresql://) or a libpq
key=value DSN; either way the result is a SQLAlchemy psycopg2 URL.
DB_PASSWORD fills in a missing password.
"""

from __future__ import annotations

import os
from urllib.parse import quote_plus, urlparse, urlunparse

from psycopg2.extensions import parse_dsn

_DRIVER_SCHEME = "postgresql+psycopg2"


def _libpq_dsn_to_url(dsn: str) -> str:
    """Convert a libpq key=value DSN to a SQLAlchemy URL.

    A host starting with "/" is a unix socket directory and goes into the
    query string.
    """
    params = parse_dsn(dsn)
    password = params.get("password") or os.environ.get("DB_PASSWORD", "")

    user = quote_plus(params.get("user", ""))
    dbname = quote_plus(params.get("dbname", ""))
    host = params.get("host", "localhost")
    port = params.get("port", "5432")
    auth = f"{user}:{quote_plus(password)}"

    if host.startswith("/"):
        return f"{_DRIVER_SCHEME}://{auth}@/{dbname}?host={quote_plus(host)}"
    return f"{_DRIVER_SCHEME}://{auth}@{host}:{port}/{dbname}"


def _normalize_url(url: str) -> str:
    scheme, sep, rest = url.partition("://")
    if scheme in ("postgres", "postgresql"):
        url = f"{_DRIVER_SCHEME}{sep}{rest}"

    db_password = os.environ.get("DB_PASSWORD", "")
    parsed = urlparse(url)
    if db_password and not parsed.password:
        netloc = f"{quote_plus(parsed.username or '')}:{quote_plus(db_password)}@{parsed.hostname or ''}"
        if parsed.port:
            netloc += f":{parsed.port}"
        url = urlunparse(parsed._replace(netloc=netloc))
    return url


def _get_database_url() -> str:
    url = os.environ.get("DATABASE_URL")
    if not url:
        raise RuntimeError("DATABASE_URL is required to run migrations")
    if "://" in url:
        return _normalize_url(url)
    return _libpq_dsn_to_url(url)
