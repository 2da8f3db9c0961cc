"""Database URL handling and the async engine used for trigger DDL."""

import os

from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from tablewatch.exceptions import ConfigurationError

DATABASE_URL_ENV = "TABLEWATCH_DATABASE_URL"

_ASYNCPG_SCHEME = "postgresql+asyncpg://"
_PLAIN_SCHEMES = ("postgresql://", "postgres://")


def _normalize_url(url: str) -> str:
    """Rewrite a PostgreSQL URL to the asyncpg SQLAlchemy dialect."""
    u = url.strip()
    if u.startswith(_ASYNCPG_SCHEME):
        return u
    for scheme in _PLAIN_SCHEMES:
        if u.startswith(scheme):
            return _ASYNCPG_SCHEME + u[len(scheme) :]
    raise ConfigurationError(
        "Database URL must be PostgreSQL (postgresql:// or postgresql+asyncpg://)."
    )


def to_asyncpg_dsn(url: str) -> str:
    """Convert a database URL into a DSN that asyncpg.connect() accepts."""
    return "postgresql://" + _normalize_url(url)[len(_ASYNCPG_SCHEME) :]


def resolve_url(database_url: str | None) -> str:
    """Use database_url, or TABLEWATCH_DATABASE_URL when it is empty."""
    if database_url:
        return _normalize_url(database_url)
    url = os.environ.get(DATABASE_URL_ENV, "").strip()
    if not url:
        raise ConfigurationError(
            f"Database URL not set. Set {DATABASE_URL_ENV} or pass database_url."
        )
    return _normalize_url(url)


def create_engine(
    database_url: str | None = None,
    *,
    pool_size: int = 2,
    max_overflow: int = 2,
    pool_pre_ping: bool = True,
    echo: bool = False,
) -> AsyncEngine:
    """Create the engine a TableObserver uses for CREATE/DROP statements.

    Trigger DDL is rare and short, so the pool stays small. The LISTEN
    connection never comes from this pool.

    Raises:
        ConfigurationError: URL missing or not PostgreSQL.
    """
    return create_async_engine(
        resolve_url(database_url),
        pool_size=pool_size,
        max_overflow=max_overflow,
        pool_pre_ping=pool_pre_ping,
        echo=echo,
    )
