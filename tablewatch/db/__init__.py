"""tablewatch database layer: engine helpers and DDL executor."""

from tablewatch.db.engine import create_engine, resolve_url, to_asyncpg_dsn
from tablewatch.db.executor import EngineStatementExecutor

__all__ = [
    "EngineStatementExecutor",
    "create_engine",
    "resolve_url",
    "to_asyncpg_dsn",
]
