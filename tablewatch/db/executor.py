"""Statement executor backed by a SQLAlchemy async engine."""

from __future__ import annotations

import logging

from sqlalchemy.ext.asyncio import AsyncEngine

logger = logging.getLogger(__name__)


class EngineStatementExecutor:
    """Run standalone DDL statements, one transaction per statement."""

    def __init__(self, engine: AsyncEngine) -> None:
        self._engine = engine

    @property
    def engine(self) -> AsyncEngine:
        return self._engine

    async def execute(self, statement: str) -> None:
        logger.debug("Executing statement: %s", statement.strip().splitlines()[0])
        async with self._engine.begin() as conn:
            # exec_driver_sql keeps ':' in the PL/pgSQL body away from bind-param parsing.
            await conn.exec_driver_sql(statement)

    async def dispose(self) -> None:
        await self._engine.dispose()
