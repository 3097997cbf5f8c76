import contextlib
from typing import AsyncIterator

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from trilha.main.exceptions import NotReadyException
from trilha.main.logging import get_logger

logger = get_logger(__name__)


class DatabaseSessionManager:
    def __init__(self):
        self._engine: AsyncEngine | None = None
        self._sessionmaker: async_sessionmaker[AsyncSession] | None = None

    @property
    def is_initialized(self) -> bool:
        return self._engine is not None

    def init(self, host: str, pool_size: int = 10, max_overflow: int = 5):
        # Startup may run more than once in tests
        if self._engine is not None:
            logger.debug("Database already initialized, skipping reinitialization")
            return

        self._engine = create_async_engine(
            host, pool_size=pool_size, max_overflow=max_overflow, pool_pre_ping=True
        )
        self._sessionmaker = async_sessionmaker(
            autocommit=False,
            bind=self._engine,
            autobegin=False,
            expire_on_commit=False,
        )
        logger.debug("Database engine created")

    async def close(self):
        if self._engine is None:
            logger.debug("DatabaseSessionManager already closed or not initialized")
            return
        await self._engine.dispose()
        self._engine = None
        self._sessionmaker = None
        logger.debug("DatabaseSessionManager closed")

    @contextlib.asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        if self._sessionmaker is None:
            raise NotReadyException("DatabaseSessionManager is not initialized")

        session = self._sessionmaker()
        try:
            yield session
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


sessionmanager = DatabaseSessionManager()
