from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from sqlalchemy import event, text
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from .errors import StoreUnavailable
from .logging_config import logger
from .models.tables import Base

SessionFactory = async_sessionmaker[AsyncSession]


def build_engine(database_url: str) -> AsyncEngine:
    engine = create_async_engine(database_url, echo=False, future=True)
    if engine.dialect.name == "sqlite":
        _configure_sqlite(engine)
    return engine


def _configure_sqlite(engine: AsyncEngine) -> None:
    @event.listens_for(engine.sync_engine, "connect")
    def _set_pragmas(dbapi_connection, connection_record) -> None:  # pragma: no cover - driver glue
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA busy_timeout=5000")
        cursor.close()


def build_sessionmaker(engine: AsyncEngine) -> SessionFactory:
    return async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)


async def init_models(engine: AsyncEngine) -> None:
    async with engine.begin() as connection:
        await connection.run_sync(Base.metadata.create_all)


async def ping(engine: AsyncEngine) -> bool:
    try:
        async with engine.connect() as connection:
            await connection.execute(text("SELECT 1"))
    except Exception as exc:
        logger.warning("database.ping_failed", error=str(exc))
        return False
    return True


@asynccontextmanager
async def transaction(sessions: SessionFactory, store: str) -> AsyncIterator[AsyncSession]:
    """Run a block in one transaction; commit on success, roll back on any error.

    Integrity violations are re-raised untouched so callers can translate
    them; every other driver or pool failure becomes ``StoreUnavailable``.
    """
    async with sessions() as session:
        try:
            async with session.begin():
                yield session
        except IntegrityError:
            raise
        except SQLAlchemyError as exc:
            logger.error("store.failure", store=store, error=str(exc))
            raise StoreUnavailable(f"{store} store unavailable") from exc
