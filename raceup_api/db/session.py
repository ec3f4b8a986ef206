from collections.abc import AsyncGenerator

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from raceup_api.config import settings
from raceup_api.db.base import Base

_is_sqlite = settings.database_url.startswith("sqlite")

if _is_sqlite:
    # File-backed SQLite (local dev, tests): a fresh connection per session
    engine = create_async_engine(settings.database_url, echo=settings.debug, poolclass=NullPool)
else:
    engine = create_async_engine(settings.database_url, echo=settings.debug, pool_pre_ping=True)
async_session_maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

if _is_sqlite:
    # aiosqlite: let SQLAlchemy emit BEGIN so SAVEPOINT (begin_nested) behaves

    @event.listens_for(engine.sync_engine, "connect")
    def _sqlite_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _sqlite_begin(conn):
        conn.exec_driver_sql("BEGIN")


async def init_db() -> None:
    import raceup_api.models  # noqa: F401 - register tables on Base.metadata

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    async with async_session_maker() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
