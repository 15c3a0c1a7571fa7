from typing import Any

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from .config import get_settings
from .infrastructure.repositories import SqlAlchemyReservationStore
from .models import Base

settings = get_settings()


def use_immediate_transactions(target: AsyncEngine) -> None:
    """
    Make every SQLite transaction take the database write lock up front.

    SQLite ignores ``SELECT ... FOR UPDATE``; without this two writers could both
    read before either writes and both pass the overlap re-check.
    """

    @event.listens_for(target.sync_engine, "connect")
    def _disable_driver_begin(dbapi_connection: Any, _: Any) -> None:
        dbapi_connection.isolation_level = None

    @event.listens_for(target.sync_engine, "begin")
    def _begin_immediate(conn: Any) -> None:
        conn.exec_driver_sql("BEGIN IMMEDIATE")


engine = create_async_engine(
    settings.database_url,
    echo=settings.echo_sql,
    pool_pre_ping=True,
    pool_recycle=3600,
)
if engine.dialect.name == "sqlite":
    use_immediate_transactions(engine)

async_session = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)


async def seed_program_locks(target: AsyncEngine) -> None:
    factory = async_sessionmaker(target, expire_on_commit=False, class_=AsyncSession)
    async with factory() as session, session.begin():
        await SqlAlchemyReservationStore(session).ensure_program_locks()


async def init_models(target: AsyncEngine) -> None:
    """Create tables (plus the PostgreSQL exclusion constraint) and seed program locks."""
    async with target.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    await seed_program_locks(target)
