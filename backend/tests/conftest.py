import os

# Must be set before program_booking.database builds its engine.
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.pop("STAFF_AUTH_SECRET", None)

from pathlib import Path  # noqa: E402
from typing import AsyncIterator  # noqa: E402
from zoneinfo import ZoneInfo  # noqa: E402

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from program_booking.config import get_settings  # noqa: E402
from program_booking.database import init_models, use_immediate_transactions  # noqa: E402
from program_booking.domain.slots import DEFAULT_SLOT_TABLE, SlotWindowResolver  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

JST = ZoneInfo("Asia/Tokyo")


@pytest.fixture(autouse=True)
def _fresh_settings() -> None:
    get_settings.cache_clear()


@pytest.fixture
def resolver() -> SlotWindowResolver:
    return SlotWindowResolver(DEFAULT_SLOT_TABLE, JST)


@pytest_asyncio.fixture
async def sqlite_engine() -> AsyncIterator[AsyncEngine]:
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    use_immediate_transactions(engine)
    await init_models(engine)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def file_engine(tmp_path: Path) -> AsyncIterator[AsyncEngine]:
    """File-backed database so concurrent sessions get their own connections."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'booking.db'}", connect_args={"timeout": 15})
    use_immediate_transactions(engine)
    await init_models(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(sqlite_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(sqlite_engine, expire_on_commit=False, class_=AsyncSession)
