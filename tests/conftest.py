import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from database import Base
from main import app
import models  # noqa: F401
from models.account import Account, AccountTier
from routers import rate_limit
from services.packages import seed_default_packages


@pytest.fixture(autouse=True)
def reset_local_rate_limit_counters():
    """Keep in-memory rate-limit state isolated between tests."""
    previous = getattr(app.state, "disable_rate_limits", False)
    app.state.disable_rate_limits = True
    rate_limit._local_counters.clear()
    yield
    rate_limit._local_counters.clear()
    app.state.disable_rate_limits = previous


@pytest_asyncio.fixture
async def session_maker(tmp_path):
    """File-backed SQLite database with the default package catalogue."""
    db_path = tmp_path / "credits.db"
    engine = create_async_engine(f"sqlite+aiosqlite:///{db_path}")
    maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with maker() as session:
        await seed_default_packages(session)

    yield maker
    await engine.dispose()


@pytest.fixture
def make_account(session_maker):
    """Insert an account row directly, bypassing the ledger."""

    async def _make(account_id, credits=0, tier=AccountTier.FREE, email=None):
        async with session_maker() as session:
            session.add(
                Account(
                    id=account_id,
                    email=email or f"{account_id}@example.com",
                    credits=credits,
                    tier=tier.value,
                )
            )
            await session.commit()

    return _make
