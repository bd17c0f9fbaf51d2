"""Pytest configuration and shared fixtures for backend tests."""

import os
import sys

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import NullPool

# Add parent directory to path for coverview module discovery
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

# Set test environment BEFORE importing coverview modules
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key")

from coverview.core.database import Base
from coverview.models import CreditAccount, CreditTransaction  # noqa: F401 (register tables)
from coverview.services.ledger import LedgerService


@pytest_asyncio.fixture
async def engine(tmp_path):
    """Per-test SQLite database.

    NullPool gives every session its own connection, so concurrent sessions
    contend for the database lock exactly like separate requests would.
    """
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}",
        echo=False,
        future=True,
        poolclass=NullPool,
        connect_args={"timeout": 30},
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture
async def db_session(session_factory):
    """Provide a test database session."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def ledger(db_session) -> LedgerService:
    """Ledger with no starting grant, so balances are exactly what tests fund."""
    return LedgerService(db_session, starting_credits=0)


@pytest.fixture
def fund(session_factory):
    """Return a helper that grants credits to a user through the ledger."""

    async def _fund(user_id: str, amount: int) -> int:
        async with session_factory() as session:
            result = await LedgerService(session, starting_credits=0).credit(
                user_id, amount, "Test grant"
            )
            return result.balance_after

    return _fund
