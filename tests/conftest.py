"""
Reconciliation Ledger - Test Configuration

Pytest fixtures and configuration.
"""

from datetime import date
from decimal import Decimal
from typing import AsyncGenerator, Callable, List, Optional

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession
from sqlalchemy.pool import StaticPool

import recon_ledger.models  # noqa: F401
from recon_ledger.database import Base, build_engine, build_session_factory, get_async_session
from recon_ledger.models.transaction import Transaction, TransactionSide
from recon_ledger.services.ledger_store import LedgerStore, TransactionRecord
from recon_ledger.services.reconciliation_service import ActorContext, ReconciliationService
from main import app


# In-memory database shared by every connection of one test
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

JAN_15 = date(2026, 1, 15)


@pytest_asyncio.fixture(scope="function")
async def test_engine() -> AsyncGenerator[AsyncEngine, None]:
    engine = build_engine(TEST_DATABASE_URL, poolclass=StaticPool, echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def db_session(test_engine: AsyncEngine) -> AsyncGenerator[AsyncSession, None]:
    """Create a fresh database session for each test."""
    session_factory = build_session_factory(test_engine)
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest_asyncio.fixture(scope="function")
async def client(db_session: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """Create a test client with database session override."""

    async def override_get_session():
        yield db_session

    app.dependency_overrides[get_async_session] = override_get_session

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
def service(db_session: AsyncSession) -> ReconciliationService:
    return ReconciliationService(db_session)


# ===========================================
# ACTORS
# ===========================================

@pytest.fixture
def analyst() -> ActorContext:
    """Adjustment limit 10.00."""
    return ActorContext.for_role("analyst-1", "ANALYST")


@pytest.fixture
def manager() -> ActorContext:
    """Adjustment limit 500.00."""
    return ActorContext.for_role("manager-1", "MANAGER")


@pytest.fixture
def admin() -> ActorContext:
    """Unlimited, may self-approve."""
    return ActorContext.for_role("admin-1", "ADMIN")


@pytest.fixture
def auditor() -> ActorContext:
    return ActorContext.for_role("auditor-1", "AUDITOR")


# ===========================================
# DATA FIXTURES
# ===========================================

@pytest.fixture
def make_transactions(db_session: AsyncSession) -> Callable:
    """
    Factory that stores transactions and commits.

    Usage: await make_transactions(("LEFT", "150.00"), ("RIGHT", "100.00", date(...)))
    """

    async def _make(*specs, imported_by: Optional[str] = "importer") -> List[Transaction]:
        records = []
        for spec in specs:
            side, amount = spec[0], spec[1]
            txn_date = spec[2] if len(spec) > 2 else JAN_15
            records.append(
                TransactionRecord(
                    transaction_date=txn_date,
                    description=f"{side} {amount}",
                    amount=Decimal(amount),
                    side=TransactionSide(side),
                )
            )
        transactions = await LedgerStore(db_session).add_transactions(records, imported_by=imported_by)
        await db_session.commit()
        return transactions

    return _make
