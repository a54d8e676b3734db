"""
Shared test fixtures for the Jastip backend

Store-backed tests run against an in-memory SQLite database (aiosqlite)
with the full ledger schema, and a controllable clock standing in for the
store's server time.
"""

import logging
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Optional

import pytest
import pytest_asyncio
from sqlalchemy import select
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.pool import StaticPool

from models import Base, User, Transaction, ReturnRequest, TransactionStatus, ReturnRequestStatus
from services.sql_ledger_store import SqlLedgerStore

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)

FIXED_NOW = datetime(2025, 6, 1, 12, 0, 0)


class FixedClock:
    """Store clock that only moves when a test moves it"""

    def __init__(self, now: datetime = FIXED_NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def clock():
    return FixedClock()


@pytest_asyncio.fixture
async def engine():
    """Fresh in-memory database per test"""
    test_engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield test_engine
    await test_engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
def store(session_factory, clock):
    return SqlLedgerStore(session_factory, clock=clock)


@pytest.fixture
def seed(session_factory):
    """Insert model instances directly, bypassing the store"""

    async def _seed(*rows):
        async with session_factory() as session:
            session.add_all(rows)
            await session.commit()

    return _seed


@pytest.fixture
def fetch(session_factory):
    """Re-read a row from the database"""

    async def _fetch(model, doc_id):
        async with session_factory() as session:
            return await session.get(model, doc_id)

    return _fetch


@pytest.fixture
def fetch_all(session_factory):
    async def _fetch_all(model, *criteria):
        async with session_factory() as session:
            result = await session.execute(select(model).where(*criteria))
            return list(result.scalars().all())

    return _fetch_all


# ----- factories -----

def make_user(user_id: str, saldo: Decimal = Decimal("0"), fcm_token: Optional[str] = None) -> User:
    return User(id=user_id, display_name=user_id, saldo=saldo, fcm_token=fcm_token, created_at=FIXED_NOW)


def make_delivered_transaction(
    transaction_id: str,
    delivered_at: datetime,
    buyer_id: Optional[str] = "buyer-1",
    seller_id: Optional[str] = "seller-1",
    amount: Decimal = Decimal("100000"),
    escrow_amount: Optional[Decimal] = Decimal("95000"),
    is_escrow: bool = True,
    status: str = TransactionStatus.DELIVERED.value,
    **fields,
) -> Transaction:
    return Transaction(
        id=transaction_id,
        buyer_id=buyer_id,
        seller_id=seller_id,
        amount=amount,
        escrow_amount=escrow_amount,
        is_escrow=is_escrow,
        status=status,
        delivered_at=delivered_at,
        created_at=delivered_at - timedelta(days=3),
        rating=fields.pop("rating", 5),
        **fields,
    )


def make_return_request(
    request_id: str,
    transaction_id: str,
    created_at: datetime,
    status: str = ReturnRequestStatus.AWAITING_SELLER_RESPONSE.value,
    buyer_id: str = "buyer-1",
    seller_id: str = "seller-1",
    reason: str = "Item arrived damaged",
) -> ReturnRequest:
    return ReturnRequest(
        id=request_id,
        transaction_id=transaction_id,
        buyer_id=buyer_id,
        seller_id=seller_id,
        reason=reason,
        status=status,
        created_at=created_at,
    )
