"""
SQLAlchemy implementation of the Ledger Store Adapter

Each read runs in its own short-lived AsyncSession; each WriteBatch commits
inside a single database transaction, so all writes for one candidate land
together or not at all. Increments are issued as ``col = col + :amount``.
"""

import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Sequence, Type

from sqlalchemy import select, update, delete, insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from models import (
    Base, User, Transaction, ReturnRequest, RefundLog, AutoReturnError,
    Invoice, Notification, CartItem, Story,
    TransactionStatus, ReturnRequestStatus,
)
from services.ledger_store import (
    LedgerStore, Collection, BatchWrite, Increment, SERVER_TIMESTAMP,
    LedgerStoreError, DocumentNotFound, PreconditionFailed,
)
from utils.datetime_helpers import get_naive_utc_now

logger = logging.getLogger(__name__)


COLLECTION_MODELS: Dict[Collection, Type[Base]] = {
    Collection.USERS: User,
    Collection.TRANSACTIONS: Transaction,
    Collection.RETURN_REQUESTS: ReturnRequest,
    Collection.REFUND_LOGS: RefundLog,
    Collection.AUTO_RETURN_ERRORS: AutoReturnError,
    Collection.INVOICES: Invoice,
    Collection.NOTIFICATIONS: Notification,
    Collection.CART_ITEMS: CartItem,
    Collection.STORIES: Story,
}


class SqlLedgerStore(LedgerStore):
    """Ledger store backed by a relational database through SQLAlchemy asyncio"""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        clock: Callable[[], datetime] = get_naive_utc_now,
    ):
        self._session_factory = session_factory
        self._clock = clock

    async def server_now(self) -> datetime:
        return self._clock()

    # ----- point reads -----

    async def get_transaction(self, transaction_id: str) -> Optional[Transaction]:
        return await self._get(Transaction, transaction_id)

    async def get_user(self, user_id: str) -> Optional[User]:
        return await self._get(User, user_id)

    async def get_invoice(self, external_id: str) -> Optional[Invoice]:
        return await self._get(Invoice, external_id)

    async def _get(self, model: Type[Base], doc_id: str):
        async with self._session_factory() as session:
            return await session.get(model, doc_id)

    # ----- candidate queries -----

    async def find_settlement_candidates(self, delivered_before: datetime, limit: int) -> List[Transaction]:
        stmt = select(Transaction).where(
            Transaction.status == TransactionStatus.DELIVERED.value,
            Transaction.completed_at.is_(None),
            Transaction.delivered_at.is_not(None),
            Transaction.delivered_at <= delivered_before,
        ).limit(limit)
        return await self._all(stmt)

    async def find_return_requests_for_transaction(
        self, transaction_id: str, statuses: Sequence[str]
    ) -> List[ReturnRequest]:
        stmt = select(ReturnRequest).where(
            ReturnRequest.transaction_id == transaction_id,
            ReturnRequest.status.in_(list(statuses)),
        )
        return await self._all(stmt)

    async def find_overdue_return_requests(self, created_before: datetime, limit: int) -> List[ReturnRequest]:
        stmt = select(ReturnRequest).where(
            ReturnRequest.status == ReturnRequestStatus.AWAITING_SELLER_RESPONSE.value,
            ReturnRequest.manual_review == False,  # noqa: E712
            ReturnRequest.created_at <= created_before,
        ).order_by(ReturnRequest.created_at).limit(limit)
        return await self._all(stmt)

    async def find_expired_cart_items(self, now: datetime, limit: int) -> List[CartItem]:
        stmt = select(CartItem).where(
            CartItem.deadline.is_not(None),
            CartItem.deadline < now,
        ).limit(limit)
        return await self._all(stmt)

    async def find_expired_stories(self, now: datetime, limit: int) -> List[Story]:
        stmt = select(Story).where(Story.expires_at < now).limit(limit)
        return await self._all(stmt)

    async def find_users_with_device_token(self, exclude_user_id: Optional[str] = None) -> List[User]:
        stmt = select(User).where(User.fcm_token.is_not(None), User.fcm_token != "")
        if exclude_user_id:
            stmt = stmt.where(User.id != exclude_user_id)
        return await self._all(stmt)

    async def _all(self, stmt) -> list:
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())

    # ----- writes -----

    async def _commit_batch(self, writes: List[BatchWrite]) -> None:
        now = self._clock()
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    for write in writes:
                        await self._apply(session, write, now)
        except LedgerStoreError:
            raise
        except SQLAlchemyError as e:
            logger.error(f"❌ LEDGER_BATCH_FAILED: {len(writes)} writes rolled back: {e}")
            raise LedgerStoreError(f"Batch commit failed: {e}") from e

    async def _apply(self, session: AsyncSession, write: BatchWrite, now: datetime) -> None:
        model = COLLECTION_MODELS[write.collection]

        if write.op == "create":
            values = self._resolve_values(model, write.fields, now)
            values["id"] = write.doc_id
            await session.execute(insert(model).values(**values))
            return

        if write.op == "delete":
            await session.execute(delete(model).where(model.id == write.doc_id))
            return

        values = self._resolve_values(model, write.fields, now)
        stmt = update(model).where(model.id == write.doc_id)
        for name, expected in write.expect.items():
            column = getattr(model, name)
            stmt = stmt.where(column.is_(None) if expected is None else column == expected)
        result = await session.execute(stmt.values(**values).execution_options(synchronize_session=False))

        if result.rowcount == 0:
            exists = await session.get(model, write.doc_id)
            if exists is None:
                raise DocumentNotFound(write.collection, write.doc_id)
            raise PreconditionFailed(write.collection, write.doc_id, write.expect)

    @staticmethod
    def _resolve_values(model: Type[Base], fields: Dict[str, Any], now: datetime) -> Dict[str, Any]:
        values: Dict[str, Any] = {}
        for name, value in fields.items():
            if value is SERVER_TIMESTAMP:
                values[name] = now
            elif isinstance(value, Increment):
                values[name] = getattr(model, name) + value.amount
            else:
                values[name] = value
        return values
