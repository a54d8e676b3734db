"""
Ledger Store Adapter

Document-store style interface the reconciliation jobs depend on:
- point reads and capped, filtered candidate queries
- WriteBatch: multi-document writes that commit together or not at all
- atomic numeric increments (never read-modify-write of a balance)
- SERVER_TIMESTAMP, resolved by the store to its own clock at commit time

Jobs receive a LedgerStore instance in their constructor; production uses
SqlLedgerStore (services/sql_ledger_store.py).
"""

import logging
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence

from models import CartItem, Invoice, ReturnRequest, Story, Transaction, User

logger = logging.getLogger(__name__)


class Collection(str, Enum):
    """Logical collections exposed by the store"""
    USERS = "users"
    TRANSACTIONS = "transactions"
    RETURN_REQUESTS = "return_requests"
    REFUND_LOGS = "refund_logs"
    AUTO_RETURN_ERRORS = "auto_return_errors"
    INVOICES = "invoices"
    NOTIFICATIONS = "notifications"
    CART_ITEMS = "cart_items"
    STORIES = "stories"


class _ServerTimestamp:
    """Sentinel replaced by the store's clock when a batch commits"""

    def __repr__(self):
        return "SERVER_TIMESTAMP"


SERVER_TIMESTAMP = _ServerTimestamp()


@dataclass(frozen=True)
class Increment:
    """Atomic ``field = field + amount`` applied by the store"""
    amount: Decimal


class LedgerStoreError(Exception):
    """Base class for store failures"""
    pass


class DocumentNotFound(LedgerStoreError):
    """An update targeted a document that does not exist"""

    def __init__(self, collection: Collection, doc_id: str):
        self.collection = collection
        self.doc_id = doc_id
        super().__init__(f"{collection.value}/{doc_id} not found")


class PreconditionFailed(LedgerStoreError):
    """A guarded update found the document in an unexpected state"""

    def __init__(self, collection: Collection, doc_id: str, expected: Dict[str, Any]):
        self.collection = collection
        self.doc_id = doc_id
        self.expected = expected
        super().__init__(f"{collection.value}/{doc_id} precondition failed: {expected}")


class BatchAlreadyCommitted(LedgerStoreError):
    pass


@dataclass
class BatchWrite:
    op: str  # "create" | "update" | "delete"
    collection: Collection
    doc_id: str
    fields: Dict[str, Any] = field(default_factory=dict)
    expect: Dict[str, Any] = field(default_factory=dict)


class WriteBatch:
    """Collects writes for one atomic commit. Not reusable after commit."""

    def __init__(self, store: "LedgerStore"):
        self._store = store
        self._writes: List[BatchWrite] = []
        self._committed = False

    def __len__(self) -> int:
        return len(self._writes)

    @property
    def writes(self) -> Sequence[BatchWrite]:
        return tuple(self._writes)

    def create(self, collection: Collection, fields: Dict[str, Any], doc_id: Optional[str] = None) -> str:
        """Queue a new document; returns its id (generated when not given)"""
        self._ensure_open()
        doc_id = doc_id or uuid.uuid4().hex
        self._writes.append(BatchWrite("create", collection, doc_id, dict(fields)))
        return doc_id

    def update(
        self,
        collection: Collection,
        doc_id: str,
        fields: Dict[str, Any],
        expect: Optional[Dict[str, Any]] = None,
    ) -> "WriteBatch":
        """
        Queue a partial update of an existing document.

        ``expect`` maps field names to the values the document must still hold
        at commit time (None means the field must be null); otherwise the
        whole batch fails with PreconditionFailed.
        """
        self._ensure_open()
        self._writes.append(BatchWrite("update", collection, doc_id, dict(fields), dict(expect or {})))
        return self

    def increment(self, collection: Collection, doc_id: str, field_name: str, amount: Decimal) -> "WriteBatch":
        return self.update(collection, doc_id, {field_name: Increment(Decimal(amount))})

    def delete(self, collection: Collection, doc_id: str) -> "WriteBatch":
        self._ensure_open()
        self._writes.append(BatchWrite("delete", collection, doc_id))
        return self

    async def commit(self) -> None:
        self._ensure_open()
        self._committed = True
        if not self._writes:
            return
        await self._store._commit_batch(list(self._writes))

    def _ensure_open(self):
        if self._committed:
            raise BatchAlreadyCommitted("Batch has already been committed")


class LedgerStore(ABC):
    """Interface to the platform's transactional store"""

    def batch(self) -> WriteBatch:
        return WriteBatch(self)

    async def add(self, collection: Collection, fields: Dict[str, Any]) -> str:
        """Create a single document in its own batch"""
        batch = self.batch()
        doc_id = batch.create(collection, fields)
        await batch.commit()
        return doc_id

    @abstractmethod
    async def server_now(self) -> datetime:
        """Store clock; basis for every time-window comparison"""

    # ----- point reads -----

    @abstractmethod
    async def get_transaction(self, transaction_id: str) -> Optional[Transaction]:
        ...

    @abstractmethod
    async def get_user(self, user_id: str) -> Optional[User]:
        ...

    @abstractmethod
    async def get_invoice(self, external_id: str) -> Optional[Invoice]:
        ...

    # ----- candidate queries -----

    @abstractmethod
    async def find_settlement_candidates(self, delivered_before: datetime, limit: int) -> List[Transaction]:
        """Delivered, not completed, delivered_at <= delivered_before"""

    @abstractmethod
    async def find_return_requests_for_transaction(
        self, transaction_id: str, statuses: Sequence[str]
    ) -> List[ReturnRequest]:
        ...

    @abstractmethod
    async def find_overdue_return_requests(self, created_before: datetime, limit: int) -> List[ReturnRequest]:
        """Awaiting seller response, not held for manual review, created_at <= created_before, oldest first"""

    @abstractmethod
    async def find_expired_cart_items(self, now: datetime, limit: int) -> List[CartItem]:
        ...

    @abstractmethod
    async def find_expired_stories(self, now: datetime, limit: int) -> List[Story]:
        ...

    @abstractmethod
    async def find_users_with_device_token(self, exclude_user_id: Optional[str] = None) -> List[User]:
        ...

    # ----- writes -----

    @abstractmethod
    async def _commit_batch(self, writes: List[BatchWrite]) -> None:
        """Apply every write atomically, resolving SERVER_TIMESTAMP and Increment"""
