"""
Jastip Marketplace - Ledger Schema
==================================

Tables backing the transaction lifecycle and escrow settlement engine:
- Transactions between buyers and sellers (escrow-held funds)
- Buyer-initiated return requests and their arbitration outcome
- Append-only refund audit log and automated-refund error log
- User balances (saldo), top-up invoices, notifications, carts and stories

Status columns hold the string value of the enums below. Allowed status
transitions live in utils/state_machine.py.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional, List
from sqlalchemy import (
    String, Numeric, DateTime, Boolean, Text, Integer, JSON,
    Index, UniqueConstraint, CheckConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from utils.datetime_helpers import get_naive_utc_now


class Base(DeclarativeBase):
    """Base class for all database models"""
    pass


# ============================================================================
# ENUMS - Business Logic Constants
# ============================================================================

class TransactionStatus(Enum):
    """Transaction lifecycle states"""
    PENDING = "pending"
    PAID = "paid"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    COMPLETED = "completed"
    REFUNDED = "refunded"
    CANCELLED = "cancelled"


class ReturnRequestStatus(Enum):
    """Return request (dispute) states as stored by the mobile client"""
    PENDING = "pending"
    AWAITING_SELLER_RESPONSE = "awaitingSellerResponse"
    SELLER_RESPONDED = "sellerResponded"
    APPROVED = "approved"
    FINAL_APPROVED = "finalApproved"
    FINAL_REJECTED = "finalRejected"

    @classmethod
    def active_values(cls) -> List[str]:
        """Non-final statuses: a transaction with one of these is under dispute"""
        return [
            cls.PENDING.value,
            cls.AWAITING_SELLER_RESPONSE.value,
            cls.APPROVED.value,
            cls.SELLER_RESPONDED.value,
        ]

    @classmethod
    def final_values(cls) -> List[str]:
        return [cls.FINAL_APPROVED.value, cls.FINAL_REJECTED.value]


class InvoiceStatus(Enum):
    """Xendit invoice states"""
    PENDING = "PENDING"
    PAID = "PAID"
    SETTLED = "SETTLED"
    EXPIRED = "EXPIRED"

    @classmethod
    def paid_values(cls) -> List[str]:
        return [cls.PAID.value, cls.SETTLED.value]


class RefundLogType(Enum):
    RETURN_REFUND = "return_refund"


class NotificationType(Enum):
    ANNOUNCEMENT = "announcement"
    CHAT = "chat"


# ============================================================================
# TABLES
# ============================================================================

class User(Base):
    """Marketplace user (buyer and/or jastiper) with spendable balance"""
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(128), primary_key=True)
    display_name: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True, index=True)
    fcm_token: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)

    # Only ever changed through atomic increments (saldo = saldo + :amount)
    saldo: Mapped[Decimal] = mapped_column(Numeric(18, 2), default=Decimal("0"), nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), default=get_naive_utc_now, nullable=False)

    __table_args__ = (
        CheckConstraint("saldo >= 0", name="non_negative_saldo"),
    )

    def __repr__(self):
        return f"<User(id={self.id}, saldo={self.saldo})>"


class Transaction(Base):
    """Purchase agreement between a buyer and a seller"""
    __tablename__ = "transactions"

    id: Mapped[str] = mapped_column(String(128), primary_key=True)
    buyer_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True, index=True)
    seller_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True, index=True)

    amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), default=Decimal("0"), nullable=False)
    escrow_amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(18, 2), nullable=True)
    is_escrow: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    status: Mapped[str] = mapped_column(String(32), default=TransactionStatus.PENDING.value, nullable=False)

    # Lifecycle timestamps
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), default=get_naive_utc_now, nullable=False)
    delivered_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=False), nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=False), nullable=True)
    refunded_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=False), nullable=True)
    release_to_seller_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=False), nullable=True)

    # Automated completion
    auto_completed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    auto_completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=False), nullable=True)
    rating: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    # Automated refund
    refund_amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(18, 2), nullable=True)
    refund_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    __table_args__ = (
        Index("ix_transactions_status_delivered", "status", "delivered_at"),
    )

    def __repr__(self):
        return f"<Transaction(id={self.id}, status={self.status}, amount={self.amount})>"


class ReturnRequest(Base):
    """Buyer-initiated dispute against a transaction"""
    __tablename__ = "return_requests"

    id: Mapped[str] = mapped_column(String(128), primary_key=True)
    # Logical reference only - the referenced transaction may be missing
    transaction_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    buyer_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    seller_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)

    reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    response_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String(32), default=ReturnRequestStatus.PENDING.value, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), default=get_naive_utc_now, nullable=False)
    responded_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=False), nullable=True)

    # Set when the timeout job cannot resolve the request; excluded from later scans
    manual_review: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    manual_review_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    manual_review_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=False), nullable=True)

    __table_args__ = (
        Index("ix_return_requests_status_created", "status", "created_at"),
    )

    def __repr__(self):
        return f"<ReturnRequest(id={self.id}, transaction_id={self.transaction_id}, status={self.status})>"


class RefundLog(Base):
    """Append-only audit record of an automated refund"""
    __tablename__ = "refund_logs"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    transaction_id: Mapped[str] = mapped_column(String(128), nullable=False)
    return_request_id: Mapped[str] = mapped_column(String(128), nullable=False)
    buyer_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    seller_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)

    refund_amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    original_amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    escrow_amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)

    reason: Mapped[str] = mapped_column(Text, nullable=False)
    buyer_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    seller_response: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    processed_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    processed_by: Mapped[str] = mapped_column(String(32), nullable=False)
    type: Mapped[str] = mapped_column(String(32), nullable=False)

    __table_args__ = (
        UniqueConstraint("transaction_id", "return_request_id", name="uq_refund_log_transaction_request"),
    )

    def __repr__(self):
        return f"<RefundLog(transaction_id={self.transaction_id}, request={self.return_request_id}, amount={self.refund_amount})>"


class AutoReturnError(Base):
    """Failed automated return processing, kept for manual or future retry"""
    __tablename__ = "auto_return_errors"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    request_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    transaction_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    error: Mapped[str] = mapped_column(Text, nullable=False)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    retryable: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)


class Invoice(Base):
    """Saldo top-up invoice issued through Xendit"""
    __tablename__ = "invoices"

    # External id: topup-<userId>-<epoch ms>
    id: Mapped[str] = mapped_column(String(255), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    status: Mapped[str] = mapped_column(String(20), default=InvoiceStatus.PENDING.value, nullable=False)
    xendit_invoice_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)

    paid_amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(18, 2), nullable=True)
    paid_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=False), nullable=True)
    # Set in the same batch as the saldo credit; never cleared
    credited_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=False), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), default=get_naive_utc_now, nullable=False)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=False), nullable=True)

    def __repr__(self):
        return f"<Invoice(id={self.id}, status={self.status}, amount={self.amount})>"


class Notification(Base):
    """Per-user notification inbox record"""
    __tablename__ = "notifications"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    body: Mapped[str] = mapped_column(Text, nullable=False)
    image_url: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)
    type: Mapped[str] = mapped_column(String(32), nullable=False)
    sender_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    sender_name: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    data: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    is_read: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)


class CartItem(Base):
    """Item in a buyer's cart, reserved until its deadline"""
    __tablename__ = "cart_items"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    product_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    quantity: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    deadline: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=False), nullable=True, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), default=get_naive_utc_now, nullable=False)


class Story(Base):
    """Short-lived seller story"""
    __tablename__ = "stories"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    media_url: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), default=get_naive_utc_now, nullable=False)
