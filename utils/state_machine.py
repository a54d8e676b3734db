#!/usr/bin/env python3
"""
Transaction and Return Request State Machines
Transition tables consulted by the reconciliation jobs before any write
"""

import logging
from typing import Dict, Optional, Set

from models import TransactionStatus, ReturnRequestStatus

logger = logging.getLogger(__name__)


class _StateValidator:
    """Shared lookups over a VALID_TRANSITIONS map"""

    VALID_TRANSITIONS: Dict[Optional[str], Set[str]] = {}

    @classmethod
    def is_valid_transition(cls, current_status: Optional[str], new_status: str) -> bool:
        """Check if state transition is valid"""
        return new_status in cls.VALID_TRANSITIONS.get(current_status, set())

    @classmethod
    def get_valid_transitions(cls, current_status: Optional[str]) -> Set[str]:
        """Get all valid next states for current status"""
        return cls.VALID_TRANSITIONS.get(current_status, set())

    @classmethod
    def is_terminal_state(cls, status: str) -> bool:
        """Check if status is terminal (no further transitions)"""
        return len(cls.VALID_TRANSITIONS.get(status, set())) == 0


class TransactionStateValidator(_StateValidator):
    """Transaction lifecycle: checkout -> delivery -> completed | refunded"""

    VALID_TRANSITIONS: Dict[Optional[str], Set[str]] = {
        None: {TransactionStatus.PENDING.value},
        TransactionStatus.PENDING.value: {
            TransactionStatus.PAID.value,
            TransactionStatus.CANCELLED.value,
        },
        TransactionStatus.PAID.value: {
            TransactionStatus.PROCESSING.value,
            TransactionStatus.REFUNDED.value,
            TransactionStatus.CANCELLED.value,
        },
        TransactionStatus.PROCESSING.value: {
            TransactionStatus.SHIPPED.value,
            TransactionStatus.REFUNDED.value,
        },
        TransactionStatus.SHIPPED.value: {
            TransactionStatus.DELIVERED.value,
            TransactionStatus.REFUNDED.value,
        },
        # Delivered: settled to the seller or refunded to the buyer after a return
        TransactionStatus.DELIVERED.value: {
            TransactionStatus.COMPLETED.value,
            TransactionStatus.REFUNDED.value,
        },
        # Terminal states (no transitions allowed)
        TransactionStatus.COMPLETED.value: set(),
        TransactionStatus.REFUNDED.value: set(),
        TransactionStatus.CANCELLED.value: set(),
    }


class ReturnRequestStateValidator(_StateValidator):
    """Return request arbitration: buyer opens, seller responds or times out"""

    VALID_TRANSITIONS: Dict[Optional[str], Set[str]] = {
        None: {ReturnRequestStatus.PENDING.value},
        ReturnRequestStatus.PENDING.value: {
            ReturnRequestStatus.AWAITING_SELLER_RESPONSE.value,
            ReturnRequestStatus.FINAL_REJECTED.value,
        },
        ReturnRequestStatus.AWAITING_SELLER_RESPONSE.value: {
            ReturnRequestStatus.SELLER_RESPONDED.value,
            ReturnRequestStatus.APPROVED.value,
            ReturnRequestStatus.FINAL_APPROVED.value,  # Seller silence past the deadline
        },
        ReturnRequestStatus.SELLER_RESPONDED.value: {
            ReturnRequestStatus.APPROVED.value,
            ReturnRequestStatus.FINAL_APPROVED.value,
            ReturnRequestStatus.FINAL_REJECTED.value,
        },
        ReturnRequestStatus.APPROVED.value: {
            ReturnRequestStatus.FINAL_APPROVED.value,
            ReturnRequestStatus.FINAL_REJECTED.value,
        },
        ReturnRequestStatus.FINAL_APPROVED.value: set(),
        ReturnRequestStatus.FINAL_REJECTED.value: set(),
    }
