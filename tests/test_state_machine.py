"""Tests for transaction and return request transition tables"""

import pytest

from models import TransactionStatus, ReturnRequestStatus
from utils.state_machine import TransactionStateValidator, ReturnRequestStateValidator


class TestTransactionTransitions:

    @pytest.mark.parametrize("target", [TransactionStatus.COMPLETED.value, TransactionStatus.REFUNDED.value])
    def test_delivered_can_settle_or_refund(self, target):
        assert TransactionStateValidator.is_valid_transition(TransactionStatus.DELIVERED.value, target)

    def test_completed_cannot_be_refunded(self):
        assert not TransactionStateValidator.is_valid_transition(
            TransactionStatus.COMPLETED.value, TransactionStatus.REFUNDED.value
        )

    def test_pending_cannot_jump_to_completed(self):
        assert not TransactionStateValidator.is_valid_transition(
            TransactionStatus.PENDING.value, TransactionStatus.COMPLETED.value
        )

    @pytest.mark.parametrize("status", ["completed", "refunded", "cancelled"])
    def test_terminal_states(self, status):
        assert TransactionStateValidator.is_terminal_state(status)
        assert TransactionStateValidator.get_valid_transitions(status) == set()

    def test_unknown_status_has_no_transitions(self):
        assert TransactionStateValidator.get_valid_transitions("teleported") == set()
        assert not TransactionStateValidator.is_valid_transition("teleported", "completed")


class TestReturnRequestTransitions:

    def test_seller_timeout_final_approves(self):
        assert ReturnRequestStateValidator.is_valid_transition(
            ReturnRequestStatus.AWAITING_SELLER_RESPONSE.value,
            ReturnRequestStatus.FINAL_APPROVED.value,
        )

    def test_final_approved_cannot_be_reopened(self):
        assert not ReturnRequestStateValidator.is_valid_transition(
            ReturnRequestStatus.FINAL_APPROVED.value,
            ReturnRequestStatus.AWAITING_SELLER_RESPONSE.value,
        )

    @pytest.mark.parametrize("status", ReturnRequestStatus.final_values())
    def test_final_statuses_are_terminal(self, status):
        assert ReturnRequestStateValidator.is_terminal_state(status)

    @pytest.mark.parametrize("status", ReturnRequestStatus.active_values())
    def test_active_statuses_are_not_terminal(self, status):
        assert not ReturnRequestStateValidator.is_terminal_state(status)
