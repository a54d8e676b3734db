"""
Return Arbitration Timeout Job

Resolves return requests the seller left unanswered past the response
window. Seller silence is treated as concession: the request is final
approved and the buyer is refunded.

Per candidate, in one atomic batch:
1. return request -> finalApproved
2. transaction -> refunded (completed_at, refunded_at, refund amount and reason)
3. buyer saldo += amount
4. one refund_logs audit document

Failures are written to auto_return_errors with retryable=True; nothing
retries them automatically yet. Requests the job cannot resolve (missing or
already refunded transaction, refund not allowed from the transaction's
status) are flagged manual_review and drop out of later scans.
"""

import logging
from datetime import timedelta
from decimal import Decimal
from typing import Optional

from jobs.base import ReconciliationJob, JobRunSummary
from models import (
    ReturnRequest, Transaction, TransactionStatus, ReturnRequestStatus, RefundLogType,
)
from services.ledger_store import LedgerStore, Collection, SERVER_TIMESTAMP, PreconditionFailed
from utils.decimal_precision import as_decimal
from utils.state_machine import TransactionStateValidator, ReturnRequestStateValidator

logger = logging.getLogger(__name__)

DEFAULT_RESPONSE_TIMEOUT = timedelta(minutes=15)
DEFAULT_PAGE_SIZE = 200

SELLER_TIMEOUT_RESPONSE_REASON = "Seller did not respond within the response window"
SELLER_TIMEOUT_REFUND_REASON = "Seller did not respond within the response window (auto-approved)"
REFUND_LOG_REASON = "Final approved return by system (seller no response)"
PROCESSED_BY = "cron"

APPROVED = "approved"
SKIPPED = "skipped"


class ReturnArbitrationTimeoutJob(ReconciliationJob):
    """Auto-approve and refund return requests with no seller response"""

    job_id = "return_timeout"
    description = "Refund buyers for return requests the seller did not answer in time"

    def __init__(
        self,
        store: LedgerStore,
        response_timeout: timedelta = DEFAULT_RESPONSE_TIMEOUT,
        page_size: int = DEFAULT_PAGE_SIZE,
    ):
        self.store = store
        self.response_timeout = response_timeout
        self.page_size = page_size

    async def _execute(self, summary: JobRunSummary) -> None:
        now = await self.store.server_now()
        deadline = now - self.response_timeout

        requests = await self.store.find_overdue_return_requests(deadline, self.page_size)
        summary.candidate_count = len(requests)

        if not requests:
            logger.info("RETURN_TIMEOUT_SCAN: no overdue return requests")
            return

        logger.info(f"🔍 RETURN_TIMEOUT_SCAN: {len(requests)} return requests awaiting seller past {deadline.isoformat()}")

        for request in requests:
            try:
                outcome = await self._arbitrate(request)
            except Exception as e:
                summary.error_count += 1
                logger.error(f"❌ RETURN_TIMEOUT_ERROR: request {request.id}: {e}", exc_info=True)
                await self._record_error(request, e)
                continue

            if outcome == APPROVED:
                summary.completed_count += 1
            else:
                summary.skipped_count += 1

    async def _arbitrate(self, request: ReturnRequest) -> str:
        request_id = request.id
        transaction_id = request.transaction_id

        transaction = await self.store.get_transaction(transaction_id)
        if transaction is None:
            logger.warning(f"⚠️ RETURN_TIMEOUT_ORPHAN: request {request_id} references missing transaction {transaction_id}")
            return await self._hold_for_review(request, f"Transaction {transaction_id} not found")

        if request.status in ReturnRequestStatus.final_values():
            logger.info(f"RETURN_TIMEOUT_SKIP: request {request_id} already {request.status}")
            return SKIPPED

        if self._already_refunded(transaction):
            logger.info(f"RETURN_TIMEOUT_SKIP: transaction {transaction_id} already refunded")
            return await self._hold_for_review(request, f"Transaction {transaction_id} already refunded")

        if not TransactionStateValidator.is_valid_transition(transaction.status, TransactionStatus.REFUNDED.value):
            logger.warning(
                f"⚠️ RETURN_TIMEOUT_INVALID_TRANSITION: transaction {transaction_id} "
                f"{transaction.status} -> refunded (allowed: {sorted(TransactionStateValidator.get_valid_transitions(transaction.status))}), "
                f"request {request_id} held for manual review"
            )
            return await self._hold_for_review(
                request, f"Transaction {transaction_id} is {transaction.status}; refund not allowed"
            )

        if not ReturnRequestStateValidator.is_valid_transition(
            request.status, ReturnRequestStatus.FINAL_APPROVED.value
        ):
            logger.warning(f"⚠️ RETURN_TIMEOUT_INVALID_TRANSITION: request {request_id} {request.status} -> finalApproved")
            return SKIPPED

        buyer_id = transaction.buyer_id
        amount = as_decimal(transaction.amount)
        # Only a missing escrow amount falls back to amount; a stored zero is logged as zero
        escrow_amount = amount if transaction.escrow_amount is None else as_decimal(transaction.escrow_amount)

        batch = self.store.batch()
        batch.update(
            Collection.RETURN_REQUESTS,
            request_id,
            {
                "status": ReturnRequestStatus.FINAL_APPROVED.value,
                "responded_at": SERVER_TIMESTAMP,
                "response_reason": SELLER_TIMEOUT_RESPONSE_REASON,
            },
            expect={"status": ReturnRequestStatus.AWAITING_SELLER_RESPONSE.value},
        )
        batch.update(
            Collection.TRANSACTIONS,
            transaction_id,
            {
                "status": TransactionStatus.REFUNDED.value,
                "completed_at": SERVER_TIMESTAMP,
                "rating": None,
                "refunded_at": SERVER_TIMESTAMP,
                "refund_amount": amount,
                "refund_reason": SELLER_TIMEOUT_REFUND_REASON,
            },
            expect={"status": transaction.status, "refunded_at": None},
        )

        if buyer_id and amount > Decimal("0"):
            batch.increment(Collection.USERS, buyer_id, "saldo", amount)
        else:
            logger.warning(f"⚠️ RETURN_TIMEOUT_NO_CREDIT: transaction {transaction_id} buyer={buyer_id} amount={amount}")

        batch.create(
            Collection.REFUND_LOGS,
            {
                "transaction_id": transaction_id,
                "return_request_id": request_id,
                "buyer_id": buyer_id,
                "seller_id": request.seller_id,
                "refund_amount": amount,
                "original_amount": amount,
                "escrow_amount": escrow_amount,
                "reason": REFUND_LOG_REASON,
                "buyer_reason": request.reason or "",
                "seller_response": request.response_reason or "",
                "processed_at": SERVER_TIMESTAMP,
                "processed_by": PROCESSED_BY,
                "type": RefundLogType.RETURN_REFUND.value,
            },
        )

        try:
            await batch.commit()
        except PreconditionFailed as e:
            logger.info(f"RETURN_TIMEOUT_SKIP: request {request_id} changed concurrently ({e})")
            return SKIPPED

        logger.info(
            f"✅ RETURN_TIMEOUT_DONE: transaction {transaction_id} refunded {amount} "
            f"to buyer {buyer_id} (request {request_id})"
        )
        return APPROVED

    @staticmethod
    def _already_refunded(transaction: Transaction) -> bool:
        return transaction.status == TransactionStatus.REFUNDED.value or transaction.refunded_at is not None

    async def _hold_for_review(self, request: ReturnRequest, reason: str) -> str:
        """
        Flag a request the job cannot resolve so later scans pass over it.

        The request keeps its status; an operator clears manual_review once
        the underlying transaction is sorted out.
        """
        batch = self.store.batch()
        batch.update(
            Collection.RETURN_REQUESTS,
            request.id,
            {
                "manual_review": True,
                "manual_review_reason": reason,
                "manual_review_at": SERVER_TIMESTAMP,
            },
            expect={"status": ReturnRequestStatus.AWAITING_SELLER_RESPONSE.value, "manual_review": False},
        )
        try:
            await batch.commit()
        except PreconditionFailed:
            logger.info(f"RETURN_TIMEOUT_SKIP: request {request.id} changed concurrently")
            return SKIPPED

        logger.warning(f"🚩 RETURN_TIMEOUT_MANUAL_REVIEW: request {request.id}: {reason}")
        return SKIPPED

    async def _record_error(self, request: ReturnRequest, error: Exception) -> Optional[str]:
        try:
            return await self.store.add(
                Collection.AUTO_RETURN_ERRORS,
                {
                    "request_id": request.id,
                    "transaction_id": request.transaction_id,
                    "error": str(error) or type(error).__name__,
                    "timestamp": SERVER_TIMESTAMP,
                    "retryable": True,
                },
            )
        except Exception as log_error:
            logger.error(f"❌ RETURN_TIMEOUT_ERROR_LOG_FAILED: request {request.id}: {log_error}")
            return None
