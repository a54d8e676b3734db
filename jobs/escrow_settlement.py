"""
Escrow Settlement Job

Auto-completes delivered transactions once the grace period has elapsed and
no return request is open against them, releasing escrow to the seller.

Per candidate, in one atomic batch:
- transaction -> completed (completed_at, release_to_seller_at, auto flags, rating cleared)
- seller saldo += escrow_amount, only for escrow transactions with a seller and a positive amount

The candidate query excludes transactions with completed_at set, and the
transaction update is guarded by a store precondition, so re-running the
job never disburses twice.

Known race: a return request created between the dispute check and the
batch commit is not seen. The arbitration flow re-checks transaction status
before refunding, so the request is then skipped instead of double-paying.
"""

import logging
from datetime import timedelta
from decimal import Decimal

from jobs.base import ReconciliationJob, JobRunSummary
from models import Transaction, TransactionStatus, ReturnRequestStatus
from services.ledger_store import LedgerStore, Collection, SERVER_TIMESTAMP, PreconditionFailed
from utils.decimal_precision import as_decimal

logger = logging.getLogger(__name__)

DEFAULT_GRACE_PERIOD = timedelta(seconds=60)
DEFAULT_PAGE_SIZE = 200

COMPLETED = "completed"
SKIPPED = "skipped"


class EscrowSettlementJob(ReconciliationJob):
    """Release escrow for uncontested delivered transactions"""

    job_id = "escrow_settlement"
    description = "Auto-complete delivered transactions and release escrow to sellers"

    def __init__(
        self,
        store: LedgerStore,
        grace_period: timedelta = DEFAULT_GRACE_PERIOD,
        page_size: int = DEFAULT_PAGE_SIZE,
    ):
        self.store = store
        self.grace_period = grace_period
        self.page_size = page_size

    async def _execute(self, summary: JobRunSummary) -> None:
        now = await self.store.server_now()
        threshold = now - self.grace_period

        candidates = await self.store.find_settlement_candidates(threshold, self.page_size)
        summary.candidate_count = len(candidates)
        logger.info(f"🔍 SETTLEMENT_SCAN: {len(candidates)} delivered transactions past {threshold.isoformat()}")

        for transaction in candidates:
            try:
                outcome = await self._settle(transaction, threshold)
            except Exception as e:
                summary.error_count += 1
                logger.error(f"❌ SETTLEMENT_ERROR: {transaction.id}: {e}", exc_info=True)
                continue

            if outcome == COMPLETED:
                summary.completed_count += 1
            else:
                summary.skipped_count += 1

    async def _settle(self, transaction: Transaction, threshold) -> str:
        transaction_id = transaction.id

        # Candidate list may be stale by the time this one is processed
        if (
            transaction.status != TransactionStatus.DELIVERED.value
            or transaction.completed_at is not None
            or transaction.delivered_at is None
            or transaction.delivered_at > threshold
        ):
            logger.debug(f"SETTLEMENT_SKIP: {transaction_id} no longer eligible")
            return SKIPPED

        active_returns = await self.store.find_return_requests_for_transaction(
            transaction_id, ReturnRequestStatus.active_values()
        )
        if active_returns:
            logger.info(
                f"⏸️ SETTLEMENT_SKIP: {transaction_id} has {len(active_returns)} active return request(s)"
            )
            return SKIPPED

        seller_id = transaction.seller_id
        escrow_amount = as_decimal(transaction.escrow_amount)
        is_escrow = transaction.is_escrow is True

        batch = self.store.batch()
        batch.update(
            Collection.TRANSACTIONS,
            transaction_id,
            {
                "status": TransactionStatus.COMPLETED.value,
                "completed_at": SERVER_TIMESTAMP,
                "rating": None,
                "release_to_seller_at": SERVER_TIMESTAMP,
                "auto_completed": True,
                "auto_completed_at": SERVER_TIMESTAMP,
            },
            expect={"status": TransactionStatus.DELIVERED.value, "completed_at": None},
        )

        if is_escrow and seller_id and escrow_amount > Decimal("0"):
            batch.increment(Collection.USERS, seller_id, "saldo", escrow_amount)
            logger.info(f"💰 SETTLEMENT_RELEASE: {escrow_amount} to seller {seller_id} for {transaction_id}")
        else:
            logger.info(
                f"SETTLEMENT_NO_RELEASE: {transaction_id} is_escrow={is_escrow}, "
                f"seller={seller_id}, escrow_amount={escrow_amount}"
            )

        try:
            await batch.commit()
        except PreconditionFailed:
            logger.info(f"SETTLEMENT_SKIP: {transaction_id} already settled by a concurrent run")
            return SKIPPED

        logger.info(f"✅ SETTLEMENT_DONE: {transaction_id} auto-completed")
        return COMPLETED
