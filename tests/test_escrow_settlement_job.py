"""
Tests for the escrow settlement job

Covers auto-completion with escrow release, dispute blocking, the grace
period, idempotent re-runs and error isolation between candidates.
"""

import pytest
from datetime import timedelta
from decimal import Decimal
from unittest.mock import AsyncMock

from conftest import FIXED_NOW, make_user, make_delivered_transaction, make_return_request
from jobs.escrow_settlement import EscrowSettlementJob
from models import User, Transaction, TransactionStatus, ReturnRequestStatus
from services.ledger_store import LedgerStoreError


class TestEscrowRelease:
    """Delivered, uncontested transactions past the grace period"""

    @pytest.mark.asyncio
    async def test_completes_transaction_and_credits_seller(self, store, seed, fetch):
        await seed(
            make_user("seller-1", saldo=Decimal("0")),
            make_delivered_transaction("tx-1", delivered_at=FIXED_NOW - timedelta(minutes=2)),
        )

        summary = await EscrowSettlementJob(store).run()

        assert summary.success
        assert summary.candidate_count == 1
        assert summary.completed_count == 1
        assert summary.skipped_count == 0
        assert summary.error_count == 0

        tx = await fetch(Transaction, "tx-1")
        assert tx.status == TransactionStatus.COMPLETED.value
        assert tx.completed_at == FIXED_NOW
        assert tx.release_to_seller_at == FIXED_NOW
        assert tx.auto_completed is True
        assert tx.auto_completed_at == FIXED_NOW
        assert tx.rating is None

        seller = await fetch(User, "seller-1")
        assert seller.saldo == Decimal("95000")

    @pytest.mark.asyncio
    async def test_non_escrow_transaction_completes_without_credit(self, store, seed, fetch):
        await seed(
            make_user("seller-1", saldo=Decimal("1000")),
            make_delivered_transaction(
                "tx-1", delivered_at=FIXED_NOW - timedelta(minutes=5), is_escrow=False
            ),
        )

        summary = await EscrowSettlementJob(store).run()

        assert summary.completed_count == 1
        tx = await fetch(Transaction, "tx-1")
        assert tx.status == TransactionStatus.COMPLETED.value
        assert (await fetch(User, "seller-1")).saldo == Decimal("1000")

    @pytest.mark.asyncio
    async def test_zero_escrow_amount_completes_without_credit(self, store, seed, fetch):
        await seed(
            make_user("seller-1"),
            make_delivered_transaction(
                "tx-1", delivered_at=FIXED_NOW - timedelta(minutes=5), escrow_amount=Decimal("0")
            ),
        )

        summary = await EscrowSettlementJob(store).run()

        assert summary.completed_count == 1
        assert (await fetch(User, "seller-1")).saldo == Decimal("0")

    @pytest.mark.asyncio
    async def test_final_return_request_does_not_block(self, store, seed, fetch):
        await seed(
            make_user("seller-1"),
            make_delivered_transaction("tx-1", delivered_at=FIXED_NOW - timedelta(minutes=5)),
            make_return_request(
                "rr-1", "tx-1", created_at=FIXED_NOW - timedelta(hours=1),
                status=ReturnRequestStatus.FINAL_REJECTED.value,
            ),
        )

        summary = await EscrowSettlementJob(store).run()

        assert summary.completed_count == 1
        assert (await fetch(User, "seller-1")).saldo == Decimal("95000")


class TestSettlementGuards:
    """Candidates that must be left alone"""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", ReturnRequestStatus.active_values())
    async def test_active_return_request_blocks_settlement(self, store, seed, fetch, status):
        await seed(
            make_user("seller-1"),
            make_delivered_transaction("tx-1", delivered_at=FIXED_NOW - timedelta(minutes=5)),
            make_return_request("rr-1", "tx-1", created_at=FIXED_NOW - timedelta(minutes=1), status=status),
        )

        summary = await EscrowSettlementJob(store).run()

        assert summary.candidate_count == 1
        assert summary.skipped_count == 1
        assert summary.completed_count == 0

        tx = await fetch(Transaction, "tx-1")
        assert tx.status == TransactionStatus.DELIVERED.value
        assert tx.completed_at is None
        assert (await fetch(User, "seller-1")).saldo == Decimal("0")

    @pytest.mark.asyncio
    async def test_grace_period_not_elapsed(self, store, seed, fetch):
        await seed(
            make_user("seller-1"),
            make_delivered_transaction("tx-1", delivered_at=FIXED_NOW - timedelta(seconds=30)),
        )

        summary = await EscrowSettlementJob(store).run()

        assert summary.candidate_count == 0
        assert (await fetch(Transaction, "tx-1")).status == TransactionStatus.DELIVERED.value

    @pytest.mark.asyncio
    async def test_custom_grace_period(self, store, seed):
        await seed(
            make_user("seller-1"),
            make_delivered_transaction("tx-1", delivered_at=FIXED_NOW - timedelta(minutes=5)),
        )

        summary = await EscrowSettlementJob(store, grace_period=timedelta(minutes=10)).run()

        assert summary.candidate_count == 0

    @pytest.mark.asyncio
    async def test_page_size_caps_candidates(self, store, seed):
        rows = [make_user("seller-1")]
        rows += [
            make_delivered_transaction(f"tx-{i}", delivered_at=FIXED_NOW - timedelta(minutes=5))
            for i in range(5)
        ]
        await seed(*rows)

        summary = await EscrowSettlementJob(store, page_size=3).run()

        assert summary.candidate_count == 3
        assert summary.completed_count == 3


class TestSettlementIdempotence:
    """Re-running the job never disburses twice"""

    @pytest.mark.asyncio
    async def test_second_run_finds_nothing(self, store, seed, fetch):
        await seed(
            make_user("seller-1"),
            make_delivered_transaction("tx-1", delivered_at=FIXED_NOW - timedelta(minutes=2)),
        )
        job = EscrowSettlementJob(store)

        first = await job.run()
        second = await job.run()

        assert first.completed_count == 1
        assert second.candidate_count == 0
        assert (await fetch(User, "seller-1")).saldo == Decimal("95000")

    @pytest.mark.asyncio
    async def test_stale_candidate_is_skipped_by_precondition(self, store, seed, fetch):
        await seed(
            make_user("seller-1"),
            make_delivered_transaction("tx-1", delivered_at=FIXED_NOW - timedelta(minutes=2)),
        )
        stale = await store.find_settlement_candidates(FIXED_NOW, 200)

        # Another run settles the transaction after this run queried it
        await EscrowSettlementJob(store).run()
        store.find_settlement_candidates = AsyncMock(return_value=stale)

        summary = await EscrowSettlementJob(store).run()

        assert summary.skipped_count == 1
        assert summary.completed_count == 0
        assert summary.error_count == 0
        assert (await fetch(User, "seller-1")).saldo == Decimal("95000")


    @pytest.mark.asyncio
    async def test_stale_candidate_no_longer_delivered_is_not_written(self, store, seed, fetch):
        await seed(
            make_user("seller-1"),
            make_delivered_transaction(
                "tx-1", delivered_at=FIXED_NOW - timedelta(minutes=2),
                status=TransactionStatus.REFUNDED.value, refunded_at=FIXED_NOW - timedelta(minutes=1),
            ),
        )
        stale = make_delivered_transaction(
            "tx-1", delivered_at=FIXED_NOW - timedelta(minutes=2), status=TransactionStatus.REFUNDED.value
        )
        store.find_settlement_candidates = AsyncMock(return_value=[stale])

        summary = await EscrowSettlementJob(store).run()

        assert summary.skipped_count == 1
        assert summary.error_count == 0
        assert (await fetch(Transaction, "tx-1")).status == TransactionStatus.REFUNDED.value
        assert (await fetch(User, "seller-1")).saldo == Decimal("0")

class TestSettlementErrors:
    """Failures are isolated per candidate or reported per run"""

    @pytest.mark.asyncio
    async def test_missing_seller_rolls_back_and_continues(self, store, seed, fetch):
        await seed(
            make_user("seller-2"),
            make_delivered_transaction("tx-bad", delivered_at=FIXED_NOW - timedelta(minutes=3), seller_id="ghost"),
            make_delivered_transaction("tx-good", delivered_at=FIXED_NOW - timedelta(minutes=3), seller_id="seller-2"),
        )

        summary = await EscrowSettlementJob(store).run()

        assert summary.success
        assert summary.error_count == 1
        assert summary.completed_count == 1

        bad = await fetch(Transaction, "tx-bad")
        assert bad.status == TransactionStatus.DELIVERED.value
        assert bad.completed_at is None
        assert (await fetch(Transaction, "tx-good")).status == TransactionStatus.COMPLETED.value
        assert (await fetch(User, "seller-2")).saldo == Decimal("95000")

    @pytest.mark.asyncio
    async def test_candidate_query_failure_marks_run_failed(self):
        store = AsyncMock()
        store.server_now.return_value = FIXED_NOW
        store.find_settlement_candidates.side_effect = LedgerStoreError("connection reset")

        summary = await EscrowSettlementJob(store).run()

        assert summary.success is False
        assert "connection reset" in summary.run_error
        assert summary.to_dict()["success"] is False
        assert summary.finished_at is not None
