"""
On-demand triggers for the reconciliation jobs

Return the job's run summary: 200 on success, 500 when the run itself
failed, 409 when the same job is already running.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Header
from fastapi.responses import JSONResponse

from jobs.cart_cleanup import CartCleanupJob
from jobs.escrow_settlement import EscrowSettlementJob
from jobs.return_timeout import ReturnArbitrationTimeoutJob
from jobs.scheduler import JobAlreadyRunning, UnknownJob
from routes.deps import get_services
from utils.shared_token import verify_shared_token

logger = logging.getLogger(__name__)

router = APIRouter(tags=["cron"])


async def _run_job(services, job_id: str) -> JSONResponse:
    try:
        summary = await services.scheduler.trigger(job_id)
    except JobAlreadyRunning as e:
        logger.warning(f"⚠️ CRON_TRIGGER_CONFLICT: {e}")
        raise HTTPException(status_code=409, detail=str(e))
    except UnknownJob as e:
        raise HTTPException(status_code=404, detail=str(e))

    return JSONResponse(content=summary.to_dict(), status_code=200 if summary.success else 500)


def _check_cron_token(services, token: Optional[str]):
    if not verify_shared_token(services.cron_token, token):
        logger.warning("🚫 CRON_TRIGGER_REJECTED: invalid X-Cron-Token")
        raise HTTPException(status_code=403, detail="Invalid cron token")


@router.get("/cron/auto-complete-transactions")
async def auto_complete_transactions(
    services=Depends(get_services),
    x_cron_token: Optional[str] = Header(None),
):
    """Run the escrow settlement job now"""
    _check_cron_token(services, x_cron_token)
    return await _run_job(services, EscrowSettlementJob.job_id)


@router.get("/cron/auto-approve-returns")
async def auto_approve_returns(
    services=Depends(get_services),
    x_cron_token: Optional[str] = Header(None),
):
    """Run the return arbitration timeout job now"""
    _check_cron_token(services, x_cron_token)
    return await _run_job(services, ReturnArbitrationTimeoutJob.job_id)


@router.get("/cleanup-expired-cart-items")
async def cleanup_expired_cart_items(services=Depends(get_services)):
    try:
        summary = await services.scheduler.trigger(CartCleanupJob.job_id)
    except JobAlreadyRunning as e:
        raise HTTPException(status_code=409, detail=str(e))

    if not summary.success:
        logger.error(f"❌ CART_CLEANUP_FAILED: {summary.run_error}")
        raise HTTPException(status_code=500, detail="Failed to clean up expired cart items")

    return {"success": True, "deletedCount": summary.completed_count}
