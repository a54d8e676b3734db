"""
Saldo top-up routes - Xendit invoices and payment webhook
"""

import logging
from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Header, Request
from fastapi.responses import PlainTextResponse

from routes.deps import get_services, read_json_body, require_fields
from services.topup_service import InvoiceNotFound, InvalidCallbackToken
from services.xendit_service import XenditAPIError
from utils.decimal_precision import MonetaryDecimal

logger = logging.getLogger(__name__)

router = APIRouter(tags=["payments"])


@router.post("/create-invoice")
async def create_invoice(request: Request, services=Depends(get_services)):
    data = await read_json_body(request)
    require_fields(data, "amount", "userId", "email")

    amount = MonetaryDecimal.to_decimal(data["amount"], "topup_amount")
    if amount <= Decimal("0"):
        raise HTTPException(status_code=400, detail="Amount must be positive")

    try:
        return await services.topup.create_invoice(amount, str(data["userId"]), str(data["email"]))
    except XenditAPIError as e:
        logger.error(f"❌ CREATE_INVOICE_FAILED: Xendit returned {e.status}: {e}")
        raise HTTPException(status_code=500, detail="Failed to create invoice")
    except Exception as e:
        logger.error(f"❌ CREATE_INVOICE_FAILED: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to create invoice")


@router.get("/check-invoice/{external_id}")
async def check_invoice(external_id: str, services=Depends(get_services)):
    try:
        return await services.topup.check_invoice(external_id)
    except InvoiceNotFound:
        raise HTTPException(status_code=404, detail="Invoice not found")
    except Exception as e:
        logger.error(f"❌ CHECK_INVOICE_FAILED: {external_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to check invoice status")


@router.post("/xendit-webhook", response_class=PlainTextResponse)
async def xendit_webhook(
    request: Request,
    services=Depends(get_services),
    x_callback_token: Optional[str] = Header(None, alias="x-callback-token"),
):
    """Xendit invoice callback; credits saldo once per paid top-up invoice"""
    try:
        data = await request.json()
    except Exception:
        data = {}
    if not isinstance(data, dict):
        data = {}

    try:
        await services.topup.handle_webhook(data, x_callback_token)
    except InvalidCallbackToken:
        return PlainTextResponse("Forbidden: Invalid callback token", status_code=403)
    except Exception as e:
        logger.error(f"❌ XENDIT_WEBHOOK_FAILED: {e}", exc_info=True)
        return PlainTextResponse("Error updating database", status_code=500)

    return PlainTextResponse("Webhook received", status_code=200)
