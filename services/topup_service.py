"""
Saldo Top-Up Service

Creates Xendit invoices for balance top-ups and credits the user when the
invoice is paid. Two paths can observe the payment, the Xendit webhook and
client polling through check_invoice. Both go through _credit_once, where the
invoice's credited_at precondition guarantees a single saldo increment.
"""

import logging
import time
from decimal import Decimal
from typing import Any, Callable, Dict, Optional

from config import Config
from models import Invoice, InvoiceStatus
from services.ledger_store import LedgerStore, Collection, SERVER_TIMESTAMP, PreconditionFailed
from services.xendit_service import XenditService
from utils.decimal_precision import MonetaryDecimal
from utils.shared_token import verify_shared_token

logger = logging.getLogger(__name__)

TOPUP_PREFIX = "topup-"


class InvoiceNotFound(Exception):
    def __init__(self, external_id: str):
        self.external_id = external_id
        super().__init__(f"Invoice {external_id} not found")


class InvalidCallbackToken(Exception):
    """Webhook x-callback-token did not match the configured token"""
    pass


class TopUpService:
    def __init__(
        self,
        store: LedgerStore,
        xendit: XenditService,
        webhook_token: Optional[str] = None,
        success_redirect_url: Optional[str] = None,
        clock_ms: Callable[[], int] = lambda: int(time.time() * 1000),
    ):
        self.store = store
        self.xendit = xendit
        self.webhook_token = webhook_token
        self.success_redirect_url = success_redirect_url or Config.TOPUP_SUCCESS_REDIRECT_URL
        self.clock_ms = clock_ms

    @staticmethod
    def build_external_id(user_id: str, epoch_ms: int) -> str:
        return f"{TOPUP_PREFIX}{user_id}-{epoch_ms}"

    async def create_invoice(self, amount: Decimal, user_id: str, email: str) -> Dict[str, Any]:
        external_id = self.build_external_id(user_id, self.clock_ms())
        amount = MonetaryDecimal.quantize_idr(amount)

        xendit_invoice = await self.xendit.create_invoice(
            external_id=external_id,
            amount=amount,
            payer_email=email,
            description=f"Saldo top-up for user {user_id}",
            success_redirect_url=self.success_redirect_url,
        )

        batch = self.store.batch()
        batch.create(
            Collection.INVOICES,
            {
                "user_id": user_id,
                "amount": amount,
                "status": InvoiceStatus.PENDING.value,
                "xendit_invoice_id": xendit_invoice.get("id"),
                "created_at": SERVER_TIMESTAMP,
            },
            doc_id=external_id,
        )
        await batch.commit()

        logger.info(f"🧾 TOPUP_INVOICE_CREATED: {external_id} for user {user_id}, amount {amount}")
        return {"invoiceUrl": xendit_invoice.get("invoice_url"), "externalId": external_id}

    async def check_invoice(self, external_id: str) -> Dict[str, Any]:
        """Return the invoice status, polling Xendit when it is not yet paid"""
        invoice = await self.store.get_invoice(external_id)
        if invoice is None:
            raise InvoiceNotFound(external_id)

        if invoice.status == InvoiceStatus.PAID.value:
            return {"status": InvoiceStatus.PAID.value}

        if not invoice.xendit_invoice_id:
            logger.warning(f"⚠️ CHECK_INVOICE_NO_GATEWAY_ID: {external_id} has no Xendit invoice id, returning stored status")
            return {"status": invoice.status}

        xendit_invoice = await self.xendit.get_invoice(invoice.xendit_invoice_id)
        status = xendit_invoice.get("status") or invoice.status

        if status in InvoiceStatus.paid_values():
            paid_amount = MonetaryDecimal.to_decimal(xendit_invoice.get("paid_amount"), "xendit_paid_amount")
            await self._credit_once(invoice, status, paid_amount, source="CHECK_INVOICE")
        else:
            batch = self.store.batch()
            batch.update(Collection.INVOICES, external_id, {"status": status, "updated_at": SERVER_TIMESTAMP})
            await batch.commit()

        return {"status": status}

    async def handle_webhook(self, payload: Dict[str, Any], callback_token: Optional[str]) -> Dict[str, Any]:
        if not verify_shared_token(self.webhook_token, callback_token):
            logger.warning("🚫 XENDIT_WEBHOOK_REJECTED: invalid callback token")
            raise InvalidCallbackToken("Invalid callback token")

        status = payload.get("status")
        external_id = payload.get("external_id") or ""
        logger.info(f"📥 XENDIT_WEBHOOK: external_id={external_id} status={status}")

        if status != InvoiceStatus.PAID.value or not external_id.startswith(TOPUP_PREFIX):
            return {"processed": False}

        invoice = await self.store.get_invoice(external_id)
        if invoice is None:
            logger.warning(f"⚠️ XENDIT_WEBHOOK_UNKNOWN_INVOICE: {external_id}")
            return {"processed": False}

        paid_amount = MonetaryDecimal.to_decimal(
            payload.get("paid_amount") or payload.get("amount"), "xendit_webhook_amount"
        )
        credited = await self._credit_once(invoice, InvoiceStatus.PAID.value, paid_amount, source="WEBHOOK")
        return {"processed": True, "credited": credited}

    async def _credit_once(self, invoice: Invoice, status: str, paid_amount: Decimal, source: str) -> bool:
        """Mark the invoice paid and credit saldo, unless a previous call already did"""
        amount = paid_amount if paid_amount > Decimal("0") else MonetaryDecimal.to_decimal(invoice.amount)

        batch = self.store.batch()
        batch.update(
            Collection.INVOICES,
            invoice.id,
            {
                "status": status,
                "paid_amount": amount,
                "paid_at": SERVER_TIMESTAMP,
                "credited_at": SERVER_TIMESTAMP,
                "updated_at": SERVER_TIMESTAMP,
            },
            expect={"credited_at": None},
        )
        batch.increment(Collection.USERS, invoice.user_id, "saldo", amount)

        try:
            await batch.commit()
        except PreconditionFailed:
            logger.info(f"{source}_ALREADY_CREDITED: {invoice.id}")
            status_batch = self.store.batch()
            status_batch.update(Collection.INVOICES, invoice.id, {"status": status, "updated_at": SERVER_TIMESTAMP})
            await status_batch.commit()
            return False

        logger.info(f"💰 {source}_CREDITED: user {invoice.user_id} saldo +{amount} ({invoice.id})")
        return True
