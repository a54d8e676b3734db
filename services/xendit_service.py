"""Xendit Invoice API Service"""

import logging
from decimal import Decimal
from typing import Any, Dict, Optional

import aiohttp

from config import Config

logger = logging.getLogger(__name__)


class XenditAPIError(Exception):
    """Custom exception for Xendit API errors"""

    def __init__(self, message: str, status: Optional[int] = None):
        self.status = status
        super().__init__(message)


class XenditService:
    """Thin client for the Xendit v2 invoice endpoints"""

    def __init__(
        self,
        secret_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: int = 30,
    ):
        self.secret_key = secret_key if secret_key is not None else Config.XENDIT_SECRET_KEY
        self.base_url = (base_url or Config.XENDIT_BASE_URL).rstrip("/")
        self.timeout = aiohttp.ClientTimeout(total=timeout)

        if not self.secret_key:
            logger.warning("XENDIT_SECRET_KEY not configured - invoice API will not function")

    def _auth(self) -> aiohttp.BasicAuth:
        # Xendit authenticates with the secret key as username and an empty password
        return aiohttp.BasicAuth(self.secret_key or "", "")

    async def create_invoice(
        self,
        external_id: str,
        amount: Decimal,
        payer_email: str,
        description: str,
        success_redirect_url: Optional[str] = None,
    ) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "external_id": external_id,
            "amount": float(amount),
            "payer_email": payer_email,
            "description": description,
        }
        if success_redirect_url:
            payload["success_redirect_url"] = success_redirect_url

        data = await self._request("POST", "/v2/invoices", json=payload)
        logger.info(f"🧾 XENDIT_INVOICE_CREATED: {external_id} -> {data.get('id')}")
        return data

    async def get_invoice(self, invoice_id: str) -> Dict[str, Any]:
        return await self._request("GET", f"/v2/invoices/{invoice_id}")

    async def _request(self, method: str, path: str, json: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        url = f"{self.base_url}{path}"
        try:
            async with aiohttp.ClientSession(timeout=self.timeout) as session:
                async with session.request(method, url, json=json, auth=self._auth()) as response:
                    if response.status in (200, 201):
                        return await response.json()

                    error_text = await response.text()
                    logger.error(f"Xendit API error: {method} {path} -> {response.status} - {error_text[:200]}")
                    raise XenditAPIError(f"Xendit API error: {response.status}", status=response.status)
        except aiohttp.ClientError as e:
            logger.error(f"Network error connecting to Xendit: {e}")
            raise XenditAPIError(f"Network error: {e}")
