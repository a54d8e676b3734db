"""100ms Live Session Service - room creation and auth tokens for live shopping"""

import logging
import time
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import aiohttp
from jose import jwt

from config import Config

logger = logging.getLogger(__name__)

ALGORITHM = "HS256"
MANAGEMENT_TOKEN_TTL_SECONDS = 24 * 3600
APP_TOKEN_TTL_SECONDS = 24 * 3600


class LiveSessionAPIError(Exception):
    """Custom exception for 100ms API errors"""
    pass


class HmsService:
    """Creates 100ms rooms and signs room join tokens"""

    def __init__(
        self,
        access_key: Optional[str] = None,
        app_secret: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: int = 30,
    ):
        self.access_key = access_key if access_key is not None else Config.HMS_ACCESS_KEY
        self.app_secret = app_secret if app_secret is not None else Config.HMS_APP_SECRET
        self.base_url = (base_url or Config.HMS_API_BASE_URL).rstrip("/")
        self.timeout = aiohttp.ClientTimeout(total=timeout)

        if not self.access_key or not self.app_secret:
            logger.warning("100ms credentials not configured - live sessions will not function")

    def _sign(self, claims: Dict[str, Any], ttl_seconds: int) -> str:
        if not self.access_key or not self.app_secret:
            raise LiveSessionAPIError("100ms credentials are not configured")

        now = int(time.time())
        payload = {
            "access_key": self.access_key,
            "version": 2,
            "jti": str(uuid.uuid4()),
            "iat": now,
            "nbf": now,
            "exp": now + ttl_seconds,
            **claims,
        }
        return jwt.encode(payload, self.app_secret, algorithm=ALGORITHM)

    def generate_management_token(self) -> str:
        return self._sign({"type": "management"}, MANAGEMENT_TOKEN_TTL_SECONDS)

    def generate_app_token(self, room_id: str, user_id: str, role: str) -> str:
        """Token a client uses to join ``room_id`` as ``user_id`` with ``role``"""
        token = self._sign(
            {"type": "app", "room_id": room_id, "user_id": user_id, "role": role},
            APP_TOKEN_TTL_SECONDS,
        )
        logger.info(f"🎟️ HMS_TOKEN: user {user_id} role {role} room {room_id}")
        return token

    async def create_room(self, name: Optional[str] = None, description: Optional[str] = None) -> Dict[str, Any]:
        payload = {
            "name": name or f"Live Jastip - {datetime.now(timezone.utc).isoformat()}",
            "description": description or "New live shopping session",
        }
        headers = {
            "Authorization": f"Bearer {self.generate_management_token()}",
            "Content-Type": "application/json",
        }

        try:
            async with aiohttp.ClientSession(timeout=self.timeout) as session:
                async with session.post(f"{self.base_url}/rooms", json=payload, headers=headers) as response:
                    if response.status in (200, 201):
                        data = await response.json()
                        logger.info(f"🎥 HMS_ROOM_CREATED: {data.get('id')}")
                        return data

                    error_text = await response.text()
                    logger.error(f"100ms room creation error: {response.status} - {error_text[:200]}")
                    raise LiveSessionAPIError(f"Room creation failed: {response.status}")
        except aiohttp.ClientError as e:
            logger.error(f"Network error connecting to 100ms: {e}")
            raise LiveSessionAPIError(f"Network error: {e}")
