"""
Push Notification Service - Firebase Cloud Messaging through firebase-admin

Authenticates with a service account, so access tokens are minted and
refreshed by the SDK. Delivery is best effort: failures are logged and
counted, never retried.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import List, Optional

import firebase_admin
from firebase_admin import credentials, exceptions, messaging

from config import Config

logger = logging.getLogger(__name__)

FIREBASE_APP_NAME = "jastip-push"
TOKEN_URI = "https://oauth2.googleapis.com/token"
# FCM accepts at most 500 messages per send_each call
MAX_BATCH_SIZE = 500


class PushNotificationError(Exception):
    """Custom exception for FCM errors"""
    pass


@dataclass
class SendResult:
    token: str
    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None


@dataclass
class BatchSendResult:
    results: List[SendResult] = field(default_factory=list)

    @property
    def success_count(self) -> int:
        return sum(1 for r in self.results if r.success)

    @property
    def failure_count(self) -> int:
        return len(self.results) - self.success_count


class PushNotificationService:
    """Sends FCM messages; the firebase app is initialized on first use"""

    def __init__(
        self,
        project_id: Optional[str] = None,
        client_email: Optional[str] = None,
        private_key: Optional[str] = None,
        max_batch_size: Optional[int] = None,
        app: Optional[firebase_admin.App] = None,
    ):
        self.project_id = project_id if project_id is not None else Config.FIREBASE_PROJECT_ID
        self.client_email = client_email if client_email is not None else Config.FIREBASE_CLIENT_EMAIL
        self.private_key = private_key if private_key is not None else Config.FIREBASE_PRIVATE_KEY
        self.max_batch_size = min(max_batch_size or Config.FCM_MAX_BATCH_SIZE, MAX_BATCH_SIZE)
        self._app = app

        if app is None and not (self.project_id and self.client_email and self.private_key):
            logger.warning("Firebase service account not configured - push notifications will not be delivered")

    def _get_app(self) -> firebase_admin.App:
        if self._app is not None:
            return self._app

        if not (self.project_id and self.client_email and self.private_key):
            raise PushNotificationError("FCM is not configured")

        try:
            self._app = firebase_admin.get_app(FIREBASE_APP_NAME)
            return self._app
        except ValueError:
            pass

        try:
            cred = credentials.Certificate({
                "type": "service_account",
                "project_id": self.project_id,
                "client_email": self.client_email,
                "private_key": self.private_key,
                "token_uri": TOKEN_URI,
            })
        except ValueError as e:
            raise PushNotificationError(f"Invalid Firebase service account: {e}") from e

        self._app = firebase_admin.initialize_app(cred, {"projectId": self.project_id}, name=FIREBASE_APP_NAME)
        logger.info(f"🔥 Firebase app initialized for project {self.project_id}")
        return self._app

    async def send(self, message: messaging.Message) -> str:
        """Send one message; returns the FCM message id"""
        app = self._get_app()
        try:
            return await asyncio.to_thread(messaging.send, message, app=app)
        except exceptions.FirebaseError as e:
            logger.error(f"FCM send failed: {e}")
            raise PushNotificationError(f"FCM error: {e}") from e

    async def send_each(self, messages: List[messaging.Message]) -> BatchSendResult:
        """
        Send messages independently in chunks of max_batch_size.

        One failed message does not affect the rest; a failed chunk marks
        every message in it as failed and the next chunk is still sent.
        """
        batch = BatchSendResult()
        if not messages:
            return batch

        app = self._get_app()
        for start in range(0, len(messages), self.max_batch_size):
            chunk = messages[start:start + self.max_batch_size]
            try:
                response = await asyncio.to_thread(messaging.send_each, chunk, app=app)
            except exceptions.FirebaseError as e:
                logger.error(f"❌ FCM_BATCH_FAILED: {len(chunk)} messages: {e}")
                batch.results.extend(SendResult(token=m.token or "", success=False, error=str(e)) for m in chunk)
                continue

            for message, outcome in zip(chunk, response.responses):
                token = message.token or ""
                if outcome.success:
                    batch.results.append(SendResult(token=token, success=True, message_id=outcome.message_id))
                else:
                    logger.warning(f"⚠️ FCM_SEND_FAILED: token {token[:12]}...: {outcome.exception}")
                    batch.results.append(SendResult(token=token, success=False, error=str(outcome.exception)))

        return batch
