"""
Notification Service - announcements and chat notifications

Pushes go out first (best effort), then the inbox records are written in a
single batch so every recipient sees the notification in-app even when the
push failed.
"""

import logging
from typing import Any, Dict, Optional

from firebase_admin import messaging

from models import NotificationType
from services.ledger_store import LedgerStore, Collection, SERVER_TIMESTAMP
from services.push_notification_service import PushNotificationService, PushNotificationError

logger = logging.getLogger(__name__)


class NoRecipients(Exception):
    """No user with a device token to notify"""
    pass


class RecipientNotFound(Exception):
    """Recipient user or their device token is missing"""
    pass


def build_announcement_message(
    token: str, title: str, body: str, sender_id: str, image_url: Optional[str] = None
) -> messaging.Message:
    data = {"type": NotificationType.ANNOUNCEMENT.value, "title": title, "body": body, "senderId": sender_id}
    if image_url:
        data["imageUrl"] = image_url

    return messaging.Message(
        token=token,
        notification=messaging.Notification(title=title, body=body, image=image_url),
        android=messaging.AndroidConfig(
            priority="high",
            notification=messaging.AndroidNotification(
                priority="high",
                default_sound=True,
                image=image_url,
            ),
        ),
        apns=messaging.APNSConfig(
            payload=messaging.APNSPayload(aps=messaging.Aps(sound="default", badge=1)),
            fcm_options=messaging.APNSFCMOptions(image=image_url) if image_url else None,
        ),
        data=data,
    )


def chat_title(sender_name: str) -> str:
    return f"New message from {sender_name}"


def build_chat_message(token: str, sender_name: str, message_text: str) -> messaging.Message:
    return messaging.Message(
        token=token,
        notification=messaging.Notification(title=chat_title(sender_name), body=message_text),
        data={
            "type": NotificationType.CHAT.value,
            "senderName": sender_name,
            "messageText": message_text,
        },
    )


class NotificationService:
    def __init__(self, store: LedgerStore, push: PushNotificationService):
        self.store = store
        self.push = push

    async def send_announcement(
        self, title: str, body: str, sender_id: str, image_url: Optional[str] = None
    ) -> Dict[str, Any]:
        """Broadcast to every user with a device token, except the sender"""
        recipients = await self.store.find_users_with_device_token(exclude_user_id=sender_id)
        if not recipients:
            raise NoRecipients("No recipients found")

        messages = [
            build_announcement_message(user.fcm_token, title, body, sender_id, image_url)
            for user in recipients
        ]

        sent, failed = 0, len(messages)
        try:
            result = await self.push.send_each(messages)
            sent, failed = result.success_count, result.failure_count
        except PushNotificationError as e:
            logger.error(f"❌ ANNOUNCEMENT_PUSH_FAILED: {e}")

        logger.info(f"📣 ANNOUNCEMENT_SENT: {sent}/{len(messages)} devices")

        batch = self.store.batch()
        for user in recipients:
            batch.create(
                Collection.NOTIFICATIONS,
                {
                    "user_id": user.id,
                    "title": title,
                    "body": body,
                    "image_url": image_url,
                    "type": NotificationType.ANNOUNCEMENT.value,
                    "sender_id": sender_id,
                    "created_at": SERVER_TIMESTAMP,
                    "is_read": False,
                },
            )
        await batch.commit()
        logger.info(f"ANNOUNCEMENT_STORED: {len(recipients)} inbox records")

        return {
            "success": True,
            "message": "Announcement sent",
            "sentTo": sent,
            "totalRecipients": len(messages),
            "failedCount": failed,
        }

    async def send_chat_notification(self, recipient_id: str, sender_name: str, message_text: str) -> Dict[str, Any]:
        recipient = await self.store.get_user(recipient_id)
        if recipient is None:
            raise RecipientNotFound("Recipient not found")
        if not recipient.fcm_token:
            raise RecipientNotFound("Recipient device token not found")

        await self.push.send(build_chat_message(recipient.fcm_token, sender_name, message_text))

        await self.store.add(
            Collection.NOTIFICATIONS,
            {
                "user_id": recipient_id,
                "title": chat_title(sender_name),
                "body": message_text,
                "type": NotificationType.CHAT.value,
                "sender_name": sender_name,
                "data": {"messageText": message_text},
                "created_at": SERVER_TIMESTAMP,
                "is_read": False,
            },
        )
        logger.info(f"💬 CHAT_NOTIFICATION_SENT: to {recipient_id}")
        return {"success": True, "message": "Notification sent and stored"}
