"""Push notification routes - announcements and chat messages"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request

from routes.deps import get_services, read_json_body, require_fields
from services.notification_service import NoRecipients, RecipientNotFound

logger = logging.getLogger(__name__)

router = APIRouter(tags=["notifications"])


@router.post("/send-announcement")
async def send_announcement(request: Request, services=Depends(get_services)):
    data = await read_json_body(request)
    require_fields(data, "title", "body", "senderId")

    try:
        return await services.notifications.send_announcement(
            title=data["title"],
            body=data["body"],
            sender_id=data["senderId"],
            image_url=data.get("imageUrl") or None,
        )
    except NoRecipients:
        raise HTTPException(status_code=404, detail="No recipients found")
    except Exception as e:
        logger.error(f"❌ ANNOUNCEMENT_FAILED: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to send announcement")


@router.post("/sendNotification")
async def send_notification(request: Request, services=Depends(get_services)):
    data = await read_json_body(request)
    require_fields(data, "recipientId", "senderName", "messageText")

    try:
        return await services.notifications.send_chat_notification(
            recipient_id=data["recipientId"],
            sender_name=data["senderName"],
            message_text=data["messageText"],
        )
    except RecipientNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except Exception as e:
        logger.error(f"❌ CHAT_NOTIFICATION_FAILED: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to send notification")
