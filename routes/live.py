"""100ms live session routes"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request

from routes.deps import get_services, read_json_body, require_fields

logger = logging.getLogger(__name__)

router = APIRouter(tags=["live"])


@router.post("/create-room")
async def create_room(request: Request, services=Depends(get_services)):
    try:
        data = await request.json()
    except Exception:
        data = {}
    if not isinstance(data, dict):
        data = {}

    try:
        room = await services.live.create_room(data.get("name"), data.get("description"))
    except Exception as e:
        logger.error(f"❌ CREATE_ROOM_FAILED: {e}")
        raise HTTPException(status_code=500, detail="Failed to create room")

    return {"roomId": room.get("id")}


@router.post("/get100msToken")
async def get_100ms_token(request: Request, services=Depends(get_services)):
    data = await read_json_body(request)
    require_fields(data, "roomId", "userId", "role")

    try:
        token = services.live.generate_app_token(data["roomId"], data["userId"], data["role"])
    except Exception as e:
        logger.error(f"❌ HMS_TOKEN_FAILED: {e}")
        raise HTTPException(status_code=500, detail="Failed to generate token")

    return {"token": token}
