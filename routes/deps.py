"""FastAPI dependencies shared by the routers"""

from fastapi import HTTPException, Request


def get_services(request: Request):
    """Service container built at startup (api_server.AppServices)"""
    return request.app.state.services


async def read_json_body(request: Request) -> dict:
    try:
        data = await request.json()
    except Exception:
        raise HTTPException(status_code=400, detail="Invalid JSON body")
    if not isinstance(data, dict):
        raise HTTPException(status_code=400, detail="JSON object expected")
    return data


def require_fields(data: dict, *names: str):
    """400 unless every named field is present and truthy"""
    missing = [name for name in names if not data.get(name)]
    if missing:
        raise HTTPException(status_code=400, detail=f"Missing required parameters: {', '.join(missing)}")
