import logging
from typing import Optional

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect, status

from .. import deps
from ..auth import user_for_token
from ..notifier import connection_manager

logger = logging.getLogger(__name__)

router = APIRouter()


@router.websocket("/stock")
async def stock_updates(websocket: WebSocket, token: Optional[str] = Query(None)) -> None:
    """Stream ``stockUpdate`` events. Requires an active user's bearer token as ``?token=``."""

    user = None
    if token:
        async with deps.SessionLocal() as session:
            user = await user_for_token(session, token)
    if user is None or not user.active:
        logger.warning("Stock websocket rejected: no valid token for an active user")
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return
    if not await connection_manager.connect(websocket):
        return
    try:
        while True:
            data = await websocket.receive_text()
            if data == "ping":
                await websocket.send_text("pong")
    except WebSocketDisconnect:
        connection_manager.disconnect(websocket)
    except Exception:
        logger.exception("Stock websocket error")
        connection_manager.disconnect(websocket)
