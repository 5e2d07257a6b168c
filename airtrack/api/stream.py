"""Live trade updates over WebSocket."""

import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from airtrack.services.broadcaster import get_broadcaster

logger = logging.getLogger(__name__)

router = APIRouter(tags=["stream"])


@router.websocket("/ws")
async def trade_stream(websocket: WebSocket):
    """Subscribe to ``tradeUpdate`` events.

    Nothing is sent on connect; the first message arrives with the next
    publish. Incoming messages are ignored.
    """
    await websocket.accept()
    broadcaster = get_broadcaster()
    broadcaster.add(websocket)
    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        pass
    except Exception as e:
        logger.warning(f"WebSocket stream error: {e}")
    finally:
        broadcaster.remove(websocket)
