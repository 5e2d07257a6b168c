"""Live trade update fan-out to WebSocket subscribers.

Delivery is at-most-once with no replay: a subscriber that connects after a
publish sees nothing until the next one. Sends run concurrently with a
per-subscriber timeout so one slow client cannot hold up the rest; any
subscriber that is not connected or fails a send is dropped.
"""

import asyncio
import json
import logging

from fastapi.websockets import WebSocketState
from sqlalchemy.exc import SQLAlchemyError

from airtrack.config import settings
from airtrack.models.trade import ACTIVE_STATUSES
from airtrack.schemas.trade import to_client_trades

logger = logging.getLogger(__name__)

TRADE_UPDATE = "tradeUpdate"


class Broadcaster:
    """Registry of live subscribers plus best-effort publishing."""

    def __init__(self, send_timeout: float = 5.0):
        self.send_timeout = send_timeout
        self._subscribers: set = set()

    def add(self, websocket):
        self._subscribers.add(websocket)
        logger.info(f"Subscriber connected ({len(self._subscribers)} live)")

    def remove(self, websocket):
        if websocket in self._subscribers:
            self._subscribers.discard(websocket)
            logger.info(f"Subscriber removed ({len(self._subscribers)} live)")

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    async def publish(self, event: dict) -> int:
        """Send ``event`` to every connected subscriber. Returns the delivery count."""
        if not self._subscribers:
            return 0
        message = json.dumps(event)
        targets = list(self._subscribers)
        results = await asyncio.gather(*(self._send(ws, message) for ws in targets))
        return sum(1 for ok in results if ok)

    async def _send(self, websocket, message: str) -> bool:
        if (
            websocket.client_state != WebSocketState.CONNECTED
            or websocket.application_state != WebSocketState.CONNECTED
        ):
            self.remove(websocket)
            return False
        try:
            await asyncio.wait_for(websocket.send_text(message), timeout=self.send_timeout)
            return True
        except asyncio.TimeoutError:
            logger.warning("Dropping subscriber: send timed out")
        except Exception as e:
            logger.warning(f"Dropping subscriber: send failed: {e}")
        self.remove(websocket)
        return False

    async def broadcast_active_trades(self, store) -> int:
        """Publish the current OPEN and PENDING trades as a ``tradeUpdate`` event."""
        try:
            trades = store.find_many(ACTIVE_STATUSES)
        except SQLAlchemyError as e:
            logger.error(f"Broadcast skipped, could not load active trades: {e}")
            return 0
        return await self.publish({"type": TRADE_UPDATE, "payload": to_client_trades(trades)})


_broadcaster: Broadcaster | None = None


def get_broadcaster() -> Broadcaster:
    """Get the process-wide broadcaster, creating it on first use."""
    global _broadcaster
    if _broadcaster is None:
        _broadcaster = Broadcaster(send_timeout=settings.broadcast_send_timeout_seconds)
    return _broadcaster
