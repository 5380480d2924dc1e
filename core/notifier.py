# core/notifier.py
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Protocol, Set

from fastapi import Request, WebSocket

from core.errors import validation_error
from telemetry.logger import sanitize

logger = logging.getLogger(__name__)

DATABASE_CHANGED = "DatabaseChanged"
RECEIVE_MESSAGE = "ReceiveMessage"


class Listener(Protocol):
    """Anything that can receive a broadcast frame."""

    async def send(self, frame: Dict[str, Any]) -> None: ...


class WebSocketListener:
    def __init__(self, websocket: WebSocket):
        self.websocket = websocket

    async def send(self, frame: Dict[str, Any]) -> None:
        await self.websocket.send_json(frame)

    def __repr__(self) -> str:
        client = self.websocket.client
        return f"WebSocketListener({client.host}:{client.port})" if client else "WebSocketListener()"


@dataclass
class ChangeEvent:
    change_type: str
    table_name: str
    payload: Any = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_frame(self) -> Dict[str, Any]:
        return {
            "event": DATABASE_CHANGED,
            "data": {
                "changeType": self.change_type,
                "tableName": self.table_name,
                "timestamp": self.timestamp.isoformat(),
                "data": self.payload,
            },
        }


class ListenerRegistry:
    """
    Process-local set of connected listeners.

    Connects, disconnects and broadcasts all run concurrently on the event
    loop; every access goes through the lock and broadcasts iterate over a
    snapshot.
    """

    def __init__(self):
        self._listeners: Set[Listener] = set()
        self._lock = asyncio.Lock()

    async def add(self, listener: Listener) -> None:
        async with self._lock:
            self._listeners.add(listener)

    async def remove(self, listener: Listener) -> None:
        async with self._lock:
            self._listeners.discard(listener)

    async def snapshot(self) -> List[Listener]:
        async with self._lock:
            return list(self._listeners)

    def __len__(self) -> int:
        return len(self._listeners)


class ChangeNotifier:
    """
    Best-effort fan-out of change events and messages to every listener.

    A listener that raises or does not answer within `send_timeout` is
    logged and skipped; the caller never sees its failure.
    """

    def __init__(self, registry: ListenerRegistry, send_timeout: float = 5.0):
        self.registry = registry
        self.send_timeout = send_timeout

    async def broadcast(self, change_type: Optional[str], table_name: Optional[str], payload: Any = None) -> int:
        # Blank check runs on the sanitized text so control-only values are rejected
        change_type, table_name = sanitize(change_type).strip(), sanitize(table_name).strip()
        if not change_type or not table_name:
            raise validation_error("changeType y tableName son requeridos.")

        event = ChangeEvent(change_type, table_name, payload)
        delivered = await self._fan_out(event.to_frame())
        logger.info(
            "Notification sent: %s on table %s (%d listeners)",
            event.change_type,
            event.table_name,
            delivered,
        )
        return delivered

    async def send_message(self, message: Optional[str], payload: Any = None) -> int:
        clean = sanitize(message).strip()
        if not clean:
            raise validation_error("message es requerido.")

        frame = {
            "event": RECEIVE_MESSAGE,
            "data": {
                "message": clean,
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "data": payload,
            },
        }
        delivered = await self._fan_out(frame)
        logger.info("Message sent to all listeners: %s (%d listeners)", clean, delivered)
        return delivered

    async def _deliver(self, listener: Listener, frame: Dict[str, Any]) -> None:
        await asyncio.wait_for(listener.send(frame), timeout=self.send_timeout)

    async def _fan_out(self, frame: Dict[str, Any]) -> int:
        listeners = await self.registry.snapshot()
        if not listeners:
            return 0

        results = await asyncio.gather(
            *(self._deliver(listener, frame) for listener in listeners),
            return_exceptions=True,
        )
        delivered = 0
        for listener, result in zip(listeners, results):
            if isinstance(result, BaseException):
                logger.warning("Delivery to %r failed: %r", listener, result)
            else:
                delivered += 1
        return delivered


def get_notifier(request: Request) -> ChangeNotifier:
    return request.app.state.notifier
