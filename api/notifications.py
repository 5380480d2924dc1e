# api/notifications.py
from __future__ import annotations

import logging
from typing import Any, Optional

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect, status
from pydantic import BaseModel

from core.errors import ServiceError
from core.notifier import ChangeNotifier, WebSocketListener, get_notifier
from telemetry.logger import sanitize

logger = logging.getLogger(__name__)

router = APIRouter(tags=["notifications"])

_ERRORS = {400: {"description": "Datos de entrada inválidos"}, 500: {"description": "Error interno del servidor"}}


# ----------------------------
# Requests / responses
# ----------------------------
class ChangeNotificationRequest(BaseModel):
    changeType: Optional[str] = None
    tableName: Optional[str] = None
    data: Any = None

class SendMessageRequest(BaseModel):
    message: Optional[str] = None
    data: Any = None

class ChangeNotificationResponse(BaseModel):
    message: str
    changeType: str
    tableName: str

class SendMessageResponse(BaseModel):
    message: str
    sentMessage: str


# ----------------------------
# Routes
# ----------------------------
@router.post("/notification/test", response_model=ChangeNotificationResponse, responses=_ERRORS)
async def test_notification(
    req: ChangeNotificationRequest,
    notifier: ChangeNotifier = Depends(get_notifier),
) -> ChangeNotificationResponse:
    """
    Simulate a database change and push it to every connected listener.

    Body: { "changeType": "INSERT", "tableName": "usuarios", "data": { "id": 1 } }
    """
    await notifier.broadcast(req.changeType, req.tableName, req.data)
    return ChangeNotificationResponse(
        message="Notificación enviada exitosamente a todos los clientes conectados.",
        changeType=sanitize(req.changeType).strip(),
        tableName=sanitize(req.tableName).strip(),
    )


@router.post("/notification/message", response_model=SendMessageResponse, responses=_ERRORS)
async def send_message(
    req: SendMessageRequest,
    notifier: ChangeNotifier = Depends(get_notifier),
) -> SendMessageResponse:
    await notifier.send_message(req.message, req.data)
    return SendMessageResponse(
        message="Mensaje enviado exitosamente a todos los clientes conectados.",
        sentMessage=sanitize(req.message).strip(),
    )


# ----------------------------
# Listener connections
# ----------------------------
@router.websocket("/hubs/notifications")
async def notifications_hub(websocket: WebSocket) -> None:
    app = websocket.app
    if app.state.settings.notify_require_auth:
        try:
            app.state.token_issuer.decode(websocket.query_params.get("access_token") or "")
        except ServiceError:
            await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
            return

    await websocket.accept()
    listener = WebSocketListener(websocket)
    registry = app.state.notifier.registry
    await registry.add(listener)
    logger.info("Listener connected: %r (%d connected)", listener, len(registry))
    try:
        while True:
            # Inbound text and binary frames are ignored; the socket is push-only
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                break
    except WebSocketDisconnect:
        pass
    finally:
        await registry.remove(listener)
        logger.info("Listener disconnected: %r (%d connected)", listener, len(registry))
