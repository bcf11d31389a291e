"""Twilio bidirectional media stream endpoint."""
import logging
from typing import Callable

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect
from starlette.websockets import WebSocketState

from app.services.call_session.manager import CallSessionCoordinator

router = APIRouter()
logger = logging.getLogger(__name__)


def create_coordinator(websocket: WebSocket) -> CallSessionCoordinator:
    """Build the coordinator for one media stream connection."""

    def is_open() -> bool:
        return (
            websocket.client_state == WebSocketState.CONNECTED
            and websocket.application_state == WebSocketState.CONNECTED
        )

    return CallSessionCoordinator(send=websocket.send_text, is_open=is_open)


def get_coordinator_factory() -> Callable[[WebSocket], CallSessionCoordinator]:
    """Dependency returning the coordinator factory."""
    return create_coordinator


@router.websocket("/stream")
async def media_stream(
    websocket: WebSocket,
    coordinator_factory: Callable[[WebSocket], CallSessionCoordinator] = Depends(get_coordinator_factory),
):
    """
    Media stream from Twilio ``<Connect><Stream>``.

    Message format from Twilio:
    - {"event": "connected", ...}
    - {"event": "start", "start": {"streamSid": "...", "customParameters": {"caller": "..."}}}
    - {"event": "media", "media": {"payload": "base64 mu-law"}}
    - {"event": "stop", ...}
    """
    await websocket.accept()
    client = websocket.client.host if websocket.client else "unknown"
    logger.info(f"[STREAM] Websocket connected - Client: {client}")

    coordinator = coordinator_factory(websocket)
    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                raise WebSocketDisconnect(message.get("code", 1000))
            # binary frames are not part of the protocol; the coordinator drops them
            await coordinator.handle_message(message.get("text") or message.get("bytes") or "")
    except WebSocketDisconnect as e:
        logger.info(
            f"[STREAM] Websocket disconnected - Session: {coordinator.session.session_id}, Code: {e.code}"
        )
    except Exception as e:
        logger.error(
            f"[STREAM] Websocket error - Session: {coordinator.session.session_id}, "
            f"Error: {type(e).__name__}: {e}",
            exc_info=True,
        )
    finally:
        await coordinator.close()
