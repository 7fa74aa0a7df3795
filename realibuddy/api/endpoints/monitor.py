"""Websocket endpoint for live monitoring and claim checks."""

import json
import logging

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect

from ...domain.models.messages import ErrorMessage, ServerMessage
from ...infrastructure.dependencies import ServiceContainer, get_service_container

logger = logging.getLogger(__name__)

router = APIRouter(tags=["monitor"])


@router.websocket("/ws")
async def monitor_socket(
    websocket: WebSocket,
    container: ServiceContainer = Depends(get_service_container),
):
    """One client connection.

    Text frames carry JSON commands; binary frames carry audio for the open
    transcription stream. Every outbound message is a JSON notification.
    """
    await websocket.accept()
    logger.info("🔌 Client connected")

    async def notify(message: ServerMessage) -> None:
        await websocket.send_json(message.to_wire())

    try:
        orchestrator = container.create_orchestrator(notify)
    except RuntimeError as e:
        logger.error(f"❌ Cannot serve connection: {e}")
        await notify(ErrorMessage(message=f"Service unavailable: {e}"))
        await websocket.close(code=1011)
        return

    await orchestrator.send_safety_status()

    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                break

            if message.get("bytes") is not None:
                await orchestrator.send_audio(message["bytes"])
                continue

            text = message.get("text")
            if text is None:
                continue
            try:
                payload = json.loads(text)
            except json.JSONDecodeError:
                logger.warning("⚠️ Received non-JSON text frame")
                await notify(ErrorMessage(message="Invalid JSON message"))
                continue
            await orchestrator.handle_command(payload)
    except WebSocketDisconnect:
        pass
    finally:
        await orchestrator.close()
        logger.info("🔌 Client disconnected")
