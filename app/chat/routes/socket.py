import structlog
from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from app.chat.realtime.connections import ChatConnection
from app.chat.realtime.gateway import AUTH_FAILED_CLOSE_CODE, SessionGateway
from app.chat.runtime import get_runtime

logger = structlog.get_logger(__name__)

router = APIRouter()


@router.websocket("/ws")
async def chat_socket(websocket: WebSocket) -> None:
    # Auth happens in-band with an ``auth`` frame, not on the handshake
    await websocket.accept()
    runtime = get_runtime()
    connection = ChatConnection(websocket.send_json)
    connection.start()
    gateway = SessionGateway(runtime, connection)
    keep_open = True

    try:
        while keep_open:
            raw = await websocket.receive_text()
            keep_open = await gateway.handle_text(raw)
    except WebSocketDisconnect:
        logger.info("ws_client_disconnected", connection_id=connection.id)
    finally:
        await gateway.disconnect()

    if not keep_open:
        await websocket.close(code=AUTH_FAILED_CLOSE_CODE)
