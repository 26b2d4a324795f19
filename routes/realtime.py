"""
WebSocket endpoints for import progress rooms.

Clients connect to receive importDataProgress / importDataComplete
events. Incoming messages are ignored; the socket stays in the room
until it disconnects.
"""

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
import structlog

from integrations.realtime import GLOBAL_IMPORT_ROOM, get_broadcaster, import_room

logger = structlog.get_logger(__name__)

router = APIRouter()


async def _hold(room: str, websocket: WebSocket) -> None:
    broadcaster = get_broadcaster()
    await broadcaster.join(room, websocket)
    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        logger.debug("websocket_disconnected", room=room)
    finally:
        broadcaster.leave(room, websocket)


@router.websocket("/ws/import-data")
async def all_import_events(websocket: WebSocket):
    """Events for every import job."""
    await _hold(GLOBAL_IMPORT_ROOM, websocket)


@router.websocket("/ws/import-data/{import_data_id}")
async def import_job_events(websocket: WebSocket, import_data_id: str):
    """Events for one import job."""
    await _hold(import_room(import_data_id), websocket)
