"""
Realtime pub/sub rooms for import progress.

Clients join a room over a WebSocket; the import processor emits events
into rooms from its worker thread. Delivery is best-effort: a failed
send drops that socket from the room and never reaches the caller.

Rooms:
    import-data              every import event
    import-data-<job id>     events for one import job
"""

import asyncio
import threading
from typing import Any, Callable, Optional

import structlog
from fastapi import WebSocket

logger = structlog.get_logger(__name__)

IMPORT_PROGRESS_EVENT = "importDataProgress"
IMPORT_COMPLETE_EVENT = "importDataComplete"

GLOBAL_IMPORT_ROOM = "import-data"

Listener = Callable[[str, str, dict[str, Any]], None]


def import_room(import_data_id: str) -> str:
    """Room name for one import job."""
    return f"{GLOBAL_IMPORT_ROOM}-{import_data_id}"


class RoomBroadcaster:
    """In-process room registry with thread-safe emit."""

    def __init__(self):
        self._rooms: dict[str, set[WebSocket]] = {}
        self._listeners: list[Listener] = []
        self._lock = threading.Lock()
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    # ===================
    # MEMBERSHIP
    # ===================

    async def join(self, room: str, websocket: WebSocket) -> None:
        """Accept a socket and add it to a room."""
        await websocket.accept()
        self._loop = asyncio.get_running_loop()
        with self._lock:
            self._rooms.setdefault(room, set()).add(websocket)
        logger.info("room_joined", room=room, members=self.member_count(room))

    def leave(self, room: str, websocket: WebSocket) -> None:
        with self._lock:
            members = self._rooms.get(room)
            if members is None:
                return
            members.discard(websocket)
            if not members:
                del self._rooms[room]
        logger.info("room_left", room=room)

    def member_count(self, room: str) -> int:
        with self._lock:
            return len(self._rooms.get(room, ()))

    def add_listener(self, listener: Listener) -> None:
        """Register an in-process callback receiving (event, room, payload)."""
        with self._lock:
            self._listeners.append(listener)

    def remove_listener(self, listener: Listener) -> None:
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    # ===================
    # EMIT
    # ===================

    def emit(self, event: str, payload: dict[str, Any], room: Optional[str] = None) -> None:
        """
        Publish an event to a room (and the global room).

        Safe to call from any thread.
        """
        rooms = [GLOBAL_IMPORT_ROOM] if room is None else [room, GLOBAL_IMPORT_ROOM]

        with self._lock:
            listeners = list(self._listeners)
            sockets = {ws for name in rooms for ws in self._rooms.get(name, ())}

        for listener in listeners:
            try:
                listener(event, room or GLOBAL_IMPORT_ROOM, payload)
            except Exception as e:
                logger.warning("room_listener_failed", event_name=event, error=str(e))

        if not sockets:
            return

        message = {"event": event, "data": payload}
        loop = self._loop
        if loop is None or loop.is_closed():
            logger.debug("room_emit_no_loop", event_name=event)
            return

        for websocket in sockets:
            future = asyncio.run_coroutine_threadsafe(websocket.send_json(message), loop)
            future.add_done_callback(self._drop_on_failure(websocket))

    def _drop_on_failure(self, websocket: WebSocket):
        def _callback(future):
            if future.cancelled():
                return
            error = future.exception()
            if error is None:
                return
            logger.warning("room_send_failed", error=str(error))
            with self._lock:
                for name in list(self._rooms):
                    self._rooms[name].discard(websocket)
                    if not self._rooms[name]:
                        del self._rooms[name]
        return _callback


# Singleton instance
_broadcaster: Optional[RoomBroadcaster] = None


def get_broadcaster() -> RoomBroadcaster:
    """Get or create the process-wide RoomBroadcaster."""
    global _broadcaster
    if _broadcaster is None:
        _broadcaster = RoomBroadcaster()
    return _broadcaster
