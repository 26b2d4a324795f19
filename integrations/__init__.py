"""
External integrations: outbound webhook and realtime rooms.
"""

from integrations.webhook import WebhookNotifier, get_webhook_notifier, build_webhook_body
from integrations.realtime import (
    RoomBroadcaster,
    get_broadcaster,
    import_room,
    IMPORT_PROGRESS_EVENT,
    IMPORT_COMPLETE_EVENT,
    GLOBAL_IMPORT_ROOM,
)

__all__ = [
    "WebhookNotifier",
    "get_webhook_notifier",
    "build_webhook_body",
    "RoomBroadcaster",
    "get_broadcaster",
    "import_room",
    "IMPORT_PROGRESS_EVENT",
    "IMPORT_COMPLETE_EVENT",
    "GLOBAL_IMPORT_ROOM",
]
