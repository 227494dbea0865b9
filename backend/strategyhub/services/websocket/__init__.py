# WebSocket Services
from .router import (
    NotificationRouter,
    notification_router,
    get_notification_router,
    server_message,
)

__all__ = [
    "NotificationRouter",
    "notification_router",
    "get_notification_router",
    "server_message",
]
