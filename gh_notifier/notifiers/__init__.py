from .base import ACTIVATED, CLOSED, LinkOpener, NotificationSurface, SurfaceEvent
from .message import NotificationMessage, build_notification_message

__all__ = [
    "ACTIVATED",
    "CLOSED",
    "LinkOpener",
    "NotificationMessage",
    "NotificationSurface",
    "SurfaceEvent",
    "build_notification_message",
]
