from __future__ import annotations

import asyncio
import logging
from typing import Hashable

from .errors import DispatchError
from .feeds.base import FeedItem
from .notifiers.base import NotificationSurface
from .notifiers.message import build_notification_message


class NotificationDispatcher:
    """Turns feed items into desktop notifications and maps clicks back to links.

    Surfaces deliver events for a handle only after ``show`` has returned it,
    and the map entry is written before ``dispatch`` yields again, so an
    activation is never resolved before its entry exists. The lock guards the
    map only; a slow ``show`` does not hold up activations of earlier
    notifications.
    """

    def __init__(self, surface: NotificationSurface) -> None:
        self._surface = surface
        self._logger = logging.getLogger(__name__)
        self._lock = asyncio.Lock()
        self._links: dict[Hashable, str] = {}

    async def dispatch(self, item: FeedItem) -> Hashable:
        message = build_notification_message(item)
        try:
            handle = await self._surface.show(message)
        except DispatchError:
            raise
        except Exception as exc:
            raise DispatchError(f"Notification surface failed: {exc}") from exc
        async with self._lock:
            if message.url:
                self._links[handle] = message.url
            else:
                self._links.pop(handle, None)
        self._logger.info("Notified %s (%s)", item.id, message.title)
        return handle

    async def on_activated(self, handle: Hashable) -> str | None:
        async with self._lock:
            url = self._links.pop(handle, None)
        if url is None:
            self._logger.debug("Ignoring activation for unknown notification %s", handle)
        return url

    async def on_closed(self, handle: Hashable) -> None:
        async with self._lock:
            self._links.pop(handle, None)

    def pending(self) -> int:
        return len(self._links)
