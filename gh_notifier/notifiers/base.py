from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import AsyncIterator, Hashable

from .message import NotificationMessage


ACTIVATED = "activated"
CLOSED = "closed"


@dataclass(frozen=True)
class SurfaceEvent:
    handle: Hashable
    kind: str


class NotificationSurface(ABC):
    @abstractmethod
    async def show(self, message: NotificationMessage) -> Hashable:
        """Display the notification and return its handle. Raises DispatchError on failure.

        Events for the handle must not be delivered before this returns.
        """
        raise NotImplementedError

    @abstractmethod
    def events(self) -> AsyncIterator[SurfaceEvent]:
        """Yield activation and close events for shown notifications."""
        raise NotImplementedError

    async def aclose(self) -> None:
        return None


class LinkOpener(ABC):
    @abstractmethod
    async def open(self, url: str) -> bool:
        """Open the URL. Returns True if the opener reported success."""
        raise NotImplementedError
