from __future__ import annotations

import asyncio
from dataclasses import dataclass
from enum import Enum
import logging
from typing import Awaitable, Callable

from .dispatcher import NotificationDispatcher
from .errors import AuthError, DispatchError, RateLimited, TransientError
from .feeds.base import BaseFeed
from .notifiers.base import ACTIVATED, CLOSED, LinkOpener, NotificationSurface
from .state import DedupTracker


class PollerState(Enum):
    IDLE = "idle"
    FETCHING = "fetching"
    SLEEPING = "sleeping"
    STOPPED = "stopped"


@dataclass
class PollSettings:
    poll_interval_seconds: float
    backoff_base_seconds: float
    backoff_max_seconds: float
    forget_read_items: bool = True


def backoff_delay(failures: int, base: float, maximum: float) -> float:
    if failures <= 0:
        return 0.0
    return min(base * (2 ** (failures - 1)), maximum)


class Poller:
    def __init__(
        self,
        feed: BaseFeed,
        tracker: DedupTracker,
        dispatcher: NotificationDispatcher,
        settings: PollSettings,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._feed = feed
        self._tracker = tracker
        self._dispatcher = dispatcher
        self._settings = settings
        self._sleep = sleep
        self._logger = logging.getLogger(__name__)
        self.state = PollerState.IDLE
        self.failures = 0

    async def run(self) -> None:
        """Poll until cancelled. AuthError stops the loop and is re-raised."""
        while True:
            delay = await self.run_once()
            self.state = PollerState.SLEEPING
            await self._sleep(delay)
            self.state = PollerState.IDLE

    async def run_once(self) -> float:
        """Run one fetch/filter/dispatch cycle and return the delay before the next one."""
        self.state = PollerState.FETCHING
        try:
            result = await self._feed.fetch()
        except AuthError:
            self.state = PollerState.STOPPED
            self._logger.error("Authentication failed; stopping")
            raise
        except RateLimited as exc:
            self._logger.warning("Rate limited by GitHub: %s", exc)
            delay = max(exc.retry_after, self._feed.seconds_until_allowed())
            if delay <= 0:
                delay = self._settings.poll_interval_seconds
            return delay
        except TransientError as exc:
            self.failures += 1
            delay = backoff_delay(
                self.failures, self._settings.backoff_base_seconds, self._settings.backoff_max_seconds
            )
            self._logger.warning(
                "Fetch failed (%s consecutive): %s; retrying in %.0fs", self.failures, exc, delay
            )
            return delay

        self.failures = 0
        if self._settings.forget_read_items and not (result.not_modified or result.truncated):
            evicted = self._tracker.retain(item.id for item in result.items)
            if evicted:
                self._logger.debug("Forgot %s notifications no longer unread", evicted)

        fresh = self._tracker.filter_new(result.items)
        for item in fresh:
            try:
                await self._dispatcher.dispatch(item)
            except DispatchError as exc:
                self._logger.error("Dropping notification %s: %s", item.id, exc)

        self._logger.debug("Poll complete: %s items, %s new", len(result.items), len(fresh))
        return max(self._settings.poll_interval_seconds, self._feed.seconds_until_allowed())


async def listen_for_activations(
    surface: NotificationSurface,
    dispatcher: NotificationDispatcher,
    opener: LinkOpener,
    resolve: Callable[[str], Awaitable[str]] | None = None,
) -> None:
    """Route surface events to the dispatcher and open links for clicked notifications."""
    logger = logging.getLogger(__name__)
    async for event in surface.events():
        if event.kind == CLOSED:
            await dispatcher.on_closed(event.handle)
            continue
        if event.kind != ACTIVATED:
            logger.debug("Ignoring %s event for %s", event.kind, event.handle)
            continue
        url = await dispatcher.on_activated(event.handle)
        if not url:
            continue
        try:
            if resolve is not None:
                url = await resolve(url)
            await opener.open(url)
        except Exception as exc:
            logger.error("Failed to open %s: %s", url, exc)
