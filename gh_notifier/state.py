from __future__ import annotations

from typing import Iterable

from .feeds.base import FeedItem


class DedupTracker:
    """Remembers which notification ids were already surfaced by this process.

    Nothing is persisted: after a restart every unread item is new again.
    ``retain`` bounds the set to what the feed still reports as unread.
    """

    def __init__(self) -> None:
        self._seen: set[str] = set()

    def __len__(self) -> int:
        return len(self._seen)

    def __contains__(self, item_id: object) -> bool:
        return item_id in self._seen

    def filter_new(self, items: Iterable[FeedItem]) -> list[FeedItem]:
        fresh: list[FeedItem] = []
        for item in items:
            if item.id in self._seen:
                continue
            self.mark_seen(item.id)
            fresh.append(item)
        return fresh

    def mark_seen(self, item_id: str) -> None:
        self._seen.add(item_id)

    def was_seen(self, item_id: str) -> bool:
        return item_id in self._seen

    def retain(self, item_ids: Iterable[str]) -> int:
        """Forget ids the feed no longer reports. Returns how many were evicted."""
        keep = self._seen.intersection(item_ids)
        evicted = len(self._seen) - len(keep)
        self._seen = keep
        return evicted
