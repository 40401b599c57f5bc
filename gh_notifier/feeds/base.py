from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime


@dataclass
class FeedItem:
    id: str
    reason: str
    title: str
    subtitle: str
    target_url: str | None
    updated_at: datetime
    subject_type: str = ""
    raw_data: dict = field(default_factory=dict)


@dataclass
class FetchResult:
    items: list[FeedItem] = field(default_factory=list)
    not_modified: bool = False
    truncated: bool = False


class BaseFeed(ABC):
    @abstractmethod
    async def fetch(self) -> FetchResult:
        """Fetch the current unread items. Raises a FetchError subclass on failure."""
        raise NotImplementedError

    def seconds_until_allowed(self) -> float:
        return 0.0

    async def resolve_html_url(self, url: str) -> str:
        return url

    async def aclose(self) -> None:
        return None
