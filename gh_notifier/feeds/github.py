from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
import logging
import time
from typing import Any, Callable
from urllib.parse import urlsplit

import httpx

from .base import BaseFeed, FeedItem, FetchResult
from ..errors import AuthError, FetchError, RateLimited, TransientError


GITHUB_NOTIFICATIONS_ENDPOINT = "https://api.github.com/notifications"
GITHUB_API_VERSION = "2022-11-28"
DEFAULT_RATE_LIMIT_WAIT = 60.0


@dataclass
class GitHubSettings:
    token: str
    api_url: str
    per_page: int
    max_pages: int
    participating: bool
    timeout_seconds: int
    user_agent: str


class GitHubNotificationsFeed(BaseFeed):
    """Conditional, rate-limit aware client for the unread notifications endpoint.

    The client owns the caching state: the last ``Last-Modified`` validator and
    the monotonic time before which no new request may be sent.
    """

    def __init__(
        self,
        settings: GitHubSettings,
        client: httpx.AsyncClient | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._settings = settings
        self._client = client or httpx.AsyncClient(timeout=settings.timeout_seconds)
        self._clock = clock
        self._logger = logging.getLogger(__name__)
        self._last_modified: str | None = None
        self._next_allowed_at = 0.0

    @property
    def last_modified(self) -> str | None:
        return self._last_modified

    def seconds_until_allowed(self) -> float:
        return max(0.0, self._next_allowed_at - self._clock())

    async def fetch(self) -> FetchResult:
        wait = self.seconds_until_allowed()
        if wait > 0:
            raise RateLimited(wait, f"Next poll not allowed for another {wait:.0f}s")

        headers = self._headers()
        if self._last_modified:
            headers["If-Modified-Since"] = self._last_modified
        params: dict[str, Any] = {"per_page": min(self._settings.per_page, 50)}
        if self._settings.participating:
            params["participating"] = "true"

        response = await self._get(self._settings.api_url, headers=headers, params=params)
        self._record_poll_window(response)
        if response.status_code == 304:
            self._logger.debug("Notifications not modified since %s", self._last_modified)
            return FetchResult(items=[], not_modified=True)
        _raise_for_status(response)

        last_modified = response.headers.get("Last-Modified")
        items = _parse_items(_decode_list(response))
        next_url = _next_link(response)
        page = 1
        while next_url and page < self._settings.max_pages:
            response = await self._get(next_url, headers=self._headers())
            self._record_poll_window(response)
            _raise_for_status(response)
            items.extend(_parse_items(_decode_list(response)))
            next_url = _next_link(response)
            page += 1
        truncated = next_url is not None
        if truncated:
            self._logger.warning("Stopped after %s pages of notifications", page)

        if last_modified:
            self._last_modified = last_modified
        self._logger.debug("Fetched %s unread notifications", len(items))
        return FetchResult(items=items, not_modified=False, truncated=truncated)

    async def resolve_html_url(self, url: str) -> str:
        """Return the browser URL for a subject or comment API URL."""
        try:
            response = await self._get(url, headers=self._headers())
            _raise_for_status(response)
            payload = response.json()
        except (FetchError, ValueError) as exc:
            self._logger.warning("Could not resolve %s: %s", url, exc)
            return api_to_web_url(url)
        html_url = payload.get("html_url") if isinstance(payload, dict) else None
        if not html_url:
            return api_to_web_url(url)
        return str(html_url)

    async def aclose(self) -> None:
        await self._client.aclose()

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self._settings.token}",
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": GITHUB_API_VERSION,
            "User-Agent": self._settings.user_agent,
        }

    async def _get(self, url: str, headers: dict[str, str], params: dict[str, Any] | None = None) -> httpx.Response:
        try:
            return await self._client.get(url, headers=headers, params=params)
        except httpx.TimeoutException as exc:
            raise TransientError(f"Request to {url} timed out") from exc
        except httpx.HTTPError as exc:
            raise TransientError(f"Request to {url} failed: {exc}") from exc

    def _record_poll_window(self, response: httpx.Response) -> None:
        waits = [_header_seconds(response, "X-Poll-Interval")]
        limit_wait = _rate_limit_wait(response)
        if limit_wait is not None:
            waits.append(limit_wait)
        wait = max(waits)
        if wait > 0:
            self._next_allowed_at = max(self._next_allowed_at, self._clock() + wait)


def _raise_for_status(response: httpx.Response) -> None:
    status = response.status_code
    if 200 <= status < 300:
        return
    if status == 401:
        raise AuthError("GitHub rejected the token (401 Unauthorized)")
    if status in (403, 429):
        wait = _rate_limit_wait(response)
        if wait is not None:
            raise RateLimited(wait)
        if status == 429 or "rate limit" in response.text.lower():
            raise RateLimited(DEFAULT_RATE_LIMIT_WAIT)
        raise AuthError("GitHub refused access (403); the token needs the notifications scope")
    if status >= 500:
        raise TransientError(f"GitHub returned {status}")
    raise TransientError(f"Unexpected status {status} from GitHub")


def _rate_limit_wait(response: httpx.Response) -> float | None:
    retry_after = response.headers.get("Retry-After")
    if retry_after is not None:
        wait = _retry_after_seconds(retry_after)
    elif response.headers.get("X-RateLimit-Remaining") == "0":
        reset = _header_seconds(response, "X-RateLimit-Reset")
        wait = reset - time.time() if reset else 0.0
    else:
        return None
    # Past reset times (clock skew) and unparseable hints still mean "wait".
    if wait <= 0:
        return DEFAULT_RATE_LIMIT_WAIT
    return wait


def _retry_after_seconds(value: str) -> float:
    try:
        return float(value)
    except ValueError:
        pass
    try:
        retry_at = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return 0.0
    if retry_at.tzinfo is None:
        retry_at = retry_at.replace(tzinfo=timezone.utc)
    return (retry_at - datetime.now(timezone.utc)).total_seconds()


def _header_seconds(response: httpx.Response, name: str) -> float:
    value = response.headers.get(name)
    if not value:
        return 0.0
    try:
        return max(0.0, float(value))
    except ValueError:
        return 0.0


def _decode_list(response: httpx.Response) -> list[dict[str, Any]]:
    try:
        payload = response.json()
    except ValueError as exc:
        raise TransientError("GitHub returned a body that is not JSON") from exc
    if not isinstance(payload, list):
        raise TransientError("GitHub returned an unexpected notifications payload")
    return payload


def _next_link(response: httpx.Response) -> str | None:
    link = response.links.get("next")
    if not link:
        return None
    return link.get("url")


def _parse_items(entries: list[dict[str, Any]]) -> list[FeedItem]:
    logger = logging.getLogger(__name__)
    results: list[FeedItem] = []
    for entry in entries:
        if not isinstance(entry, dict) or not entry.get("id"):
            logger.warning("Skipping notification without id")
            continue
        subject = entry.get("subject") or {}
        repository = entry.get("repository") or {}
        target_url = subject.get("latest_comment_url") or subject.get("url") or None
        results.append(
            FeedItem(
                id=str(entry["id"]),
                reason=str(entry.get("reason") or "unknown"),
                title=str(subject.get("title") or ""),
                subtitle=str(repository.get("full_name") or repository.get("name") or ""),
                target_url=target_url,
                updated_at=_parse_datetime(entry.get("updated_at")),
                subject_type=str(subject.get("type") or ""),
                raw_data=entry,
            )
        )
    return results


def _parse_datetime(value: str | None) -> datetime:
    if not value:
        return datetime.now(timezone.utc)
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        return datetime.now(timezone.utc)
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed


def api_to_web_url(url: str) -> str:
    """Best-effort mapping of a REST API URL to the page a browser should open."""
    parts = urlsplit(url)
    path = parts.path
    if parts.netloc.startswith("api."):
        host = parts.netloc[len("api."):]
    elif path.startswith("/api/v3/"):
        host = parts.netloc
        path = path[len("/api/v3"):]
    else:
        return url
    if not path.startswith("/repos/"):
        return f"{parts.scheme}://{host}"

    segments = [segment for segment in path[len("/repos/"):].split("/") if segment]
    if len(segments) < 2:
        return f"{parts.scheme}://{host}"
    base = f"{parts.scheme}://{host}/{segments[0]}/{segments[1]}"
    kind = segments[2] if len(segments) > 2 else ""
    rest = segments[3:]
    if kind == "pulls" and rest and rest[0] != "comments":
        return f"{base}/pull/{rest[0]}"
    if kind == "issues" and rest and rest[0] != "comments":
        return f"{base}/issues/{rest[0]}"
    if kind == "commits" and rest:
        return f"{base}/commit/{rest[0]}"
    if kind == "releases":
        return f"{base}/releases"
    if kind == "discussions" and rest:
        return f"{base}/discussions/{rest[0]}"
    if kind in {"issues", "pulls"}:
        return f"{base}/{kind}"
    return base
