from __future__ import annotations

import time
import unittest
from datetime import datetime, timedelta, timezone
from email.utils import format_datetime

import httpx

from gh_notifier.errors import AuthError, RateLimited, TransientError
from gh_notifier.feeds.github import (
    DEFAULT_RATE_LIMIT_WAIT,
    GitHubNotificationsFeed,
    GitHubSettings,
    api_to_web_url,
)


def _settings(max_pages: int = 5) -> GitHubSettings:
    return GitHubSettings(
        token="ghp_test",
        api_url="https://api.github.com/notifications",
        per_page=50,
        max_pages=max_pages,
        participating=False,
        timeout_seconds=5,
        user_agent="gh-notifier/test",
    )


def _entry(item_id: str, reason: str = "mention", latest_comment_url: str | None = None) -> dict:
    return {
        "id": item_id,
        "reason": reason,
        "updated_at": "2024-05-01T12:00:00Z",
        "repository": {"id": 1, "name": "repo", "full_name": "octo/repo"},
        "subject": {
            "title": f"Issue {item_id}",
            "url": f"https://api.github.com/repos/octo/repo/issues/{item_id}",
            "latest_comment_url": latest_comment_url,
            "type": "Issue",
        },
    }


class _Clock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


class GitHubFeedTests(unittest.IsolatedAsyncioTestCase):
    def _feed(self, handler, clock: _Clock | None = None, max_pages: int = 5) -> GitHubNotificationsFeed:
        self.requests: list[httpx.Request] = []

        def record(request: httpx.Request) -> httpx.Response:
            self.requests.append(request)
            return handler(request)

        client = httpx.AsyncClient(transport=httpx.MockTransport(record))
        self.addAsyncCleanup(client.aclose)
        return GitHubNotificationsFeed(_settings(max_pages), client=client, clock=clock or _Clock())

    async def test_fetch_parses_items_and_sends_auth_headers(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                200,
                json=[_entry("1", latest_comment_url="https://api.github.com/repos/octo/repo/issues/comments/9")],
                headers={"Last-Modified": "Wed, 01 May 2024 12:00:00 GMT", "X-Poll-Interval": "60"},
            )

        feed = self._feed(handler)
        result = await feed.fetch()

        self.assertFalse(result.not_modified)
        self.assertEqual(len(result.items), 1)
        item = result.items[0]
        self.assertEqual(item.id, "1")
        self.assertEqual(item.reason, "mention")
        self.assertEqual(item.subtitle, "octo/repo")
        self.assertEqual(item.subject_type, "Issue")
        self.assertEqual(item.target_url, "https://api.github.com/repos/octo/repo/issues/comments/9")
        self.assertEqual(item.updated_at.year, 2024)

        request = self.requests[0]
        self.assertEqual(request.headers["Authorization"], "Bearer ghp_test")
        self.assertEqual(request.headers["Accept"], "application/vnd.github+json")
        self.assertNotIn("If-Modified-Since", request.headers)
        self.assertEqual(feed.last_modified, "Wed, 01 May 2024 12:00:00 GMT")
        self.assertEqual(feed.seconds_until_allowed(), 60)

    async def test_subject_url_used_when_no_latest_comment(self) -> None:
        feed = self._feed(lambda request: httpx.Response(200, json=[_entry("5")]))
        result = await feed.fetch()
        self.assertEqual(result.items[0].target_url, "https://api.github.com/repos/octo/repo/issues/5")

    async def test_entries_without_id_are_skipped(self) -> None:
        feed = self._feed(lambda request: httpx.Response(200, json=[{"reason": "mention"}, _entry("2")]))
        result = await feed.fetch()
        self.assertEqual([item.id for item in result.items], ["2"])

    async def test_conditional_request_returns_not_modified(self) -> None:
        clock = _Clock()
        responses = [
            httpx.Response(
                200,
                json=[_entry("1")],
                headers={"Last-Modified": "Wed, 01 May 2024 12:00:00 GMT", "X-Poll-Interval": "60"},
            ),
            httpx.Response(304, headers={"X-Poll-Interval": "60"}),
        ]
        feed = self._feed(lambda request: responses.pop(0), clock=clock)

        await feed.fetch()
        clock.now += 61
        result = await feed.fetch()

        self.assertTrue(result.not_modified)
        self.assertEqual(result.items, [])
        self.assertEqual(self.requests[1].headers["If-Modified-Since"], "Wed, 01 May 2024 12:00:00 GMT")
        self.assertEqual(feed.last_modified, "Wed, 01 May 2024 12:00:00 GMT")

    async def test_fetch_refuses_before_poll_window(self) -> None:
        feed = self._feed(lambda request: httpx.Response(200, json=[], headers={"X-Poll-Interval": "60"}))
        await feed.fetch()
        with self.assertRaises(RateLimited) as ctx:
            await feed.fetch()
        self.assertEqual(ctx.exception.retry_after, 60)
        self.assertEqual(len(self.requests), 1)

    async def test_unauthorized_raises_auth_error(self) -> None:
        feed = self._feed(lambda request: httpx.Response(401, json={"message": "Bad credentials"}))
        with self.assertRaises(AuthError):
            await feed.fetch()

    async def test_forbidden_without_rate_limit_is_auth_error(self) -> None:
        feed = self._feed(lambda request: httpx.Response(403, json={"message": "Missing scope"}))
        with self.assertRaises(AuthError):
            await feed.fetch()

    async def test_retry_after_is_rate_limited(self) -> None:
        feed = self._feed(lambda request: httpx.Response(403, headers={"Retry-After": "120"}))
        with self.assertRaises(RateLimited) as ctx:
            await feed.fetch()
        self.assertEqual(ctx.exception.retry_after, 120)
        self.assertEqual(feed.seconds_until_allowed(), 120)

    async def test_exhausted_quota_waits_until_reset(self) -> None:
        reset = int(time.time()) + 300
        feed = self._feed(
            lambda request: httpx.Response(
                403,
                headers={"X-RateLimit-Remaining": "0", "X-RateLimit-Reset": str(reset)},
            )
        )
        with self.assertRaises(RateLimited) as ctx:
            await feed.fetch()
        self.assertAlmostEqual(ctx.exception.retry_after, 300, delta=5)

    async def test_server_error_is_transient(self) -> None:
        feed = self._feed(lambda request: httpx.Response(502))
        with self.assertRaises(TransientError):
            await feed.fetch()

    async def test_network_error_is_transient(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        feed = self._feed(handler)
        with self.assertRaises(TransientError):
            await feed.fetch()

    async def test_invalid_json_is_transient(self) -> None:
        feed = self._feed(lambda request: httpx.Response(200, content=b"<html>"))
        with self.assertRaises(TransientError):
            await feed.fetch()

    async def test_follows_next_page_links(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.params.get("page") == "2":
                return httpx.Response(200, json=[_entry("2")])
            return httpx.Response(
                200,
                json=[_entry("1")],
                headers={"Link": '<https://api.github.com/notifications?page=2>; rel="next"'},
            )

        feed = self._feed(handler)
        result = await feed.fetch()
        self.assertEqual([item.id for item in result.items], ["1", "2"])
        self.assertEqual(len(self.requests), 2)
        self.assertFalse(result.truncated)

    async def test_page_limit_is_respected(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                200,
                json=[_entry("1")],
                headers={"Link": '<https://api.github.com/notifications?page=2>; rel="next"'},
            )

        feed = self._feed(handler, max_pages=1)
        result = await feed.fetch()
        self.assertEqual(len(self.requests), 1)
        self.assertTrue(result.truncated)

    async def test_failed_later_page_does_not_commit_validator(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            if "If-Modified-Since" in request.headers:
                return httpx.Response(304)
            if request.url.params.get("page") == "2":
                return httpx.Response(502)
            return httpx.Response(
                200,
                json=[_entry("1")],
                headers={
                    "Last-Modified": "Wed, 01 May 2024 12:00:00 GMT",
                    "Link": '<https://api.github.com/notifications?page=2>; rel="next"',
                },
            )

        feed = self._feed(handler)
        with self.assertRaises(TransientError):
            await feed.fetch()
        self.assertIsNone(feed.last_modified)

        with self.assertRaises(TransientError):
            await feed.fetch()
        self.assertNotIn("If-Modified-Since", self.requests[2].headers)

    async def test_undecodable_first_page_does_not_commit_validator(self) -> None:
        responses = [
            httpx.Response(200, content=b"<html>", headers={"Last-Modified": "Wed, 01 May 2024 12:00:00 GMT"}),
            httpx.Response(200, json=[_entry("1")]),
        ]
        feed = self._feed(lambda request: responses.pop(0))
        with self.assertRaises(TransientError):
            await feed.fetch()

        result = await feed.fetch()

        self.assertNotIn("If-Modified-Since", self.requests[1].headers)
        self.assertEqual([item.id for item in result.items], ["1"])

    async def test_retry_after_http_date(self) -> None:
        retry_at = format_datetime(datetime.now(timezone.utc) + timedelta(seconds=120), usegmt=True)
        feed = self._feed(lambda request: httpx.Response(429, headers={"Retry-After": retry_at}))
        with self.assertRaises(RateLimited) as ctx:
            await feed.fetch()
        self.assertAlmostEqual(ctx.exception.retry_after, 120, delta=5)
        self.assertGreater(feed.seconds_until_allowed(), 100)

    async def test_retry_after_in_the_past_still_waits(self) -> None:
        retry_at = format_datetime(datetime.now(timezone.utc) - timedelta(seconds=30), usegmt=True)
        feed = self._feed(lambda request: httpx.Response(403, headers={"Retry-After": retry_at}))
        with self.assertRaises(RateLimited) as ctx:
            await feed.fetch()
        self.assertEqual(ctx.exception.retry_after, DEFAULT_RATE_LIMIT_WAIT)

    async def test_skewed_reset_time_still_waits(self) -> None:
        reset = int(time.time()) - 600
        feed = self._feed(
            lambda request: httpx.Response(
                403,
                headers={"X-RateLimit-Remaining": "0", "X-RateLimit-Reset": str(reset)},
            )
        )
        with self.assertRaises(RateLimited) as ctx:
            await feed.fetch()
        self.assertEqual(ctx.exception.retry_after, DEFAULT_RATE_LIMIT_WAIT)
        self.assertEqual(feed.seconds_until_allowed(), DEFAULT_RATE_LIMIT_WAIT)

    async def test_resolve_html_url(self) -> None:
        feed = self._feed(
            lambda request: httpx.Response(200, json={"html_url": "https://github.com/octo/repo/pull/7"})
        )
        url = await feed.resolve_html_url("https://api.github.com/repos/octo/repo/pulls/7")
        self.assertEqual(url, "https://github.com/octo/repo/pull/7")

    async def test_resolve_html_url_falls_back_on_error(self) -> None:
        feed = self._feed(lambda request: httpx.Response(404))
        url = await feed.resolve_html_url("https://api.github.com/repos/octo/repo/pulls/7")
        self.assertEqual(url, "https://github.com/octo/repo/pull/7")


class ApiToWebUrlTests(unittest.TestCase):
    def test_pull_request(self) -> None:
        self.assertEqual(
            api_to_web_url("https://api.github.com/repos/octo/repo/pulls/12"),
            "https://github.com/octo/repo/pull/12",
        )

    def test_commit(self) -> None:
        self.assertEqual(
            api_to_web_url("https://api.github.com/repos/octo/repo/commits/abc123"),
            "https://github.com/octo/repo/commit/abc123",
        )

    def test_release(self) -> None:
        self.assertEqual(
            api_to_web_url("https://api.github.com/repos/octo/repo/releases/99"),
            "https://github.com/octo/repo/releases",
        )

    def test_enterprise_host(self) -> None:
        self.assertEqual(
            api_to_web_url("https://ghe.example.com/api/v3/repos/octo/repo/issues/3"),
            "https://ghe.example.com/octo/repo/issues/3",
        )

    def test_web_url_is_unchanged(self) -> None:
        self.assertEqual(api_to_web_url("https://github.com/octo/repo"), "https://github.com/octo/repo")
