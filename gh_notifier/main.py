from __future__ import annotations

import argparse
import asyncio
from datetime import datetime, timezone
import logging
from pathlib import Path
import signal

from .config import Config, load_config
from .dispatcher import NotificationDispatcher
from .errors import AuthError, DispatchError
from .feeds.base import FeedItem
from .feeds.github import GitHubNotificationsFeed, GitHubSettings
from .notifiers.factory import build_opener, build_surface
from .poller import Poller, PollSettings, listen_for_activations
from .state import DedupTracker


async def main() -> None:
    args = _parse_args()
    if args.init_config:
        _init_config(Path(args.config))
        return
    _configure_logging(args.verbose)
    config = load_config(args.config)
    if not config.github.token:
        raise SystemExit("A GitHub token is required: set github.token in the config or GITHUB_TOKEN")

    surface = build_surface(config)
    dispatcher = NotificationDispatcher(surface)

    if args.test_notify:
        try:
            await dispatcher.dispatch(_build_test_item())
        except DispatchError as exc:
            raise SystemExit(f"Test notification failed: {exc}")
        finally:
            await surface.aclose()
        return

    feed = _build_feed(config)
    poller = Poller(feed, DedupTracker(), dispatcher, _poll_settings(config))
    logger = logging.getLogger(__name__)
    logger.info("Notifier started, polling every %ss", config.settings.poll_interval_seconds)
    try:
        if args.once:
            await poller.run_once()
        else:
            await _run_until_stopped(poller, surface, dispatcher, build_opener(config), feed)
    except AuthError as exc:
        logger.error("Stopping: %s", exc)
        raise SystemExit(1)
    finally:
        await surface.aclose()
        await feed.aclose()


async def _run_until_stopped(poller, surface, dispatcher, opener, feed) -> None:
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for signum in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(signum, stop.set)
        except NotImplementedError:
            pass

    try:
        await _wait_for_first(poller, surface, dispatcher, opener, feed, stop)
    finally:
        for signum in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.remove_signal_handler(signum)
            except NotImplementedError:
                pass
    logging.getLogger(__name__).info("Notifier stopped")


async def _wait_for_first(poller, surface, dispatcher, opener, feed, stop: asyncio.Event) -> None:
    tasks = {
        asyncio.create_task(poller.run(), name="poller"),
        asyncio.create_task(
            listen_for_activations(surface, dispatcher, opener, feed.resolve_html_url),
            name="activations",
        ),
    }
    stop_task = asyncio.create_task(stop.wait(), name="stop")
    done, pending = await asyncio.wait(tasks | {stop_task}, return_when=asyncio.FIRST_COMPLETED)
    for task in pending:
        task.cancel()
    await asyncio.gather(*pending, return_exceptions=True)
    for task in done:
        if task is not stop_task:
            task.result()


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="GitHub notifications on the Linux desktop")
    parser.add_argument("--config", default="./config.yaml")
    parser.add_argument("--once", action="store_true", help="Poll once and exit")
    parser.add_argument("--verbose", action="store_true")
    parser.add_argument("--init-config", action="store_true", help="Create a config.yaml template and exit")
    parser.add_argument("--test-notify", action="store_true", help="Show a test notification and exit")
    return parser.parse_args()


def _configure_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(message)s")
    logging.getLogger("httpx").setLevel(logging.WARNING)


def _build_feed(config: Config) -> GitHubNotificationsFeed:
    return GitHubNotificationsFeed(
        GitHubSettings(
            token=config.github.token,
            api_url=config.github.api_url,
            per_page=config.github.per_page,
            max_pages=config.github.max_pages,
            participating=config.github.participating,
            timeout_seconds=config.settings.request_timeout_seconds,
            user_agent=config.settings.user_agent,
        )
    )


def _poll_settings(config: Config) -> PollSettings:
    return PollSettings(
        poll_interval_seconds=config.settings.poll_interval_seconds,
        backoff_base_seconds=config.settings.backoff_base_seconds,
        backoff_max_seconds=config.settings.backoff_max_seconds,
        forget_read_items=config.settings.forget_read_items,
    )


def _init_config(target: Path) -> None:
    if target.exists():
        raise SystemExit(f"Config already exists at {target}")
    template = Path(__file__).resolve().parent / "config.example.yaml"
    if not template.exists():
        raise SystemExit("config.example.yaml not found")
    target.write_text(template.read_text(encoding="utf-8"), encoding="utf-8")
    print(f"Wrote config template to {target}")


def _build_test_item() -> FeedItem:
    now = datetime.now(timezone.utc)
    return FeedItem(
        id=f"test:{int(now.timestamp())}",
        reason="manual",
        title="gh-notifier test notification",
        subtitle="axelkar/gh-notifier",
        target_url=None,
        updated_at=now,
        subject_type="Test",
    )


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()
