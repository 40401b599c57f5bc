from __future__ import annotations

import asyncio
from dataclasses import dataclass
import logging
from typing import AsyncIterator

from .base import ACTIVATED, CLOSED, NotificationSurface, SurfaceEvent
from .message import NotificationMessage
from ..errors import DispatchError


DEFAULT_ACTION = "default"


@dataclass
class DesktopSettings:
    app_name: str
    notify_send: str
    urgency: str


class NotifySendSurface(NotificationSurface):
    """Shows notifications through libnotify's ``notify-send``.

    Click-enabled notifications keep their ``notify-send --wait`` process
    alive; a watcher task turns the printed action (or the process exit)
    into a SurfaceEvent.
    """

    def __init__(self, settings: DesktopSettings) -> None:
        self._settings = settings
        self._logger = logging.getLogger(__name__)
        self._queue: asyncio.Queue[SurfaceEvent] = asyncio.Queue()
        self._watchers: set[asyncio.Task] = set()

    async def show(self, message: NotificationMessage) -> int:
        args = [
            self._settings.notify_send,
            "--print-id",
            f"--app-name={self._settings.app_name}",
            f"--urgency={self._settings.urgency}",
        ]
        if message.url:
            args += ["--wait", f"--action={DEFAULT_ACTION}=Open"]
        args += ["--", message.title, message.body]

        try:
            process = await asyncio.create_subprocess_exec(
                *args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            raise DispatchError(f"Cannot run {self._settings.notify_send}: {exc}") from exc

        if not message.url:
            stdout, stderr = await process.communicate()
            if process.returncode != 0:
                raise DispatchError(_failure(process.returncode, stderr))
            return _parse_handle(stdout.splitlines()[0] if stdout else b"")

        line = await process.stdout.readline()
        if not line:
            stderr = await process.stderr.read()
            returncode = await process.wait()
            raise DispatchError(_failure(returncode, stderr))
        handle = _parse_handle(line)

        task = asyncio.create_task(self._watch(handle, process))
        self._watchers.add(task)
        task.add_done_callback(self._watchers.discard)
        return handle

    async def events(self) -> AsyncIterator[SurfaceEvent]:
        while True:
            yield await self._queue.get()

    async def aclose(self) -> None:
        for task in list(self._watchers):
            task.cancel()
        await asyncio.gather(*self._watchers, return_exceptions=True)

    async def _watch(self, handle: int, process: asyncio.subprocess.Process) -> None:
        try:
            line = await process.stdout.readline()
            await process.wait()
        except asyncio.CancelledError:
            if process.returncode is None:
                process.terminate()
            raise
        action = line.decode("utf-8", errors="replace").strip()
        kind = ACTIVATED if action == DEFAULT_ACTION else CLOSED
        self._logger.debug("Notification %s %s", handle, kind)
        await self._queue.put(SurfaceEvent(handle=handle, kind=kind))


def _parse_handle(line: bytes) -> int:
    text = line.decode("utf-8", errors="replace").strip()
    try:
        return int(text)
    except ValueError:
        raise DispatchError(f"notify-send printed an unexpected id: {text!r}")


def _failure(returncode: int | None, stderr: bytes) -> str:
    detail = stderr.decode("utf-8", errors="replace").strip()
    return f"notify-send exited with {returncode}: {detail or 'no output'}"
