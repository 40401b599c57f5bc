from __future__ import annotations

import asyncio
import logging

from .base import LinkOpener


class XdgOpenLinkOpener(LinkOpener):
    def __init__(self, command: str = "xdg-open") -> None:
        self._command = command
        self._logger = logging.getLogger(__name__)

    async def open(self, url: str) -> bool:
        try:
            process = await asyncio.create_subprocess_exec(
                self._command,
                url,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            self._logger.error("Cannot run %s: %s", self._command, exc)
            return False

        _, stderr = await process.communicate()
        if process.returncode != 0:
            self._logger.error(
                "%s %s failed with status %s: %s",
                self._command,
                url,
                process.returncode,
                stderr.decode("utf-8", errors="replace").strip(),
            )
            return False
        self._logger.info("Opened %s", url)
        return True
