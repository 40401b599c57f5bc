from __future__ import annotations

import logging
import shutil

from .base import LinkOpener, NotificationSurface
from .desktop import DesktopSettings, NotifySendSurface
from .opener import XdgOpenLinkOpener
from ..config import Config


def build_surface(config: Config) -> NotificationSurface:
    desktop = config.desktop
    if shutil.which(desktop.notify_send) is None:
        logging.getLogger(__name__).warning(
            "%s not found on PATH; notifications will fail until it is installed", desktop.notify_send
        )
    return NotifySendSurface(
        DesktopSettings(
            app_name=desktop.app_name,
            notify_send=desktop.notify_send,
            urgency=desktop.urgency,
        )
    )


def build_opener(config: Config) -> LinkOpener:
    return XdgOpenLinkOpener(config.desktop.opener)
