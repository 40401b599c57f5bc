from __future__ import annotations

from dataclasses import dataclass
import os
from typing import Any

import yaml


DEFAULT_API_URL = "https://api.github.com/notifications"
MIN_POLL_INTERVAL_SECONDS = 10
URGENCIES = {"low", "normal", "critical"}


@dataclass
class GitHubConfig:
    token: str
    api_url: str
    per_page: int
    max_pages: int
    participating: bool


@dataclass
class Settings:
    poll_interval_seconds: int
    backoff_base_seconds: int
    backoff_max_seconds: int
    forget_read_items: bool
    request_timeout_seconds: int
    user_agent: str


@dataclass
class DesktopConfig:
    app_name: str
    notify_send: str
    opener: str
    urgency: str


@dataclass
class Config:
    github: GitHubConfig
    settings: Settings
    desktop: DesktopConfig


def _expand_env(value: Any) -> Any:
    if isinstance(value, str):
        return os.path.expandvars(value)
    if isinstance(value, list):
        return [_expand_env(item) for item in value]
    if isinstance(value, dict):
        return {key: _expand_env(val) for key, val in value.items()}
    return value


def _require_dict(value: Any, name: str) -> dict[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ValueError(f"{name} must be a mapping")
    return value


def _int(raw: dict[str, Any], key: str, default: int, name: str) -> int:
    value = raw.get(key, default)
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValueError(f"{name}.{key} must be an integer")


def load_config(path: str | None) -> Config:
    raw: Any = {}
    if path and os.path.exists(path):
        with open(path, "r", encoding="utf-8") as handle:
            raw = yaml.safe_load(handle) or {}

    data = _expand_env(raw)
    if not isinstance(data, dict):
        raise ValueError("Config root must be a mapping")

    return Config(
        github=_load_github(_require_dict(data.get("github"), "github")),
        settings=_load_settings(_require_dict(data.get("settings"), "settings")),
        desktop=_load_desktop(_require_dict(data.get("desktop"), "desktop")),
    )


def _load_github(raw: dict[str, Any]) -> GitHubConfig:
    token = _normalize_token(raw.get("token")) or _normalize_token(os.environ.get("GITHUB_TOKEN")) or ""
    per_page = _int(raw, "per_page", 50, "github")
    if not 1 <= per_page <= 50:
        raise ValueError("github.per_page must be between 1 and 50")
    max_pages = _int(raw, "max_pages", 5, "github")
    if max_pages < 1:
        raise ValueError("github.max_pages must be >= 1")
    api_url = str(raw.get("api_url") or DEFAULT_API_URL)
    if not (api_url.startswith("http://") or api_url.startswith("https://")):
        raise ValueError("github.api_url must be an http(s) URL")
    return GitHubConfig(
        token=token,
        api_url=api_url,
        per_page=per_page,
        max_pages=max_pages,
        participating=bool(raw.get("participating", False)),
    )


def _load_settings(raw: dict[str, Any]) -> Settings:
    poll_interval = _int(raw, "poll_interval_seconds", 60, "settings")
    if poll_interval < MIN_POLL_INTERVAL_SECONDS:
        raise ValueError(f"settings.poll_interval_seconds must be >= {MIN_POLL_INTERVAL_SECONDS}")
    backoff_base = _int(raw, "backoff_base_seconds", 30, "settings")
    backoff_max = _int(raw, "backoff_max_seconds", 900, "settings")
    if backoff_base <= 0:
        raise ValueError("settings.backoff_base_seconds must be > 0")
    if backoff_max < backoff_base:
        raise ValueError("settings.backoff_max_seconds must be >= settings.backoff_base_seconds")
    return Settings(
        poll_interval_seconds=poll_interval,
        backoff_base_seconds=backoff_base,
        backoff_max_seconds=backoff_max,
        forget_read_items=bool(raw.get("forget_read_items", True)),
        request_timeout_seconds=_int(raw, "request_timeout_seconds", 20, "settings"),
        user_agent=str(raw.get("user_agent", "gh-notifier/0.1")),
    )


def _load_desktop(raw: dict[str, Any]) -> DesktopConfig:
    urgency = str(raw.get("urgency", "normal")).lower()
    if urgency not in URGENCIES:
        raise ValueError("desktop.urgency must be 'low', 'normal' or 'critical'")
    return DesktopConfig(
        app_name=str(raw.get("app_name", "GitHub")),
        notify_send=str(raw.get("notify_send", "notify-send")),
        opener=str(raw.get("opener", "xdg-open")),
        urgency=urgency,
    )


def _normalize_token(value: Any) -> str | None:
    if not value or not isinstance(value, str):
        return None
    value = value.strip()
    if not value or "${" in value or value.startswith("$"):
        return None
    return value
