from __future__ import annotations


class NotifierError(Exception):
    """Base class for errors raised by the notifier core."""


class FetchError(NotifierError):
    pass


class AuthError(FetchError):
    """The token was rejected. Not retried; the process must be restarted with a valid token."""


class TransientError(FetchError):
    """Network failure, timeout or server fault. Safe to retry."""


class RateLimited(FetchError):
    def __init__(self, retry_after: float, message: str | None = None) -> None:
        self.retry_after = max(0.0, float(retry_after))
        super().__init__(message or f"Rate limited; retry in {self.retry_after:.0f}s")


class DispatchError(NotifierError):
    """The desktop notification surface could not show a notification."""


SurfaceUnavailable = DispatchError
