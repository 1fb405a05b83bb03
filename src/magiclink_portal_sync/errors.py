from __future__ import annotations

from typing import Optional


class PortalSyncError(RuntimeError):
    """
    Base class for classified failures. `url` and `step` are diagnostic context only.
    """

    def __init__(self, message: str, *, url: Optional[str] = None, step: Optional[str] = None) -> None:
        self.message = message
        self.url = url or None
        self.step = step or None
        super().__init__(message)

    def __str__(self) -> str:
        ctx = []
        if self.step:
            ctx.append(f"step={self.step}")
        if self.url:
            ctx.append(f"url={self.url}")
        if not ctx:
            return self.message
        return f"{self.message} ({' '.join(ctx)})"


class NavigationFailed(PortalSyncError):
    """Navigation still failing after the bounded retries."""


class NotAuthenticated(PortalSyncError):
    """The stored session does not reach the protected page and requesting a magic link was not allowed."""


class NoEmailInputFound(PortalSyncError):
    """No email-capable input on any login entry point."""


class SubmitNeverEnabled(PortalSyncError):
    """The magic-link submit control never became enabled."""


class MagicLinkTimeout(PortalSyncError):
    """Nobody handed over a magic link before the wait ceiling."""


class RunDeadlineExceeded(MagicLinkTimeout):
    """The caller's overall run deadline cut the magic-link wait short."""


class MagicLinkAuthenticationFailed(PortalSyncError):
    """Visiting the magic link did not produce an authenticated page."""


class SessionPersistFailed(PortalSyncError):
    """The authenticated cookie set could not be written."""


class ExtractionFailed(PortalSyncError):
    """Every strategy missed and the full-page fallback itself failed."""


class InterpretationFailed(PortalSyncError):
    """The external interpreter raised or returned something that is not a record list."""


class InvalidTransition(PortalSyncError):
    """An event was delivered to a state that does not accept it."""
