"""
Authentication state machine as data.

`transition(machine, event)` is pure: it returns the next machine value and the effects the
controller must perform, in order. Effects that complete asynchronously (probing a page,
waiting for a human) report back as the next event.

    UNKNOWN --Started--> CHECKING_SESSION            [LoadSession, ProbeProtected]
    CHECKING_SESSION --Probe ok--> AUTHENTICATED
    CHECKING_SESSION --Probe not ok / StepFailed--> REQUESTING_MAGIC_LINK  [RequestMagicLink]
    REQUESTING_MAGIC_LINK --MagicLinkRequested--> AWAITING_MAGIC_LINK       [AwaitMagicLink]
    AWAITING_MAGIC_LINK --MagicLinkReceived--> CONSUMING_MAGIC_LINK         [VisitMagicLink]
    CONSUMING_MAGIC_LINK --Probe ok--> CONSUMING_MAGIC_LINK                 [PersistSession]
    CONSUMING_MAGIC_LINK --SessionPersisted--> AUTHENTICATED                [ClearMagicLink]
    anything failing after CHECKING_SESSION --> FAILED (terminal, no retry within a run)
"""
from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum
from typing import Optional, Union

from ..errors import (
    InvalidTransition,
    MagicLinkAuthenticationFailed,
    NotAuthenticated,
    PortalSyncError,
)


class AuthState(str, Enum):
    UNKNOWN = "unknown"
    CHECKING_SESSION = "checking_session"
    AUTHENTICATED = "authenticated"
    REQUESTING_MAGIC_LINK = "requesting_magic_link"
    AWAITING_MAGIC_LINK = "awaiting_magic_link"
    CONSUMING_MAGIC_LINK = "consuming_magic_link"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in (AuthState.AUTHENTICATED, AuthState.FAILED)


# --- events ---------------------------------------------------------------------------------


@dataclass(frozen=True)
class Started:
    pass


@dataclass(frozen=True)
class ProbeCompleted:
    authenticated: bool
    url: str = ""
    reason: str = ""


@dataclass(frozen=True)
class MagicLinkRequested:
    pass


@dataclass(frozen=True)
class MagicLinkReceived:
    url: str


@dataclass(frozen=True)
class SessionPersisted:
    pass


@dataclass(frozen=True)
class StepFailed:
    error: PortalSyncError


Event = Union[Started, ProbeCompleted, MagicLinkRequested, MagicLinkReceived, SessionPersisted, StepFailed]


# --- effects --------------------------------------------------------------------------------


@dataclass(frozen=True)
class LoadSession:
    pass


@dataclass(frozen=True)
class ProbeProtected:
    pass


@dataclass(frozen=True)
class RequestMagicLink:
    pass


@dataclass(frozen=True)
class AwaitMagicLink:
    pass


@dataclass(frozen=True)
class VisitMagicLink:
    url: str


@dataclass(frozen=True)
class PersistSession:
    pass


@dataclass(frozen=True)
class ClearMagicLink:
    pass


Effect = Union[LoadSession, ProbeProtected, RequestMagicLink, AwaitMagicLink, VisitMagicLink, PersistSession, ClearMagicLink]


@dataclass(frozen=True)
class AuthMachine:
    state: AuthState = AuthState.UNKNOWN
    # When False a failed session check ends in FAILED instead of sending a magic link.
    allow_magic_link: bool = True
    magic_link: Optional[str] = None
    reused_session: bool = False
    error: Optional[PortalSyncError] = None


def _fail(m: AuthMachine, error: PortalSyncError) -> tuple[AuthMachine, tuple[Effect, ...]]:
    return replace(m, state=AuthState.FAILED, error=error), ()


def transition(m: AuthMachine, event: Event) -> tuple[AuthMachine, tuple[Effect, ...]]:
    state = m.state

    if state is AuthState.UNKNOWN and isinstance(event, Started):
        return replace(m, state=AuthState.CHECKING_SESSION), (LoadSession(), ProbeProtected())

    if state is AuthState.CHECKING_SESSION:
        if isinstance(event, ProbeCompleted) and event.authenticated:
            return replace(m, state=AuthState.AUTHENTICATED, reused_session=True), ()
        if isinstance(event, (ProbeCompleted, StepFailed)):
            if not m.allow_magic_link:
                reason = event.reason if isinstance(event, ProbeCompleted) else str(event.error)
                return _fail(
                    m,
                    NotAuthenticated(
                        f"Stored session is not authenticated: {reason or 'no positive markers'}",
                        url=getattr(event, "url", "") or None,
                        step="check_session",
                    ),
                )
            return replace(m, state=AuthState.REQUESTING_MAGIC_LINK), (RequestMagicLink(),)

    if state is AuthState.REQUESTING_MAGIC_LINK:
        if isinstance(event, MagicLinkRequested):
            return replace(m, state=AuthState.AWAITING_MAGIC_LINK), (AwaitMagicLink(),)
        if isinstance(event, StepFailed):
            return _fail(m, event.error)

    if state is AuthState.AWAITING_MAGIC_LINK:
        if isinstance(event, MagicLinkReceived):
            return replace(m, state=AuthState.CONSUMING_MAGIC_LINK, magic_link=event.url), (VisitMagicLink(event.url),)
        if isinstance(event, StepFailed):
            return _fail(m, event.error)

    if state is AuthState.CONSUMING_MAGIC_LINK:
        if isinstance(event, ProbeCompleted):
            if event.authenticated:
                return m, (PersistSession(),)
            return _fail(
                m,
                MagicLinkAuthenticationFailed(
                    f"Magic link did not produce an authenticated page: {event.reason or 'unknown reason'}",
                    url=event.url or None,
                    step="consume_magic_link",
                ),
            )
        if isinstance(event, SessionPersisted):
            # The single-use link is deleted only once the session is on disk.
            return replace(m, state=AuthState.AUTHENTICATED), (ClearMagicLink(),)
        if isinstance(event, StepFailed):
            return _fail(m, event.error)

    raise InvalidTransition(f"{type(event).__name__} is not accepted in state {state.value}", step=state.value)
