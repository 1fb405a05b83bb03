from __future__ import annotations

import logging
import time
from collections import deque
from typing import Callable, Optional, Sequence
from urllib.parse import urlparse

from ..browser.base import BrowserSession
from ..config import AuthConfig, SiteConfig
from ..errors import (
    InvalidTransition,
    MagicLinkTimeout,
    NavigationFailed,
    NoEmailInputFound,
    PortalSyncError,
    SessionPersistFailed,
    SubmitNeverEnabled,
)
from ..logging_config import mask_url
from ..magic_link import MagicLinkChannel
from ..session_store import SessionStore
from .machine import (
    AuthMachine,
    AuthState,
    AwaitMagicLink,
    ClearMagicLink,
    Effect,
    Event,
    LoadSession,
    MagicLinkReceived,
    MagicLinkRequested,
    PersistSession,
    ProbeCompleted,
    ProbeProtected,
    RequestMagicLink,
    SessionPersisted,
    Started,
    StepFailed,
    VisitMagicLink,
    transition,
)
from .selectors import LoginSelectors


logger = logging.getLogger(__name__)


def url_path(url: str) -> str:
    return (urlparse(url or "").path or "/").rstrip("/").lower() or "/"


def looks_authenticated(
    *,
    url: str,
    text: str,
    protected_url: str,
    positive_markers: Sequence[str],
    negative_markers: Sequence[str],
    login_path_hints: Sequence[str] = (),
) -> tuple[bool, str]:
    """
    Authenticated iff the page stayed on the protected path, shows a positive marker and
    shows no negative marker. Negative markers dominate.

    Returns (verdict, reason) so callers can log why a session was rejected.
    """
    here = urlparse(url or "")
    want = urlparse(protected_url)
    if here.netloc.lower() != want.netloc.lower():
        return False, f"left the portal host ({here.netloc or 'no host'})"

    path = url_path(url)
    want_path = url_path(protected_url)
    if want_path != "/" and path != want_path and not path.startswith(want_path + "/"):
        return False, f"redirected away from protected path ({path})"
    for hint in login_path_hints:
        h = hint.rstrip("/").lower()
        if h and h in path:
            return False, f"landed on a login path ({path})"

    lowered = (text or "").lower()
    for marker in negative_markers:
        if marker in lowered:
            return False, f"login prompt present ({marker!r})"
    for marker in positive_markers:
        if marker in lowered:
            return True, f"found {marker!r}"
    return False, "no positive markers on page"


class AuthenticationController:
    """
    Drives the authentication state machine against a browser session.

    On return the browser holds a session that reaches the protected page; otherwise a
    classified `PortalSyncError` is raised. The pending magic link is deleted only after the
    new cookie set has been persisted.
    """

    def __init__(
        self,
        session: BrowserSession,
        *,
        site: SiteConfig,
        auth: AuthConfig,
        store: SessionStore,
        channel: MagicLinkChannel,
        selectors: Optional[LoginSelectors] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.session = session
        self.site = site
        self.auth = auth
        self.store = store
        self.channel = channel
        self.selectors = selectors or LoginSelectors()
        self._clock = clock
        self._sleep = sleep

    def authenticate(
        self,
        *,
        allow_magic_link: bool = True,
        use_stored_session: bool = True,
        deadline: Optional[float] = None,
        link_wait_seconds: Optional[float] = None,
    ) -> AuthMachine:
        """
        Run the machine to a terminal state.

        `deadline` is an absolute value of the injected clock; it only bounds the wait for a human.
        `link_wait_seconds` overrides `auth.magic_link_wait_seconds` for this call only.
        """
        self._use_stored_session = use_stored_session
        self._deadline = deadline
        self._link_wait_seconds = (
            self.auth.magic_link_wait_seconds if link_wait_seconds is None else link_wait_seconds
        )

        machine = AuthMachine(allow_magic_link=allow_magic_link)
        events: deque[Event] = deque([Started()])
        while events:
            event = events.popleft()
            prev = machine.state
            machine, effects = transition(machine, event)
            if machine.state is not prev:
                logger.info("Auth state %s -> %s", prev.value, machine.state.value)
            for effect in effects:
                follow = self._perform(effect)
                if follow is not None:
                    events.append(follow)

        if machine.state is AuthState.FAILED:
            error = machine.error
            if error is None:
                raise InvalidTransition("Authentication reached the failed state without an error", step=machine.state.value)
            self.session.save_debug(f"auth_failed_{error.step or 'unknown'}")
            logger.error("Authentication failed: %s", error)
            raise error

        logger.info(
            "Authenticated (%s)", "reused stored session" if machine.reused_session else "via magic link"
        )
        return machine

    def check_session(self) -> bool:
        """
        Probe with the stored session only; never requests or consumes a magic link.
        """
        try:
            self.authenticate(allow_magic_link=False)
            return True
        except PortalSyncError:
            return False

    # --- effect interpreter -------------------------------------------------------------

    def _perform(self, effect: Effect) -> Optional[Event]:
        if isinstance(effect, LoadSession):
            self._load_session()
            return None
        if isinstance(effect, ProbeProtected):
            return self._probe_protected(navigate=True)
        if isinstance(effect, RequestMagicLink):
            try:
                self._request_magic_link()
            except PortalSyncError as e:
                return StepFailed(e)
            return MagicLinkRequested()
        if isinstance(effect, AwaitMagicLink):
            try:
                return MagicLinkReceived(self._await_magic_link())
            except MagicLinkTimeout as e:
                return StepFailed(e)
        if isinstance(effect, VisitMagicLink):
            return self._visit_magic_link(effect.url)
        if isinstance(effect, PersistSession):
            try:
                self._persist_session()
            except SessionPersistFailed as e:
                return StepFailed(e)
            return SessionPersisted()
        if isinstance(effect, ClearMagicLink):
            self.channel.clear()
            return None
        raise TypeError(f"Unknown effect: {effect!r}")

    def _load_session(self) -> None:
        if not self._use_stored_session:
            logger.info("Ignoring stored session (fresh session requested).")
            return
        cookies = self.store.load()
        if not cookies:
            logger.info("No stored session; a magic link will be needed unless the portal lets us in.")
            return
        try:
            self.session.add_cookies(cookies)
            logger.info("Loaded %d cookies from previous session", len(cookies))
        except Exception as e:
            # The probe decides; an unusable cookie set simply fails it.
            logger.warning("Could not load stored cookies into the browser: %s", e)

    def _probe_protected(self, *, navigate: bool) -> ProbeCompleted:
        protected = self.site.protected_url
        if navigate:
            try:
                self.session.goto(protected)
            except NavigationFailed as e:
                return ProbeCompleted(False, url=protected, reason=f"navigation failed: {e}")

        self.session.wait_for_settle(timeout_ms=self.auth.settle_ms)
        if url_path(self.session.url) == url_path(protected):
            # A client-rendered page may still show its loading/login shell; give it time.
            self.session.wait_for_text(self.auth.positive_markers, timeout_ms=self.auth.render_wait_ms)

        url = self.session.url
        try:
            text = self.session.body_text()
        except Exception as e:
            return ProbeCompleted(False, url=url, reason=f"could not read page text: {e}")

        ok, reason = looks_authenticated(
            url=url,
            text=text,
            protected_url=protected,
            positive_markers=self.auth.positive_markers,
            negative_markers=self.auth.negative_markers,
            login_path_hints=self.auth.login_path_hints,
        )
        logger.info("Session probe: authenticated=%s (%s) url=%s", ok, reason, mask_url(url))
        return ProbeCompleted(ok, url=url, reason=reason)

    def _request_magic_link(self) -> None:
        pending = self.channel.peek()
        if pending:
            # A link handed over after an earlier run gave up is still usable; sending a new
            # email would usually invalidate it.
            logger.warning(
                "A magic link is already pending (%s); trying it instead of requesting a new one. "
                "If it has expired, run `clear-link` so the next run requests a fresh link.",
                mask_url(pending),
            )
            return

        entry_points = [self.site.login_url, *self.site.login_fallback_urls]
        selector: Optional[str] = None
        nav_error: Optional[NavigationFailed] = None
        loaded_any = False
        for entry in entry_points:
            try:
                self.session.goto(entry)
            except NavigationFailed as e:
                nav_error = e
                continue
            loaded_any = True
            self.session.wait_for_settle(timeout_ms=self.auth.settle_ms)
            selector = self._find_email_input()
            if selector:
                break
            logger.info("No email input at %s", mask_url(entry))
            self.session.save_debug("login_email_input_not_found")

        if selector is None:
            if not loaded_any and nav_error is not None:
                raise nav_error
            raise NoEmailInputFound(
                "Could not find an email input on any login entry point",
                url=self.session.url,
                step="request_magic_link",
            )
        logger.info("Found email input with selector: %s", selector)

        try:
            self.session.fill(selector, self.site.email)
        except Exception as e:
            raise NoEmailInputFound(
                f"Email input {selector!r} could not be filled: {e}", url=self.session.url, step="request_magic_link"
            ) from e

        for event_type in self.selectors.validation_events:
            try:
                self.session.dispatch(selector, event_type)
            except Exception:
                logger.debug("Could not dispatch %s on %s", event_type, selector, exc_info=True)

        clicked = self._click_submit_when_enabled()
        if clicked is None:
            self.session.save_debug("login_submit_never_enabled")
            raise SubmitNeverEnabled(
                f"No enabled submit control among {list(self.selectors.submit_labels)}",
                url=self.session.url,
                step="request_magic_link",
            )
        logger.info("Email form submitted (button=%r)", clicked)

        self.session.wait(self.auth.settle_ms)
        try:
            text = self.session.body_text().lower()
            confirmed = any(t in text for t in self.selectors.link_sent_texts)
        except Exception:
            # The page is often mid-navigation right after submit.
            confirmed = False
        if confirmed:
            logger.info("Portal confirmed the magic link was sent to %s", self.site.email)
        else:
            logger.info("Magic link requested; no confirmation text seen (continuing).")

    def _find_email_input(self) -> Optional[str]:
        attempts = max(1, self.auth.email_input_attempts)
        for attempt in range(attempts):
            for sel in self.selectors.email_inputs:
                try:
                    if self.session.count(sel) > 0:
                        return sel
                except Exception:
                    logger.debug("Selector check failed: %s", sel, exc_info=True)
            if attempt + 1 < attempts:
                self.session.wait(self.auth.email_input_interval_ms)
        return None

    def _click_submit_when_enabled(self) -> Optional[str]:
        attempts = max(1, self.auth.submit_poll_attempts)
        for attempt in range(attempts):
            try:
                label = self.session.click_enabled_button(self.selectors.submit_labels)
            except Exception:
                logger.debug("Submit lookup failed on attempt %d", attempt + 1, exc_info=True)
                label = None
            if label:
                return label
            if attempt + 1 < attempts:
                self.session.wait(self.auth.submit_poll_interval_ms)
        return None

    def _await_magic_link(self) -> str:
        logger.info(
            "Waiting up to %ds for the magic link. Deposit it with `submit-link <url>` (email sent to %s).",
            self._link_wait_seconds,
            self.site.email,
        )
        return self.channel.wait_for_link(
            timeout_seconds=self._link_wait_seconds,
            poll_seconds=self.auth.magic_link_poll_seconds,
            deadline=self._deadline,
            clock=self._clock,
            sleep=self._sleep,
        )

    def _visit_magic_link(self, url: str) -> Event:
        try:
            self.session.goto(url)
        except NavigationFailed as e:
            e.step = "consume_magic_link"
            return StepFailed(e)
        self.session.wait_for_settle(timeout_ms=self.auth.settle_ms)
        logger.info("Magic link visited; landed on %s", mask_url(self.session.url))

        # Links usually land on a dashboard; the verdict is always taken on the protected page.
        navigate = url_path(self.session.url) != url_path(self.site.protected_url)
        if navigate:
            try:
                self.session.goto(self.site.protected_url)
            except NavigationFailed as e:
                e.step = "consume_magic_link"
                return StepFailed(e)
        return self._probe_protected(navigate=False)

    def _persist_session(self) -> None:
        try:
            cookies = self.session.cookies()
            if not cookies:
                logger.warning("Browser reports no cookies after login; persisting an empty session.")
            self.store.save(cookies)
        except Exception as e:
            raise SessionPersistFailed(
                f"Could not persist the authenticated session: {e}", step="persist_session"
            ) from e
