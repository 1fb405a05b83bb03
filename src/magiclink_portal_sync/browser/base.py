from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Optional, Sequence

from ..errors import NavigationFailed
from ..logging_config import mask_url
from ..models import Cookie, Session


logger = logging.getLogger(__name__)


class BrowserSession(ABC):
    """
    Capability wrapper around one controllable browser page.

    Adapters implement the single-shot primitives; navigation retry with fixed backoff lives
    here so every adapter fails the same way (`NavigationFailed`).
    """

    def __init__(self, *, navigation_timeout_ms: int = 30_000, navigation_retries: int = 2, navigation_backoff_ms: int = 2_000) -> None:
        self.navigation_timeout_ms = int(navigation_timeout_ms)
        self.navigation_retries = max(1, int(navigation_retries))
        self.navigation_backoff_ms = int(navigation_backoff_ms)

    # --- navigation -----------------------------------------------------------------------

    def goto(self, url: str, *, timeout_ms: Optional[int] = None) -> None:
        timeout = int(timeout_ms or self.navigation_timeout_ms)
        last_error: Optional[BaseException] = None
        for attempt in range(1, self.navigation_retries + 1):
            try:
                logger.debug("Navigating (attempt %d/%d) url=%s", attempt, self.navigation_retries, mask_url(url))
                self._goto_once(url, timeout_ms=timeout)
                return
            except Exception as e:
                last_error = e
                logger.warning(
                    "Navigation attempt %d/%d failed (url=%s): %s", attempt, self.navigation_retries, mask_url(url), e
                )
                if attempt < self.navigation_retries:
                    self.wait(self.navigation_backoff_ms)

        raise NavigationFailed(
            f"Failed to navigate after {self.navigation_retries} attempts: {last_error}",
            url=mask_url(url),
            step="navigate",
        ) from last_error

    @abstractmethod
    def _goto_once(self, url: str, *, timeout_ms: int) -> None:
        ...

    @property
    @abstractmethod
    def url(self) -> str:
        ...

    @abstractmethod
    def wait(self, ms: int) -> None:
        ...

    @abstractmethod
    def wait_for_settle(self, *, timeout_ms: int = 10_000) -> None:
        """Wait for DOM readiness without waiting for network idle."""

    @abstractmethod
    def wait_for_text(self, needles: Sequence[str], *, timeout_ms: int) -> bool:
        """True as soon as the page text contains any needle (case-insensitive), False on timeout."""

    # --- reading --------------------------------------------------------------------------

    @abstractmethod
    def body_text(self) -> str:
        ...

    @abstractmethod
    def content(self) -> str:
        """Serialized markup of the whole current document."""

    @abstractmethod
    def count(self, selector: str) -> int:
        ...

    # --- interaction ----------------------------------------------------------------------

    @abstractmethod
    def fill(self, selector: str, value: str) -> None:
        """Replace the value of the first element matching `selector`."""

    @abstractmethod
    def dispatch(self, selector: str, event_type: str) -> None:
        ...

    @abstractmethod
    def click_enabled_button(self, labels: Sequence[str]) -> Optional[str]:
        """
        Click the first enabled button whose accessible label contains one of `labels`
        (tried in order). Returns the label that matched, or None if nothing is clickable yet.
        """

    # --- cookies --------------------------------------------------------------------------

    @abstractmethod
    def cookies(self) -> Session:
        ...

    @abstractmethod
    def add_cookies(self, cookies: Sequence[Cookie]) -> None:
        ...

    # --- diagnostics ----------------------------------------------------------------------

    def save_debug(self, name_prefix: str) -> None:
        """Best-effort page capture for offline diagnosis; adapters without storage ignore it."""
        return None
