from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Mapping, Optional, Sequence, Union

from bs4 import BeautifulSoup

from ..models import Cookie, Session
from .base import BrowserSession


logger = logging.getLogger(__name__)


class PageClosedError(RuntimeError):
    pass


@dataclass
class MemoryPage:
    """
    What a route serves: markup, the URL the browser ends up on (redirects), and cookies it sets.
    """

    html: str
    url: Optional[str] = None
    set_cookies: list[Cookie] = field(default_factory=list)
    # Client-side validation: buttons lose `disabled` once this event is dispatched on any field.
    enable_buttons_on: Optional[str] = "input"
    on_click: Optional[Callable[["InMemoryBrowserSession", str], None]] = None


Route = Union[MemoryPage, Callable[["InMemoryBrowserSession"], MemoryPage]]


def _norm(url: str) -> str:
    return (url or "").split("#", 1)[0].rstrip("/")


class InMemoryBrowserSession(BrowserSession):
    """
    Deterministic adapter over static routes, parsed with BeautifulSoup.

    Routes may be callables so a page can depend on the cookie jar (a protected page that
    redirects to sign-in until a session cookie exists). `failures` makes a URL fail its
    next N navigations to exercise retry.
    """

    def __init__(
        self,
        routes: Optional[Mapping[str, Route]] = None,
        *,
        failures: Optional[Mapping[str, int]] = None,
        navigation_timeout_ms: int = 30_000,
        navigation_retries: int = 2,
        navigation_backoff_ms: int = 0,
    ) -> None:
        super().__init__(
            navigation_timeout_ms=navigation_timeout_ms,
            navigation_retries=navigation_retries,
            navigation_backoff_ms=navigation_backoff_ms,
        )
        self.routes: dict[str, Route] = {_norm(k): v for k, v in (routes or {}).items()}
        self.failures: dict[str, int] = {_norm(k): int(v) for k, v in (failures or {}).items()}
        self._jar: dict[tuple[str, str, str], Cookie] = {}
        self._page: Optional[MemoryPage] = None
        self._soup: Optional[BeautifulSoup] = None
        self._url = "about:blank"
        self.closed = False

        self.history: list[str] = []
        self.filled: dict[str, str] = {}
        self.dispatched: list[tuple[str, str]] = []
        self.clicks: list[str] = []
        self.waited_ms = 0
        self.debug_captures: list[str] = []

    @classmethod
    def from_html(cls, html: str, *, url: str = "about:snapshot") -> "InMemoryBrowserSession":
        session = cls({url: MemoryPage(html=html)})
        session._load(url, MemoryPage(html=html))
        return session

    # --- navigation -----------------------------------------------------------------------

    def _goto_once(self, url: str, *, timeout_ms: int) -> None:
        key = _norm(url)
        self.history.append(url)
        if self.failures.get(key, 0) > 0:
            self.failures[key] -= 1
            raise TimeoutError(f"Navigation timeout of {timeout_ms} ms exceeded")
        route = self.routes.get(key)
        if route is None:
            route = self.routes.get(_norm(url.split("?", 1)[0]))
        if route is None:
            raise ConnectionError("net::ERR_NAME_NOT_RESOLVED")
        page = route(self) if callable(route) else route
        self._load(url, page)

    def _load(self, url: str, page: MemoryPage) -> None:
        self.closed = False
        self._page = page
        self._url = page.url or url
        self._soup = BeautifulSoup(page.html, "html.parser")
        for c in page.set_cookies:
            self._jar[(c.name, c.domain, c.path)] = c

    @property
    def url(self) -> str:
        return self._url

    def wait(self, ms: int) -> None:
        self.waited_ms += int(ms)

    def wait_for_settle(self, *, timeout_ms: int = 10_000) -> None:
        return None

    def wait_for_text(self, needles: Sequence[str], *, timeout_ms: int) -> bool:
        text = self.body_text().lower()
        return any(n.lower() in text for n in needles if n)

    def close(self) -> None:
        # Simulates the page going away mid-evaluation.
        self.closed = True

    # --- reading --------------------------------------------------------------------------

    def _dom(self) -> BeautifulSoup:
        if self.closed or self._soup is None:
            raise PageClosedError("Target page, context or browser has been closed")
        return self._soup

    def body_text(self) -> str:
        dom = self._dom()
        root = dom.body or dom
        parts = []
        for s in root.find_all(string=True):
            if s.parent is not None and s.parent.name in ("script", "style", "noscript", "template"):
                continue
            parts.append(str(s))
        return " ".join(" ".join(parts).split())

    def content(self) -> str:
        return str(self._dom())

    def count(self, selector: str) -> int:
        return len(self._dom().select(selector))

    # --- interaction ----------------------------------------------------------------------

    def fill(self, selector: str, value: str) -> None:
        el = self._dom().select_one(selector)
        if el is None:
            raise LookupError(f"No element matches {selector!r}")
        el["value"] = value
        self.filled[selector] = value

    def dispatch(self, selector: str, event_type: str) -> None:
        self.dispatched.append((selector, event_type))
        if self._page is not None and self._page.enable_buttons_on == event_type:
            for btn in self._dom().find_all("button"):
                if btn.has_attr("disabled"):
                    del btn["disabled"]

    def click_enabled_button(self, labels: Sequence[str]) -> Optional[str]:
        dom = self._dom()
        buttons = dom.find_all("button") + dom.select('input[type="submit"]')
        for label in labels:
            needle = label.lower()
            for btn in buttons:
                name = btn.get_text(" ").strip() or btn.get("value", "") or btn.get("aria-label", "")
                if needle not in name.lower() or btn.has_attr("disabled"):
                    continue
                self.clicks.append(label)
                if self._page is not None and self._page.on_click is not None:
                    self._page.on_click(self, label)
                return label
        return None

    # --- cookies --------------------------------------------------------------------------

    def cookies(self) -> Session:
        return list(self._jar.values())

    def add_cookies(self, cookies: Sequence[Cookie]) -> None:
        for c in cookies:
            self._jar[(c.name, c.domain, c.path)] = c

    def has_cookie(self, name: str) -> bool:
        return any(c.name == name for c in self._jar.values())

    def save_debug(self, name_prefix: str) -> None:
        self.debug_captures.append(name_prefix)
