from __future__ import annotations

import logging
import re
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional, Sequence

from playwright.sync_api import Browser, BrowserContext, Page, Playwright, sync_playwright

from ..config import BrowserConfig, NavigationConfig
from ..models import Cookie, Session
from .base import BrowserSession


logger = logging.getLogger(__name__)


class PlaywrightBrowserSession(BrowserSession):
    """
    Production adapter: one Playwright page inside one browser context.

    Construct through `open_playwright_session()` so the browser process is always released.
    """

    def __init__(
        self,
        page: Page,
        *,
        context: BrowserContext,
        debug_dir: str = "data/debug",
        navigation_timeout_ms: int = 30_000,
        navigation_retries: int = 2,
        navigation_backoff_ms: int = 2_000,
    ) -> None:
        super().__init__(
            navigation_timeout_ms=navigation_timeout_ms,
            navigation_retries=navigation_retries,
            navigation_backoff_ms=navigation_backoff_ms,
        )
        self.page = page
        self.context = context
        self.debug_dir = debug_dir

    def _goto_once(self, url: str, *, timeout_ms: int) -> None:
        self.page.goto(url, wait_until="domcontentloaded", timeout=timeout_ms)

    @property
    def url(self) -> str:
        try:
            return self.page.url or ""
        except Exception:
            return ""

    def wait(self, ms: int) -> None:
        self.page.wait_for_timeout(ms)

    def wait_for_settle(self, *, timeout_ms: int = 10_000) -> None:
        """
        Avoid `networkidle`: SPAs keep background requests running forever.
        """
        try:
            self.page.wait_for_load_state("domcontentloaded", timeout=timeout_ms)
        except Exception:
            logger.debug("domcontentloaded not reached within %dms; continuing.", timeout_ms, exc_info=True)
        self.page.wait_for_timeout(500)

    def wait_for_text(self, needles: Sequence[str], *, timeout_ms: int) -> bool:
        lowered = [n.lower() for n in needles if n]
        if not lowered:
            return False
        try:
            self.page.wait_for_function(
                """(needles) => {
                    const text = ((document.body && document.body.innerText) || '').toLowerCase();
                    return needles.some((n) => text.includes(n));
                }""",
                arg=lowered,
                timeout=timeout_ms,
            )
            return True
        except Exception:
            return False

    def body_text(self) -> str:
        return self.page.inner_text("body")

    def content(self) -> str:
        return self.page.content()

    def count(self, selector: str) -> int:
        return int(self.page.locator(selector).count())

    def fill(self, selector: str, value: str) -> None:
        target = self._first_visible(selector) or self.page.locator(selector).first
        target.click()
        target.fill(value)

    def dispatch(self, selector: str, event_type: str) -> None:
        target = self._first_visible(selector) or self.page.locator(selector).first
        target.dispatch_event(event_type)

    def click_enabled_button(self, labels: Sequence[str]) -> Optional[str]:
        for label in labels:
            loc = self.page.get_by_role("button", name=re.compile(re.escape(label), re.I))
            try:
                n = min(int(loc.count()), 25)
            except Exception:
                n = 0
            for i in range(n):
                cand = loc.nth(i)
                try:
                    if cand.is_visible() and cand.is_enabled():
                        cand.click()
                        return label
                except Exception:
                    continue
        return None

    def cookies(self) -> Session:
        return [Cookie.model_validate(c) for c in self.context.cookies()]

    def add_cookies(self, cookies: Sequence[Cookie]) -> None:
        if not cookies:
            return
        self.context.add_cookies([c.to_browser_param() for c in cookies])

    def save_debug(self, name_prefix: str) -> None:
        try:
            out_dir = Path(self.debug_dir)
            out_dir.mkdir(parents=True, exist_ok=True)
            self.page.screenshot(path=str(out_dir / f"{name_prefix}.png"), full_page=True)
            (out_dir / f"{name_prefix}.html").write_text(self.page.content(), encoding="utf-8")
            # Rendered text lets marker checks be replayed offline without DOM tooling.
            try:
                (out_dir / f"{name_prefix}.txt").write_text(self.page.inner_text("body"), encoding="utf-8")
            except Exception:
                logger.debug("Failed to save page text.", exc_info=True)
        except Exception:
            logger.debug("Failed to save debug artifacts.", exc_info=True)

    def _first_visible(self, selector: str):
        loc = self.page.locator(selector)
        try:
            n = min(int(loc.count()), 25)
        except Exception:
            n = 0
        for i in range(n):
            cand = loc.nth(i)
            try:
                if cand.is_visible():
                    return cand
            except Exception:
                continue
        return None


def _launch(p: Playwright, browser_cfg: BrowserConfig) -> Browser:
    # Prefer Playwright's bundled Chromium, but fall back to a system-installed browser if the
    # cache doesn't have Playwright browsers available.
    slow_mo = int(browser_cfg.slow_mo_ms or 0)
    try:
        return p.chromium.launch(headless=browser_cfg.headless, slow_mo=slow_mo)
    except Exception as e:
        msg = str(e)
        if "Executable doesn't exist" not in msg:
            raise

        logger.warning(
            "Playwright Chromium executable missing; falling back to system browser channel. (%s)",
            msg,
        )
        try:
            return p.chromium.launch(headless=browser_cfg.headless, slow_mo=slow_mo, channel="chrome")
        except Exception:
            return p.chromium.launch(headless=browser_cfg.headless, slow_mo=slow_mo, channel="msedge")


@contextmanager
def open_playwright_session(
    *,
    browser_cfg: BrowserConfig,
    navigation_cfg: NavigationConfig,
    debug_dir: str = "data/debug",
) -> Iterator[PlaywrightBrowserSession]:
    """
    Launch a browser, yield a session on a fresh page, and close context + browser on every exit path.
    """
    with sync_playwright() as p:
        browser = _launch(p, browser_cfg)
        try:
            ctx = browser.new_context(
                user_agent=browser_cfg.user_agent,
                viewport={"width": browser_cfg.viewport_width, "height": browser_cfg.viewport_height},
                color_scheme="light",
            )
            try:
                page = ctx.new_page()
                page.set_default_timeout(navigation_cfg.timeout_ms)
                yield PlaywrightBrowserSession(
                    page,
                    context=ctx,
                    debug_dir=debug_dir,
                    navigation_timeout_ms=navigation_cfg.timeout_ms,
                    navigation_retries=navigation_cfg.retries,
                    navigation_backoff_ms=navigation_cfg.backoff_ms,
                )
            finally:
                try:
                    ctx.close()
                except Exception:
                    logger.debug("Failed to close browser context.", exc_info=True)
        finally:
            try:
                browser.close()
            except Exception:
                logger.debug("Failed to close browser.", exc_info=True)
