from __future__ import annotations

import sys
from typing import Any, Callable, Optional
from pathlib import Path

import pytest


ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from magiclink_portal_sync.browser.memory import InMemoryBrowserSession, MemoryPage  # noqa: E402
from magiclink_portal_sync.config import AppConfig, AuthConfig, PathsConfig, SiteConfig  # noqa: E402
from magiclink_portal_sync.models import Cookie  # noqa: E402


BASE = "https://portal.example.com"
PROTECTED = BASE + "/account/bookings"
LOGIN = BASE + "/sign-in"
LOGIN_FALLBACK = BASE + "/login"
DASHBOARD = BASE + "/dashboard"
MAGIC_LINK = BASE + "/auth/verify?token=abc123def456ghi789"

BOOKINGS_HTML = """
<html><head><title>Account</title><script>window.__STATE__ = {};</script></head>
<body>
  <nav><a href="/">Home</a></nav>
  <main>
    <h1>My Bookings</h1>
    <section class="bookings">
      <div class="booking-card">Upcoming: Court 3, Saturday 10:00</div>
      <div class="booking-card">Past bookings: Court 1, last Sunday</div>
    </section>
  </main>
</body></html>
"""

LOGIN_HTML = """
<html><body>
  <h1>Sign in</h1>
  <form>
    <label for="email">Enter your email</label>
    <input type="email" id="email" name="email">
    <button type="submit" disabled>Send Link</button>
  </form>
</body></html>
"""

DASHBOARD_HTML = "<html><body><h1>Welcome back</h1><p>Loading your account</p></body></html>"


class FakeClock:
    """Monotonic clock that only moves when `sleep` is called."""

    def __init__(self, start: float = 1_000.0) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


def sample_interpreter(contract: dict) -> list[dict]:
    # Importable as "conftest:sample_interpreter" for --interpreter tests.
    return [{"method": contract["method"]}]


def pytest_configure(config: Any) -> None:
    config.addinivalue_line(
        "markers",
        "browser: smoke tests that drive a real Playwright browser against a real portal",
    )


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def app_config(tmp_path: Path) -> AppConfig:
    return AppConfig(
        site=SiteConfig(base_url=BASE, email="me@example.com", login_fallback_urls=["/login"]),
        auth=AuthConfig(
            settle_ms=0,
            render_wait_ms=0,
            email_input_attempts=2,
            email_input_interval_ms=10,
            submit_poll_attempts=3,
            submit_poll_interval_ms=10,
            magic_link_wait_seconds=30,
            magic_link_poll_seconds=2,
        ),
        paths=PathsConfig(
            session_file=str(tmp_path / "cookies.json"),
            magic_link_file=str(tmp_path / "login_url.txt"),
            extraction_out=str(tmp_path / "extraction.json"),
            records_out=str(tmp_path / "bookings.json"),
            debug_dir=str(tmp_path / "debug"),
        ),
    )


def session_cookie(value: str = "s1") -> Cookie:
    return Cookie(name="sid", value=value, domain="portal.example.com", http_only=True, secure=True)


@pytest.fixture
def make_portal() -> Callable[..., InMemoryBrowserSession]:
    """
    Factory for a fake portal: the protected page needs a `sid` cookie, the magic link sets it.

    Keyword overrides replace individual routes; `failures` is passed through.
    """

    def _make(
        *,
        login: Optional[MemoryPage] = None,
        login_fallback: Optional[MemoryPage] = None,
        link: Optional[MemoryPage] = None,
        protected_html: str = BOOKINGS_HTML,
        failures: Optional[dict[str, int]] = None,
    ) -> InMemoryBrowserSession:
        def protected(s: InMemoryBrowserSession) -> MemoryPage:
            if s.has_cookie("sid"):
                return MemoryPage(html=protected_html)
            return MemoryPage(html=LOGIN_HTML, url=LOGIN)

        routes = {
            PROTECTED: protected,
            LOGIN: login or MemoryPage(html=LOGIN_HTML),
            LOGIN_FALLBACK: login_fallback or MemoryPage(html=LOGIN_HTML),
            MAGIC_LINK: link
            or MemoryPage(html=DASHBOARD_HTML, url=DASHBOARD, set_cookies=[session_cookie()]),
            DASHBOARD: MemoryPage(html=DASHBOARD_HTML),
        }
        return InMemoryBrowserSession(routes, failures=failures)

    return _make
