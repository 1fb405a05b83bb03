from __future__ import annotations

import pytest

from magiclink_portal_sync.browser.memory import InMemoryBrowserSession, MemoryPage
from magiclink_portal_sync.errors import NavigationFailed
from magiclink_portal_sync.models import Cookie


URL = "https://portal.example.com/account/bookings"
PAGE = MemoryPage(html="<html><body><main><h1>My Bookings</h1></main></body></html>")


def test_transient_failure_is_retried_with_backoff() -> None:
    session = InMemoryBrowserSession({URL: PAGE}, failures={URL: 1}, navigation_retries=2, navigation_backoff_ms=2_000)
    session.goto(URL)
    assert session.url == URL
    assert session.history == [URL, URL]
    assert session.waited_ms == 2_000


def test_exhausted_retries_raise_navigation_failed() -> None:
    session = InMemoryBrowserSession({URL: PAGE}, failures={URL: 3}, navigation_retries=3, navigation_backoff_ms=500)
    with pytest.raises(NavigationFailed) as ei:
        session.goto(URL)
    assert ei.value.step == "navigate"
    assert isinstance(ei.value.__cause__, TimeoutError)
    assert len(session.history) == 3
    # No backoff after the final attempt.
    assert session.waited_ms == 1_000


def test_unknown_host_fails_like_a_dns_error() -> None:
    session = InMemoryBrowserSession({}, navigation_retries=1)
    with pytest.raises(NavigationFailed) as ei:
        session.goto("https://nowhere.example.com/")
    assert isinstance(ei.value.__cause__, ConnectionError)


def test_redirect_and_cookies() -> None:
    sid = Cookie(name="sid", value="1", domain="portal.example.com")
    session = InMemoryBrowserSession(
        {URL: MemoryPage(html="<p>Sign in</p>", url="https://portal.example.com/sign-in", set_cookies=[sid])}
    )
    session.goto(URL + "#top")
    assert session.url == "https://portal.example.com/sign-in"
    assert session.has_cookie("sid")
    assert session.cookies() == [sid]


def test_body_text_skips_scripts() -> None:
    session = InMemoryBrowserSession.from_html(
        "<html><body><h1>My   Bookings</h1><script>var signIn = 'sign in';</script></body></html>"
    )
    assert session.body_text() == "My Bookings"
    assert session.wait_for_text(["my bookings"], timeout_ms=10) is True
    assert session.wait_for_text(["sign in"], timeout_ms=10) is False


def test_closed_page_cannot_be_read() -> None:
    session = InMemoryBrowserSession.from_html("<p>x</p>")
    session.close()
    with pytest.raises(RuntimeError):
        session.content()
