from __future__ import annotations

import json
import zipfile
from contextlib import contextmanager
from pathlib import Path

import pytest

from conftest import BOOKINGS_HTML, MAGIC_LINK, session_cookie
from magiclink_portal_sync import cli
from magiclink_portal_sync.browser.memory import MemoryPage
from magiclink_portal_sync.session_store import SessionStore


@pytest.fixture
def cli_env(tmp_path, monkeypatch) -> Path:
    data = tmp_path / "data"
    monkeypatch.setenv("PORTAL_BASE_URL", "https://portal.example.com")
    monkeypatch.setenv("PORTAL_EMAIL", "me@example.com")
    monkeypatch.setenv("SESSION_FILE", str(data / "cookies.json"))
    monkeypatch.setenv("MAGIC_LINK_FILE", str(data / "login_url.txt"))
    monkeypatch.setenv("EXTRACTION_OUT", str(data / "extraction.json"))
    monkeypatch.setenv("RECORDS_OUT", str(data / "bookings.json"))
    monkeypatch.setenv("DEBUG_DIR", str(data / "debug"))
    monkeypatch.setenv("LOG_FILE", str(data / "sync.log"))
    monkeypatch.setenv("MAGIC_LINK_WAIT_SECONDS", "0")
    return data


def _main(tmp_path: Path, *args: str) -> int:
    return cli.main(["--env-file", str(tmp_path / "missing.env"), *args, "--config", str(tmp_path / "missing.yaml")])


def _patch_browser(monkeypatch, session) -> None:
    import magiclink_portal_sync.browser.playwright_session as pw

    @contextmanager
    def fake_open(**kwargs):
        yield session

    monkeypatch.setattr(pw, "open_playwright_session", fake_open)


def test_submit_and_clear_link(tmp_path, cli_env, capsys) -> None:
    assert _main(tmp_path, "submit-link", MAGIC_LINK) == 0
    assert (cli_env / "login_url.txt").read_text(encoding="utf-8").strip() == MAGIC_LINK

    assert _main(tmp_path, "clear-link") == 0
    assert not (cli_env / "login_url.txt").exists()
    assert "removed" in capsys.readouterr().out

    assert _main(tmp_path, "clear-link") == 0
    assert "No pending magic link" in capsys.readouterr().out


def test_submit_link_rejects_garbage(tmp_path, cli_env) -> None:
    with pytest.raises(SystemExit):
        _main(tmp_path, "submit-link", "not-a-link")
    assert not (cli_env / "login_url.txt").exists()


def test_extract_snapshot(tmp_path, cli_env, capsys) -> None:
    html = tmp_path / "page.html"
    html.write_text(BOOKINGS_HTML, encoding="utf-8")
    out = tmp_path / "extraction.json"

    assert _main(tmp_path, "extract-snapshot", str(html), "--out", str(out)) == 0
    assert "method=text-search-my bookings" in capsys.readouterr().out
    assert json.loads(out.read_text(encoding="utf-8"))["method"] == "text-search-my bookings"


def test_extract_snapshot_without_site_config(tmp_path, monkeypatch, capsys) -> None:
    monkeypatch.delenv("PORTAL_BASE_URL", raising=False)
    monkeypatch.delenv("PORTAL_EMAIL", raising=False)
    html = tmp_path / "page.html"
    html.write_text("<html><body><p>hello</p></body></html>", encoding="utf-8")

    assert _main(tmp_path, "extract-snapshot", str(html)) == 0
    assert "method=full-page" in capsys.readouterr().out


def test_run_with_stored_session(tmp_path, cli_env, monkeypatch, make_portal) -> None:
    SessionStore(cli_env / "cookies.json").save([session_cookie()])
    _patch_browser(monkeypatch, make_portal())

    assert _main(tmp_path, "run") == 0
    assert json.loads((cli_env / "extraction.json").read_text(encoding="utf-8"))["method"] == "text-search-my bookings"


def test_run_with_interpreter_writes_records(tmp_path, cli_env, monkeypatch, make_portal) -> None:
    SessionStore(cli_env / "cookies.json").save([session_cookie()])
    _patch_browser(monkeypatch, make_portal())

    assert _main(tmp_path, "run", "--interpreter", "conftest:sample_interpreter") == 0
    records = json.loads((cli_env / "bookings.json").read_text(encoding="utf-8"))
    assert records["records"] == [{"method": "text-search-my bookings"}]


def test_run_with_bad_interpreter_fails_closed(tmp_path, cli_env, monkeypatch, make_portal) -> None:
    SessionStore(cli_env / "cookies.json").save([session_cookie()])
    _patch_browser(monkeypatch, make_portal())

    # list(contract) yields the key names, which are not record objects.
    assert _main(tmp_path, "run", "--interpreter", "builtins:list") == 1
    assert not (cli_env / "bookings.json").exists()


def test_run_failure_writes_debug_bundle_without_credentials(tmp_path, cli_env, monkeypatch, make_portal) -> None:
    SessionStore(cli_env / "cookies.json").save([session_cookie()])
    no_form = MemoryPage(html="<html><body><h1>Sign in</h1></body></html>")
    _patch_browser(monkeypatch, make_portal(login=no_form, login_fallback=no_form))

    assert _main(tmp_path, "run", "--fresh-session") == 1

    bundles = list(cli_env.glob("debug_bundle_run_*.zip"))
    assert len(bundles) == 1
    with zipfile.ZipFile(bundles[0]) as z:
        names = z.namelist()
    assert "sync.log" in names
    assert not any("cookies" in n or "login_url" in n for n in names)
