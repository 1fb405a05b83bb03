from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path

import pytest

from conftest import MAGIC_LINK, PROTECTED, session_cookie
from magiclink_portal_sync.auth.machine import AuthState
from magiclink_portal_sync.errors import InterpretationFailed, MagicLinkTimeout, RunDeadlineExceeded
from magiclink_portal_sync.magic_link import FileMagicLinkChannel
from magiclink_portal_sync.orchestrator import PortalSync, load_interpreter, write_records
from magiclink_portal_sync.session_store import SessionStore


def _bookings_interpreter(contract: dict) -> list[dict]:
    assert set(contract) == {"content", "method", "rawSize", "cleanedSize"}
    return [{"court": "3", "when": "Saturday 10:00"}]


def test_end_to_end_fresh_login_extract_and_interpret(app_config, make_portal, fake_clock) -> None:
    session = make_portal()
    channel = FileMagicLinkChannel(app_config.paths.magic_link_file)

    def human_submits_link(seconds: float) -> None:
        fake_clock.sleep(seconds)
        channel.put(MAGIC_LINK)

    sync = PortalSync(app_config, session=session, channel=channel, clock=fake_clock, sleep=human_submits_link)
    outcome = sync.run(interpreter=_bookings_interpreter)

    assert outcome.auth.state is AuthState.AUTHENTICATED
    assert outcome.extraction.method == "text-search-my bookings"
    assert outcome.records == [{"court": "3", "when": "Saturday 10:00"}]
    assert channel.peek() is None
    assert SessionStore(app_config.paths.session_file).load() == [session_cookie()]

    extraction = json.loads(Path(app_config.paths.extraction_out).read_text(encoding="utf-8"))
    assert extraction["method"] == "text-search-my bookings"
    assert extraction["rawSize"] >= extraction["cleanedSize"]
    assert "<script" not in extraction["content"]

    records = json.loads(Path(app_config.paths.records_out).read_text(encoding="utf-8"))
    assert records["records"] == outcome.records
    assert records["lastUpdated"]


def test_second_run_reuses_session(app_config, make_portal) -> None:
    SessionStore(app_config.paths.session_file).save([session_cookie()])
    session = make_portal()
    channel = FileMagicLinkChannel(app_config.paths.magic_link_file)

    outcome = PortalSync(app_config, session=session, channel=channel).run()

    assert outcome.auth.reused_session is True
    assert outcome.records is None
    assert session.history == [PROTECTED]
    assert not Path(app_config.paths.records_out).exists()


def test_no_wait_for_link_fails_fast(app_config, make_portal, fake_clock) -> None:
    session = make_portal()
    channel = FileMagicLinkChannel(app_config.paths.magic_link_file)

    sync = PortalSync(app_config, session=session, channel=channel, clock=fake_clock, sleep=fake_clock.sleep)
    with pytest.raises(MagicLinkTimeout):
        sync.run(wait_for_link=False)

    # The email still went out so the next run can pick up the link.
    assert session.clicks == ["Send Link"]
    assert fake_clock.sleeps == []
    assert not Path(app_config.paths.extraction_out).exists()


def test_no_wait_for_link_does_not_leak_into_later_runs(app_config, make_portal, fake_clock) -> None:
    channel = FileMagicLinkChannel(app_config.paths.magic_link_file)
    sync = PortalSync(app_config, session=make_portal(), channel=channel, clock=fake_clock, sleep=fake_clock.sleep)

    with pytest.raises(MagicLinkTimeout):
        sync.run(wait_for_link=False)
    assert fake_clock.sleeps == []

    with pytest.raises(MagicLinkTimeout):
        sync.run()
    assert sum(fake_clock.sleeps) == pytest.approx(app_config.auth.magic_link_wait_seconds)
    assert sync.controller.auth.magic_link_wait_seconds == app_config.auth.magic_link_wait_seconds


def test_run_deadline_bounds_the_wait(app_config, make_portal, fake_clock) -> None:
    session = make_portal()
    channel = FileMagicLinkChannel(app_config.paths.magic_link_file)

    sync = PortalSync(app_config, session=session, channel=channel, clock=fake_clock, sleep=fake_clock.sleep)
    with pytest.raises(RunDeadlineExceeded):
        sync.run(deadline=fake_clock() + 5)
    assert sum(fake_clock.sleeps) == pytest.approx(5)


def test_interpreter_errors_fail_closed(app_config, make_portal) -> None:
    SessionStore(app_config.paths.session_file).save([session_cookie()])
    channel = FileMagicLinkChannel(app_config.paths.magic_link_file)

    def broken(contract: dict) -> list:
        raise KeyError("bookings")

    with pytest.raises(InterpretationFailed):
        PortalSync(app_config, session=make_portal(), channel=channel).run(interpreter=broken)
    assert not Path(app_config.paths.records_out).exists()

    with pytest.raises(InterpretationFailed):
        PortalSync(app_config, session=make_portal(), channel=channel).run(interpreter=lambda c: {"records": []})


def test_check_session(app_config, make_portal) -> None:
    channel = FileMagicLinkChannel(app_config.paths.magic_link_file)
    assert PortalSync(app_config, session=make_portal(), channel=channel).check_session() is False

    SessionStore(app_config.paths.session_file).save([session_cookie()])
    assert PortalSync(app_config, session=make_portal(), channel=channel).check_session() is True


def test_load_interpreter() -> None:
    assert load_interpreter("json:loads") is json.loads
    with pytest.raises(ValueError):
        load_interpreter("json")
    with pytest.raises(ValueError):
        load_interpreter("json:not_there")
    with pytest.raises(ModuleNotFoundError):
        load_interpreter("no_such_module_xyz:run")


def test_write_records_shape(tmp_path: Path) -> None:
    now = datetime(2026, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
    out = write_records(str(tmp_path / "out" / "bookings.json"), [{"a": 1}], now=now)
    assert json.loads(out.read_text(encoding="utf-8")) == {
        "records": [{"a": 1}],
        "lastUpdated": "2026-01-02T03:04:05+00:00",
    }
