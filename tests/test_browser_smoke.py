from __future__ import annotations

import os
import subprocess
import sys
from pathlib import Path
from typing import Optional

import pytest
from dotenv import dotenv_values

ROOT = Path(__file__).resolve().parents[1]


def _get_env_file() -> Optional[Path]:
    env_path = os.getenv("PORTAL_ENV_FILE")
    if env_path:
        return Path(env_path)

    default = ROOT / "portal.env"
    if default.exists():
        return default

    return None


def _skip_or_fail(reason: str) -> None:
    # Browser smoke tests need a real portal account and should not fail local unit test runs by default.
    # To force failures (e.g. in a dedicated integration run), set REQUIRE_BROWSER_TESTS=1.
    if os.getenv("REQUIRE_BROWSER_TESTS") == "1":
        pytest.fail(reason)
    pytest.skip(reason)


def _build_env() -> tuple[dict[str, str], Optional[Path]]:
    env_file = _get_env_file()
    env = os.environ.copy()
    if env_file is not None:
        if not env_file.exists():
            _skip_or_fail(f"Env file not found: {env_file}")
        for key, value in dotenv_values(env_file).items():
            if value is None or key in env:
                continue
            env[key] = value

    if not env.get("PORTAL_BASE_URL") or not env.get("PORTAL_EMAIL"):
        _skip_or_fail("Missing PORTAL_BASE_URL/PORTAL_EMAIL.")
    return env, env_file


def _run_cmd(args: list[str], *, env: dict[str, str]) -> subprocess.CompletedProcess:
    timeout = int(os.getenv("BROWSER_SMOKE_TIMEOUT", "900"))
    return subprocess.run(args, cwd=ROOT, env=env, timeout=timeout)


def _cmd_base(env_file: Optional[Path]) -> list[str]:
    cmd = [sys.executable, "-m", "magiclink_portal_sync"]
    if env_file:
        cmd += ["--env-file", str(env_file)]
    return cmd


@pytest.mark.browser
def test_check_session_reaches_a_verdict() -> None:
    env, env_file = _build_env()
    proc = _run_cmd(_cmd_base(env_file) + ["check-session"], env=env)
    # 0 = stored session valid, 1 = needs a magic link; anything else is a crash.
    assert proc.returncode in (0, 1)


@pytest.mark.browser
def test_run_with_stored_session() -> None:
    env, env_file = _build_env()
    if _run_cmd(_cmd_base(env_file) + ["check-session"], env=env).returncode != 0:
        _skip_or_fail("No valid stored session; run `magiclink-portal-sync run` once and submit the link.")

    proc = _run_cmd(_cmd_base(env_file) + ["run", "--no-wait-for-link"], env=env)
    assert proc.returncode == 0
