from __future__ import annotations

import argparse
import logging
import os
import time
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv

from .browser.memory import InMemoryBrowserSession
from .config import AppConfig, ExtractionConfig, load_config
from .errors import PortalSyncError
from .extraction.pipeline import ExtractionPipeline
from .logging_config import configure_logging
from .magic_link import FileMagicLinkChannel
from .orchestrator import PortalSync, load_interpreter, write_extraction
from .util.debug_bundle import create_debug_bundle


logger = logging.getLogger("magiclink_portal_sync")


def _build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="magiclink_portal_sync")
    p.add_argument(
        "--env-file",
        default=".env",
        help="Path to a dotenv file (default: .env). If missing, env vars must already be set.",
    )

    sub = p.add_subparsers(dest="cmd", required=True)

    run = sub.add_parser("run", help="Log in (reusing the stored session when possible), extract the protected page")
    run.add_argument("--config", default="config.yaml", help="Path to YAML config (default: config.yaml)")
    run.add_argument("--headful", action="store_true", help="Run browser headful (debug)")
    run.add_argument(
        "--fresh-session",
        action="store_true",
        help="Ignore the stored cookies and go through the magic-link login.",
    )
    run.add_argument("--slowmo-ms", type=int, default=0, help="Playwright slow motion in milliseconds (debug).")
    run.add_argument(
        "--interpreter",
        default="",
        help="Optional 'module:function' that turns the extracted content into records.",
    )
    run.add_argument(
        "--deadline-seconds",
        type=float,
        default=0,
        help="Overall time limit for this run; cuts the magic-link wait short (default: none).",
    )
    run.add_argument(
        "--no-wait-for-link",
        action="store_true",
        help="Fail immediately instead of waiting for someone to submit the magic link.",
    )

    check = sub.add_parser("check-session", help="Exit 0 if the stored session reaches the protected page, else 1")
    check.add_argument("--config", default="config.yaml", help="Path to YAML config (default: config.yaml)")
    check.add_argument("--headful", action="store_true", help="Run browser headful (debug)")

    submit = sub.add_parser("submit-link", help="Hand over the magic link from the login email")
    submit.add_argument("url", help="The full link from the email")
    submit.add_argument("--config", default="config.yaml", help="Path to YAML config (default: config.yaml)")

    clear = sub.add_parser("clear-link", help="Delete a pending magic link (e.g. an expired one)")
    clear.add_argument("--config", default="config.yaml", help="Path to YAML config (default: config.yaml)")

    snap = sub.add_parser("extract-snapshot", help="Run extraction offline over a saved HTML file")
    snap.add_argument("html_file", help="Saved page HTML")
    snap.add_argument("--config", default="config.yaml", help="Path to YAML config (default: config.yaml)")
    snap.add_argument("--out", default="", help="Write the extraction JSON here (default: print a summary only)")
    return p


def _load(args: argparse.Namespace) -> AppConfig:
    cfg = load_config(args.config)
    configure_logging(level=cfg.logging.level, file_path=cfg.logging.file_path)
    if getattr(args, "headful", False):
        cfg.browser.headless = False
    if getattr(args, "slowmo_ms", 0):
        cfg.browser.slow_mo_ms = int(args.slowmo_ms)
    return cfg


def _write_debug_bundle(cfg: AppConfig, label: str) -> None:
    try:
        bundle = create_debug_bundle(
            debug_dir=cfg.paths.debug_dir,
            log_file=cfg.logging.file_path or "data/sync.log",
            out_dir=str(Path(cfg.paths.debug_dir).parent),
            label=label,
            exclude_paths=(cfg.paths.session_file, cfg.paths.session_file + ".bak", cfg.paths.magic_link_file),
        )
        logger.error("Wrote debug bundle: %s", bundle)
    except Exception:
        logger.debug("Failed to create debug bundle.", exc_info=True)


def _cmd_run(args: argparse.Namespace) -> int:
    from .browser.playwright_session import open_playwright_session

    cfg = _load(args)
    logger.info("Starting run (fresh_session=%s wait_for_link=%s)", args.fresh_session, not args.no_wait_for_link)

    interpreter = load_interpreter(args.interpreter) if args.interpreter else None
    deadline = time.monotonic() + args.deadline_seconds if args.deadline_seconds and args.deadline_seconds > 0 else None
    channel = FileMagicLinkChannel(cfg.paths.magic_link_file)

    try:
        with open_playwright_session(
            browser_cfg=cfg.browser, navigation_cfg=cfg.navigation, debug_dir=cfg.paths.debug_dir
        ) as session:
            outcome = PortalSync(cfg, session=session, channel=channel).run(
                interpreter=interpreter,
                use_stored_session=not args.fresh_session,
                wait_for_link=not args.no_wait_for_link,
                deadline=deadline,
            )
    except Exception:
        _write_debug_bundle(cfg, label="run")
        raise

    logger.info(
        "Extraction method=%s size=%d records=%s",
        outcome.extraction.method,
        outcome.extraction.cleaned_size,
        "-" if outcome.records is None else len(outcome.records),
    )
    return 0


def _cmd_check_session(args: argparse.Namespace) -> int:
    from .browser.playwright_session import open_playwright_session

    cfg = _load(args)
    channel = FileMagicLinkChannel(cfg.paths.magic_link_file)
    with open_playwright_session(
        browser_cfg=cfg.browser, navigation_cfg=cfg.navigation, debug_dir=cfg.paths.debug_dir
    ) as session:
        ok = PortalSync(cfg, session=session, channel=channel).check_session()
    print("authenticated" if ok else "not authenticated")
    return 0 if ok else 1


def _cmd_submit_link(args: argparse.Namespace) -> int:
    cfg = _load(args)
    try:
        FileMagicLinkChannel(cfg.paths.magic_link_file).put(args.url)
    except ValueError as e:
        raise SystemExit(str(e))
    print("Magic link saved; a waiting run will pick it up within a few seconds.")
    return 0


def _cmd_clear_link(args: argparse.Namespace) -> int:
    cfg = _load(args)
    channel = FileMagicLinkChannel(cfg.paths.magic_link_file)
    had_link = channel.peek() is not None
    channel.clear()
    print("Pending magic link removed." if had_link else "No pending magic link.")
    return 0


def _extraction_config(config_path: str) -> ExtractionConfig:
    # Offline extraction needs no site credentials; fall back to defaults when the site section is incomplete.
    try:
        return load_config(config_path).extraction
    except ValueError as e:
        logger.info("Using default extraction settings (%s)", str(e).splitlines()[0])
        return ExtractionConfig()


def _cmd_extract_snapshot(args: argparse.Namespace) -> int:
    html_path = Path(args.html_file)
    if not html_path.exists():
        raise SystemExit(f"Snapshot not found: {html_path}")

    extraction_cfg = _extraction_config(args.config)
    session = InMemoryBrowserSession.from_html(
        html_path.read_text(encoding="utf-8", errors="replace"), url=html_path.resolve().as_uri()
    )
    result = ExtractionPipeline.from_config(extraction_cfg).extract(session)
    print(
        f"method={result.method} rawSize={result.raw_size} cleanedSize={result.cleaned_size} "
        f"reduction={result.reduction_pct:.1f}%"
    )
    if args.out:
        out = write_extraction(args.out, result)
        print(f"Wrote {out}")
    return 0


_COMMANDS = {
    "run": _cmd_run,
    "check-session": _cmd_check_session,
    "submit-link": _cmd_submit_link,
    "clear-link": _cmd_clear_link,
    "extract-snapshot": _cmd_extract_snapshot,
}


def main(argv: Optional[List[str]] = None) -> int:
    args = _build_parser().parse_args(argv)

    env_path = Path(args.env_file)
    if env_path.exists():
        load_dotenv(env_path)

    # Default logging: can be overridden once config is loaded.
    configure_logging(level=os.getenv("LOG_LEVEL", "INFO"))

    try:
        return _COMMANDS[args.cmd](args)
    except KeyboardInterrupt:
        logger.warning("Interrupted")
        return 130
    except PortalSyncError as e:
        logger.error("%s failed: %s", args.cmd, e)
        return 1
