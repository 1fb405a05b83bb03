from __future__ import annotations

import importlib
import json
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Mapping, Optional

from .auth.controller import AuthenticationController, url_path
from .auth.machine import AuthMachine
from .browser.base import BrowserSession
from .config import AppConfig
from .errors import InterpretationFailed, NavigationFailed
from .extraction.pipeline import ExtractionPipeline
from .magic_link import MagicLinkChannel
from .models import ExtractionResult
from .session_store import SessionStore
from .util.files import atomic_write_text


logger = logging.getLogger(__name__)

# Receives the extraction contract dict ({content, method, rawSize, cleanedSize}); returns record dicts.
Interpreter = Callable[[dict[str, Any]], list]


@dataclass
class SyncOutcome:
    auth: AuthMachine
    extraction: ExtractionResult
    records: Optional[list[dict[str, Any]]] = None


def load_interpreter(spec: str) -> Interpreter:
    """
    Resolve "package.module:function" to a callable.
    """
    module_name, sep, attr = (spec or "").partition(":")
    if not sep or not module_name.strip() or not attr.strip():
        raise ValueError(f"Interpreter must look like 'module:function' (got {spec!r})")
    module = importlib.import_module(module_name.strip())
    fn = getattr(module, attr.strip(), None)
    if not callable(fn):
        raise ValueError(f"{spec!r} does not name a callable")
    return fn


def interpret(interpreter: Interpreter, extraction: ExtractionResult) -> list[dict[str, Any]]:
    """
    Call the interpreter and fail closed on anything that is not a list of record objects.
    """
    try:
        records = interpreter(extraction.to_contract())
    except Exception as e:
        raise InterpretationFailed(f"Interpreter raised: {e}", step="interpret") from e
    if not isinstance(records, list) or not all(isinstance(r, Mapping) for r in records):
        raise InterpretationFailed(
            f"Interpreter must return a list of objects (got {type(records).__name__})", step="interpret"
        )
    return [dict(r) for r in records]


def write_extraction(path: str, extraction: ExtractionResult) -> Path:
    out = Path(path)
    atomic_write_text(out, json.dumps(extraction.to_contract(), indent=2, ensure_ascii=False))
    return out


def write_records(path: str, records: list[dict[str, Any]], *, now: Optional[datetime] = None) -> Path:
    stamp = (now or datetime.now(timezone.utc)).isoformat()
    out = Path(path)
    atomic_write_text(out, json.dumps({"records": records, "lastUpdated": stamp}, indent=2, ensure_ascii=False))
    return out


class PortalSync:
    """
    One run: authenticate, bring the protected page up, extract, optionally interpret.

    The browser session is owned by the caller (scoped acquisition lives in the CLI).
    """

    def __init__(
        self,
        cfg: AppConfig,
        *,
        session: BrowserSession,
        store: Optional[SessionStore] = None,
        channel: MagicLinkChannel,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.cfg = cfg
        self.session = session
        self.store = store or SessionStore(cfg.paths.session_file)
        self.channel = channel
        self.controller = AuthenticationController(
            session,
            site=cfg.site,
            auth=cfg.auth,
            store=self.store,
            channel=channel,
            clock=clock,
            sleep=sleep,
        )
        self.pipeline = ExtractionPipeline.from_config(cfg.extraction)

    def check_session(self) -> bool:
        return self.controller.check_session()

    def run(
        self,
        *,
        interpreter: Optional[Interpreter] = None,
        use_stored_session: bool = True,
        wait_for_link: bool = True,
        deadline: Optional[float] = None,
        write_outputs: bool = True,
    ) -> SyncOutcome:
        t0 = time.time()
        machine = self.controller.authenticate(
            use_stored_session=use_stored_session,
            deadline=deadline,
            # Zero checks the slot once instead of blocking on a human.
            link_wait_seconds=None if wait_for_link else 0,
        )
        self._show_protected_page()

        extraction = self.pipeline.extract(self.session)
        if extraction.degraded:
            logger.warning("Extraction fell back to the full page; the interpreter will see a large payload.")
        if write_outputs:
            out = write_extraction(self.cfg.paths.extraction_out, extraction)
            logger.info("Wrote extraction: %s", out)

        records = None
        if interpreter is not None:
            records = interpret(interpreter, extraction)
            logger.info("Interpreter returned %d records", len(records))
            if write_outputs:
                out = write_records(self.cfg.paths.records_out, records)
                logger.info("Wrote records: %s", out)

        logger.info("Run finished (ok=true seconds=%.2f)", time.time() - t0)
        return SyncOutcome(auth=machine, extraction=extraction, records=records)

    def _show_protected_page(self) -> None:
        protected = self.cfg.site.protected_url
        if url_path(self.session.url) != url_path(protected):
            try:
                self.session.goto(protected)
            except NavigationFailed as e:
                e.step = "load_protected_page"
                raise
        self.session.wait_for_settle(timeout_ms=self.cfg.auth.settle_ms)
        rendered = self.session.wait_for_text(
            self.cfg.auth.positive_markers, timeout_ms=self.cfg.extraction.content_wait_ms
        )
        if not rendered:
            logger.info("Content markers did not render within %dms; extracting anyway.", self.cfg.extraction.content_wait_ms)
