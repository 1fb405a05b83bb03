from __future__ import annotations

import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional


logger = logging.getLogger(__name__)


def atomic_write_text(path: Path, text: str) -> None:
    """
    Write via a sibling temp file + `os.replace` so readers see either the old or the new content.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_name(f".{path.name}.{os.getpid()}.tmp")
    try:
        with tmp.open("w", encoding="utf-8") as f:
            f.write(text)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, path)
    finally:
        try:
            if tmp.exists():
                tmp.unlink()
        except OSError:
            logger.debug("Failed to remove temp file=%s", tmp, exc_info=True)


def read_text_or_none(path: Path) -> Optional[str]:
    try:
        return path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return None


def quarantine_file(path: Path, *, prefix: str) -> Optional[Path]:
    """
    Move a corrupt file aside (`<prefix>.<name>.corrupt-<UTC stamp>`) and return the new path.
    """
    try:
        stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")
        target = path.with_name(f"{prefix}.{path.name}.corrupt-{stamp}")
        path.replace(target)
        return target
    except Exception:
        logger.debug("Failed to quarantine file=%s", path, exc_info=True)
        return None
