from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Optional
from urllib.parse import urlparse


_NOISY_LOGGERS = ("playwright", "asyncio")


def configure_logging(level: str = "INFO", file_path: Optional[str] = None) -> None:
    numeric_level = getattr(logging, (level or "INFO").upper(), logging.INFO)

    handlers: list[logging.Handler] = [logging.StreamHandler()]

    if file_path:
        path = Path(file_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(path, encoding="utf-8"))

    logging.basicConfig(
        level=numeric_level,
        format="%(asctime)s %(levelname)s %(name)s - %(message)s",
        handlers=handlers,
        force=True,  # the CLI reconfigures once the config file is loaded
    )

    for noisy in _NOISY_LOGGERS:
        logging.getLogger(noisy).setLevel(os.getenv("NOISY_LOG_LEVEL", "WARNING"))


def mask_url(url: str) -> str:
    """
    Keep scheme/host visible but hide what could carry a single-use token (query, long path segments).
    """
    s = (url or "").strip()
    if not s:
        return ""
    parsed = urlparse(s)
    if not parsed.netloc:
        return "***"

    segments = []
    for seg in parsed.path.split("/"):
        segments.append(f"{seg[:4]}***" if len(seg) >= 16 else seg)
    out = f"{parsed.scheme}://{parsed.netloc}{'/'.join(segments)}"
    if parsed.query:
        out += "?***"
    return out
