from __future__ import annotations

import json
import logging
import shutil
from pathlib import Path
from typing import Optional, Union

from pydantic import ValidationError

from .models import Cookie, Session
from .util.files import atomic_write_text, quarantine_file, read_text_or_none


logger = logging.getLogger(__name__)


class SessionStore:
    """
    Durable slot for the authenticated cookie set.

    The file is a JSON array of cookie records (`name`, `value`, `domain`, `path`, ...).
    Writes go through a temp file + rename so a reader never sees a partial session, and a
    last-known-good copy is kept at `<file>.bak` for self-healing.
    """

    def __init__(self, path: Union[str, Path]) -> None:
        self.path = Path(path)
        self._backup_path = self.path.with_name(self.path.name + ".bak")

    def load(self) -> Optional[Session]:
        """
        Return the persisted session, or None when missing or unreadable.

        A corrupt file is quarantined and the `.bak` copy restored when it is valid.
        """
        try:
            raw = read_text_or_none(self.path)
        except (OSError, UnicodeDecodeError):
            logger.debug("Failed to read session file=%s", self.path, exc_info=True)
            # Empty text fails to parse and takes the quarantine path below.
            raw = ""
        if raw is None:
            return None

        cookies = self._parse(raw)
        if cookies is not None:
            return cookies

        logger.warning("Session file is unreadable; ignoring it and attempting restore from backup: %s", self.path)
        quarantine_file(self.path, prefix="session")

        try:
            bak_raw = read_text_or_none(self._backup_path)
        except (OSError, UnicodeDecodeError):
            logger.debug("Failed to read session backup=%s", self._backup_path, exc_info=True)
            return None
        if bak_raw is None:
            return None
        cookies = self._parse(bak_raw)
        if cookies is None:
            logger.debug("Session backup is unreadable too: %s", self._backup_path)
            return None
        try:
            shutil.copy2(self._backup_path, self.path)
            logger.warning("Restored session from backup: %s", self._backup_path)
        except OSError:
            logger.debug("Failed to copy session backup into place.", exc_info=True)
        return cookies

    def save(self, cookies: Session) -> None:
        payload = json.dumps([c.to_record() for c in cookies], indent=2)
        atomic_write_text(self.path, payload)
        logger.info("Saved %d cookies for future sessions (%s)", len(cookies), self.path)
        self._backup()

    def clear(self) -> None:
        for p in (self.path, self._backup_path):
            try:
                p.unlink()
            except FileNotFoundError:
                continue

    def _backup(self) -> None:
        try:
            shutil.copy2(self.path, self._backup_path)
        except Exception:
            logger.debug("Failed to write session backup.", exc_info=True)

    @staticmethod
    def _parse(raw: str) -> Optional[Session]:
        try:
            data = json.loads(raw)
        except ValueError:
            return None
        if not isinstance(data, list):
            return None
        try:
            return [Cookie.model_validate(item) for item in data]
        except ValidationError:
            return None
