from __future__ import annotations

import logging
import re
import threading
import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Callable, Optional, Union

from .errors import MagicLinkTimeout, RunDeadlineExceeded
from .logging_config import mask_url
from .util.files import atomic_write_text, read_text_or_none


logger = logging.getLogger(__name__)

_LINK_RE = re.compile(r"^https?://\S+$", re.I)


def looks_like_link(value: Optional[str]) -> bool:
    return bool(value) and bool(_LINK_RE.match(value.strip()))


class MagicLinkChannel(ABC):
    """
    One-slot mailbox between the human who receives the email and the controller.

    At most one link is pending; `put()` replaces it. Reading never deletes: the controller
    calls `clear()` explicitly, and only after the authenticated session has been persisted.
    """

    @abstractmethod
    def _read(self) -> Optional[str]:
        ...

    @abstractmethod
    def _write(self, value: str) -> None:
        ...

    @abstractmethod
    def _delete(self) -> None:
        ...

    def peek(self) -> Optional[str]:
        raw = self._read()
        if raw is None:
            return None
        value = raw.strip()
        if not value:
            return None
        if not looks_like_link(value):
            logger.warning("Ignoring pending magic-link value that is not an http(s) URL.")
            return None
        return value

    def consume(self) -> Optional[str]:
        # Same read as peek(); deletion is tied to a successful login, not to the read.
        value = self.peek()
        if value:
            logger.info("Picked up magic link %s (kept until login succeeds)", mask_url(value))
        return value

    def clear(self) -> None:
        self._delete()

    def put(self, url: str) -> None:
        value = (url or "").strip()
        if not looks_like_link(value):
            raise ValueError("Magic link must be an absolute http(s) URL")
        self._write(value)
        logger.info("Magic link deposited: %s", mask_url(value))

    def wait_for_link(
        self,
        *,
        timeout_seconds: float,
        poll_seconds: float,
        deadline: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> str:
        """
        Block until a link is pending, re-reading the slot on every poll.

        `deadline` is an absolute `clock()` value imposed by the caller for the whole run; when it
        comes before the wait ceiling the wait ends there with `RunDeadlineExceeded`.
        """
        end = clock() + timeout_seconds
        cut_by_deadline = deadline is not None and deadline < end
        if cut_by_deadline:
            end = deadline

        while True:
            url = self.consume()
            if url:
                return url
            remaining = end - clock()
            if remaining <= 0:
                break
            self._pause(min(poll_seconds, remaining), sleep)

        if cut_by_deadline:
            raise RunDeadlineExceeded("Run deadline reached while waiting for the magic link", step="await_magic_link")
        raise MagicLinkTimeout(
            f"Magic link not provided within {timeout_seconds:.0f}s", step="await_magic_link"
        )

    def _pause(self, seconds: float, sleep: Callable[[float], None]) -> None:
        sleep(seconds)


class FileMagicLinkChannel(MagicLinkChannel):
    """
    File-backed slot; the hand-off surface writes the URL, the controller polls it.
    """

    def __init__(self, path: Union[str, Path]) -> None:
        self.path = Path(path)

    def _read(self) -> Optional[str]:
        try:
            return read_text_or_none(self.path)
        except OSError:
            # A concurrent writer may be mid-rename; the next poll will see the new content.
            logger.debug("Magic-link slot unreadable this poll: %s", self.path, exc_info=True)
            return None
        except UnicodeDecodeError:
            logger.warning("Ignoring pending magic-link file that is not valid UTF-8 text: %s", self.path)
            return None

    def _write(self, value: str) -> None:
        atomic_write_text(self.path, value + "\n")

    def _delete(self) -> None:
        try:
            self.path.unlink()
            logger.info("Used magic link deleted (single-use): %s", self.path)
        except FileNotFoundError:
            return


class InMemoryMagicLinkChannel(MagicLinkChannel):
    """
    Process-local slot. Waiters wake as soon as `put()` lands instead of sleeping a full poll.
    """

    def __init__(self, initial: Optional[str] = None) -> None:
        self._cond = threading.Condition()
        self._value: Optional[str] = initial

    def _read(self) -> Optional[str]:
        with self._cond:
            return self._value

    def _write(self, value: str) -> None:
        with self._cond:
            self._value = value
            self._cond.notify_all()

    def _delete(self) -> None:
        with self._cond:
            self._value = None

    def _pause(self, seconds: float, sleep: Callable[[float], None]) -> None:
        with self._cond:
            if self._value is None:
                self._cond.wait(timeout=seconds)
