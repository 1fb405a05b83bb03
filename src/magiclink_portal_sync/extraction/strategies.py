"""
Extraction strategies.

Each strategy looks at a parsed page and either returns the fragment it would hand on, tagged
with the method that found it, or None. Sizes are the length of the element's serialized
markup (outer HTML).
"""
from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional, Sequence

from bs4 import BeautifulSoup, Comment, Tag


logger = logging.getLogger(__name__)

FULL_PAGE_METHOD = "full-page"

_NON_CONTENT_TAGS = ("script", "style", "noscript", "template")
_DOCUMENT_TAGS = ("html", "head", "body")


@dataclass(frozen=True)
class StrategyMatch:
    html: str
    method: str


def serialized_size(el: Tag) -> int:
    return len(str(el))


def _largest(elements: Sequence[Tag]) -> Tag:
    # max() keeps the first element among equals, so ties resolve in document order.
    return max(elements, key=serialized_size)


def visible_text(el: Tag) -> str:
    parts = []
    for s in el.find_all(string=True):
        if isinstance(s, Comment):
            continue
        if s.parent is not None and s.parent.name in _NON_CONTENT_TAGS:
            continue
        parts.append(str(s))
    return " ".join(" ".join(parts).split()).lower()


class ExtractionStrategy(ABC):
    name: str = "strategy"

    @abstractmethod
    def find(self, dom: BeautifulSoup) -> Optional[StrategyMatch]:
        ...


class TextAnchoredStrategy(ExtractionStrategy):
    """
    Containers whose text mentions a domain phrase. Phrases are tried in rank order; the
    first phrase with any match wins and the largest matching container is taken.
    """

    name = "text-search"

    def __init__(self, phrases: Sequence[str]) -> None:
        self.phrases = [p.strip().lower() for p in phrases if p and p.strip()]

    def find(self, dom: BeautifulSoup) -> Optional[StrategyMatch]:
        containers: list[tuple[Tag, str]] = []
        for el in dom.find_all(True):
            if el.name in _NON_CONTENT_TAGS or el.name in _DOCUMENT_TAGS:
                continue
            # Leaf captions ("My bookings" in an <h1>) are never the content container.
            if el.find(True) is None:
                continue
            containers.append((el, visible_text(el)))

        for phrase in self.phrases:
            hits = [el for el, text in containers if phrase in text]
            if not hits and dom.body is not None and dom.body.find(True) is not None:
                if phrase in visible_text(dom.body):
                    hits = [dom.body]
            if hits:
                best = _largest(hits)
                logger.debug("Phrase %r matched %d containers", phrase, len(hits))
                return StrategyMatch(html=str(best), method=f"text-search-{phrase}")
        return None


class SelectorAnchoredStrategy(ExtractionStrategy):
    """
    Structural selectors naming the content domain. The largest element per selector must
    exceed `min_size` so empty wrappers that merely carry the class name are skipped.
    """

    name = "selector"

    def __init__(self, selectors: Sequence[str], *, min_size: int) -> None:
        self.selectors = [s for s in selectors if s and s.strip()]
        self.min_size = int(min_size)

    def find(self, dom: BeautifulSoup) -> Optional[StrategyMatch]:
        for selector in self.selectors:
            try:
                matches = dom.select(selector)
            except Exception:
                logger.debug("Selector not supported, skipping: %s", selector, exc_info=True)
                continue
            if not matches:
                continue
            best = _largest(matches)
            if serialized_size(best) > self.min_size:
                return StrategyMatch(html=str(best), method=f"selector-{selector}")
            logger.debug("Selector %s matched only small elements (%d chars)", selector, serialized_size(best))
        return None


class MainContentStrategy(ExtractionStrategy):
    """
    Generic layout landmarks; the first selector whose first element is big enough wins.
    """

    name = "main-content"

    def __init__(self, selectors: Sequence[str], *, min_size: int) -> None:
        self.selectors = [s for s in selectors if s and s.strip()]
        self.min_size = int(min_size)

    def find(self, dom: BeautifulSoup) -> Optional[StrategyMatch]:
        for selector in self.selectors:
            try:
                el = dom.select_one(selector)
            except Exception:
                logger.debug("Selector not supported, skipping: %s", selector, exc_info=True)
                continue
            if el is not None and serialized_size(el) > self.min_size:
                return StrategyMatch(html=str(el), method=f"main-content-{selector}")
        return None
