from __future__ import annotations

import logging
from typing import Optional, Sequence

from bs4 import BeautifulSoup

from ..browser.base import BrowserSession
from ..config import ExtractionConfig
from ..errors import ExtractionFailed
from ..logging_config import mask_url
from ..models import ExtractionResult
from .cleanup import clean_fragment
from .strategies import (
    FULL_PAGE_METHOD,
    ExtractionStrategy,
    MainContentStrategy,
    SelectorAnchoredStrategy,
    StrategyMatch,
    TextAnchoredStrategy,
)


logger = logging.getLogger(__name__)


class ExtractionPipeline:
    """
    Ordered strategies, first match wins; the whole page is the degraded last resort.

    Every strategy reads the page afresh, so a page that navigates away mid-run only costs
    the strategies that hit it.
    """

    def __init__(self, strategies: Sequence[ExtractionStrategy]) -> None:
        self.strategies = list(strategies)

    @classmethod
    def from_config(cls, cfg: ExtractionConfig) -> "ExtractionPipeline":
        return cls(
            [
                TextAnchoredStrategy(cfg.search_phrases),
                SelectorAnchoredStrategy(cfg.content_selectors, min_size=cfg.min_section_size),
                MainContentStrategy(cfg.main_content_selectors, min_size=cfg.min_main_content_size),
            ]
        )

    def extract(self, session: BrowserSession) -> ExtractionResult:
        match: Optional[StrategyMatch] = None
        for strategy in self.strategies:
            try:
                dom = BeautifulSoup(session.content(), "html.parser")
                match = strategy.find(dom)
            except Exception as e:
                logger.warning("Extraction strategy %s errored; treating as no match: %s", strategy.name, e)
                continue
            if match is not None:
                logger.info("Extraction strategy matched: %s", match.method)
                break

        if match is None:
            logger.warning("No extraction strategy matched; using the full page (large payload).")
            try:
                match = StrategyMatch(html=session.content(), method=FULL_PAGE_METHOD)
            except Exception as e:
                raise ExtractionFailed(
                    f"Page content unavailable: {e}", url=mask_url(session.url), step="extract:full-page"
                ) from e

        cleaned = clean_fragment(match.html)
        result = ExtractionResult(
            content=cleaned,
            method=match.method,
            raw_size=len(match.html),
            cleaned_size=len(cleaned),
        )
        logger.info(
            "Extracted %d chars (raw %d, %.1f%% reduction) via %s",
            result.cleaned_size,
            result.raw_size,
            result.reduction_pct,
            result.method,
        )
        return result
