from .cleanup import clean_fragment
from .pipeline import ExtractionPipeline
from .strategies import (
    FULL_PAGE_METHOD,
    MainContentStrategy,
    SelectorAnchoredStrategy,
    StrategyMatch,
    TextAnchoredStrategy,
)

__all__ = [
    "ExtractionPipeline",
    "FULL_PAGE_METHOD",
    "MainContentStrategy",
    "SelectorAnchoredStrategy",
    "StrategyMatch",
    "TextAnchoredStrategy",
    "clean_fragment",
]
