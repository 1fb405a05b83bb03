from .base import BrowserSession
from .memory import InMemoryBrowserSession, MemoryPage, PageClosedError

__all__ = ["BrowserSession", "InMemoryBrowserSession", "MemoryPage", "PageClosedError"]
