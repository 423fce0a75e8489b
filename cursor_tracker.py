#!/usr/bin/env python3
"""
WallCraft - Pagination Cursor Tracker

Remembers which upstream page each provider should be asked for next,
so repeated cycles surface fresh content instead of page 1 forever.
State is in-memory only; losing it on restart just resets to page 1.
"""

import logging
from dataclasses import dataclass, field

logger = logging.getLogger("wallcraft")


@dataclass
class CursorState:
    """
    Per-provider page pointers cycling 1..window.

    Owned by whoever drives ingestion and passed into each cycle, so
    independent pipelines never share pages.
    """
    windows: dict[str, int]
    pages: dict[str, int] = field(default_factory=dict)

    def __post_init__(self):
        for provider, window in self.windows.items():
            if window < 1:
                raise ValueError(f"Cursor window for {provider} must be >= 1, got {window}")
            self.pages.setdefault(provider, 1)

    def current(self, provider: str) -> int:
        return self.pages.get(provider, 1)

    def advance(self, provider: str) -> int:
        """Move a provider to its next page: (current mod window) + 1."""
        window = self.windows[provider]
        new_page = (self.current(provider) % window) + 1
        self.pages[provider] = new_page
        return new_page

    def advance_all(self) -> dict[str, int]:
        """Advance every provider and return the pages to use this cycle."""
        return {provider: self.advance(provider) for provider in self.windows}

    def reset(self) -> None:
        for provider in self.windows:
            self.pages[provider] = 1
