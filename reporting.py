#!/usr/bin/env python3
"""
WallCraft - Cycle Reporting

Statistics gathered during one ingestion cycle and the summary
printed at the end of it.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

logger = logging.getLogger("wallcraft")


@dataclass
class CategoryResult:
    """Outcome for one category within a cycle."""
    slug: str
    source: Optional[str] = None  # provider that served it, None if both failed
    fetched: int = 0
    new: int = 0
    refreshed: int = 0
    failed: bool = False
    error: Optional[str] = None


@dataclass
class CycleReport:
    """Complete statistics for one ingestion cycle."""
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    pages: dict[str, int] = field(default_factory=dict)
    categories: list[CategoryResult] = field(default_factory=list)
    category_counts: dict[str, int] = field(default_factory=dict)
    aborted: bool = False
    abort_reason: Optional[str] = None

    @property
    def total_new(self) -> int:
        return sum(c.new for c in self.categories)

    @property
    def failed_categories(self) -> list[str]:
        return [c.slug for c in self.categories if c.failed]

    def duration_sec(self) -> float:
        if not self.start_time or not self.end_time:
            return 0.0
        return (self.end_time - self.start_time).total_seconds()

    def _format_duration(self, seconds: float) -> str:
        """Format duration in human-readable format."""
        if seconds < 60:
            return f"{seconds:.1f}s"
        elif seconds < 3600:
            return f"{seconds / 60:.1f}m"
        return f"{seconds / 3600:.1f}h"

    def source_results(self) -> dict[str, int]:
        """New records per serving provider."""
        results: dict[str, int] = {}
        for c in self.categories:
            if c.source:
                results[c.source] = results.get(c.source, 0) + c.new
        return results

    def to_dict(self) -> dict[str, Any]:
        return {
            "start": self.start_time.isoformat() if self.start_time else None,
            "end": self.end_time.isoformat() if self.end_time else None,
            "duration": self._format_duration(self.duration_sec()),
            "pages": self.pages,
            "total_new": self.total_new,
            "by_source": self.source_results(),
            "failed_categories": self.failed_categories,
            "category_counts": self.category_counts,
            "aborted": self.aborted,
            "abort_reason": self.abort_reason,
        }

    def log_summary(self) -> None:
        """Log a formatted summary of the cycle."""
        lines = [
            "=" * 60,
            "FETCH CYCLE COMPLETE - SUMMARY" if not self.aborted else "FETCH CYCLE ABORTED",
            "=" * 60,
            f"  Duration:   {self._format_duration(self.duration_sec())}",
            f"  Pages:      {', '.join(f'{k}={v}' for k, v in self.pages.items())}",
        ]
        for source, count in self.source_results().items():
            lines.append(f"  {source.capitalize() + ':':<11} +{count} new")
        if self.failed_categories:
            lines.append(f"  Failed:     {', '.join(self.failed_categories)}")
        if self.aborted:
            lines.append(f"  Reason:     {self.abort_reason}")
        lines.extend([
            "-" * 60,
            f"  TOTAL:      {self.total_new} new wallpapers",
            "=" * 60,
        ])
        for line in lines:
            logger.info(line)
