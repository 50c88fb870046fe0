"""Result-size ceilings for reads."""

from __future__ import annotations

import logging
import sqlite3
from typing import Any

from sqlv_cli.shared.config import MIN_MAX_ROWS
from sqlv_cli.shared.exceptions import EngineError

from .types import UNKNOWN_TOTAL

logger = logging.getLogger(__name__)

LARGE_SCAN_PAGE_SIZE = 1000


class ResultLimiter:
    """Caps result sets when memory optimizations are enabled.

    With optimizations on, browse pages are clamped to ``max_rows``, ad-hoc
    queries stop after ``max_rows`` rows and report ``UNKNOWN_TOTAL``, and the
    exact ``COUNT(*)`` is skipped for pages larger than ``LARGE_SCAN_PAGE_SIZE``.
    With optimizations off every read is unbounded.
    """

    def __init__(self, max_rows: int = 1000, memory_optimizations: bool = True) -> None:
        self._max_rows = max(MIN_MAX_ROWS, int(max_rows))
        self.memory_optimizations = bool(memory_optimizations)

    @property
    def max_rows(self) -> int:
        return self._max_rows

    @max_rows.setter
    def max_rows(self, value: int) -> None:
        self._max_rows = max(MIN_MAX_ROWS, int(value))

    def clamp_page_size(self, page_size: int) -> int:
        if self.memory_optimizations:
            return min(page_size, self._max_rows)
        return page_size

    def should_count(self, page_size: int) -> bool:
        """False when an exact total would cost a full scan just for a number."""
        return not self.memory_optimizations or page_size <= LARGE_SCAN_PAGE_SIZE

    def fetch(self, cursor: sqlite3.Cursor) -> tuple[list[tuple[Any, ...]], bool]:
        """Consume ``cursor`` up to the ceiling; return rows and a truncation flag."""
        try:
            if not self.memory_optimizations:
                return [tuple(row) for row in cursor.fetchall()], False
            rows = cursor.fetchmany(self._max_rows + 1)
        except sqlite3.Error as exc:
            raise EngineError(f"SQL error: {exc}") from exc
        truncated = len(rows) > self._max_rows
        if truncated:
            logger.warning("Query result limited to %d rows for memory optimization", self._max_rows)
        return [tuple(row) for row in rows[: self._max_rows]], truncated

    def total_for(self, row_count: int, truncated: bool) -> int:
        return UNKNOWN_TOTAL if truncated else row_count
