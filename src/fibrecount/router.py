"""
Keyboard routing for the count grid.

Interprets single keystrokes against the grid: plain edits, the space-bar
"ten empty fields" run and the ``/`` half-fibre key, and works out where the
cursor should go next.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple

from .grid import CountGrid, parse_cell
from .models import COLS, EMPTY, HALF_FIBRE, ROWS, Matrix

__all__ = ["Focus", "RouteResult", "InputRouter", "next_cell", "zero_run", "next_empty"]

logger = logging.getLogger(__name__)

Focus = Optional[Tuple[int, int]]

SPACE_KEYS = (" ", "Spacebar", "Space")
HALF_KEYS = ("/",)
SPACE_RUN = 10


@dataclass(slots=True, frozen=True)
class RouteResult:
    matrix: Matrix
    focus: Focus
    accepted: bool = True


# ───────────────────────── cursor helpers ─────────────────────────
def next_cell(row: int, col: int) -> Focus:
    """Cell after (row, col) in row-major order, ``None`` past the last one."""
    if col + 1 < COLS:
        return row, col + 1
    if row + 1 < ROWS:
        return row + 1, 0
    return None


def zero_run(row: int, col: int, length: int = SPACE_RUN) -> List[Tuple[int, int]]:
    """
    Up to *length* cells row-major from (row, col) inclusive, wrapping to
    the next row and stopping at the bottom-right cell.

    >>> zero_run(0, 15)[-1]
    (1, 4)
    """
    cells: List[Tuple[int, int]] = []
    pos: Focus = (row, col)
    while pos is not None and len(cells) < length:
        cells.append(pos)
        pos = next_cell(*pos)
    return cells


def next_empty(matrix: Matrix, row: int, col: int) -> Focus:
    """First empty cell strictly after (row, col), scanning row-major."""
    pos = next_cell(row, col)
    while pos is not None:
        r, c = pos
        if matrix[r][c] == EMPTY:
            return pos
        pos = next_cell(r, c)
    return None


# ───────────────────────────── router ─────────────────────────────
class InputRouter:
    """
    Parameters
    ----------
    grid
        The grid model that receives the writes.
    is_editable
        Called with a sample id before every write. A false result (the
        sample is uncountable, the batch is finalised, ...) refuses the edit.
    """

    def __init__(self, grid: CountGrid, is_editable: Callable[[str], bool]):
        self.grid = grid
        self._is_editable = is_editable

    def _refused(self, sample_id: str, row: int, col: int) -> Optional[RouteResult]:
        if self._is_editable(sample_id):
            return None
        logger.debug("Edit refused for %s: grid is disabled", sample_id)
        return RouteResult(self.grid.get(sample_id), (row, col), accepted=False)

    def edit(self, sample_id: str, row: int, col: int, value: Optional[str]) -> RouteResult:
        """Single-cell edit, then step to the next cell."""
        refused = self._refused(sample_id, row, col)
        if refused is not None:
            return refused

        if parse_cell(value) is None:
            # rejected input: prior value kept, cursor stays put
            return RouteResult(self.grid.get(sample_id), (row, col), accepted=False)

        matrix = self.grid.set(sample_id, row, col, value)
        return RouteResult(matrix, next_cell(row, col))

    def half(self, sample_id: str, row: int, col: int) -> RouteResult:
        """The ``/`` key: half a fibre in this field."""
        return self.edit(sample_id, row, col, HALF_FIBRE)

    def space(self, sample_id: str, row: int, col: int) -> RouteResult:
        """The space bar: ten fields with no fibres, starting here."""
        refused = self._refused(sample_id, row, col)
        if refused is not None:
            return refused

        cells = zero_run(row, col)
        matrix = self.grid.fill(sample_id, cells, "0")
        last_row, last_col = cells[-1]
        return RouteResult(matrix, next_empty(matrix, last_row, last_col))

    def key(self, sample_id: str, row: int, col: int, key: str) -> RouteResult:
        if key in SPACE_KEYS:
            return self.space(sample_id, row, col)
        if key in HALF_KEYS:
            return self.half(sample_id, row, col)
        return self.edit(sample_id, row, col, key)
