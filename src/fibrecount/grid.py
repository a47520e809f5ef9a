"""
Count grid model.

Holds the 5×20 matrix of raw field counts for each sample of a working set
and keeps the derived totals in step with it.
"""

from __future__ import annotations

import logging
import re
from typing import Iterable, MutableMapping, Optional, Tuple

from .aggregate import aggregate
from .models import (
    COLS,
    EMPTY,
    HALF_FIBRE,
    ROWS,
    Analysis,
    Matrix,
    empty_matrix,
    filled_matrix,
)

__all__ = ["parse_cell", "CountGrid"]

logger = logging.getLogger(__name__)

_DECIMAL_RE = re.compile(r"^(\d+(\.\d*)?|\.\d+)$")


def parse_cell(raw: Optional[str]) -> Optional[str]:
    """
    Validate one keystroke/edit for a grid cell.

    Returns the value to store, or ``None`` when the input must be ignored
    and the previous value kept.

    * ``"/"``          → ``"0.5"`` (half fibre shorthand)
    * empty / blanks   → ``""``
    * ``"3"``, ``"1.5"`` → stored as typed (stripped)
    * anything else    → ``None``
    """
    if raw is None:
        return EMPTY
    text = str(raw).strip()
    if text == "/":
        return HALF_FIBRE
    if text == EMPTY:
        return EMPTY
    if _DECIMAL_RE.match(text):
        return text
    return None


def _check_cell(row: int, col: int) -> None:
    if not (0 <= row < ROWS and 0 <= col < COLS):
        raise IndexError(f"Cell ({row}, {col}) outside the {ROWS}x{COLS} grid")


def _with_cells(matrix: Matrix, cells: Iterable[Tuple[int, int]], value: str) -> Matrix:
    rows = [list(r) for r in matrix]
    for row, col in cells:
        _check_cell(row, col)
        rows[row][col] = value
    return tuple(tuple(r) for r in rows)


class CountGrid:
    """
    Grid access over the analyses mapping of a working set.

    The mapping is shared, not copied: every mutation replaces the sample's
    :class:`~fibrecount.models.Analysis` in place with a new record whose
    ``fibres_counted`` / ``fields_counted`` are recomputed from the new grid.

    Clearing is a two-step transition: :meth:`clear` only records the
    request, :meth:`confirm_clear` performs it and :meth:`cancel_clear`
    forgets it.
    """

    def __init__(self, analyses: MutableMapping[str, Analysis]):
        self._analyses = analyses
        self._pending_clear: Optional[str] = None

    # ------------------------------------------------------------------ #
    # reads                                                              #
    # ------------------------------------------------------------------ #
    def get(self, sample_id: str) -> Matrix:
        return self._analyses[sample_id].fibre_counts

    @property
    def pending_clear(self) -> Optional[str]:
        """Sample id awaiting clear confirmation, if any."""
        return self._pending_clear

    # ------------------------------------------------------------------ #
    # writes                                                             #
    # ------------------------------------------------------------------ #
    def set(self, sample_id: str, row: int, col: int, raw: Optional[str]) -> Matrix:
        """Store *raw* at (row, col); rejected input leaves the grid as is."""
        _check_cell(row, col)
        value = parse_cell(raw)
        if value is None:
            logger.debug("Ignored input %r for %s (%s, %s)", raw, sample_id, row, col)
            return self.get(sample_id)
        return self._store(sample_id, _with_cells(self.get(sample_id), [(row, col)], value))

    def fill(self, sample_id: str, cells: Iterable[Tuple[int, int]], value: str) -> Matrix:
        """Write the same already-valid *value* into every cell of *cells*."""
        return self._store(sample_id, _with_cells(self.get(sample_id), cells, value))

    def fill_zeros(self, sample_id: str) -> Matrix:
        """Mark all 100 fields as counted with no fibres."""
        return self._store(sample_id, filled_matrix("0"))

    def clear(self, sample_id: str) -> Matrix:
        """Request a full clear of *sample_id*; nothing changes until confirmed."""
        self.get(sample_id)  # KeyError for unknown samples
        self._pending_clear = sample_id
        return self.get(sample_id)

    def confirm_clear(self) -> Optional[Matrix]:
        """Empty the pending sample's grid and zero its totals."""
        sample_id, self._pending_clear = self._pending_clear, None
        if sample_id is None:
            return None
        logger.debug("Cleared fibre counts for %s", sample_id)
        return self._store(sample_id, empty_matrix())

    def cancel_clear(self) -> None:
        self._pending_clear = None

    def replace(self, sample_id: str, matrix: Matrix) -> Matrix:
        """Put back a whole grid (used to restore a snapshot)."""
        return self._store(sample_id, matrix)

    # ------------------------------------------------------------------ #
    def _store(self, sample_id: str, matrix: Matrix) -> Matrix:
        fibres, fields = aggregate(matrix)
        self._analyses[sample_id] = self._analyses[sample_id].with_changes(
            fibre_counts=matrix,
            fibres_counted=fibres,
            fields_counted=fields,
        )
        return matrix
