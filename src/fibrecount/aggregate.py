"""Fibre / field totals derived from a count grid."""

from __future__ import annotations

from typing import NamedTuple, Sequence

import numpy as np

from .models import Matrix

__all__ = ["Aggregates", "cell_values", "aggregate"]


class Aggregates(NamedTuple):
    fibres_counted: float
    fields_counted: int


def _to_number(cell: str) -> float:
    try:
        value = float(str(cell).strip())
    except ValueError:
        return np.nan
    return value if np.isfinite(value) else np.nan


def cell_values(matrix: Matrix | Sequence[Sequence[str]]) -> np.ndarray:
    """
    Numeric view of *matrix*: a float array of the same shape with ``nan``
    wherever the cell is empty or does not parse as a finite number.
    """
    return np.array([[_to_number(c) for c in row] for row in matrix], dtype=float)


def aggregate(matrix: Matrix | Sequence[Sequence[str]]) -> Aggregates:
    """
    Sum every numeric cell and count how many there are.

    >>> aggregate((("1", "0.5", ""),))
    Aggregates(fibres_counted=1.5, fields_counted=2)
    """
    values = cell_values(matrix)
    counted = ~np.isnan(values)
    fibres = float(values[counted].sum()) if counted.any() else 0.0
    return Aggregates(round(fibres, 1), int(counted.sum()))
