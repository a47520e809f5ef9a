"""
Batch completeness gate.

A batch may only be finalised once the calibration is set and every sample
that needs analysis has its quality flags and a fully counted grid.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Mapping, Optional, Sequence, Tuple

from .models import EMPTY, Analysis, Calibration, Sample

__all__ = [
    "INCOMPLETE",
    "COMPLETE",
    "Completeness",
    "grid_is_full",
    "sample_is_analysed",
    "sample_status",
    "evaluate",
]

INCOMPLETE = "incomplete"
COMPLETE = "complete"


@dataclass(slots=True, frozen=True)
class Completeness:
    state: str
    problems: Tuple[str, ...] = ()

    @property
    def is_complete(self) -> bool:
        return self.state == COMPLETE


def grid_is_full(analysis: Analysis) -> bool:
    """All 100 cells hold something (``"0"`` counts as filled)."""
    return all(cell != EMPTY for row in analysis.fibre_counts for cell in row)


def sample_is_analysed(analysis: Optional[Analysis]) -> bool:
    if analysis is None or analysis.is_uncountable:
        return False
    return grid_is_full(analysis)


def sample_status(sample: Sample, analysis: Optional[Analysis]) -> str:
    """Short status label shown next to each sample."""
    if sample.collection_failed:
        return "Failed Sample Collection"
    if analysis is not None and analysis.is_uncountable:
        return "Uncountable"
    if sample_is_analysed(analysis):
        return "Sample Analysed"
    return "To be counted"


def _sample_problems(sample: Sample, analysis: Optional[Analysis]) -> List[str]:
    name = sample.label or sample.id
    if analysis is None:
        return [f"{name}: no analysis recorded"]
    if not analysis.has_quality_flags:
        return [f"{name}: edges/distribution and background dust must both be set"]
    if analysis.is_uncountable:
        return []
    if not grid_is_full(analysis):
        return [f"{name}: {100 - _filled(analysis)} fields still to be counted"]
    return []


def _filled(analysis: Analysis) -> int:
    return sum(cell != EMPTY for row in analysis.fibre_counts for cell in row)


def evaluate(
    calibration: Calibration,
    samples: Sequence[Sample],
    analyses: Mapping[str, Analysis],
) -> Completeness:
    """
    ``complete`` only when every requirement holds; otherwise
    ``incomplete`` with one reason per violation.

    Samples whose field collection failed need no analysis and are skipped.
    """
    problems: List[str] = []
    if not calibration.microscope:
        problems.append("Microscope not selected")
    if not calibration.test_slide:
        problems.append("Test slide not selected")
    if not calibration.test_slide_line_count:
        problems.append("Test slide line count not set")

    for sample in samples:
        if sample.collection_failed:
            continue
        problems.extend(_sample_problems(sample, analyses.get(sample.id)))

    state = COMPLETE if not problems else INCOMPLETE
    return Completeness(state, tuple(problems))
