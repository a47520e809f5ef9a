"""
Record types shared by every part of the engine.

Sample / Calibration / Analysis / Batch mirror the authoritative record held
by the batch store; Draft is the locally cached in-progress copy and
WorkingSet is the single reconciled state the analyst edits.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Dict, Iterable, Mapping, Optional, Sequence, Tuple

__all__ = [
    "ROWS",
    "COLS",
    "EMPTY",
    "HALF_FIBRE",
    "FAIL",
    "EDGES_OPTIONS",
    "DUST_OPTIONS",
    "IN_PROGRESS",
    "COMPLETE",
    "Matrix",
    "empty_matrix",
    "filled_matrix",
    "normalise_matrix",
    "Sample",
    "Calibration",
    "Analysis",
    "Batch",
    "Draft",
    "WorkingSet",
    "ANALYSIS_FIELDS",
]

# ───────────────────────── grid shape & options ─────────────────────────
ROWS = 5
COLS = 20

EMPTY = ""
HALF_FIBRE = "0.5"

FAIL = "fail"
EDGES_OPTIONS = ("pass", FAIL)
DUST_OPTIONS = ("pass", "low", "medium", "high", FAIL)

IN_PROGRESS = "in_progress"
COMPLETE = "complete"

Matrix = Tuple[Tuple[str, ...], ...]


def empty_matrix() -> Matrix:
    return filled_matrix(EMPTY)


def filled_matrix(value: str) -> Matrix:
    return tuple(tuple(value for _ in range(COLS)) for _ in range(ROWS))


def normalise_matrix(raw: Any) -> Matrix:
    """
    Coerce whatever a store handed back into a strict 5×20 matrix of strings.

    A row with the wrong length becomes an empty row; anything that is not a
    5-row sequence becomes an empty matrix. ``None`` cells become empty.
    """
    if not isinstance(raw, (list, tuple)) or len(raw) != ROWS:
        return empty_matrix()

    rows = []
    for row in raw:
        if isinstance(row, (list, tuple)) and len(row) == COLS:
            rows.append(tuple(EMPTY if c is None else str(c) for c in row))
        else:
            rows.append(tuple(EMPTY for _ in range(COLS)))
    return tuple(rows)


# ─────────────────────────────── records ────────────────────────────────
@dataclass(slots=True, frozen=True)
class Sample:
    """
    One physical air filter.

    Parameters
    ----------
    id
        Store identifier, the key used by every analyses mapping.
    label
        Human sample reference (e.g. ``"LD-1234-AM3"``).
    start_time, end_time
        Local clock times ``HH:MM``; the run may cross midnight.
    average_flow_rate
        Litres per minute.
    filter_size
        ``"13mm"`` or ``"25mm"``; picks the graticule constant.
    collection_failed
        The field collection failed. No analysis is required and the
        concentration is always reported as ``"N/A"``.
    """

    id: str
    label: str = ""
    cowl_number: str = ""
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    average_flow_rate: Optional[float] = None
    filter_size: Optional[str] = None
    collection_failed: bool = False
    is_field_blank: bool = False


@dataclass(slots=True, frozen=True)
class Calibration:
    """Batch-level instrument settings shared by every sample."""

    microscope: str = ""
    test_slide: str = ""
    test_slide_line_count: str = ""

    @property
    def is_complete(self) -> bool:
        return bool(self.microscope and self.test_slide and self.test_slide_line_count)


@dataclass(slots=True, frozen=True)
class Analysis:
    """Fibre count record for one sample."""

    edges_distribution: str = EMPTY
    background_dust: str = EMPTY
    fibre_counts: Matrix = field(default_factory=empty_matrix, repr=False)
    fibres_counted: float = 0.0
    fields_counted: int = 0
    reported_concentration: Optional[str] = None
    comment: str = ""

    @property
    def is_uncountable(self) -> bool:
        return self.edges_distribution == FAIL or self.background_dust == FAIL

    @property
    def uncountable_due_to_dust(self) -> bool:
        return self.background_dust == FAIL

    @property
    def has_quality_flags(self) -> bool:
        return bool(self.edges_distribution and self.background_dust)

    @property
    def is_started(self) -> bool:
        """True once anything at all has been recorded for the sample."""
        if self.edges_distribution or self.background_dust or self.fields_counted:
            return True
        return any(cell != EMPTY for row in self.fibre_counts for cell in row)

    def with_changes(self, **changes: Any) -> "Analysis":
        return replace(self, **changes)


# field names a draft may carry for one analysis
ANALYSIS_FIELDS = frozenset(
    (
        "edges_distribution",
        "background_dust",
        "fibre_counts",
        "fibres_counted",
        "fields_counted",
        "reported_concentration",
        "comment",
    )
)


@dataclass(slots=True, frozen=True)
class Batch:
    """Authoritative analyst session record as returned by the batch store."""

    id: str
    samples: Tuple[Sample, ...] = ()
    calibration: Calibration = field(default_factory=Calibration)
    analyses: Mapping[str, Analysis] = field(default_factory=dict)
    analyst: str = ""
    analysis_date: Optional[str] = None
    status: str = IN_PROGRESS

    def __post_init__(self) -> None:
        object.__setattr__(self, "samples", tuple(self.samples))
        object.__setattr__(self, "analyses", dict(self.analyses))

    @property
    def is_finalised(self) -> bool:
        return self.status == COMPLETE

    def sample(self, sample_id: str) -> Sample:
        for s in self.samples:
            if s.id == sample_id:
                return s
        raise KeyError(sample_id)


@dataclass(slots=True, frozen=True)
class Draft:
    """
    Locally cached in-progress copy of a batch.

    ``analyses`` holds a *partial* field mapping per sample id; only the keys
    present are overlaid on the server record during reconciliation.
    """

    batch_id: str
    calibration: Calibration = field(default_factory=Calibration)
    analyses: Mapping[str, Mapping[str, Any]] = field(default_factory=dict)
    analyst: str = ""
    analysis_date: Optional[str] = None
    timestamp: Optional[str] = None


@dataclass(slots=True)
class WorkingSet:
    """The reconciled, editable state every component operates on."""

    batch: Batch
    calibration: Calibration
    analyses: Dict[str, Analysis]
    analyst: str = ""
    analysis_date: Optional[str] = None

    @property
    def samples(self) -> Sequence[Sample]:
        return self.batch.samples

    @property
    def read_only(self) -> bool:
        return self.batch.is_finalised

    def analysis(self, sample_id: str) -> Analysis:
        return self.analyses[sample_id]

    def iter_pairs(self) -> Iterable[Tuple[Sample, Analysis]]:
        for s in self.batch.samples:
            yield s, self.analyses.get(s.id, Analysis())
