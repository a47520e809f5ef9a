"""
Analysis session.

One :class:`AnalysisSession` drives the editing of a single batch: it loads
and reconciles the batch with the cached draft, routes every edit through
the grid model, rewrites the draft after each change, and persists the
result on save / finalise.
"""

from __future__ import annotations

import datetime as dt
import logging
from typing import Dict, List, Optional, Sequence, Tuple

from .analysis import field_blank_flagged
from .calibration import ConstantInfo, MicroscopeConstants
from .completeness import Completeness, evaluate
from .concentration import ConcentrationResult, sample_concentration
from .grid import CountGrid
from .models import (
    COMPLETE,
    DUST_OPTIONS,
    EDGES_OPTIONS,
    EMPTY,
    Analysis,
    Calibration,
    Matrix,
    Sample,
    WorkingSet,
)
from .reconcile import build_draft, reconcile
from .router import InputRouter, RouteResult
from .stores import BatchStore, DraftStore, StoreError

__all__ = [
    "DEFAULT_DRAFT_KEY",
    "SessionError",
    "LoadError",
    "SaveError",
    "FinaliseError",
    "ReadOnlyError",
    "AnalysisSession",
]

logger = logging.getLogger(__name__)

DEFAULT_DRAFT_KEY = "analysis_progress"


class SessionError(RuntimeError):
    """An action is not allowed in the current session state."""


class LoadError(SessionError):
    pass


class SaveError(SessionError):
    pass


class FinaliseError(SessionError):
    pass


class ReadOnlyError(SessionError):
    pass


class AnalysisSession:
    """
    Editable analysis of one batch.

    Build with :meth:`load`; the constructor takes an already reconciled
    working set and is mostly useful in tests.

    Parameters
    ----------
    working
        Reconciled working set.
    batch_store, draft_store
        Persistence collaborators.
    constants
        Microscope constant lookup.
    draft_key
        Session key under which the draft is cached.
    analysts
        Names the analyst may be chosen from, as built by
        :func:`fibrecount.options.eligible_analysts`; ``None`` accepts any.
    """

    def __init__(
        self,
        working: WorkingSet,
        batch_store: BatchStore,
        draft_store: DraftStore,
        constants: Optional[MicroscopeConstants] = None,
        *,
        draft_key: str = DEFAULT_DRAFT_KEY,
        analysts: Optional[Sequence[str]] = None,
    ):
        self.working = working
        self.batch_store = batch_store
        self.draft_store = draft_store
        self.constants = constants or MicroscopeConstants()
        self.draft_key = draft_key
        self.analysts = None if analysts is None else list(analysts)

        self.grid = CountGrid(working.analyses)
        self.router = InputRouter(self.grid, self.is_editable)
        self._snapshots: Dict[str, Matrix] = {}
        self._baseline = _state(reconcile(working.batch, None))

    # ------------------------------------------------------------------ #
    # loading                                                            #
    # ------------------------------------------------------------------ #
    @classmethod
    def load(
        cls,
        batch_id: str,
        batch_store: BatchStore,
        draft_store: DraftStore,
        constants: Optional[MicroscopeConstants] = None,
        *,
        draft_key: str = DEFAULT_DRAFT_KEY,
        analysts: Optional[Sequence[str]] = None,
    ) -> "AnalysisSession":
        """
        Fetch the batch and the cached draft and reconcile them.

        Raises
        ------
        LoadError
            Either store failed; no working set is built.
        """
        try:
            batch = batch_store.get_batch(batch_id)
            draft = draft_store.get_draft(draft_key)
        except StoreError as exc:
            raise LoadError(f"Could not load batch {batch_id}: {exc}") from exc

        working = reconcile(batch, draft)
        logger.info("Loaded batch %s with %d samples", batch.id, len(batch.samples))
        return cls(
            working, batch_store, draft_store, constants,
            draft_key=draft_key, analysts=analysts,
        )

    # ------------------------------------------------------------------ #
    # state helpers                                                      #
    # ------------------------------------------------------------------ #
    @property
    def read_only(self) -> bool:
        return self.working.read_only

    @property
    def samples(self) -> Tuple[Sample, ...]:
        return tuple(self.working.samples)

    def analysis(self, sample_id: str) -> Analysis:
        return self.working.analysis(sample_id)

    def _sample(self, sample_id: str) -> Sample:
        return self.working.batch.sample(sample_id)

    def _check_writable(self) -> None:
        if self.read_only:
            raise ReadOnlyError(f"Batch {self.working.batch.id} is finalised")

    def _check_grid(self, sample_id: str) -> None:
        self._check_writable()
        if not self.is_editable(sample_id):
            raise SessionError(f"Fibre counts of {sample_id} cannot be edited")

    def _touched(self) -> None:
        """Overwrite the cached draft with the current working set."""
        try:
            self.draft_store.set_draft(self.draft_key, build_draft(self.working))
        except StoreError as exc:
            logger.warning("Draft not written: %s", exc)

    def _update(self, sample_id: str, **changes) -> Analysis:
        updated = self.analysis(sample_id).with_changes(**changes)
        self.working.analyses[sample_id] = updated
        self._touched()
        return updated

    # ------------------------------------------------------------------ #
    # batch-level fields                                                 #
    # ------------------------------------------------------------------ #
    def set_calibration(
        self,
        microscope: Optional[str] = None,
        test_slide: Optional[str] = None,
        test_slide_line_count: Optional[str] = None,
    ) -> Calibration:
        """Change any of the three calibration settings; ``None`` keeps a value."""
        self._check_writable()
        cal = self.working.calibration
        self.working.calibration = Calibration(
            microscope=cal.microscope if microscope is None else microscope,
            test_slide=cal.test_slide if test_slide is None else test_slide,
            test_slide_line_count=(
                cal.test_slide_line_count
                if test_slide_line_count is None
                else str(test_slide_line_count)
            ),
        )
        self._touched()
        return self.working.calibration

    def set_analyst(self, analyst: str) -> None:
        """
        Raises
        ------
        ValueError
            *analyst* is not among the session's eligible analysts.
        """
        self._check_writable()
        if self.analysts is not None and analyst and analyst not in self.analysts:
            raise ValueError(f"{analyst!r} is not an eligible analyst")
        self.working.analyst = analyst
        self._touched()

    # ------------------------------------------------------------------ #
    # per-sample fields                                                  #
    # ------------------------------------------------------------------ #
    def set_quality(
        self,
        sample_id: str,
        edges_distribution: Optional[str] = None,
        background_dust: Optional[str] = None,
    ) -> Analysis:
        """
        Set the filter quality flags; a ``"fail"`` makes the sample uncountable.

        Raises
        ------
        ValueError
            A flag value outside the allowed options.
        """
        self._check_writable()
        changes = {}
        if edges_distribution is not None:
            if edges_distribution not in EDGES_OPTIONS + (EMPTY,):
                raise ValueError(f"Bad edges/distribution value {edges_distribution!r}")
            changes["edges_distribution"] = edges_distribution
        if background_dust is not None:
            if background_dust not in DUST_OPTIONS + (EMPTY,):
                raise ValueError(f"Bad background dust value {background_dust!r}")
            changes["background_dust"] = background_dust
        return self._update(sample_id, **changes)

    def set_comment(self, sample_id: str, comment: str) -> Analysis:
        self._check_writable()
        return self._update(sample_id, comment=comment or "")

    # ------------------------------------------------------------------ #
    # grid                                                               #
    # ------------------------------------------------------------------ #
    def is_editable(self, sample_id: str) -> bool:
        """Grid input allowed: batch open, calibration set, sample countable."""
        if self.read_only or not self.working.calibration.is_complete:
            return False
        return not self.analysis(sample_id).is_uncountable

    def edit_cell(self, sample_id: str, row: int, col: int, value: Optional[str]) -> RouteResult:
        result = self.router.edit(sample_id, row, col, value)
        if result.accepted:
            self._touched()
        return result

    def press_key(self, sample_id: str, row: int, col: int, key: str) -> RouteResult:
        result = self.router.key(sample_id, row, col, key)
        if result.accepted:
            self._touched()
        return result

    def fill_zeros(self, sample_id: str) -> Matrix:
        self._check_grid(sample_id)
        matrix = self.grid.fill_zeros(sample_id)
        self._touched()
        return matrix

    def request_clear(self, sample_id: str) -> None:
        self._check_grid(sample_id)
        self.grid.clear(sample_id)

    def confirm_clear(self) -> Optional[Matrix]:
        """
        Clear the grid named by :meth:`request_clear`.

        The sample must still be editable; if it was failed in between, the
        request is dropped and :class:`SessionError` raised.
        """
        self._check_writable()
        pending = self.grid.pending_clear
        if pending is not None:
            try:
                self._check_grid(pending)
            except SessionError:
                self.grid.cancel_clear()
                raise
        matrix = self.grid.confirm_clear()
        if matrix is not None:
            self._touched()
        return matrix

    def cancel_clear(self) -> None:
        self.grid.cancel_clear()

    # fibre-count entry: opened per sample, cancel puts the grid back
    def open_counts(self, sample_id: str) -> Matrix:
        self._check_writable()
        if not self.analysis(sample_id).has_quality_flags:
            raise SessionError(
                "Set edges/distribution and background dust before counting fibres"
            )
        self._snapshots[sample_id] = self.grid.get(sample_id)
        return self._snapshots[sample_id]

    def cancel_counts(self, sample_id: str) -> Matrix:
        snapshot = self._snapshots.pop(sample_id, None)
        if snapshot is None:
            return self.grid.get(sample_id)
        if snapshot != self.grid.get(sample_id):
            self.grid.replace(sample_id, snapshot)
            self._touched()
        return snapshot

    def close_counts(self, sample_id: str) -> Matrix:
        self._snapshots.pop(sample_id, None)
        return self.grid.get(sample_id)

    # ------------------------------------------------------------------ #
    # derived values                                                     #
    # ------------------------------------------------------------------ #
    def microscope_constant(self, sample_id: str) -> ConstantInfo:
        return self.constants.lookup(
            self.working.calibration.microscope, self._sample(sample_id).filter_size
        )

    def concentration(self, sample_id: str) -> ConcentrationResult:
        return sample_concentration(
            self._sample(sample_id),
            self.analysis(sample_id),
            self.microscope_constant(sample_id).constant,
        )

    @property
    def completeness(self) -> Completeness:
        return evaluate(self.working.calibration, self.working.samples, self.working.analyses)

    @property
    def has_unsaved_changes(self) -> bool:
        return _state(self.working) != self._baseline

    def field_blank_warnings(self) -> List[str]:
        """Labels of field blanks whose count invalidates the batch."""
        return [
            s.label or s.id
            for s, a in self.working.iter_pairs()
            if field_blank_flagged(s, a)
        ]

    # ------------------------------------------------------------------ #
    # persistence                                                        #
    # ------------------------------------------------------------------ #
    def _analyses_for_store(self) -> Dict[str, Analysis]:
        out = {}
        for sample, analysis in self.working.iter_pairs():
            reported = self.concentration(sample.id).reported
            out[sample.id] = analysis.with_changes(reported_concentration=reported)
        return out

    def _persist(self, patch: dict) -> None:
        batch_id = self.working.batch.id
        try:
            updated = self.batch_store.update_batch(batch_id, patch)
        except StoreError as exc:
            logger.error("Saving batch %s failed: %s", batch_id, exc)
            raise SaveError(f"Could not save batch {batch_id}: {exc}") from exc

        self.working.batch = updated
        self.working.analyses.update(patch["analyses"])
        for key in ("calibration", "analyst", "analysis_date"):
            if key in patch:
                setattr(self.working, key, patch[key])
        self._baseline = _state(self.working)

        try:
            self.draft_store.delete_draft(self.draft_key)
        except StoreError as exc:
            logger.warning("Draft for batch %s not deleted: %s", batch_id, exc)

    def save(self) -> None:
        """
        Persist calibration, analyst and analyses.

        Raises
        ------
        SaveError
            The batch store refused the update; the draft is kept.
        """
        self._check_writable()
        self._persist(
            {
                "calibration": self.working.calibration,
                "analyst": self.working.analyst,
                "analyses": self._analyses_for_store(),
            }
        )
        logger.info("Saved batch %s", self.working.batch.id)

    def finalise(self, today: Optional[dt.date] = None) -> None:
        """
        Persist the analysis and mark the batch complete.

        Raises
        ------
        FinaliseError
            Batch incomplete or no analyst chosen.
        SaveError
            The batch store refused the update; the batch stays in progress.
        """
        self._check_writable()
        state = self.completeness
        if not state.is_complete:
            raise FinaliseError("Batch is incomplete: " + "; ".join(state.problems))
        if not self.working.analyst.strip():
            raise FinaliseError("Analyst is required")

        analysis_date = (today or dt.date.today()).isoformat()
        self._persist(
            {
                "calibration": self.working.calibration,
                "analyst": self.working.analyst,
                "analyses": self._analyses_for_store(),
                "analysis_date": analysis_date,
                "status": COMPLETE,
            }
        )
        logger.info("Finalised batch %s on %s", self.working.batch.id, analysis_date)

    def discard_draft(self) -> None:
        try:
            self.draft_store.delete_draft(self.draft_key)
        except StoreError as exc:
            logger.warning("Draft not deleted: %s", exc)


def _state(working: WorkingSet) -> tuple:
    return (
        working.calibration,
        working.analyst,
        working.analysis_date,
        {
            sid: a.with_changes(reported_concentration=None)
            for sid, a in working.analyses.items()
        },
    )
