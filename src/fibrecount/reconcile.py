"""
Draft reconciliation.

On load the analyst's cached draft is merged with the authoritative batch
into one working set:

* a draft for another batch (or no draft) is ignored entirely;
* calibration / analyst / date come from the server once any sample has
  server-side analysis data, from the draft otherwise;
* per sample, every field present in the draft is overlaid on the server
  record (field-level merge).
"""

from __future__ import annotations

import datetime as dt
import logging
from typing import Any, Dict, Mapping, Optional

from .aggregate import aggregate
from .grid import parse_cell
from .models import (
    ANALYSIS_FIELDS,
    DUST_OPTIONS,
    EDGES_OPTIONS,
    EMPTY,
    Analysis,
    Batch,
    Draft,
    Matrix,
    WorkingSet,
    normalise_matrix,
)

__all__ = [
    "clean_matrix",
    "clean_analysis",
    "server_analyses",
    "reconcile",
    "build_draft",
    "analysis_fields",
]

logger = logging.getLogger(__name__)

_TEXT_FIELDS = ("edges_distribution", "background_dust", "comment")
_FLAG_OPTIONS = {
    "edges_distribution": EDGES_OPTIONS + (EMPTY,),
    "background_dust": DUST_OPTIONS + (EMPTY,),
}


def _valid_flag(name: str, value: Any, sample_id: str) -> bool:
    if name not in _FLAG_OPTIONS or value in _FLAG_OPTIONS[name]:
        return True
    logger.warning("Dropping invalid %s %r for sample %s", name, value, sample_id)
    return False


def clean_matrix(raw: Any, sample_id: str = "?") -> Matrix:
    """
    Strict 5×20 matrix of valid cell values.

    Every cell goes through :func:`~fibrecount.grid.parse_cell`; a cell it
    rejects becomes empty and is logged.
    """
    rows = []
    for r, row in enumerate(normalise_matrix(raw)):
        cells = []
        for c, cell in enumerate(row):
            value = parse_cell(cell)
            if value is None:
                logger.warning(
                    "Dropping invalid cell %r at (%s, %s) for sample %s", cell, r, c, sample_id
                )
                value = EMPTY
            cells.append(value)
        rows.append(tuple(cells))
    return tuple(rows)


def clean_analysis(analysis: Analysis, sample_id: str = "?") -> Analysis:
    """Validate grid cells and quality flags, then recompute totals from the grid."""
    changes: Dict[str, Any] = {}
    for name in _FLAG_OPTIONS:
        if not _valid_flag(name, getattr(analysis, name), sample_id):
            changes[name] = EMPTY
    matrix = clean_matrix(analysis.fibre_counts, sample_id)
    fibres, fields = aggregate(matrix)
    return analysis.with_changes(
        fibre_counts=matrix, fibres_counted=fibres, fields_counted=fields, **changes
    )


def server_analyses(batch: Batch) -> Dict[str, Analysis]:
    """One analysis per sample: the stored one, or an empty record."""
    return {
        s.id: clean_analysis(batch.analyses.get(s.id) or Analysis(), s.id)
        for s in batch.samples
    }


def _overlay(base: Analysis, fields: Mapping[str, Any], sample_id: str) -> Analysis:
    changes: Dict[str, Any] = {}
    for name, value in fields.items():
        if name not in ANALYSIS_FIELDS:
            logger.warning("Dropping unknown draft field %r for sample %s", name, sample_id)
            continue
        if value is None and name in _TEXT_FIELDS:
            value = ""
        if not _valid_flag(name, value, sample_id):
            continue
        changes[name] = value
    return clean_analysis(base.with_changes(**changes), sample_id)


def reconcile(server_batch: Batch, local_draft: Optional[Draft]) -> WorkingSet:
    """
    Build the working set for *server_batch*.

    Parameters
    ----------
    server_batch
        Batch as returned by the batch store.
    local_draft
        Cached draft, or ``None`` if the draft store had nothing.
    """
    analyses = server_analyses(server_batch)
    working = WorkingSet(
        batch=server_batch,
        calibration=server_batch.calibration,
        analyses=analyses,
        analyst=server_batch.analyst,
        analysis_date=server_batch.analysis_date,
    )

    if local_draft is None:
        return working
    if local_draft.batch_id != server_batch.id:
        logger.info(
            "Ignoring draft for batch %s while batch %s is open",
            local_draft.batch_id,
            server_batch.id,
        )
        return working

    server_started = any(a.is_started for a in server_batch.analyses.values())
    if not server_started:
        working.calibration = local_draft.calibration
        working.analyst = local_draft.analyst
        working.analysis_date = local_draft.analysis_date

    for sample_id, fields in local_draft.analyses.items():
        if sample_id not in analyses:
            logger.warning("Dropping draft analysis for unknown sample %s", sample_id)
            continue
        analyses[sample_id] = _overlay(analyses[sample_id], fields, sample_id)

    logger.info(
        "Restored draft for batch %s (%s samples, saved %s)",
        server_batch.id,
        len(local_draft.analyses),
        local_draft.timestamp,
    )
    return working


def analysis_fields(analysis: Analysis) -> Dict[str, Any]:
    """Every field of *analysis* as a plain mapping (grid as lists)."""
    return {
        "edges_distribution": analysis.edges_distribution,
        "background_dust": analysis.background_dust,
        "fibre_counts": [list(row) for row in analysis.fibre_counts],
        "fibres_counted": analysis.fibres_counted,
        "fields_counted": analysis.fields_counted,
        "reported_concentration": analysis.reported_concentration,
        "comment": analysis.comment,
    }


def build_draft(working: WorkingSet, timestamp: Optional[str] = None) -> Draft:
    """Snapshot *working* as a full draft."""
    return Draft(
        batch_id=working.batch.id,
        calibration=working.calibration,
        analyses={sid: analysis_fields(a) for sid, a in working.analyses.items()},
        analyst=working.analyst,
        analysis_date=working.analysis_date,
        timestamp=timestamp or dt.datetime.now().isoformat(timespec="seconds"),
    )
