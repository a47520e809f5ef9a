"""
Plain-dict / YAML forms of batches and drafts.

Batch file schema
~~~~~~~~~~~~~~~~~
id: "SHIFT-0042"
status: in_progress            # or complete
analyst: "Jo Bloggs"
analysis_date: null
calibration:
  microscope: PCM-1
  test_slide: HSE-7
  test_slide_line_count: "5"
samples:
  - id: s1
    label: "LD-1234-AM1"
    cowl_number: "C17"
    start_time: "07:05"
    end_time: "15:10"
    average_flow_rate: 2.0
    filter_size: 25mm          # optional
    collection_failed: false   # optional
    is_field_blank: false      # optional
analyses:                      # optional, keyed by sample id
  s1:
    edges_distribution: pass
    background_dust: low
    fibre_counts: [[...20 cells...], ...5 rows...]
    comment: ""

A draft file carries ``batch_id``, ``calibration``, ``analyses`` (partial
per-sample mappings), ``analyst``, ``analysis_date`` and ``timestamp``.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, Mapping

import yaml

from ..models import (
    COMPLETE,
    IN_PROGRESS,
    Analysis,
    Batch,
    Calibration,
    Draft,
    Sample,
    normalise_matrix,
)
from ..reconcile import analysis_fields, clean_analysis

__all__ = [
    "RecordError",
    "calibration_from_dict",
    "calibration_to_dict",
    "analysis_from_dict",
    "batch_from_dict",
    "batch_to_dict",
    "draft_from_dict",
    "draft_to_dict",
    "load_batch",
    "save_batch",
    "load_draft",
    "save_draft",
]

logger = logging.getLogger(__name__)


class RecordError(Exception):
    """Malformed batch or draft record."""


def _text(value: Any) -> str:
    return "" if value is None else str(value)


def _opt_text(value: Any) -> str | None:
    return None if value is None or value == "" else str(value)


def _clock_text(value: Any, what: str) -> str | None:
    """
    Wall-clock time as text.

    YAML 1.1 reads an unquoted ``10:30`` as the base-60 integer 630 (and
    ``10:30:15`` as 37815), so integers are turned back into ``HH:MM`` or
    ``HH:MM:SS``.
    """
    if isinstance(value, bool):
        raise RecordError(f"Bad {what} {value!r}")
    if isinstance(value, int):
        if 0 <= value < 24 * 60:
            return "%02d:%02d" % divmod(value, 60)
        if 0 <= value < 24 * 3600:
            minutes, seconds = divmod(value, 60)
            return "%02d:%02d:%02d" % (*divmod(minutes, 60), seconds)
        raise RecordError(f"Bad {what} {value!r}")
    return _opt_text(value)


# ───────────────────────────── calibration ─────────────────────────────
def calibration_from_dict(data: Mapping[str, Any] | None) -> Calibration:
    data = data or {}
    return Calibration(
        microscope=_text(data.get("microscope")),
        test_slide=_text(data.get("test_slide")),
        test_slide_line_count=_text(data.get("test_slide_line_count")),
    )


def calibration_to_dict(cal: Calibration) -> Dict[str, str]:
    return {
        "microscope": cal.microscope,
        "test_slide": cal.test_slide,
        "test_slide_line_count": cal.test_slide_line_count,
    }


# ────────────────────────────── samples ─────────────────────────────────
def _sample_from_dict(data: Mapping[str, Any]) -> Sample:
    if not isinstance(data, Mapping) or "id" not in data:
        raise RecordError("Each sample needs an 'id'")

    flow = data.get("average_flow_rate")
    try:
        flow = None if flow in (None, "") else float(flow)
    except (TypeError, ValueError) as exc:
        raise RecordError(f"Bad average_flow_rate {flow!r} for sample {data['id']}") from exc

    return Sample(
        id=str(data["id"]),
        label=_text(data.get("label")),
        cowl_number=_text(data.get("cowl_number")),
        start_time=_clock_text(data.get("start_time"), f"start_time for sample {data['id']}"),
        end_time=_clock_text(data.get("end_time"), f"end_time for sample {data['id']}"),
        average_flow_rate=flow,
        filter_size=_opt_text(data.get("filter_size")),
        collection_failed=bool(data.get("collection_failed", False)),
        is_field_blank=bool(data.get("is_field_blank", False)),
    )


def _sample_to_dict(s: Sample) -> Dict[str, Any]:
    return {
        "id": s.id,
        "label": s.label,
        "cowl_number": s.cowl_number,
        "start_time": s.start_time,
        "end_time": s.end_time,
        "average_flow_rate": s.average_flow_rate,
        "filter_size": s.filter_size,
        "collection_failed": s.collection_failed,
        "is_field_blank": s.is_field_blank,
    }


# ───────────────────────────── analyses ─────────────────────────────────
def analysis_from_dict(data: Mapping[str, Any] | None, sample_id: str = "?") -> Analysis:
    """
    Full analysis record; totals are taken as stored (reconcile recomputes).

    Invalid grid cells and unknown quality flags are dropped with a warning.
    """
    data = data or {}
    try:
        fibres = float(data.get("fibres_counted") or 0)
        fields = int(data.get("fields_counted") or 0)
    except (TypeError, ValueError):
        # "-" is stored for uncountable filters
        fibres, fields = 0.0, 0
    raw = Analysis(
        edges_distribution=_text(data.get("edges_distribution")),
        background_dust=_text(data.get("background_dust")),
        fibre_counts=normalise_matrix(data.get("fibre_counts")),
        reported_concentration=_opt_text(data.get("reported_concentration")),
        comment=_text(data.get("comment")),
    )
    return clean_analysis(raw, sample_id).with_changes(
        fibres_counted=fibres, fields_counted=fields
    )


# ─────────────────────────────── batch ──────────────────────────────────
def batch_from_dict(data: Mapping[str, Any]) -> Batch:
    if not isinstance(data, Mapping):
        raise RecordError("Batch record must be a mapping")
    if "id" not in data:
        raise RecordError("Top-level key 'id' missing")

    status = data.get("status") or IN_PROGRESS
    if status not in (IN_PROGRESS, COMPLETE):
        raise RecordError(f"Unknown batch status {status!r}")

    samples = tuple(_sample_from_dict(s) for s in data.get("samples") or [])
    ids = [s.id for s in samples]
    if len(set(ids)) != len(ids):
        raise RecordError("Duplicate sample ids in batch")

    raw_analyses = data.get("analyses") or {}
    unknown = set(map(str, raw_analyses)) - set(ids)
    if unknown:
        raise RecordError(f"Analyses for unknown samples: {sorted(unknown)}")

    return Batch(
        id=str(data["id"]),
        samples=samples,
        calibration=calibration_from_dict(data.get("calibration")),
        analyses={str(k): analysis_from_dict(v, str(k)) for k, v in raw_analyses.items()},
        analyst=_text(data.get("analyst")),
        analysis_date=_opt_text(data.get("analysis_date")),
        status=status,
    )


def batch_to_dict(batch: Batch) -> Dict[str, Any]:
    return {
        "id": batch.id,
        "status": batch.status,
        "analyst": batch.analyst,
        "analysis_date": batch.analysis_date,
        "calibration": calibration_to_dict(batch.calibration),
        "samples": [_sample_to_dict(s) for s in batch.samples],
        "analyses": {sid: analysis_fields(a) for sid, a in batch.analyses.items()},
    }


# ─────────────────────────────── draft ──────────────────────────────────
def draft_from_dict(data: Mapping[str, Any]) -> Draft:
    if not isinstance(data, Mapping) or "batch_id" not in data:
        raise RecordError("Draft record needs a 'batch_id'")

    analyses = data.get("analyses") or {}
    if not isinstance(analyses, Mapping) or not all(
        isinstance(v, Mapping) for v in analyses.values()
    ):
        raise RecordError("Draft 'analyses' must map sample ids to mappings")

    return Draft(
        batch_id=str(data["batch_id"]),
        calibration=calibration_from_dict(data.get("calibration")),
        analyses={str(k): dict(v) for k, v in analyses.items()},
        analyst=_text(data.get("analyst")),
        analysis_date=_opt_text(data.get("analysis_date")),
        timestamp=_opt_text(data.get("timestamp")),
    )


def draft_to_dict(draft: Draft) -> Dict[str, Any]:
    return {
        "batch_id": draft.batch_id,
        "timestamp": draft.timestamp,
        "analyst": draft.analyst,
        "analysis_date": draft.analysis_date,
        "calibration": calibration_to_dict(draft.calibration),
        "analyses": {
            sid: {
                k: ([list(r) for r in v] if k == "fibre_counts" else v)
                for k, v in fields.items()
            }
            for sid, fields in draft.analyses.items()
        },
    }


# ─────────────────────────────── files ──────────────────────────────────
def _read_yaml(path: Path) -> Any:
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(path)
    try:
        return yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        raise RecordError(f"{path.name}: {exc}") from exc


def _write_yaml(data: Any, path: Path) -> None:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(yaml.safe_dump(data, sort_keys=False), encoding="utf-8")


def load_batch(path: Path | str) -> Batch:
    return batch_from_dict(_read_yaml(Path(path)))


def save_batch(batch: Batch, path: Path | str) -> None:
    _write_yaml(batch_to_dict(batch), Path(path))


def load_draft(path: Path | str) -> Draft:
    return draft_from_dict(_read_yaml(Path(path)))


def save_draft(draft: Draft, path: Path | str) -> None:
    _write_yaml(draft_to_dict(draft), Path(path))
    logger.debug("Draft for batch %s written to %s", draft.batch_id, path)
