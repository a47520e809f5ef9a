"""
Airborne fibre concentration (AFC).

    c = K × (max(fibres, 10) / fields) × 1 / (flow[L/min] × 1000 × minutes)

with *K* the microscope constant of the graticule/filter combination. The
result is in fibres per millilitre of air.
"""

from __future__ import annotations

import datetime as dt
import logging
from typing import NamedTuple, Optional

from .models import Analysis, Sample

__all__ = [
    "MIN_FIBRES",
    "REPORTING_LIMIT",
    "BELOW_LIMIT",
    "NOT_AVAILABLE",
    "UNCOUNTABLE_DUST",
    "ConcentrationResult",
    "parse_clock",
    "duration_minutes",
    "calculate_concentration",
    "report_concentration",
    "sample_concentration",
]

logger = logging.getLogger(__name__)

MIN_FIBRES = 10            # minimum detectable count used in the ratio
REPORTING_LIMIT = 0.0149   # below this (and < MIN_FIBRES counted) → "<0.01"

BELOW_LIMIT = "<0.01"
NOT_AVAILABLE = "N/A"
UNCOUNTABLE_DUST = "UDD"

_CLOCK_FORMATS = ("%H:%M", "%H:%M:%S")
_ANCHOR = dt.date(2000, 1, 1)


class ConcentrationResult(NamedTuple):
    calculated: Optional[float]
    reported: str


# ─────────────────────────────── duration ───────────────────────────────
def parse_clock(value: Optional[str]) -> Optional[dt.time]:
    """``"09:30"`` / ``"09:30:15"`` → :class:`datetime.time`; else ``None``."""
    if not value:
        return None
    text = str(value).strip()
    for fmt in _CLOCK_FORMATS:
        try:
            return dt.datetime.strptime(text, fmt).time()
        except ValueError:
            continue
    logger.warning("Unreadable clock time %r treated as missing", value)
    return None


def duration_minutes(start_time: Optional[str], end_time: Optional[str]) -> int:
    """
    Sampling time in whole minutes.

    An end earlier than the start belongs to the next day (night shift).
    A missing time gives ``0``.

    >>> duration_minutes("23:00", "01:00")
    120
    """
    start = parse_clock(start_time)
    end = parse_clock(end_time)
    if start is None or end is None:
        return 0

    t0 = dt.datetime.combine(_ANCHOR, start)
    t1 = dt.datetime.combine(_ANCHOR, end)
    if t1 < t0:
        t1 += dt.timedelta(days=1)
    return round((t1 - t0).total_seconds() / 60)


# ────────────────────────────── concentration ───────────────────────────
def calculate_concentration(
    fibres_counted: float,
    fields_counted: int,
    average_flow_rate: Optional[float],
    minutes: float,
    microscope_constant: float,
) -> Optional[float]:
    """
    Raw AFC in fibres/mL, rounded to 4 dp.

    Returns ``None`` whenever a denominator would be zero (no fields, no
    flow, no sampling time).
    """
    flow = float(average_flow_rate or 0)
    if fields_counted <= 0 or flow <= 0 or minutes <= 0:
        return None

    fibres_for_calculation = max(float(fibres_counted), MIN_FIBRES)
    conc = (
        microscope_constant
        * (fibres_for_calculation / fields_counted)
        * (1 / (flow * 1000 * minutes))
    )
    return round(conc, 4)


def report_concentration(calculated: Optional[float], fibres_counted: float) -> str:
    """
    Display value for the report.

    The floor test uses the *raw* ``fibres_counted``, not the 10-fibre
    minimum substituted in the ratio.
    """
    if calculated is None:
        return NOT_AVAILABLE
    if calculated < REPORTING_LIMIT and fibres_counted < MIN_FIBRES:
        return BELOW_LIMIT
    return f"{calculated:.3f}"


def sample_concentration(
    sample: Sample,
    analysis: Analysis,
    microscope_constant: float,
) -> ConcentrationResult:
    """Calculated and reported AFC for one sample of a batch."""
    if sample.collection_failed:
        return ConcentrationResult(None, NOT_AVAILABLE)
    if analysis.uncountable_due_to_dust:
        return ConcentrationResult(None, UNCOUNTABLE_DUST)

    calculated = calculate_concentration(
        analysis.fibres_counted,
        analysis.fields_counted,
        sample.average_flow_rate,
        duration_minutes(sample.start_time, sample.end_time),
        microscope_constant,
    )
    return ConcentrationResult(
        calculated, report_concentration(calculated, analysis.fibres_counted)
    )
