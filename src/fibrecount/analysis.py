"""
Batch summary table
===================

* **build_summary**        – one row per sample: counts, constant, AFC
* **field_blank_flagged**  – elevated count on a field blank
"""

from __future__ import annotations

from collections import OrderedDict
from typing import List

import pandas as pd

from .calibration import MicroscopeConstants
from .completeness import sample_status
from .concentration import duration_minutes, sample_concentration
from .models import Analysis, Sample, WorkingSet

__all__ = [
    "FIELD_BLANK_LIMIT",
    "FIELD_BLANK_WARNING",
    "COLUMN_LABELS",
    "field_blank_flagged",
    "build_summary",
]

FIELD_BLANK_LIMIT = 2.5
FIELD_BLANK_WARNING = "Elevated fibre count for Field Blank - reject Samples"

# Summary column names → labels used by the Excel export. Keep in step with
# the keys emitted by ``build_summary``.
COLUMN_LABELS: "OrderedDict[str, str]" = OrderedDict(
    [
        ("Cowl", "Cowl"),
        ("Filter", "Filter size"),
        ("Minutes", "Duration (min)"),
        ("Flowrate_Lpm", "Flow rate (L/min)"),
        ("Edges", "Edges / distribution"),
        ("Dust", "Background dust"),
        ("Fibres", "Fibres counted"),
        ("Fields", "Fields counted"),
        ("Constant", "Microscope constant"),
        ("Calculated_f_per_mL", "Calculated (f/mL)"),
        ("Reported", "Reported (f/mL)"),
        ("Status", "Status"),
        ("Field_Blank_Warning", "Field blank warning"),
    ]
)


def field_blank_flagged(sample: Sample, analysis: Analysis) -> bool:
    if not sample.is_field_blank or analysis.uncountable_due_to_dust:
        return False
    return analysis.fibres_counted >= FIELD_BLANK_LIMIT


def build_summary(working: WorkingSet, constants: MicroscopeConstants) -> pd.DataFrame:
    """
    Tabulate every sample of *working* and return a DataFrame indexed by
    **Sample** (the sample label, or its id when unlabelled).
    """
    rows: List[dict] = []
    microscope = working.calibration.microscope

    for sample, analysis in working.iter_pairs():
        constant = constants.get_microscope_constant(microscope, sample.filter_size)
        result = sample_concentration(sample, analysis, constant)
        dust_fail = analysis.uncountable_due_to_dust

        rows.append(
            {
                "Sample": sample.label or sample.id,
                "Cowl": sample.cowl_number,
                "Filter": sample.filter_size,
                "Minutes": duration_minutes(sample.start_time, sample.end_time),
                "Flowrate_Lpm": sample.average_flow_rate,
                "Edges": analysis.edges_distribution,
                "Dust": analysis.background_dust,
                "Fibres": None if dust_fail else analysis.fibres_counted,
                "Fields": None if dust_fail else analysis.fields_counted,
                "Constant": constant,
                "Calculated_f_per_mL": result.calculated,
                "Reported": result.reported,
                "Status": sample_status(sample, analysis),
                "Field_Blank_Warning": (
                    FIELD_BLANK_WARNING if field_blank_flagged(sample, analysis) else ""
                ),
            }
        )

    return pd.DataFrame(rows, columns=["Sample", *COLUMN_LABELS]).set_index("Sample")
