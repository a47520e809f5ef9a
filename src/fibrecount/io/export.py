"""
Excel export of the batch summary.

Public API
~~~~~~~~~~
save_summary(df, path)   – "Fibre Counts" sheet with header styling

Overwrites *path* if it exists.
"""
from __future__ import annotations

from pathlib import Path

import pandas as pd

from ..analysis import COLUMN_LABELS

__all__ = ["SHEET_NAME", "save_summary"]

SHEET_NAME = "Fibre Counts"

# column → (width, number format or None)
_COLUMN_FORMATS = {
    "Cowl": (8, None),
    "Filter": (8, None),
    "Minutes": (10, "0"),
    "Flowrate_Lpm": (11, "0.00"),
    "Edges": (12, None),
    "Dust": (12, None),
    "Fibres": (10, "0.0"),
    "Fields": (9, "0"),
    "Constant": (12, "0"),
    "Calculated_f_per_mL": (14, "0.0000"),
    "Reported": (12, None),
    "Status": (24, None),
    "Field_Blank_Warning": (48, None),
}


# ────────────────────────────────────────────────────────────────────
def save_summary(df: pd.DataFrame, path: Path | str) -> None:
    """
    Write *df* (from :func:`fibrecount.analysis.build_summary`) with:

    * frozen header row & sample column
    * grey header fill
    * width & number format per column
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    out = df.rename(columns=COLUMN_LABELS)

    with pd.ExcelWriter(path, engine="xlsxwriter") as xl:
        out.to_excel(xl, sheet_name=SHEET_NAME, index=True)

        # ---------- styling ------------------------------------------------
        ws = xl.sheets[SHEET_NAME]
        book = xl.book

        hdr = book.add_format({"bold": True, "bg_color": "#dfe6e9",
                               "border": 1, "align": "center", "text_wrap": True})

        ws.freeze_panes(1, 1)
        ws.set_column(0, 0, 18)   # Sample
        for col_i, name in enumerate(df.columns, start=1):
            width, num_format = _COLUMN_FORMATS.get(name, (12, None))
            fmt = book.add_format({"num_format": num_format}) if num_format else None
            ws.set_column(col_i, col_i, width, fmt)

        # restyle header cells (pandas writes its own bold header)
        ws.write(0, 0, out.index.name or "Sample", hdr)
        for col_i, label in enumerate(out.columns, start=1):
            ws.write(0, col_i, label, hdr)
