"""
Option lists offered to the analyst: instruments in service and eligible
analysts. ``AnalysisSession(analysts=eligible_analysts(users))`` restricts
the analyst field to the latter.
"""

from __future__ import annotations

import datetime as dt
from typing import Any, Iterable, List, Mapping, Optional

__all__ = [
    "ACTIVE",
    "OVERDUE",
    "OUT_OF_SERVICE",
    "equipment_status",
    "active_equipment",
    "eligible_analysts",
]

ACTIVE = "Active"
OVERDUE = "Calibration Overdue"
OUT_OF_SERVICE = "Out-of-Service"


def _as_date(value: Any) -> Optional[dt.date]:
    if value is None or value == "":
        return None
    if isinstance(value, dt.datetime):
        return value.date()
    if isinstance(value, dt.date):
        return value
    return dt.date.fromisoformat(str(value)[:10])


def equipment_status(record: Mapping[str, Any], today: Optional[dt.date] = None) -> str:
    """
    Status of a microscope / test slide from its calibration dates.

    Expects ``last_calibration`` and ``calibration_due`` (dates or ISO
    strings) and an optional ``status`` of ``"out-of-service"``.
    """
    if record.get("status") == "out-of-service":
        return OUT_OF_SERVICE

    last = _as_date(record.get("last_calibration"))
    due = _as_date(record.get("calibration_due"))
    if last is None or due is None:
        return OUT_OF_SERVICE

    today = today or dt.date.today()
    if due < today:
        return OVERDUE
    return ACTIVE


def active_equipment(
    records: Iterable[Mapping[str, Any]],
    today: Optional[dt.date] = None,
) -> List[str]:
    """References of the records that are currently usable, sorted."""
    return sorted(
        str(r["reference"])
        for r in records
        if equipment_status(r, today) == ACTIVE
    )


def eligible_analysts(users: Iterable[Mapping[str, Any]]) -> List[str]:
    """``"First Last"`` of active users approved for fibre counting."""
    names = [
        f"{u.get('first_name', '')} {u.get('last_name', '')}".strip()
        for u in users
        if u.get("is_active") and (u.get("lab_approvals") or {}).get("fibre_counting") is True
    ]
    return sorted(names, key=str.lower)
