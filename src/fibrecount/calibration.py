"""
Microscope constant lookup from graticule calibration records.

Each graticule calibration carries one constant per filter holder size
(13 mm and 25 mm) and names the microscope the graticule is fitted to. The
constant for a sample is taken from the newest calibration of that
microscope, preferring passed calibrations; anything missing falls back to
the default constant.
"""

from __future__ import annotations

import datetime as dt
import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, NamedTuple, Optional

__all__ = [
    "DEFAULT_CONSTANT",
    "GraticuleCalibration",
    "ConstantInfo",
    "MicroscopeConstants",
]

logger = logging.getLogger(__name__)

DEFAULT_CONSTANT = 50000.0
PASS = "Pass"


@dataclass(slots=True, frozen=True)
class GraticuleCalibration:
    graticule_id: str
    microscope: str
    date: dt.date
    status: str = PASS
    constant_13mm: Optional[float] = None
    constant_25mm: Optional[float] = None


class ConstantInfo(NamedTuple):
    constant: float
    source: str


def _norm(ref: Optional[str]) -> str:
    return (ref or "").strip().lower()


class MicroscopeConstants:
    """
    Instrument calibration lookup consulted by the concentration calculator.

    Parameters
    ----------
    calibrations
        Graticule calibration records (any order, any microscope).
    default
        Constant used when no usable record exists.
    """

    def __init__(
        self,
        calibrations: Iterable[GraticuleCalibration] = (),
        default: float = DEFAULT_CONSTANT,
    ):
        self.calibrations: List[GraticuleCalibration] = list(calibrations)
        self.default = float(default)

    def _latest(self, microscope: str) -> Optional[GraticuleCalibration]:
        wanted = _norm(microscope)
        matching = [c for c in self.calibrations if _norm(c.microscope) == wanted]
        if not matching:
            return None

        passed = [c for c in matching if c.status == PASS]
        candidates = passed or matching

        # newest record per graticule, then newest overall
        per_graticule: Dict[str, GraticuleCalibration] = {}
        for cal in candidates:
            best = per_graticule.get(cal.graticule_id)
            if best is None or cal.date > best.date:
                per_graticule[cal.graticule_id] = cal
        return max(per_graticule.values(), key=lambda c: c.date)

    def lookup(self, microscope: Optional[str], filter_size: Optional[str]) -> ConstantInfo:
        """Constant for *microscope* / *filter_size* plus where it came from."""
        if not microscope or not filter_size or not self.calibrations:
            return ConstantInfo(self.default, f"Default ({self.default:g})")

        latest = self._latest(microscope)
        if latest is None:
            return ConstantInfo(
                self.default, f"Default (no graticule calibration for {microscope})"
            )

        if filter_size == "25mm":
            constant = latest.constant_25mm
        elif filter_size == "13mm":
            constant = latest.constant_13mm
        else:
            return ConstantInfo(self.default, "Default (invalid filter size)")

        if not constant:
            return ConstantInfo(
                self.default,
                f"Default (no constant{filter_size} for {latest.graticule_id})",
            )
        return ConstantInfo(
            float(constant),
            f"Graticule {latest.graticule_id} - {filter_size} ({constant:g})",
        )

    def get_microscope_constant(
        self,
        microscope: Optional[str],
        filter_size: Optional[str] = None,
    ) -> float:
        info = self.lookup(microscope, filter_size)
        logger.debug("Microscope constant %s → %s", microscope, info.source)
        return info.constant
