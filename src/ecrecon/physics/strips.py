# src/ecrecon/physics/strips.py
from __future__ import annotations
from dataclasses import dataclass, field

import numpy as np

# Defaults used when a strip has no calibration entry
DEFAULT_ECH = 0.0001
DEFAULT_TCH = 0.050
DEFAULT_TRMS = 1.0
DEFAULT_ATTEN = 376.0

TIME_SENTINEL = -999.0


@dataclass(slots=True)
class Strip:
    """
    One readout strip in a view.

    raw_energy: calibrated energy deposit (before attenuation correction)
    raw_adc:    pedestal-subtracted ADC
    time:       calibrated time [ns], TIME_SENTINEL if unusable
    peak_fraction / peak_energy: share of the strip assigned to its peak
    """
    id: int
    raw_energy: float
    raw_adc: float = 0.0
    time: float = TIME_SENTINEL
    peak_fraction: float = 0.0
    peak_energy: float = 0.0


def _filled(n: int, value: float) -> np.ndarray:
    return np.full(n, value, dtype=np.float64)


@dataclass
class ViewCalibration:
    """
    Per-strip calibration constants of one view, indexed by strip id.

    Arrays are read-only inputs for the reconstruction; slot 0 is unused
    because strip ids start at 1.
    """
    ech: np.ndarray
    atten: np.ndarray
    eo: np.ndarray
    tch: np.ndarray
    to: np.ndarray
    tadc: np.ndarray
    trms: np.ndarray
    tdcstat: np.ndarray = field(default_factory=lambda: np.zeros(0))

    @classmethod
    def defaults(cls, max_strips: int) -> "ViewCalibration":
        n = max_strips + 1
        return cls(
            ech=_filled(n, DEFAULT_ECH),
            atten=_filled(n, DEFAULT_ATTEN),
            eo=_filled(n, 0.0),
            tch=_filled(n, DEFAULT_TCH),
            to=_filled(n, 0.0),
            tadc=_filled(n, 0.0),
            trms=_filled(n, DEFAULT_TRMS),
            tdcstat=_filled(n, 0.0),
        )

    def _lookup(self, arr: np.ndarray, strip_id: int, default: float) -> float:
        if 0 <= strip_id < arr.shape[0]:
            return float(arr[strip_id])
        return default

    def atten_for(self, strip_id: int) -> float:
        a = self._lookup(self.atten, strip_id, DEFAULT_ATTEN)
        return a if a > 0 else DEFAULT_ATTEN

    def trms_for(self, strip_id: int) -> float:
        return self._lookup(self.trms, strip_id, 0.0)

    def lock(self) -> "ViewCalibration":
        for name in ("ech", "atten", "eo", "tch", "to", "tadc", "trms", "tdcstat"):
            getattr(self, name).setflags(write=False)
        return self
