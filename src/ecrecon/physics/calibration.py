# src/ecrecon/physics/calibration.py
from __future__ import annotations
from typing import Dict, Iterable, List, Tuple

import numpy as np

from ecrecon.geometry.layout import ViewLabel
from .strips import (
    DEFAULT_ECH,
    DEFAULT_TCH,
    TIME_SENTINEL,
    Strip,
    ViewCalibration,
)

# Upper edge of the valid TDC window (multihit pipeline TDC)
TDC_MAX = 9000.0


def _value(arr: np.ndarray, strip_id: int, default: float) -> float:
    if 0 <= strip_id < arr.shape[0]:
        return float(arr[strip_id])
    return default


def calibrate_strip(cal: ViewCalibration, strip_id: int, adc: float, tdc: float) -> Strip:
    """
    Raw ADC/TDC counts -> calibrated Strip.

    energy = max(0, (adc - eo) * ech)
    time   = tdc * tch + to + tadc / sqrt(adc - eo)   for 0 < tdc < TDC_MAX and adc > eo
             TIME_SENTINEL otherwise
    """
    eo = _value(cal.eo, strip_id, 0.0)
    ech = _value(cal.ech, strip_id, DEFAULT_ECH)
    raw_adc = float(adc) - eo
    energy = max(0.0, raw_adc * ech)

    if 0.0 < tdc < TDC_MAX and raw_adc > 0:
        tch = _value(cal.tch, strip_id, DEFAULT_TCH)
        to = _value(cal.to, strip_id, 0.0)
        tadc = _value(cal.tadc, strip_id, 0.0)
        time = float(tdc) * tch + to + tadc / float(np.sqrt(raw_adc))
    else:
        time = TIME_SENTINEL

    return Strip(id=int(strip_id), raw_energy=energy, raw_adc=raw_adc, time=time)


def calibrate_view(
    cal: ViewCalibration,
    records: Iterable[Tuple[int, float, float]],
) -> List[Strip]:
    """(strip, adc, tdc) records of one view -> strips, in input order."""
    return [calibrate_strip(cal, sid, adc, tdc) for sid, adc, tdc in records]


def _earliest(a: float, b: float) -> float:
    valid = [t for t in (a, b) if t != TIME_SENTINEL]
    return min(valid) if valid else TIME_SENTINEL


def sum_layers(inner: Iterable[Strip], outer: Iterable[Strip]) -> List[Strip]:
    """
    Strips of the WHOLE layer for one view: per strip id, the sum of the
    INNER and OUTER calibrated energies and raw ADCs, with the earlier of
    the valid times.
    """
    merged: Dict[int, Strip] = {}
    for strip in list(inner) + list(outer):
        cur = merged.get(strip.id)
        if cur is None:
            merged[strip.id] = Strip(id=strip.id, raw_energy=strip.raw_energy,
                                     raw_adc=strip.raw_adc, time=strip.time)
            continue
        cur.raw_energy += strip.raw_energy
        cur.raw_adc += strip.raw_adc
        cur.time = _earliest(cur.time, strip.time)
    return [merged[k] for k in sorted(merged)]


def assemble_whole(
    inner: Dict[ViewLabel, List[Strip]],
    outer: Dict[ViewLabel, List[Strip]],
) -> Dict[ViewLabel, List[Strip]]:
    return {label: sum_layers(inner.get(label, ()), outer.get(label, ())) for label in ViewLabel}
