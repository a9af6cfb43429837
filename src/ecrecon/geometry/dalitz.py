# src/ecrecon/geometry/dalitz.py
from __future__ import annotations
from typing import NamedTuple, Sequence, Tuple

import numpy as np

from .layout import LayerGeometry

_MIN_ERR = 1e-8


class DalitzResult(NamedTuple):
    accepted: bool
    error: float
    dalitz: float
    i: float = 0.0
    j: float = 0.0
    k: float = 0.0
    di: float = 0.0
    dj: float = 0.0
    rms: float = 0.0


def evaluate_dalitz(
    geom: LayerGeometry,
    dist: Sequence[float],
    width: Sequence[float],
    finalize: bool = False,
) -> DalitzResult:
    """
    Check whether three axis projections (du, dv, dw) describe one point.

    For consistent projections du/Lu + dv/Lv + dw/Lw == 2; the tolerance is
    twice the quadrature sum of the normalized widths. When accepted (or
    always, in finalize mode) the local (i, j, k) coordinates are returned,
    and in finalize mode their uncertainties (di, dj) and rms as well.

    dist, width: per-axis centroid and RMS ordered (U, V, W).
    """
    lu, lv, lw = geom.edge
    du, dv, dw = (float(x) for x in dist)
    wu, wv, ww = (float(x) for x in width)

    dalitz = du / lu + dv / lv + dw / lw
    d_dalitz = (wu / lu) ** 2 + (wv / lv) ** 2 + (ww / lw) ** 2
    max_err = max(2.0 * np.sqrt(d_dalitz), _MIN_ERR)

    error = abs(dalitz - 2.0) / max_err
    accepted = abs(dalitz - 2.0) < max_err

    if not (accepted or finalize):
        return DalitzResult(False, float(error), float(dalitz))

    # finalize mode places the hit even if the corrected widths no longer pass
    i =geom.H * (du / lu - dv / lv - dw / lw) / 2.0 + geom.H2
    j = lv * (dw / lw - dv / lv) / 2.0
    k = geom.depth

    di = dj = rms = 0.0
    if finalize:
        di = geom.H * np.sqrt(d_dalitz)
        dj = (lv / 2.0) * np.sqrt((wv / lv) ** 2 + (ww / lw) ** 2)
        rms = np.sqrt(di * di + dj * dj)

    return DalitzResult(bool(accepted), float(error), float(dalitz),
                        float(i), float(j), float(k), float(di), float(dj), float(rms))


def projections_for_point(geom: LayerGeometry, i: float, j: float) -> Tuple[float, float, float]:
    """
    Inverse of the (i, j) projection: the per-axis distances (du, dv, dw)
    that satisfy the Dalitz sum exactly for a local point.
    """
    lu, lv, lw = geom.edge
    a = 1.0 + (i - geom.H2) / geom.H
    bc = 2.0 - a
    c = bc / 2.0 + j / lv
    b = bc / 2.0 - j / lv
    return a * lu, b * lv, c * lw
