# src/ecrecon/geometry/path.py
from __future__ import annotations
from typing import NamedTuple

import numpy as np

from .layout import LayerGeometry


class AxisPaths(NamedTuple):
    u: float
    v: float
    w: float


def resolve_paths(geom: LayerGeometry, i: float, j: float) -> AxisPaths:
    """
    Distance travelled along each strip direction from the hit at (i, j)
    to the strip readout edge. Used for attenuation and transit-time
    corrections.
    """
    lu, lv, lw = geom.edge
    h = np.sqrt(lu * lu - lv * lv / 4.0)
    h1 = geom.H1

    du = (i / h + h1 / h) * lu
    dv = lv - h1 / 2.0 / h * lv - j - lv / 2.0 / h * i
    dw = lw / lv * j - lw / 2.0 / h * i - h1 / 2.0 / h * lw + lw

    u = du / lu * lv - (lv - dv)
    v = dv / lv * lw - (lw - dw)
    w = dw / lw * lu - (lu - du)
    return AxisPaths(float(u), float(v), float(w))
