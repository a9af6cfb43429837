# src/ecrecon/geometry/transform.py
from __future__ import annotations
from dataclasses import dataclass
from typing import Tuple

import numpy as np

from .layout import SectorGeometry

# Tilt of the calorimeter face with respect to the beam axis [deg]
DEFAULT_TILT_DEG = 25.0


def rotation_matrix(phi_deg: float, tilt_deg: float = DEFAULT_TILT_DEG) -> np.ndarray:
    p = np.deg2rad(phi_deg)
    t = np.deg2rad(tilt_deg)
    return np.array([
        [np.cos(t) * np.cos(p), -np.sin(p), np.sin(t) * np.cos(p)],
        [np.cos(t) * np.sin(p),  np.cos(p), np.sin(t) * np.sin(p)],
        [-np.sin(t),             0.0,       np.cos(t)],
    ], dtype=np.float64)


@dataclass(frozen=True)
class CoordinateTransformer:
    """Local (i, j, k) -> sector-global (x, y, z)."""
    R: np.ndarray  # (3, 3)
    origin: np.ndarray  # (3,)

    @classmethod
    def for_sector(cls, geom: SectorGeometry, tilt_deg: float = DEFAULT_TILT_DEG) -> "CoordinateTransformer":
        return cls(rotation_matrix(geom.phi_deg, tilt_deg), np.asarray(geom.origin, dtype=np.float64))

    def position(self, i: float, j: float, k: float) -> Tuple[float, float, float]:
        xyz = self.R @ np.array([i, j, k], dtype=np.float64) + self.origin
        return float(xyz[0]), float(xyz[1]), float(xyz[2])

    def uncertainty(self, di: float, dj: float, dk: float) -> Tuple[float, float, float]:
        d = np.abs(self.R @ np.array([di, dj, dk], dtype=np.float64))
        return float(d[0]), float(d[1]), float(d[2])
