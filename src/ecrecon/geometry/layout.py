# src/ecrecon/geometry/layout.py
from __future__ import annotations
from dataclasses import dataclass
from enum import Enum, IntEnum
from typing import Optional, Tuple

import numpy as np


class ViewLabel(IntEnum):
    U = 0
    V = 1
    W = 2


class LayerName(IntEnum):
    WHOLE = 0
    INNER = 1
    OUTER = 2
    COVER = 3


class MatchPair(Enum):
    """Ordered (source, target) layer pairs, in the order they are matched."""
    INNER_WHOLE = (LayerName.INNER, LayerName.WHOLE)
    INNER_OUTER = (LayerName.INNER, LayerName.OUTER)
    INNER_COVER = (LayerName.INNER, LayerName.COVER)
    OUTER_WHOLE = (LayerName.OUTER, LayerName.WHOLE)

    @property
    def source(self) -> LayerName:
        return self.value[0]

    @property
    def target(self) -> LayerName:
        return self.value[1]

    @property
    def key(self) -> str:
        return self.name.lower()


@dataclass(frozen=True)
class LayerGeometry:
    """
    Fixed geometry of one layer (lengths in cm).

    edge: edge length per view (Lu, Lv, Lw), indexed by ViewLabel
    H:    height of the triangle along i
    H1:   offset of the readout edge used by the path calculation
    H2:   offset added to the i coordinate
    depth: k coordinate of the layer
    """
    edge: Tuple[float, float, float]
    H: float
    H1: float
    H2: float
    depth: float
    max_strips: int = 36

    def edge_length(self, label: ViewLabel) -> float:
        return self.edge[int(label)]

    def pitch(self, label: ViewLabel) -> float:
        return self.edge_length(label) / self.max_strips


@dataclass(frozen=True)
class SectorGeometry:
    phi_deg: float
    origin: np.ndarray  # (3,)
    orientation: Optional[np.ndarray] = None  # (3,), unit; None if unknown

    @classmethod
    def from_cfg(cls, phi_deg: float, origin, orientation=None) -> "SectorGeometry":
        o = np.asarray(origin, dtype=np.float64)
        if o.shape != (3,):
            raise ValueError(f"Sector origin must have 3 components, got {o.shape}")
        n = None
        if orientation is not None:
            n = np.asarray(orientation, dtype=np.float64)
            norm = np.linalg.norm(n)
            if norm == 0:
                raise ValueError("Zero-length sector orientation")
            n = n / norm
        return cls(float(phi_deg), o, n)


def layer_name(name: str) -> LayerName:
    try:
        return LayerName[name.upper()]
    except KeyError:
        raise ValueError(f"Unknown layer name {name!r}; use one of {[n.name for n in LayerName]}")


def view_label(name: str) -> ViewLabel:
    try:
        return ViewLabel[name.upper()]
    except KeyError:
        raise ValueError(f"Unknown view label {name!r}; use U, V or W")
