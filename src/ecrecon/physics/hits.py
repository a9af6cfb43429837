# src/ecrecon/physics/hits.py
from __future__ import annotations
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from ecrecon.geometry.layout import LayerName, ViewLabel
from .peaks import Peak, PeakHit, TripletKey
from .strips import TIME_SENTINEL


@dataclass(slots=True)
class LocalCoord:
    i: float = 0.0
    j: float = 0.0
    k: float = 0.0
    di: float = 0.0
    dj: float = 0.0
    dk: float = 0.0


@dataclass(slots=True)
class FaceCoord:
    i: float = 0.0
    j: float = 0.0
    di: float = 0.0
    dj: float = 0.0


@dataclass(slots=True)
class GlobalCoord:
    x: float = 0.0
    y: float = 0.0
    z: float = 0.0
    dx: float = 0.0
    dy: float = 0.0
    dz: float = 0.0


def _no_matches() -> List[Optional["Hit"]]:
    return [None] * len(LayerName)


def _zero_chi2() -> List[float]:
    return [0.0] * len(LayerName)


@dataclass(slots=True, eq=False)
class Hit:
    """
    Reconstructed hit in one layer (physics layer).

    peak_hits: one PeakHit per view, built from exactly one peak per axis
    local:  (i, j, k) in the layer frame [cm] with uncertainties
    face:   (i, j) projected onto the front face, used for layer matching
    glob:   sector-global (x, y, z) [cm] with uncertainties
    time:   [ns], TIME_SENTINEL when unknown
    matched / match_chi_square: indexed by LayerName; links are symmetric
    """
    id: int
    layer: LayerName
    peak_hits: Dict[ViewLabel, PeakHit] = field(default_factory=dict)
    local: LocalCoord = field(default_factory=LocalCoord)
    face: FaceCoord = field(default_factory=FaceCoord)
    glob: GlobalCoord = field(default_factory=GlobalCoord)
    energy: float = 0.0
    time: float = TIME_SENTINEL
    width: float = 0.0
    chi_square: float = 0.0
    n_strips: int = 0
    thickness: float = 0.0
    matched: List[Optional["Hit"]] = field(default_factory=_no_matches)
    match_chi_square: List[float] = field(default_factory=_zero_chi2)

    @classmethod
    def from_peaks(cls, hit_id: int, layer: LayerName, u: Peak, v: Peak, w: Peak) -> "Hit":
        hit = cls(id=hit_id, layer=layer)
        for label, peak in ((ViewLabel.U, u), (ViewLabel.V, v), (ViewLabel.W, w)):
            hit.peak_hits[label] = PeakHit(peak=peak, hit=hit)
        return hit

    def peak(self, label: ViewLabel) -> Peak:
        return self.peak_hits[label].peak

    def triplet(self) -> TripletKey:
        return TripletKey(self.peak(ViewLabel.U).id, self.peak(ViewLabel.V).id, self.peak(ViewLabel.W).id)

    def set_paths(self, u: float, v: float, w: float) -> None:
        self.peak_hits[ViewLabel.U].path = u
        self.peak_hits[ViewLabel.V].path = v
        self.peak_hits[ViewLabel.W].path = w

    def shared_peaks(self, other: "Hit") -> int:
        return sum(1 for label in ViewLabel if self.peak(label) is other.peak(label))

    def match(self, layer: LayerName) -> Optional["Hit"]:
        return self.matched[layer]

    def __repr__(self) -> str:
        return (f"Hit(id={self.id}, layer={self.layer.name}, E={self.energy:.4g}, "
                f"i={self.local.i:.3f}, j={self.local.j:.3f}, chi2={self.chi_square:.3g})")
