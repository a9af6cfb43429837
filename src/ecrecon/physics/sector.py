# src/ecrecon/physics/sector.py
from __future__ import annotations
from dataclasses import dataclass, field
from itertools import combinations
from typing import Dict, Iterator, List, Optional, Tuple

from ecrecon.geometry.layout import (
    LayerGeometry,
    LayerName,
    SectorGeometry,
    ViewLabel,
)
from .hits import Hit
from .peaks import Peak
from .strips import Strip, ViewCalibration


def pair_key(a: LayerName, b: LayerName) -> Tuple[LayerName, LayerName]:
    """Unordered layer pair used to index the match counters."""
    return (a, b) if a <= b else (b, a)


def _zero_counts() -> Dict[Tuple[LayerName, LayerName], int]:
    return {pair_key(a, b): 0 for a, b in combinations(LayerName, 2)}


@dataclass
class View:
    """
    One sensing axis of a layer.

    strips are the calibrated inputs (read-only for the reconstruction);
    peaks are rebuilt every event by the clusterer.
    """
    label: ViewLabel
    edge_length: float
    calibration: ViewCalibration
    strips: List[Strip] = field(default_factory=list)
    peaks: List[Peak] = field(default_factory=list)

    def add_strip(self, strip: Strip) -> None:
        self.strips.append(strip)

    def sorted_strips(self) -> List[Strip]:
        return sorted(self.strips, key=lambda s: s.id)

    def new_peak(self) -> Peak:
        peak = Peak(id=len(self.peaks) + 1, view=self.label)
        self.peaks.append(peak)
        return peak

    def clear_peaks(self) -> None:
        self.peaks.clear()

    @property
    def n_strips(self) -> int:
        return len(self.strips)


@dataclass
class Layer:
    name: LayerName
    geometry: LayerGeometry
    views: Dict[ViewLabel, View] = field(default_factory=dict)
    hits: List[Hit] = field(default_factory=list)

    @classmethod
    def empty(cls, name: LayerName, geometry: LayerGeometry,
              calibration: Optional[Dict[ViewLabel, ViewCalibration]] = None) -> "Layer":
        calibration = calibration or {}
        views = {
            label: View(
                label=label,
                edge_length=geometry.edge_length(label),
                calibration=calibration.get(label) or ViewCalibration.defaults(geometry.max_strips),
            )
            for label in ViewLabel
        }
        return cls(name=name, geometry=geometry, views=views)

    @property
    def max_strips(self) -> int:
        return self.geometry.max_strips

    def view(self, label: ViewLabel) -> View:
        return self.views[label]

    def iter_views(self) -> Iterator[View]:
        for label in ViewLabel:
            yield self.views[label]

    def new_hit(self, u: Peak, v: Peak, w: Peak) -> Hit:
        hit = Hit.from_peaks(len(self.hits) + 1, self.name, u, v, w)
        self.hits.append(hit)
        return hit

    def clear_hits(self) -> None:
        self.hits.clear()

    @property
    def n_hits(self) -> int:
        return len(self.hits)


@dataclass
class Sector:
    """
    One calorimeter sector: geometry, its four layers and the per-pair
    cross-layer match counters.
    """
    id: int
    geometry: SectorGeometry
    layers: Dict[LayerName, Layer] = field(default_factory=dict)
    match_counts: Dict[Tuple[LayerName, LayerName], int] = field(default_factory=_zero_counts)
    event: int = -1

    def layer(self, name: LayerName) -> Layer:
        return self.layers[name]

    def iter_layers(self) -> Iterator[Layer]:
        for name in LayerName:
            if name in self.layers:
                yield self.layers[name]

    def reset_matches(self) -> None:
        self.match_counts = _zero_counts()

    def add_match(self, a: LayerName, b: LayerName) -> None:
        key = pair_key(a, b)
        self.match_counts[key] += 1

    def subtract_match(self, a: LayerName, b: LayerName) -> None:
        key = pair_key(a, b)
        self.match_counts[key] = max(0, self.match_counts[key] - 1)

    def n_matches(self, a: LayerName, b: LayerName) -> int:
        return self.match_counts[pair_key(a, b)]

    def all_hits(self) -> List[Hit]:
        return [h for layer in self.iter_layers() for h in layer.hits]
