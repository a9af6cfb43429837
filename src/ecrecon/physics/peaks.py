# src/ecrecon/physics/peaks.py
from __future__ import annotations
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Dict, List, NamedTuple, Optional

from ecrecon.geometry.layout import ViewLabel
from .strips import Strip

if TYPE_CHECKING:
    from .hits import Hit


class PeakKey(NamedTuple):
    """View-scoped unique identity of a peak."""
    view: ViewLabel
    id: int


@dataclass(slots=True, eq=False)
class Peak:
    """
    Contiguous group of strips above threshold in one view.

    members are kept in ascending strip id; distance is the energy-weighted
    centroid along the view axis and width its RMS.
    """
    id: int
    view: ViewLabel
    members: List[Strip] = field(default_factory=list)
    energy: float = 0.0
    width: float = 0.0
    distance: float = 0.0

    @property
    def key(self) -> PeakKey:
        return PeakKey(self.view, self.id)

    @property
    def n_strips(self) -> int:
        return len(self.members)

    def add_strip(self, strip: Strip) -> None:
        if self.members and strip.id <= self.members[-1].id:
            raise ValueError(f"Strip {strip.id} breaks ascending order of peak {self.key}")
        self.members.append(strip)
        self.energy += strip.raw_energy


def _zero_moments() -> Dict[int, float]:
    return {2: 0.0, 3: 0.0, 4: 0.0}


@dataclass(slots=True, eq=False)
class PeakHit:
    """
    Contribution of one peak to one hit (one per hit and axis).

    energy is the attenuation-corrected peak energy seen from this hit;
    the hit receives energy * energy_fraction. time holds the weighted
    time sum and time_weighted the sum of weights.
    """
    peak: Peak
    hit: Optional["Hit"] = None
    path: float = 0.0
    energy_fraction: float = 0.0
    energy: float = 0.0
    time: float = 0.0
    time_weighted: float = 0.0
    width: float = 0.0
    distance: float = 0.0
    moments: Dict[int, float] = field(default_factory=_zero_moments)
    n_strips: int = 0

    @property
    def hit_energy(self) -> float:
        return self.energy * self.energy_fraction

    def others(self) -> List["PeakHit"]:
        """The peak-hits of the same hit on the other two axes."""
        if self.hit is None:
            return []
        return [ph for ph in self.hit.peak_hits.values() if ph is not self]


class TripletKey(NamedTuple):
    """Peak ids (U, V, W) of a candidate hit."""
    u: int
    v: int
    w: int
