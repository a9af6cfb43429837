# src/ecrecon/reco/index.py
from __future__ import annotations
from typing import Dict, List, Sequence

from ecrecon.physics.hits import Hit
from ecrecon.physics.peaks import Peak, PeakHit, PeakKey


class PeakHitIndex:
    """
    Peak -> registered peak-hits, kept outside the data classes so the
    hit finder can rebuild it freely between iterations.
    """

    def __init__(self) -> None:
        self._hits: Dict[PeakKey, List[PeakHit]] = {}

    def add_peak(self, peak: Peak) -> None:
        self._hits.setdefault(peak.key, [])

    def add(self, ph: PeakHit) -> None:
        self._hits.setdefault(ph.peak.key, []).append(ph)

    def add_hit(self, hit: Hit) -> None:
        for ph in hit.peak_hits.values():
            self.add(ph)

    def hits_of(self, peak: Peak) -> Sequence[PeakHit]:
        return tuple(self._hits.get(peak.key, ()))

    def n_hits(self, peak: Peak) -> int:
        return len(self._hits.get(peak.key, ()))

    def is_unique(self, peak: Peak) -> bool:
        return self.n_hits(peak) == 1

    def set_single(self, peak: Peak, ph: PeakHit) -> None:
        self._hits[peak.key] = [ph]

    def clear(self) -> None:
        for lst in self._hits.values():
            lst.clear()
