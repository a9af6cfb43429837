# src/ecrecon/reco/matching.py
from __future__ import annotations
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

import numpy as np

from ecrecon.config.schemas import MatchingCfg
from ecrecon.geometry.layout import LayerName, MatchPair
from ecrecon.physics.hits import Hit
from ecrecon.physics.sector import Sector

_MIN_DENOM = 1e-8
_MIN_COS = 1e-8


@dataclass
class MatchDiagnostics:
    projected: int = 0
    degenerate_projection: int = 0
    matched: Dict[str, int] = field(default_factory=dict)
    severed: Dict[str, int] = field(default_factory=dict)
    reasons: Dict[str, int] = field(default_factory=dict)

    def inc(self, reason: str) -> None:
        self.reasons[reason] = self.reasons.get(reason, 0) + 1

    def add(self, counter: Dict[str, int], pair: MatchPair) -> None:
        counter[pair.key] = counter.get(pair.key, 0) + 1


def face_distance(a: Hit, b: Hit) -> float:
    """Normalized squared distance between two hits on the front face."""
    di2 = max(a.face.di ** 2 + b.face.di ** 2, _MIN_DENOM)
    dj2 = max(a.face.dj ** 2 + b.face.dj ** 2, _MIN_DENOM)
    return (a.face.i - b.face.i) ** 2 / di2 + (a.face.j - b.face.j) ** 2 / dj2


def link(a: Hit, b: Hit, chi2: float) -> None:
    a.matched[b.layer] = b
    b.matched[a.layer] = a
    a.match_chi_square[b.layer] = chi2
    b.match_chi_square[a.layer] = chi2


def unlink(a: Hit, b: Hit) -> None:
    if a.matched[b.layer] is b:
        a.matched[b.layer] = None
        a.match_chi_square[b.layer] = 0.0
    if b.matched[a.layer] is a:
        b.matched[a.layer] = None
        b.match_chi_square[a.layer] = 0.0


class CrossLayerMatcher:
    """
    Links hits of different layers of one sector that belong to the same
    shower, assuming straight trajectories from the target.

    Matching is greedy nearest neighbour in face coordinates: each source
    hit takes its closest target hit; a target already taken changes hands
    only if the newcomer is closer, and a link to the WHOLE layer that
    depended on the old owner is dropped with it (one level only).
    """

    order: Tuple[MatchPair, ...] = (
        MatchPair.INNER_WHOLE,
        MatchPair.INNER_OUTER,
        MatchPair.INNER_COVER,
        MatchPair.OUTER_WHOLE,
    )

    def __init__(self, cfg: MatchingCfg | None = None):
        self.cfg = cfg or MatchingCfg()
        self.diag = MatchDiagnostics()

    def run(self, sector: Sector) -> None:
        self.project_all_hits(sector)
        for pair in self.order:
            self.match(sector, pair)

    # ------------------------------------------------------------ projection

    def project_all_hits(self, sector: Sector) -> None:
        n2 = sector.geometry.orientation
        for layer in sector.iter_layers():
            depth = layer.geometry.depth
            for hit in layer.hits:
                pos = np.array([hit.glob.x, hit.glob.y, hit.glob.z], dtype=np.float64)
                norm = np.linalg.norm(pos)
                if n2 is None or norm == 0:
                    costh = 0.0
                else:
                    costh = float(np.clip((pos / norm) @ n2, -1.0, 1.0))

                i, j = hit.local.i, hit.local.j
                radm = float(np.hypot(i, j))
                if radm < 1e-8:
                    ci = cj = 0.0
                else:
                    ci, cj = i / radm, j / radm

                if abs(costh) < _MIN_COS:
                    radp = 0.0
                    hit.thickness = depth
                    self.diag.degenerate_projection += 1
                else:
                    radp = depth * float(np.tan(np.arccos(costh)))
                    hit.thickness = depth / costh

                hit.face.i = i - radp * ci
                hit.face.j = j - radp * cj
                hit.face.di = hit.local.di
                hit.face.dj = hit.local.dj
                self.diag.projected += 1

    # -------------------------------------------------------------- matching

    def match(self, sector: Sector, pair: MatchPair) -> None:
        if pair.source not in sector.layers or pair.target not in sector.layers:
            return
        src = sector.layer(pair.source)
        tgt = sector.layer(pair.target)
        if not src.hits or not tgt.hits:
            return
        radius = self.cfg.radius_for(pair)

        for a in src.hits:
            if a.match(pair.target) is not None:
                continue
            best, best_diff = self._closest(a, tgt.hits, radius)
            if best is None:
                continue

            previous = best.match(pair.source)
            if previous is not None:
                if best_diff >= best.match_chi_square[pair.source]:
                    self.diag.inc(f"{pair.key}_lost_to_existing")
                    continue
                self._sever(sector, pair, previous, best)

            link(a, best, best_diff)
            sector.add_match(pair.source, pair.target)
            self.diag.add(self.diag.matched, pair)
            self._update_whole(sector, pair, a, best)

    @staticmethod
    def _closest(a: Hit, candidates: List[Hit], radius: float) -> Tuple[Optional[Hit], float]:
        best: Optional[Hit] = None
        best_diff = radius
        for b in candidates:
            diff = face_distance(a, b)
            if diff < best_diff:
                best, best_diff = b, diff
        return best, best_diff

    def _sever(self, sector: Sector, pair: MatchPair, loser: Hit, target: Hit) -> None:
        unlink(loser, target)
        sector.subtract_match(pair.source, pair.target)
        self.diag.add(self.diag.severed, pair)
        if pair.target is LayerName.WHOLE:
            return
        whole = target.match(LayerName.WHOLE)
        if whole is not None:
            unlink(target, whole)
            sector.subtract_match(pair.target, LayerName.WHOLE)

    def _update_whole(self, sector: Sector, pair: MatchPair, a: Hit, b: Hit) -> None:
        c = self.cfg.speed_of_light
        if pair.target is LayerName.WHOLE:
            other = LayerName.OUTER if pair.source is LayerName.INNER else LayerName.INNER
            leg = b.match(other)
            if leg is not None:
                b.time = dual_leg_time(a, leg, c)
            else:
                b.time = single_leg_time(a)
            return

        # inner -> outer/cover: the target inherits the inner hit's WHOLE match
        whole = a.match(LayerName.WHOLE)
        if whole is None:
            return
        if LayerName.WHOLE not in sector.layers:
            return
        previous = whole.match(pair.target)
        if previous is not None and previous is not b:
            unlink(previous, whole)
            sector.subtract_match(pair.target, LayerName.WHOLE)
        stale = b.match(LayerName.WHOLE)
        if stale is not None and stale is not whole:
            unlink(b, stale)
            sector.subtract_match(pair.target, LayerName.WHOLE)
        if previous is not b:
            sector.add_match(pair.target, LayerName.WHOLE)
        link(b, whole, face_distance(whole, b))
        whole.time = dual_leg_time(a, b, c)


def dual_leg_time(a: Hit, b: Hit, speed_of_light: float) -> float:
    """Energy-weighted, flight-corrected time of a WHOLE hit seen by two legs."""
    ta = (a.time - a.thickness / speed_of_light) * a.energy
    tb = (b.time - b.thickness / speed_of_light) * b.energy
    sum_e = a.energy + b.energy
    if sum_e <= 0:
        return single_leg_time(a)
    return (ta + tb) / sum_e


def single_leg_time(a: Hit) -> float:
    # no speed-of-light normalization in the single-leg form
    return a.time - a.thickness
