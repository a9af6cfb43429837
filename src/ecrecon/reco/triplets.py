# src/ecrecon/reco/triplets.py
from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum, IntEnum
from itertools import combinations
from typing import Dict, List, Tuple

from ecrecon.config.schemas import HitsCfg
from ecrecon.geometry.dalitz import evaluate_dalitz
from ecrecon.geometry.layout import LayerName, ViewLabel
from ecrecon.geometry.path import resolve_paths
from ecrecon.geometry.transform import CoordinateTransformer
from ecrecon.physics.hits import Hit
from ecrecon.physics.peaks import TripletKey
from ecrecon.physics.sector import Layer
from ecrecon.physics.strips import TIME_SENTINEL
from .attenuation import AttenuationCorrector
from .index import PeakHitIndex


class TripletStatus(IntEnum):
    UNTRIED = 0
    LOCKED = -1
    ACCEPTED = 1


class MatcherState(Enum):
    FIND_HITS = "find_hits"
    CORRECT = "correct"
    NEEDS_RECALCULATION = "needs_recalculation"
    FINALIZE = "finalize"
    DONE = "done"


@dataclass
class HitDiagnostics:
    layers_in: int = 0
    iterations: int = 0
    max_iterations: int = 0
    triplets_locked: int = 0
    layers_cleared: int = 0
    hits_found: int = 0
    hits_kept: int = 0
    reasons: Dict[str, int] = field(default_factory=dict)

    def inc(self, reason: str) -> None:
        self.reasons[reason] = self.reasons.get(reason, 0) + 1


class TripletMatcher:
    """
    Builds the hits of one layer from one peak per view.

    Every (U, V, W) peak triplet starts UNTRIED. Triplets passing the Dalitz
    test become hits; after the attenuation pass, shared peaks get their
    energy apportioned between hits, and pairs of hits sharing two or more
    peaks are resolved by LOCKING the worse fit and starting over. Each
    restart locks at least one triplet, so the loop runs at most
    |U|*|V|*|W| times.
    """

    def __init__(
        self,
        cfg: HitsCfg | None = None,
        corrector: AttenuationCorrector | None = None,
    ):
        self.cfg = cfg or HitsCfg()
        self.corrector = corrector or AttenuationCorrector()
        self.diag = HitDiagnostics()
        self.status: Dict[TripletKey, TripletStatus] = {}
        self.index = PeakHitIndex()
        self.state = MatcherState.FIND_HITS

    # ----------------------------------------------------------------- driver

    def run(self, layer: Layer, transformer: CoordinateTransformer) -> List[Hit]:
        """Run all passes on a layer whose views already hold peaks."""
        self.diag.layers_in += 1
        self.initialize(layer)
        bound = max(1, self.n_triplets(layer))
        iterations = 0

        self.state = MatcherState.FIND_HITS
        while self.state is not MatcherState.DONE:
            if self.state is MatcherState.FIND_HITS:
                iterations += 1
                if not self.find_hits(layer):
                    self.diag.layers_cleared += 1
                    self.state = MatcherState.DONE
                elif layer.hits:
                    self.state = MatcherState.CORRECT
                else:
                    self.state = MatcherState.FINALIZE
            elif self.state is MatcherState.CORRECT:
                self.corrector.correct_peaks(layer, self.index)
                self.correct_energy(layer)
                self.state = self.resolve_conflicts(layer)
            elif self.state is MatcherState.NEEDS_RECALCULATION:
                self.index.clear()
                layer.clear_hits()
                self.reopen_accepted()
                self.state = MatcherState.FIND_HITS
            elif self.state is MatcherState.FINALIZE:
                self.correct_hits(layer, transformer)
                self.state = MatcherState.DONE

        self.diag.iterations += iterations
        self.diag.max_iterations = max(self.diag.max_iterations, iterations)
        if iterations > bound:
            # unreachable when every restart locks a triplet
            self.diag.inc("iteration_bound_exceeded")
        return layer.hits

    def initialize(self, layer: Layer) -> None:
        self.status = {}
        self.index = PeakHitIndex()
        layer.clear_hits()
        for view in layer.iter_views():
            for peak in view.peaks:
                self.index.add_peak(peak)
        for u, v, w in self._triplets(layer):
            self.status[TripletKey(u.id, v.id, w.id)] = TripletStatus.UNTRIED

    @staticmethod
    def n_triplets(layer: Layer) -> int:
        n = 1
        for view in layer.iter_views():
            n *= len(view.peaks)
        return n

    @staticmethod
    def _triplets(layer: Layer):
        for pu in layer.view(ViewLabel.U).peaks:
            for pv in layer.view(ViewLabel.V).peaks:
                for pw in layer.view(ViewLabel.W).peaks:
                    yield pu, pv, pw

    def lock(self, key: TripletKey) -> None:
        if self.status.get(key) is not TripletStatus.LOCKED:
            self.diag.triplets_locked += 1
        self.status[key] = TripletStatus.LOCKED

    def is_locked(self, key: TripletKey) -> bool:
        return self.status.get(key) is TripletStatus.LOCKED

    def reopen_accepted(self) -> None:
        """Accepted triplets lost their hits; they compete again next pass."""
        for key, st in self.status.items():
            if st is TripletStatus.ACCEPTED:
                self.status[key] = TripletStatus.UNTRIED

    # ----------------------------------------------------------------- pass 1

    def find_hits(self, layer: Layer) -> bool:
        """
        Create a hit for every UNTRIED triplet passing the Dalitz test.

        Returns False when the layer overflowed max_hits; its hits are then
        cleared for this event.
        """
        geom = layer.geometry
        for pu, pv, pw in self._triplets(layer):
            key = TripletKey(pu.id, pv.id, pw.id)
            if self.status.get(key, TripletStatus.UNTRIED) is not TripletStatus.UNTRIED:
                continue
            d = evaluate_dalitz(geom, (pu.distance, pv.distance, pw.distance),
                                (pu.width, pv.width, pw.width))
            if not d.accepted:
                continue
            if layer.n_hits >= self.cfg.max_hits:
                self.index.clear()
                layer.clear_hits()
                self.diag.inc("max_hits_exceeded")
                return False
            hit = layer.new_hit(pu, pv, pw)
            self.status[key] = TripletStatus.ACCEPTED
            hit.chi_square = d.error
            hit.set_paths(*resolve_paths(geom, d.i, d.j))
            self.index.add_hit(hit)
            self.diag.hits_found += 1
        return True

    # ----------------------------------------------------------------- pass 2

    def correct_energy(self, layer: Layer) -> None:
        """
        Apportion the energy of peaks shared by several hits.

        A shared peak's energy is split in proportion to the mean energy
        the other hits see in their unique peaks on the other two views.
        The peak is then registered only with its best supported hit.
        """
        n_unique = 0
        for hit in layer.hits:
            for ph in hit.peak_hits.values():
                if self.index.is_unique(ph.peak):
                    ph.energy_fraction = 1.0
                    n_unique += 1
                else:
                    ph.energy_fraction = 0.0

        if n_unique == 3 * layer.n_hits:
            return

        for view in layer.iter_views():
            for peak in view.peaks:
                phs = self.index.hits_of(peak)
                if len(phs) < 2:
                    continue
                support = []
                for ph in phs:
                    valid = [o for o in ph.others() if self.index.is_unique(o.peak)]
                    if valid:
                        support.append(sum(o.energy * o.energy_fraction for o in valid) / len(valid))
                    else:
                        support.append(0.0)
                total = sum(support)
                if total > 0:
                    fractions = [s / total for s in support]
                else:
                    self.diag.inc("unsupported_shared_peak")
                    fractions = [1.0 / len(phs)] * len(phs)
                for ph, frac in zip(phs, fractions):
                    ph.energy_fraction = frac
                best = max(range(len(phs)), key=lambda n: fractions[n])
                self.index.set_single(peak, phs[best])

    def find_conflicts(self, layer: Layer) -> List[Tuple[Hit, Hit]]:
        """(loser, winner) for every hit pair sharing two or three peaks."""
        out: List[Tuple[Hit, Hit]] = []
        for h1, h2 in combinations(layer.hits, 2):
            if h1.shared_peaks(h2) >= 2:
                if h1.chi_square > h2.chi_square:
                    out.append((h1, h2))
                else:
                    out.append((h2, h1))
        return out

    def resolve_conflicts(self, layer: Layer) -> MatcherState:
        conflicts = self.find_conflicts(layer)
        if not conflicts:
            return MatcherState.FINALIZE
        for loser, _ in conflicts:
            self.lock(loser.triplet())
        self.diag.inc("conflict_restart")
        return MatcherState.NEEDS_RECALCULATION

    # ----------------------------------------------------------------- pass 3

    def correct_hits(self, layer: Layer, transformer: CoordinateTransformer) -> None:
        geom = layer.geometry
        for hit in layer.hits:
            energy = 0.0
            time = 0.0
            time_we = 0.0
            for ph in hit.peak_hits.values():
                energy += ph.hit_energy
                time += ph.time
                time_we += ph.time_weighted
            hit.energy = energy
            if layer.name is not LayerName.WHOLE and time_we > 0:
                hit.time = time / time_we
            else:
                hit.time = TIME_SENTINEL

            phs = [hit.peak_hits[label] for label in ViewLabel]
            dist = [ph.distance if ph.width > 0 else ph.peak.distance for ph in phs]
            width = [ph.width if ph.width > 0 else ph.peak.width for ph in phs]
            d = evaluate_dalitz(geom, dist, width, finalize=True)
            hit.local.i, hit.local.j, hit.local.k = d.i, d.j, d.k
            hit.local.di, hit.local.dj = d.di, d.dj
            hit.width = d.rms
            hit.chi_square = d.error

        self.sort_hits(layer)

        for n, hit in enumerate(layer.hits, start=1):
            hit.id = n
            n_strips = 0
            for ph in hit.peak_hits.values():
                ph.n_strips = ph.peak.n_strips
                n_strips += ph.n_strips
            hit.n_strips = n_strips

            hit.glob.x, hit.glob.y, hit.glob.z = transformer.position(
                hit.local.i, hit.local.j, hit.local.k)
            hit.glob.dx, hit.glob.dy, hit.glob.dz = transformer.uncertainty(
                hit.local.di, hit.local.dj, hit.local.dk)
        self.diag.hits_kept += layer.n_hits

    def sort_hits(self, layer: Layer) -> None:
        layer.hits.sort(key=lambda h: h.energy, reverse=True)
        keep = 0
        for hit in layer.hits:
            if hit.energy < self.cfg.hit_threshold:
                break
            keep += 1
        if keep < layer.n_hits:
            self.diag.inc("below_hit_threshold")
        del layer.hits[keep:]
