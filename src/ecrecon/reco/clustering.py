# src/ecrecon/reco/clustering.py
from __future__ import annotations
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Tuple

import numpy as np

from ecrecon.config.schemas import ClusteringCfg
from ecrecon.physics.peaks import Peak
from ecrecon.physics.sector import Layer, View
from ecrecon.physics.strips import Strip


@dataclass
class ClusterDiagnostics:
    views_in: int = 0
    views_skipped: int = 0
    peaks_found: int = 0
    peaks_kept: int = 0
    strips_below_threshold: int = 0
    strips_bad_id: int = 0
    reasons: Dict[str, int] = field(default_factory=dict)

    def inc(self, reason: str) -> None:
        self.reasons[reason] = self.reasons.get(reason, 0) + 1


def strip_weight(energy: float, ln_weights: bool) -> float:
    """Centroid weight of a strip: its energy, or ln(10000*E) clipped at 0."""
    if not ln_weights:
        return energy
    if energy <= 0:
        return 0.0
    return max(0.0, float(np.log(10000.0 * energy)))


def strip_position(strip_id: int, pitch: float) -> float:
    return strip_id * pitch - pitch / 2.0


def weighted_centroid(
    positions: Iterable[float],
    weights: Iterable[float],
    n_strips: int,
    pitch: float,
) -> Tuple[float, float]:
    """
    (centroid, width) of a strip group. A single strip gets the RMS of a
    uniform distribution over one pitch.
    """
    x = np.asarray(list(positions), dtype=np.float64)
    w = np.asarray(list(weights), dtype=np.float64)
    sum_w = float(w.sum())
    if sum_w <= 0:
        # all-zero weights: fall back to the plain mean position
        w = np.ones_like(x)
        sum_w = float(x.size) if x.size else 1.0
    cntrd = float((w * x).sum() / sum_w)
    if n_strips > 1:
        width2 = float((w * x * x).sum() / sum_w) - cntrd * cntrd
        width = float(np.sqrt(abs(width2)))
    else:
        width = pitch / np.sqrt(12.0)
    return cntrd, float(width)


class StripClusterer:
    """
    Groups the strips of each view into peaks.

    A strip joins the current peak when its id is within touch_id of the
    previous accepted strip; otherwise it opens a new peak. Peaks are then
    ordered by decreasing energy, cut at peak_threshold, and given a
    centroid and width along the view axis.
    """

    def __init__(self, cfg: ClusteringCfg | None = None):
        self.cfg = cfg or ClusteringCfg()
        self.diag = ClusterDiagnostics()

    def find_peaks(self, layer: Layer) -> None:
        for view in layer.iter_views():
            self.diag.views_in += 1
            pitch = view.edge_length / layer.max_strips
            self._group(view, layer.max_strips)
            if view.peaks:
                self._sort_and_cut(view)
                self._positions(view, pitch)
            self.diag.peaks_kept += len(view.peaks)

    def _group(self, view: View, max_strips: int) -> None:
        view.clear_peaks()
        if view.n_strips <= 0 or view.n_strips > max_strips:
            if view.n_strips > max_strips:
                self.diag.views_skipped += 1
                self.diag.inc("too_many_strips")
            return

        touch = self.cfg.touch_id
        last_id = -1 - touch  # touches nothing
        peak: Peak | None = None
        for strip in view.sorted_strips():
            if strip.id < 1 or strip.id > max_strips:
                self.diag.strips_bad_id += 1
                continue
            if strip.raw_energy <= self.cfg.strip_threshold:
                self.diag.strips_below_threshold += 1
                continue
            if strip.id == last_id:
                self.diag.inc("duplicate_strip")
                continue
            if peak is None or strip.id - last_id > touch:
                peak = view.new_peak()
                self.diag.peaks_found += 1
                if len(view.peaks) > self.cfg.max_peaks:
                    view.clear_peaks()
                    self.diag.views_skipped += 1
                    self.diag.inc("max_peaks_exceeded")
                    return
            last_id = strip.id
            strip.peak_fraction = 1.0
            peak.add_strip(strip)

    def _sort_and_cut(self, view: View) -> None:
        # stable sort: equal energies keep strip order
        view.peaks.sort(key=lambda p: p.energy, reverse=True)
        keep = 0
        for peak in view.peaks:
            if peak.energy < self.cfg.peak_threshold:
                break
            keep += 1
        if keep < len(view.peaks):
            self.diag.inc("below_peak_threshold")
        del view.peaks[keep:]

    def _positions(self, view: View, pitch: float) -> None:
        ln = self.cfg.ln_weights
        for peak in view.peaks:
            members: List[Strip] = peak.members
            for s in members:
                s.peak_energy = s.raw_energy * s.peak_fraction
            cntrd, width = weighted_centroid(
                (strip_position(s.id, pitch) for s in members),
                (strip_weight(s.raw_energy, ln) for s in members),
                peak.n_strips,
                pitch,
            )
            peak.distance = cntrd
            peak.width = width
