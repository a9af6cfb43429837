# src/ecrecon/reco/attenuation.py
from __future__ import annotations
from dataclasses import dataclass, field
from typing import Dict

import numpy as np

from ecrecon.config.schemas import AttenuationCfg
from ecrecon.physics.peaks import Peak, PeakHit
from ecrecon.physics.sector import Layer, View
from .clustering import strip_position, strip_weight
from .index import PeakHitIndex

SUM_MIN, SUM_MAX = 1e-6, 1e6
MOMENT_MIN, MOMENT_MAX = 1e-8, 1e8


def clamp_sum(x: float) -> float:
    return float(min(max(x, SUM_MIN), SUM_MAX))


def clamp_moment(x: float) -> float:
    """Clamp |x| into [1e-8, 1e8]; large values keep their sign, tiny ones become +1e-8."""
    if abs(x) < MOMENT_MIN:
        return MOMENT_MIN
    if abs(x) > MOMENT_MAX:
        return float(np.sign(x)) * MOMENT_MAX
    return float(x)


@dataclass
class AttenuationDiagnostics:
    peaks_corrected: int = 0
    peak_hits_corrected: int = 0
    reasons: Dict[str, int] = field(default_factory=dict)

    def inc(self, reason: str) -> None:
        self.reasons[reason] = self.reasons.get(reason, 0) + 1


class AttenuationCorrector:
    """
    Second pass over the peaks once the hit paths are known.

    Each strip energy is scaled by exp(path/atten) for the path of the hit
    it is seen from; centroid, width and the 2nd-4th central moments are
    recomputed per peak-hit, and the strip times are corrected for the
    transit time along the strip and averaged with sqrt(ADC) weights.
    """

    def __init__(self, cfg: AttenuationCfg | None = None, ln_weights: bool = False):
        self.cfg = cfg or AttenuationCfg()
        self.ln_weights = ln_weights
        self.diag = AttenuationDiagnostics()

    def correct_peaks(self, layer: Layer, index: PeakHitIndex) -> None:
        for view in layer.iter_views():
            pitch = view.edge_length / layer.max_strips
            for peak in view.peaks:
                phs = index.hits_of(peak)
                if not phs:
                    continue
                shortest = min(ph.path for ph in phs)
                peak.energy = self._corrected_energy(view, peak, shortest)
                self.diag.peaks_corrected += 1
                for ph in phs:
                    self._correct_peak_hit(view, peak, ph, pitch)

    def _atten(self, view: View, strip_id: int) -> float:
        a = view.calibration.atten_for(strip_id)
        return a if a > 0 else self.cfg.default_atten

    def _factor(self, view: View, strip_id: int, path: float) -> float:
        return float(np.exp(path / self._atten(view, strip_id)))

    def _corrected_energy(self, view: View, peak: Peak, path: float) -> float:
        return float(sum(s.raw_energy * s.peak_fraction * self._factor(view, s.id, path)
                         for s in peak.members))

    def _correct_peak_hit(self, view: View, peak: Peak, ph: PeakHit, pitch: float) -> None:
        path = ph.path
        energies = np.array([s.raw_energy * s.peak_fraction * self._factor(view, s.id, path)
                             for s in peak.members], dtype=np.float64)
        weights = np.array([strip_weight(e, self.ln_weights) for e in energies], dtype=np.float64)
        x = np.array([strip_position(s.id, pitch) for s in peak.members], dtype=np.float64)
        if float(weights.sum()) <= 0:
            # all-zero weights (ln weights of tiny strips): plain mean, as in clustering
            weights = np.ones_like(x)

        sum_w = clamp_sum(float(weights.sum()))
        cntrd = float((weights * x).sum() / sum_w)
        if peak.n_strips > 1:
            width2 = float((weights * x * x).sum() / sum_w) - cntrd * cntrd
            width = float(np.sqrt(abs(width2)))
        else:
            width = pitch / np.sqrt(12.0)

        dx = x - cntrd
        m2 = clamp_moment(float((weights * dx ** 2).sum() / sum_w))
        m3 = clamp_moment(float((weights * dx ** 3).sum() / sum_w))
        m4 = clamp_moment(float((weights * dx ** 4).sum() / sum_w))

        time = 0.0
        time_we = 0.0
        for s in peak.members:
            if s.time > 0 and view.calibration.trms_for(s.id) > 0 and s.raw_adc > 0:
                w = float(np.sqrt(s.raw_adc))
                time += (s.time - path / self.cfg.speed_in_plastic) * w
                time_we += w

        ph.energy = float(energies.sum())
        ph.distance = cntrd
        ph.width = float(width)
        ph.moments[2] = m2
        ph.moments[3] = m3
        ph.moments[4] = m4
        ph.time = time
        ph.time_weighted = time_we
        ph.n_strips = peak.n_strips
        self.diag.peak_hits_corrected += 1
