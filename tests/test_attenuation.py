import numpy as np
import pytest

from ecrecon.config.schemas import AttenuationCfg
from ecrecon.geometry.layout import ViewLabel
from ecrecon.physics.peaks import PeakHit
from ecrecon.reco.attenuation import AttenuationCorrector, clamp_moment, clamp_sum
from ecrecon.reco.index import PeakHitIndex

from conftest import make_peak


def test_sum_clamp():
    assert clamp_sum(0.0) == 1e-6
    assert clamp_sum(-5.0) == 1e-6
    assert clamp_sum(1e9) == 1e6
    assert clamp_sum(3.5) == 3.5


def test_moment_clamp():
    assert clamp_moment(0.0) == 1e-8
    assert clamp_moment(-1e12) == -1e8
    assert clamp_moment(-0.5) == -0.5
    assert clamp_moment(1e-20) == 1e-8
    # tiny moments lose their sign
    assert clamp_moment(-1e-12) == 1e-8


def _registered(layer, peak, path):
    ph = PeakHit(peak=peak, path=path)
    index = PeakHitIndex()
    index.add_peak(peak)
    index.add(ph)
    return ph, index


def test_energy_scaled_by_path_over_attenuation(inner_layer):
    peak = make_peak(inner_layer, ViewLabel.U, 24.0, energy=0.2)
    ph, index = _registered(inner_layer, peak, path=376.0)

    AttenuationCorrector(AttenuationCfg()).correct_peaks(inner_layer, index)

    assert ph.energy == pytest.approx(0.2 * np.e)
    assert peak.energy == pytest.approx(0.2 * np.e)
    assert ph.distance == pytest.approx(24.0)
    assert ph.width == pytest.approx(0.5)
    assert ph.moments[2] == pytest.approx(0.25)
    assert abs(ph.moments[3]) == pytest.approx(1e-8)
    assert ph.n_strips == 2


def test_time_corrected_for_transit_along_strip(inner_layer):
    peak = make_peak(inner_layer, ViewLabel.V, 10.0)
    ph, index = _registered(inner_layer, peak, path=18.0)

    AttenuationCorrector(AttenuationCfg(speed_in_plastic=18.0)).correct_peaks(inner_layer, index)

    # both strips at t = 10 ns, 1 ns transit
    assert ph.time / ph.time_weighted == pytest.approx(9.0)


def test_strips_without_time_are_skipped(inner_layer):
    peak = make_peak(inner_layer, ViewLabel.W, 10.0)
    for s in peak.members:
        s.time = -999.0
    ph, index = _registered(inner_layer, peak, path=0.0)
    AttenuationCorrector().correct_peaks(inner_layer, index)
    assert ph.time == 0.0
    assert ph.time_weighted == 0.0


def test_peak_energy_uses_shortest_path(inner_layer):
    peak = make_peak(inner_layer, ViewLabel.U, 24.0, energy=0.2)
    index = PeakHitIndex()
    index.add_peak(peak)
    near = PeakHit(peak=peak, path=0.0)
    far = PeakHit(peak=peak, path=100.0)
    index.add(near)
    index.add(far)

    AttenuationCorrector().correct_peaks(inner_layer, index)

    assert peak.energy == pytest.approx(0.2)
    assert far.energy > near.energy


def test_zero_log_weights_fall_back_to_plain_mean(inner_layer):
    # two strips of 5e-5: ln(10000 * E) < 0 for both
    peak = make_peak(inner_layer, ViewLabel.U, 24.0, energy=1e-4)
    ph, index = _registered(inner_layer, peak, path=0.0)

    AttenuationCorrector(ln_weights=True).correct_peaks(inner_layer, index)

    assert ph.distance == pytest.approx(24.0)
    assert ph.width == pytest.approx(0.5)
