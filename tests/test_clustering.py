import numpy as np
import pytest

from ecrecon.config.schemas import ClusteringCfg
from ecrecon.geometry.layout import ViewLabel
from ecrecon.reco.clustering import StripClusterer, strip_weight, weighted_centroid

from conftest import add_strips


def _peaks(layer, label=ViewLabel.U):
    return layer.view(label).peaks


def test_three_adjacent_strips_make_one_peak(inner_layer):
    add_strips(inner_layer, ViewLabel.U, [(10, 5.0), (11, 6.0), (12, 4.0)])
    StripClusterer(ClusteringCfg(strip_threshold=0.0, touch_id=1)).find_peaks(inner_layer)

    peaks = _peaks(inner_layer)
    assert len(peaks) == 1
    assert peaks[0].energy == pytest.approx(15.0)
    assert [s.id for s in peaks[0].members] == [10, 11, 12]
    # positions 9.5, 10.5, 11.5 weighted 5, 6, 4
    assert peaks[0].distance == pytest.approx(156.5 / 15.0)


def test_strips_below_threshold_never_join_a_peak(inner_layer):
    add_strips(inner_layer, ViewLabel.U, [(3, 0.5), (4, 0.05), (5, 0.6), (20, 0.01)])
    clusterer = StripClusterer(ClusteringCfg(strip_threshold=0.1))
    clusterer.find_peaks(inner_layer)

    member_ids = [s.id for p in _peaks(inner_layer) for s in p.members]
    assert 4 not in member_ids
    assert 20 not in member_ids
    # dropping strip 4 opens a gap of 2 > touch_id
    assert len(_peaks(inner_layer)) == 2
    assert clusterer.diag.strips_below_threshold == 2


@pytest.mark.parametrize("touch_id", [1, 2, 3])
def test_gap_of_touch_id_merges(inner_layer, touch_id):
    add_strips(inner_layer, ViewLabel.V, [(10, 1.0), (10 + touch_id, 1.0)])
    StripClusterer(ClusteringCfg(touch_id=touch_id)).find_peaks(inner_layer)
    assert len(_peaks(inner_layer, ViewLabel.V)) == 1


@pytest.mark.parametrize("touch_id", [1, 2, 3])
def test_gap_of_touch_id_plus_one_splits(inner_layer, touch_id):
    add_strips(inner_layer, ViewLabel.V, [(10, 1.0), (11 + touch_id, 1.0)])
    StripClusterer(ClusteringCfg(touch_id=touch_id)).find_peaks(inner_layer)
    assert len(_peaks(inner_layer, ViewLabel.V)) == 2


def test_peaks_sorted_and_cut_monotonically(inner_layer):
    add_strips(inner_layer, ViewLabel.W, [(2, 1.0), (10, 3.0), (20, 0.5), (30, 2.0)])
    clusterer = StripClusterer(ClusteringCfg(peak_threshold=0.8))
    clusterer.find_peaks(inner_layer)

    energies = [p.energy for p in _peaks(inner_layer, ViewLabel.W)]
    assert energies == pytest.approx([3.0, 2.0, 1.0])
    assert all(a > b for a, b in zip(energies, energies[1:]))
    assert clusterer.diag.reasons["below_peak_threshold"] == 1


def test_too_many_peaks_discards_view(inner_layer):
    add_strips(inner_layer, ViewLabel.U, [(2, 1.0), (10, 1.0), (20, 1.0)])
    add_strips(inner_layer, ViewLabel.V, [(5, 1.0)])
    clusterer = StripClusterer(ClusteringCfg(max_peaks=2))
    clusterer.find_peaks(inner_layer)

    assert _peaks(inner_layer, ViewLabel.U) == []
    assert len(_peaks(inner_layer, ViewLabel.V)) == 1
    assert clusterer.diag.reasons["max_peaks_exceeded"] == 1


def test_single_strip_width_is_uniform_rms(inner_layer):
    add_strips(inner_layer, ViewLabel.U, [(7, 0.3)])
    StripClusterer().find_peaks(inner_layer)
    peak = _peaks(inner_layer)[0]
    assert peak.distance == pytest.approx(6.5)
    assert peak.width == pytest.approx(1.0 / np.sqrt(12.0))


def test_out_of_range_and_duplicate_strips_ignored(inner_layer):
    add_strips(inner_layer, ViewLabel.U, [(0, 1.0), (37, 1.0), (5, 1.0), (5, 1.0), (6, 1.0)])
    clusterer = StripClusterer()
    clusterer.find_peaks(inner_layer)
    peaks = _peaks(inner_layer)
    assert len(peaks) == 1
    assert [s.id for s in peaks[0].members] == [5, 6]
    assert clusterer.diag.strips_bad_id == 2
    assert clusterer.diag.reasons["duplicate_strip"] == 1


def test_log_weights_clip_at_zero():
    assert strip_weight(1e-5, True) == 0.0
    assert strip_weight(0.0, True) == 0.0
    assert strip_weight(0.01, True) == pytest.approx(np.log(100.0))
    assert strip_weight(0.25, False) == 0.25


def test_weighted_centroid_zero_weights_falls_back_to_mean():
    c, w = weighted_centroid([1.0, 3.0], [0.0, 0.0], 2, 1.0)
    assert c == pytest.approx(2.0)
    assert w == pytest.approx(1.0)
