import pytest

from ecrecon.config.schemas import MatchingCfg
from ecrecon.geometry.layout import LayerName, MatchPair, SectorGeometry
from ecrecon.physics.hits import Hit
from ecrecon.physics.sector import Layer, Sector
from ecrecon.reco.matching import CrossLayerMatcher, dual_leg_time, face_distance, single_leg_time

from conftest import small_geometry


def _sector(names=(LayerName.WHOLE, LayerName.INNER, LayerName.OUTER), orientation=None):
    sector = Sector(id=1, geometry=SectorGeometry.from_cfg(0.0, [0.0, 0.0, 0.0], orientation))
    for name in names:
        sector.layers[name] = Layer.empty(name, small_geometry())
    return sector


def _hit(sector, layer, i, j, energy=1.0, time=10.0):
    lay = sector.layer(layer)
    h = Hit(id=lay.n_hits + 1, layer=layer, energy=energy, time=time)
    h.local.i, h.local.j = i, j
    h.local.di = h.local.dj = 1.0
    lay.hits.append(h)
    return h


def _assert_symmetric(sector):
    for h in sector.all_hits():
        for name in LayerName:
            other = h.match(name)
            if other is not None:
                assert other.match(h.layer) is h
                assert other.match_chi_square[h.layer] == h.match_chi_square[name]


def test_closer_hit_steals_the_match():
    sector = _sector()
    a_prev = _hit(sector, LayerName.INNER, 0.0, 0.0)
    a = _hit(sector, LayerName.INNER, 1.0, 0.0)
    b = _hit(sector, LayerName.WHOLE, 1.2, 0.0)

    matcher = CrossLayerMatcher()
    matcher.project_all_hits(sector)
    matcher.match(sector, MatchPair.INNER_WHOLE)

    assert b.match(LayerName.INNER) is a
    assert a.match(LayerName.WHOLE) is b
    assert a_prev.match(LayerName.WHOLE) is None
    assert a.match_chi_square[LayerName.WHOLE] == pytest.approx(0.04 / 2.0)
    assert sector.n_matches(LayerName.INNER, LayerName.WHOLE) == 1
    assert matcher.diag.severed["inner_whole"] == 1
    _assert_symmetric(sector)


def test_farther_hit_does_not_steal():
    sector = _sector()
    a = _hit(sector, LayerName.INNER, 1.0, 0.0)
    a_late = _hit(sector, LayerName.INNER, 0.0, 0.0)
    b = _hit(sector, LayerName.WHOLE, 1.2, 0.0)

    CrossLayerMatcher().run(sector)

    assert b.match(LayerName.INNER) is a
    assert a_late.match(LayerName.WHOLE) is None
    assert sector.n_matches(LayerName.INNER, LayerName.WHOLE) == 1
    _assert_symmetric(sector)


def test_steal_severs_dependent_whole_link():
    sector = _sector()
    a_prev = _hit(sector, LayerName.INNER, 0.0, 0.0)
    a = _hit(sector, LayerName.INNER, 3.0, 0.0)
    w = _hit(sector, LayerName.WHOLE, 0.0, 0.0)
    o = _hit(sector, LayerName.OUTER, 2.5, 0.0)

    matcher = CrossLayerMatcher()
    matcher.project_all_hits(sector)
    matcher.match(sector, MatchPair.INNER_WHOLE)
    matcher.match(sector, MatchPair.INNER_OUTER)

    assert a_prev.match(LayerName.WHOLE) is w
    assert o.match(LayerName.INNER) is a
    assert a_prev.match(LayerName.OUTER) is None
    # the outer hit lost the WHOLE link it inherited from a_prev
    assert o.match(LayerName.WHOLE) is None
    assert w.match(LayerName.OUTER) is None
    assert sector.n_matches(LayerName.INNER, LayerName.OUTER) == 1
    assert sector.n_matches(LayerName.OUTER, LayerName.WHOLE) == 0
    _assert_symmetric(sector)


def test_outer_inherits_whole_match_and_whole_time():
    sector = _sector()
    a = _hit(sector, LayerName.INNER, 0.0, 0.0, energy=1.0, time=10.0)
    w = _hit(sector, LayerName.WHOLE, 0.0, 0.0, energy=4.0, time=-999.0)
    o = _hit(sector, LayerName.OUTER, 0.5, 0.0, energy=3.0, time=12.0)

    cfg = MatchingCfg()
    CrossLayerMatcher(cfg).run(sector)

    assert o.match(LayerName.WHOLE) is w
    assert sector.n_matches(LayerName.OUTER, LayerName.WHOLE) == 1
    # no orientation: thickness falls back to the layer depth
    expected = dual_leg_time(a, o, cfg.speed_of_light)
    assert w.time == pytest.approx(expected)
    assert a.thickness == pytest.approx(10.0)
    _assert_symmetric(sector)


def test_unmatched_hit_stays_unmatched():
    sector = _sector()
    a = _hit(sector, LayerName.INNER, 0.0, 0.0)
    far = _hit(sector, LayerName.WHOLE, 30.0, 30.0)

    CrossLayerMatcher().run(sector)

    assert a.match(LayerName.WHOLE) is None
    assert far.match(LayerName.INNER) is None
    assert sector.n_matches(LayerName.INNER, LayerName.WHOLE) == 0


def test_missing_layers_and_empty_targets_are_skipped():
    sector = _sector(names=(LayerName.INNER, LayerName.OUTER))
    a = _hit(sector, LayerName.INNER, 0.0, 0.0)

    CrossLayerMatcher().run(sector)

    assert all(a.match(name) is None for name in LayerName)


def test_time_forms():
    sector = _sector()
    a = _hit(sector, LayerName.INNER, 0.0, 0.0, energy=1.0, time=10.0)
    b = _hit(sector, LayerName.OUTER, 0.0, 0.0, energy=3.0, time=14.0)
    a.thickness, b.thickness = 30.0, 60.0
    c = 30.0
    assert dual_leg_time(a, b, c) == pytest.approx(((10.0 - 1.0) * 1.0 + (14.0 - 2.0) * 3.0) / 4.0)
    # single leg: no speed-of-light normalization
    assert single_leg_time(a) == pytest.approx(10.0 - 30.0)
    a.energy = b.energy = 0.0
    assert dual_leg_time(a, b, c) == single_leg_time(a)


def test_single_leg_whole_time():
    sector = _sector()
    a = _hit(sector, LayerName.INNER, 0.0, 0.0, time=10.0)
    w = _hit(sector, LayerName.WHOLE, 0.0, 0.0)

    matcher = CrossLayerMatcher()
    matcher.project_all_hits(sector)
    matcher.match(sector, MatchPair.INNER_WHOLE)

    assert w.time == pytest.approx(10.0 - a.thickness)


def test_projection_with_orientation_shifts_face_coordinates():
    sector = _sector(orientation=[0.0, 0.0, 1.0])
    h = _hit(sector, LayerName.INNER, 3.0, 4.0)
    h.glob.x, h.glob.y, h.glob.z = 3.0, 0.0, 4.0  # 36.87 deg off axis

    CrossLayerMatcher().project_all_hits(sector)

    cos = 0.8
    radp = 10.0 * (0.6 / 0.8)
    assert h.thickness == pytest.approx(10.0 / cos)
    assert h.face.i == pytest.approx(3.0 - radp * 0.6)
    assert h.face.j == pytest.approx(4.0 - radp * 0.8)
    assert (h.face.di, h.face.dj) == (1.0, 1.0)


def test_face_distance_guards_zero_uncertainty():
    sector = _sector()
    a = _hit(sector, LayerName.INNER, 0.0, 0.0)
    b = _hit(sector, LayerName.WHOLE, 0.0, 0.0)
    assert face_distance(a, b) == 0.0
    b.face.i = 1e-3
    assert face_distance(a, b) == pytest.approx(1e-6 / 1e-8)
