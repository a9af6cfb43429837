from itertools import permutations

import numpy as np
import pytest

from ecrecon.geometry.dalitz import evaluate_dalitz, projections_for_point
from ecrecon.geometry.layout import LayerGeometry
from ecrecon.geometry.path import resolve_paths


def test_consistent_projections_are_accepted(geom):
    i, j = 2.0, -3.0
    dist = projections_for_point(geom, i, j)
    d = evaluate_dalitz(geom, dist, (0.5, 0.5, 0.5))
    assert d.accepted
    assert d.dalitz == pytest.approx(2.0)
    assert d.error == pytest.approx(0.0, abs=1e-9)
    assert d.i == pytest.approx(i)
    assert d.j == pytest.approx(j)
    assert d.k == geom.depth


def test_inconsistent_projections_are_rejected(geom):
    # 78 / 36 is far outside two quadrature widths
    d = evaluate_dalitz(geom, (24.0, 24.0, 30.0), (0.5, 0.5, 0.5))
    assert not d.accepted
    assert d.error > 1.0
    assert d.i == 0.0 and d.j == 0.0


def test_finalize_fills_coordinates_and_uncertainties(geom):
    d = evaluate_dalitz(geom, (24.0, 24.0, 30.0), (0.5, 0.5, 0.5), finalize=True)
    assert not d.accepted
    assert d.k == geom.depth
    assert d.di > 0 and d.dj > 0
    assert d.rms == pytest.approx(np.hypot(d.di, d.dj))


def test_zero_widths_do_not_divide_by_zero(geom):
    d = evaluate_dalitz(geom, (24.0, 24.0, 24.0), (0.0, 0.0, 0.0))
    assert np.isfinite(d.error)
    assert not d.accepted or d.error < 1.0


@pytest.mark.parametrize("dist,width", [
    ((24.0, 20.0, 28.5), (0.5, 0.7, 0.3)),
    ((20.0, 15.0, 22.0), (0.5, 0.7, 0.3)),
    ((12.0, 25.0, 20.0), (2.0, 0.1, 1.0)),
])
def test_acceptance_symmetric_under_axis_permutation(dist, width):
    edges = (36.0, 30.0, 42.0)
    ref_geom = LayerGeometry(edge=edges, H=30.0, H1=0.0, H2=10.0, depth=5.0)
    ref = evaluate_dalitz(ref_geom, dist, width)
    for perm in permutations(range(3)):
        g = LayerGeometry(edge=tuple(edges[p] for p in perm), H=30.0, H1=0.0, H2=10.0, depth=5.0)
        d = evaluate_dalitz(g, [dist[p] for p in perm], [width[p] for p in perm])
        assert d.accepted == ref.accepted
        assert d.error == pytest.approx(ref.error)


def test_projection_inverse_round_trip(geom):
    rng = np.random.default_rng(7)
    for _ in range(20):
        i = rng.uniform(geom.H2 - geom.H, geom.H2)
        j = rng.uniform(-5.0, 5.0)
        d = evaluate_dalitz(geom, projections_for_point(geom, i, j), (1.0, 1.0, 1.0))
        assert d.i == pytest.approx(i)
        assert d.j == pytest.approx(j)


def test_paths_at_layer_origin(geom):
    # i = j = 0 with H1 = 0: U and W read out at the hit, V one edge away
    paths = resolve_paths(geom, 0.0, 0.0)
    assert paths.u == pytest.approx(0.0, abs=1e-9)
    assert paths.v == pytest.approx(36.0)
    assert paths.w == pytest.approx(0.0, abs=1e-9)


def test_paths_are_pure(geom):
    assert resolve_paths(geom, 3.0, -2.0) == resolve_paths(geom, 3.0, -2.0)
