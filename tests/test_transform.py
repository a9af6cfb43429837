import numpy as np
import pytest

from ecrecon.geometry.layout import SectorGeometry
from ecrecon.geometry.transform import CoordinateTransformer, rotation_matrix


@pytest.mark.parametrize("phi", [0.0, 60.0, 120.0, 300.0])
def test_local_origin_maps_to_sector_origin(phi):
    origin = np.array([12.5, -3.0, 480.0])
    tr = CoordinateTransformer.for_sector(SectorGeometry.from_cfg(phi, origin))
    assert tr.position(0.0, 0.0, 0.0) == (12.5, -3.0, 480.0)


def test_uncertainties_are_never_negative():
    tr = CoordinateTransformer.for_sector(SectorGeometry.from_cfg(240.0, [1.0, 2.0, 3.0]))
    rng = np.random.default_rng(3)
    for d in rng.normal(size=(50, 3)):
        assert min(tr.uncertainty(*d)) >= 0.0


def test_uncertainty_is_not_translated():
    tr = CoordinateTransformer.for_sector(SectorGeometry.from_cfg(0.0, [100.0, 100.0, 100.0]))
    assert tr.uncertainty(0.0, 0.0, 0.0) == (0.0, 0.0, 0.0)


@pytest.mark.parametrize("phi,tilt", [(0.0, 25.0), (60.0, 25.0), (200.0, 10.0)])
def test_rotation_is_orthonormal(phi, tilt):
    R = rotation_matrix(phi, tilt)
    np.testing.assert_allclose(R @ R.T, np.eye(3), atol=1e-12)
    assert np.linalg.det(R) == pytest.approx(1.0)


def test_depth_axis_follows_tilt():
    tr = CoordinateTransformer.for_sector(SectorGeometry.from_cfg(0.0, [0.0, 0.0, 0.0]), tilt_deg=25.0)
    x, y, z = tr.position(0.0, 0.0, 1.0)
    t = np.deg2rad(25.0)
    assert (x, y, z) == pytest.approx((np.sin(t), 0.0, np.cos(t)))
