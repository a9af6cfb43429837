import numpy as np
import pytest

from ecrecon.geometry.layout import LayerGeometry, LayerName, SectorGeometry, ViewLabel
from ecrecon.physics.peaks import Peak
from ecrecon.physics.sector import Layer
from ecrecon.physics.strips import Strip

# Equilateral 36 cm layer with 36 strips: pitch 1, strip s centred at s - 0.5
EDGE = 36.0
H = EDGE * np.sqrt(3.0) / 2.0


def small_geometry(depth: float = 10.0) -> LayerGeometry:
    return LayerGeometry(edge=(EDGE, EDGE, EDGE), H=H, H1=0.0, H2=H / 3.0, depth=depth, max_strips=36)


@pytest.fixture
def geom() -> LayerGeometry:
    return small_geometry()


@pytest.fixture
def sector_geom() -> SectorGeometry:
    return SectorGeometry.from_cfg(0.0, [0.0, 0.0, 0.0])


def add_strips(layer: Layer, label: ViewLabel, strips):
    for sid, energy in strips:
        layer.view(label).add_strip(Strip(id=sid, raw_energy=energy, raw_adc=energy / 1e-4, time=10.0))


def make_peak(layer: Layer, label: ViewLabel, distance: float, width: float = 0.5, energy: float = 0.2) -> Peak:
    """Hand-placed peak with two equal member strips around distance."""
    view = layer.view(label)
    peak = view.new_peak()
    # strips sid and sid + 1 are centred at sid - 0.5 and sid + 0.5
    sid = max(1, int(round(distance)))
    for s in (sid, sid + 1):
        strip = Strip(id=s, raw_energy=energy / 2.0, raw_adc=energy / 2.0 / 1e-4, time=10.0, peak_fraction=1.0)
        peak.add_strip(strip)
    peak.distance = distance
    peak.width = width
    return peak


@pytest.fixture
def inner_layer(geom) -> Layer:
    return Layer.empty(LayerName.INNER, geom)
