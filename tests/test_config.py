from pathlib import Path

import pytest
from pydantic import ValidationError

from ecrecon.config.load import config_from_text, load_config
from ecrecon.config.schemas import ClusteringCfg, MatchingCfg
from ecrecon.geometry.layout import LayerName, MatchPair

EXAMPLE = Path(__file__).resolve().parents[1] / "configs" / "sector_example.toml"

MINIMAL = """
[io]
input_path = "strips.csv"
output_path = "hits.h5"

[geometry.layers.inner]
edge = [36.0, 36.0, 36.0]
H = 31.18
H1 = 0.0
H2 = 10.39
depth = 10.0
"""


def test_example_config_loads():
    cfg = load_config(EXAMPLE)
    assert set(cfg.geometry.layer_geometries()) == {LayerName.INNER, LayerName.OUTER, LayerName.WHOLE}
    assert cfg.clustering.touch_id == 1
    assert cfg.reco().tilt_deg == 25.0
    assert cfg.geometry.sector_geometry(1).orientation is not None


def test_minimal_config_defaults():
    cfg = config_from_text(MINIMAL)
    assert cfg.run.workers == "auto"
    assert cfg.hits.max_hits == 10
    assert cfg.matching.radius_for(MatchPair.OUTER_WHOLE) == 20.0
    # sectors not listed follow the six-fold layout
    assert cfg.geometry.sector_geometry(3).phi_deg == 120.0


def test_touch_id_zero_is_rejected():
    with pytest.raises(ValidationError):
        ClusteringCfg(touch_id=0)
    with pytest.raises(ValidationError):
        config_from_text(MINIMAL + "\n[clustering]\ntouch_id = 0\n")


def test_unknown_match_pair_rejected_and_partial_radii_merged():
    with pytest.raises(ValidationError):
        MatchingCfg(radius={"cover_whole": 5.0})
    cfg = MatchingCfg(radius={"inner_outer": 5.0})
    assert cfg.radius_for(MatchPair.INNER_OUTER) == 5.0
    assert cfg.radius_for(MatchPair.INNER_WHOLE) == 20.0


def test_unknown_layer_name_rejected():
    with pytest.raises(ValidationError):
        config_from_text(MINIMAL.replace("layers.inner", "layers.middle"))


def test_calorimeter_layer_required():
    with pytest.raises(ValidationError):
        config_from_text(MINIMAL.replace("layers.inner", "layers.cover"))


def test_bad_edges_rejected():
    with pytest.raises(ValidationError):
        config_from_text(MINIMAL.replace("[36.0, 36.0, 36.0]", "[36.0, 36.0]"))
