from __future__ import annotations
from pydantic import BaseModel, Field, field_validator, model_validator
from typing import Literal, Optional, Dict, List, Union

from ecrecon.geometry.layout import LayerGeometry, LayerName, MatchPair, SectorGeometry, layer_name

class RunCfg(BaseModel):
    """
    Global run controls.
    """

    # Performance / execution
    workers: Union[int, Literal["auto"]] = "auto"
    progress: bool = True

    # Diagnostics
    diagnostics_level: int = 1  # 0=off, 1=minimal, 2=verbose

    # Limits
    max_events: Optional[int] = None

    @field_validator("diagnostics_level")
    def _diag_range(cls, v: int) -> int:
        if v not in (0, 1, 2):
            raise ValueError("diagnostics_level must be 0, 1, or 2")
        return v

    @field_validator("workers")
    def _workers_nonneg(cls, v):
        if isinstance(v, int) and v < 0:
            raise ValueError("workers must be >= 0 or 'auto'")
        return v

class IOCfg(BaseModel):
    """
    I/O paths.

    TOML:

    [io]
    input_path       = "strips.csv"
    input_format     = "csv"          # "csv" | "parquet"
    calibration_path = "calib.csv"    # optional; defaults used when absent
    output_path      = "hits.h5"
    """

    input_path: str
    input_format: Literal["csv", "parquet"] = "csv"
    calibration_path: Optional[str] = None
    output_path: str

class ClusteringCfg(BaseModel):
    """
    Strip -> peak grouping.

    touch_id = 1 allows no missing strip inside a peak, touch_id = k allows
    up to k-1 missing strips. touch_id = 0 has no defined grouping rule and
    is rejected.
    """
    strip_threshold: float = 0.0
    peak_threshold: float = 0.0
    touch_id: int = 1
    max_peaks: int = 30
    ln_weights: bool = False

    @field_validator("touch_id")
    def _touch_supported(cls, v: int) -> int:
        if v == 0:
            raise ValueError("touch_id = 0 is not a supported clustering mode")
        if v < 0:
            raise ValueError("touch_id must be >= 1")
        return v

    @field_validator("max_peaks")
    def _max_peaks_pos(cls, v: int) -> int:
        if v < 1:
            raise ValueError("max_peaks must be >= 1")
        return v

class HitsCfg(BaseModel):
    hit_threshold: float = 0.0
    max_hits: int = 10

    @field_validator("max_hits")
    def _max_hits_pos(cls, v: int) -> int:
        if v < 1:
            raise ValueError("max_hits must be >= 1")
        return v

class AttenuationCfg(BaseModel):
    speed_in_plastic: float = 18.0  # cm/ns
    default_atten: float = 376.0    # cm

def _default_radii() -> Dict[str, float]:
    return {p.key: 20.0 for p in MatchPair}

class MatchingCfg(BaseModel):
    """
    Cross-layer matching. radius is the acceptance on the normalized
    face-coordinate distance, per ordered pair:

    [matching.radius]
    inner_whole = 20.0
    inner_outer = 20.0
    inner_cover = 20.0
    outer_whole = 20.0
    """
    radius: Dict[str, float] = Field(default_factory=_default_radii)
    speed_of_light: float = 29.9792458  # cm/ns

    @field_validator("radius")
    def _known_pairs(cls, v: Dict[str, float]) -> Dict[str, float]:
        known = {p.key for p in MatchPair}
        unknown = set(v) - known
        if unknown:
            raise ValueError(f"Unknown match pairs {sorted(unknown)}; use {sorted(known)}")
        merged = _default_radii()
        merged.update(v)
        return merged

    def radius_for(self, pair: MatchPair) -> float:
        return self.radius[pair.key]

class LayerGeometryCfg(BaseModel):
    edge: List[float]  # [Lu, Lv, Lw]
    H: float
    H1: float
    H2: float
    depth: float
    max_strips: int = 36

    @field_validator("edge")
    def _three_edges(cls, v: List[float]) -> List[float]:
        if len(v) != 3 or any(x <= 0 for x in v):
            raise ValueError("edge must list three positive lengths [Lu, Lv, Lw]")
        return v

    def build(self) -> LayerGeometry:
        return LayerGeometry(
            edge=(float(self.edge[0]), float(self.edge[1]), float(self.edge[2])),
            H=self.H, H1=self.H1, H2=self.H2, depth=self.depth,
            max_strips=self.max_strips,
        )

class SectorCfg(BaseModel):
    phi_deg: float
    origin: List[float] = [0.0, 0.0, 0.0]
    orientation: Optional[List[float]] = None

    def build(self) -> SectorGeometry:
        return SectorGeometry.from_cfg(self.phi_deg, self.origin, self.orientation)

class GeometryCfg(BaseModel):
    """
    [geometry]
    tilt_deg = 25.0

    [geometry.layers.inner]
    edge = [...]; H = ...; H1 = ...; H2 = ...; depth = ...; max_strips = 36

    [geometry.sectors.1]
    phi_deg = 0.0
    origin = [x, y, z]
    """
    tilt_deg: float = 25.0
    layers: Dict[str, LayerGeometryCfg]
    sectors: Dict[int, SectorCfg] = Field(default_factory=dict)

    @field_validator("layers")
    def _known_layers(cls, v: Dict[str, LayerGeometryCfg]) -> Dict[str, LayerGeometryCfg]:
        for name in v:
            layer_name(name)
        return v

    def layer_geometries(self) -> Dict[LayerName, LayerGeometry]:
        return {layer_name(k): cfg.build() for k, cfg in self.layers.items()}

    def sector_geometry(self, sector_id: int) -> SectorGeometry:
        if sector_id in self.sectors:
            return self.sectors[sector_id].build()
        # six-fold symmetry when a sector is not listed explicitly
        return SectorGeometry.from_cfg(60.0 * (sector_id - 1), [0.0, 0.0, 0.0])

class RecoCfg(BaseModel):
    """Algorithm settings handed to every sector task."""
    clustering: ClusteringCfg = Field(default_factory=ClusteringCfg)
    hits: HitsCfg = Field(default_factory=HitsCfg)
    attenuation: AttenuationCfg = Field(default_factory=AttenuationCfg)
    matching: MatchingCfg = Field(default_factory=MatchingCfg)
    tilt_deg: float = 25.0


class Config(BaseModel):
    """
    Top-level TOML configuration.
    """

    run: RunCfg = Field(default_factory=RunCfg)
    io: IOCfg
    clustering: ClusteringCfg = Field(default_factory=ClusteringCfg)
    hits: HitsCfg = Field(default_factory=HitsCfg)
    attenuation: AttenuationCfg = Field(default_factory=AttenuationCfg)
    matching: MatchingCfg = Field(default_factory=MatchingCfg)
    geometry: GeometryCfg

    @model_validator(mode="after")
    def _calorimeter_layers_present(self) -> "Config":
        names = {layer_name(k) for k in self.geometry.layers}
        if LayerName.INNER not in names and LayerName.OUTER not in names:
            raise ValueError("geometry.layers must define at least one of inner/outer")
        return self

    def reco(self) -> RecoCfg:
        return RecoCfg(
            clustering=self.clustering,
            hits=self.hits,
            attenuation=self.attenuation,
            matching=self.matching,
            tilt_deg=self.geometry.tilt_deg,
        )
