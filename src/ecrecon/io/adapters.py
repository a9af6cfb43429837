"""
ecrecon.io.adapters

Readers that turn tabular strip dumps into per-event Sector graphs for the
reconstruction.

Design goals
------------
- Keep I/O concerns isolated from the reconstruction.
- Calibrate on ingest: raw ADC/TDC -> Strip energy/time.
- Fail loudly on malformed tables (missing columns raise KeyError), never
  inside the reconstruction.
- Stream one (event, sector) at a time.

Inputs
------
strips (CSV or Parquet), one row per fired strip:
    event, sector, layer, view, strip, adc, tdc
    layer: "inner" | "outer" | "cover" (or the LayerName integer)
    view:  "u" | "v" | "w"             (or the ViewLabel integer)

calibration (CSV), one row per strip:
    sector, layer, view, strip, ech, atten, eo, tch, to, tadc, trms, tdcstat

Strips without a calibration row use the defaults of ViewCalibration.
The WHOLE layer is never read: when [geometry.layers.whole] is configured
its strips are summed from INNER and OUTER.
"""
from __future__ import annotations
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from ecrecon.config.schemas import Config, GeometryCfg
from ecrecon.geometry.layout import LayerGeometry, LayerName, ViewLabel, layer_name, view_label
from ecrecon.physics.calibration import assemble_whole, calibrate_view
from ecrecon.physics.sector import Layer, Sector
from ecrecon.physics.strips import Strip, ViewCalibration

STRIP_COLUMNS: Tuple[str, ...] = ("event", "sector", "layer", "view", "strip", "adc", "tdc")
CALIBRATION_COLUMNS: Tuple[str, ...] = (
    "sector", "layer", "view", "strip",
    "ech", "atten", "eo", "tch", "to", "tadc", "trms", "tdcstat",
)

CalibrationKey = Tuple[int, LayerName, ViewLabel]
CalibrationMap = Dict[CalibrationKey, ViewCalibration]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _as_layer(v) -> LayerName:
    if isinstance(v, str):
        return layer_name(v.strip())
    return LayerName(int(v))


def _as_view(v) -> ViewLabel:
    if isinstance(v, str):
        return view_label(v.strip())
    return ViewLabel(int(v))


def require_columns(df: pd.DataFrame, columns: Sequence[str], what: str) -> None:
    missing = [c for c in columns if c not in df.columns]
    if missing:
        raise KeyError(f"{what} table is missing columns {missing}; found {list(df.columns)}")


def read_table(path: str | Path, fmt: Optional[str] = None) -> pd.DataFrame:
    p = Path(path)
    fmt = (fmt or p.suffix.lstrip(".")).lower()
    if fmt == "csv":
        return pd.read_csv(p)
    if fmt in {"parquet", "pq"}:
        return pd.read_parquet(p)
    raise ValueError(f"Unrecognized strip table: {p.name} (expected .csv or .parquet)")


def read_calibration(
    path: str | Path,
    layers: Dict[LayerName, LayerGeometry],
) -> CalibrationMap:
    """
    Calibration CSV -> per (sector, layer, view) arrays indexed by strip id.

    Rows for layers that are not configured, or with strip ids outside
    1..max_strips, are ignored.
    """
    df = pd.read_csv(path)
    require_columns(df, CALIBRATION_COLUMNS, "calibration")

    out: CalibrationMap = {}
    for row in df.itertuples(index=False):
        layer = _as_layer(row.layer)
        if layer not in layers:
            continue
        max_strips = layers[layer].max_strips
        sid = int(row.strip)
        if sid < 1 or sid > max_strips:
            continue
        key = (int(row.sector), layer, _as_view(row.view))
        cal = out.get(key)
        if cal is None:
            cal = out[key] = ViewCalibration.defaults(max_strips)
        cal.ech[sid] = float(row.ech)
        cal.atten[sid] = float(row.atten)
        cal.eo[sid] = float(row.eo)
        cal.tch[sid] = float(row.tch)
        cal.to[sid] = float(row.to)
        cal.tadc[sid] = float(row.tadc)
        cal.trms[sid] = float(row.trms)
        cal.tdcstat[sid] = float(row.tdcstat)

    for cal in out.values():
        cal.lock()
    return out


# ---------------------------------------------------------------------------
# Sector assembly
# ---------------------------------------------------------------------------

@dataclass
class AdapterStats:
    sectors_built: int = 0
    rows_read: int = 0
    reasons: Dict[str, int] = field(default_factory=dict)

    def inc(self, reason: str, n: int = 1) -> None:
        self.reasons[reason] = self.reasons.get(reason, 0) + n


class SectorBuilder:
    """
    Builds the input Sector of one event from its strip rows: one Layer per
    configured layer, calibrated strips in each view, and the WHOLE layer
    summed from INNER and OUTER.
    """

    def __init__(self, geometry: GeometryCfg, calibration: Optional[CalibrationMap] = None):
        self.geometry = geometry
        self.layers = geometry.layer_geometries()
        self.calibration: CalibrationMap = calibration or {}
        self._defaults: Dict[LayerName, ViewCalibration] = {}
        self.stats = AdapterStats()

    def calibration_for(self, sector_id: int, layer: LayerName, view: ViewLabel) -> ViewCalibration:
        cal = self.calibration.get((sector_id, layer, view))
        if cal is not None:
            return cal
        if layer not in self._defaults:
            self._defaults[layer] = ViewCalibration.defaults(self.layers[layer].max_strips).lock()
        return self._defaults[layer]

    def empty_sector(self, sector_id: int, event: int = -1) -> Sector:
        sector = Sector(id=sector_id, geometry=self.geometry.sector_geometry(sector_id), event=event)
        for name in LayerName:
            if name not in self.layers:
                continue
            cal = {label: self.calibration_for(sector_id, name, label) for label in ViewLabel}
            sector.layers[name] = Layer.empty(name, self.layers[name], cal)
        return sector

    def build(self, event: int, sector_id: int, rows: pd.DataFrame) -> Sector:
        sector = self.empty_sector(sector_id, event)
        grouped: Dict[Tuple[LayerName, ViewLabel], List[Tuple[int, float, float]]] = {}
        for row in rows.itertuples(index=False):
            layer = _as_layer(row.layer)
            if layer is LayerName.WHOLE:
                self.stats.inc("whole_rows_ignored")
                continue
            if layer not in sector.layers:
                self.stats.inc("unconfigured_layer")
                continue
            grouped.setdefault((layer, _as_view(row.view)), []).append(
                (int(row.strip), float(row.adc), float(row.tdc)))

        for (layer, label), recs in grouped.items():
            view = sector.layer(layer).view(label)
            for strip in calibrate_view(view.calibration, recs):
                view.add_strip(strip)

        if LayerName.WHOLE in sector.layers:
            self._fill_whole(sector)
        self.stats.sectors_built += 1
        self.stats.rows_read += len(rows)
        return sector

    @staticmethod
    def _fill_whole(sector: Sector) -> None:
        def strips_of(name: LayerName) -> Dict[ViewLabel, List[Strip]]:
            if name not in sector.layers:
                return {}
            return {v.label: v.strips for v in sector.layer(name).iter_views()}

        whole = sector.layer(LayerName.WHOLE)
        for label, strips in assemble_whole(strips_of(LayerName.INNER), strips_of(LayerName.OUTER)).items():
            view = whole.view(label)
            for strip in strips:
                if strip.id <= whole.max_strips:
                    view.add_strip(strip)


class StripTableAdapter:
    """
    Iterate (event, sector) Sector graphs from a strip table.

    Events come out in ascending (event, sector) order; max_events counts
    distinct events.
    """

    def __init__(self, cfg: Config):
        self.cfg = cfg
        calib = None
        if cfg.io.calibration_path:
            calib = read_calibration(cfg.io.calibration_path, cfg.geometry.layer_geometries())
        self.builder = SectorBuilder(cfg.geometry, calib)

    @property
    def stats(self) -> AdapterStats:
        return self.builder.stats

    def read(self, path: Optional[str] = None) -> pd.DataFrame:
        df = read_table(path or self.cfg.io.input_path, self.cfg.io.input_format if path is None else None)
        require_columns(df, STRIP_COLUMNS, "strip")
        return df

    def iter_groups(
        self, path: Optional[str] = None, max_events: Optional[int] = None,
    ) -> Iterator[Tuple[int, int, pd.DataFrame]]:
        """(event, sector, rows) groups, before calibration."""
        df = self.read(path)
        if max_events is not None:
            events = np.sort(df["event"].unique())[:max_events]
            df = df[df["event"].isin(events)]
        for (event, sector_id), rows in df.groupby(["event", "sector"], sort=True):
            yield int(event), int(sector_id), rows

    def iter_sectors(self, path: Optional[str] = None, max_events: Optional[int] = None) -> Iterator[Sector]:
        for event, sector_id, rows in self.iter_groups(path, max_events):
            yield self.builder.build(event, sector_id, rows)


def make_adapter(cfg: Config) -> StripTableAdapter:
    return StripTableAdapter(cfg)
