from __future__ import annotations
from itertools import combinations
from typing import Dict, List, Sequence, Tuple

import h5py
import numpy as np
from datetime import datetime, timezone

from ecrecon.config.load import json_dumps, snapshot_config_toml
from ecrecon.geometry.layout import LayerName
from ecrecon.physics.hits import Hit
from ecrecon.physics.sector import Sector, pair_key

FORMAT_VERSION = "1.0"
SOFTWARE = "ec-recon 0.1.0"

MATCH_PAIRS: Tuple[Tuple[LayerName, LayerName], ...] = tuple(
    pair_key(a, b) for a, b in combinations(LayerName, 2)
)

_FLOAT_COLS = (
    "energy", "time",
    "x", "y", "z", "dx", "dy", "dz",
    "i", "j", "k", "di", "dj",
    "face_i", "face_j", "thickness",
    "width", "chi_square",
)


def pair_label(pair: Tuple[LayerName, LayerName]) -> str:
    return f"{pair[0].name.lower()}_{pair[1].name.lower()}"


def write_init(path: str, cfg_path: str | None = None) -> h5py.File:
    f = h5py.File(path, "w")
    # Root attrs
    f.attrs["format_version"] = FORMAT_VERSION
    f.attrs["created_utc"] = datetime.now(timezone.utc).isoformat()
    f.attrs["software"] = SOFTWARE
    f.attrs["config_text"] = snapshot_config_toml(cfg_path) if cfg_path else ""
    return f


def _flatten_sectors(sectors: Sequence[Sector]) -> Tuple[np.ndarray, Dict[str, np.ndarray]]:
    """
    Convert per-sector hit lists into flat columns.

    Returns:
      event_ptr: (N_records+1,) int64, CSR-style pointers into the flat hit
                 arrays; record r owns rows event_ptr[r]:event_ptr[r+1].
      cols: dict of 1D arrays (len M = total hits), plus the record-level
            arrays 'records/event', 'records/sector' and the (N_records, 6)
            'matches/counts'.
    """
    n_rec = len(sectors)
    ptr = np.zeros(n_rec + 1, dtype=np.int64)
    k = 0
    for r, sector in enumerate(sectors):
        k += len(sector.all_hits())
        ptr[r + 1] = k

    M = int(k)
    cols: Dict[str, np.ndarray] = {name: np.empty(M, dtype=np.float64) for name in _FLOAT_COLS}
    cols["layer"] = np.empty(M, dtype=np.uint8)
    cols["hit_id"] = np.empty(M, dtype=np.int32)
    cols["n_strips"] = np.empty(M, dtype=np.int32)
    for name in LayerName:
        cols[f"match_{name.name.lower()}"] = np.full(M, -1, dtype=np.int64)
        cols[f"match_chi2_{name.name.lower()}"] = np.zeros(M, dtype=np.float64)

    rec_event = np.zeros(n_rec, dtype=np.int64)
    rec_sector = np.zeros(n_rec, dtype=np.int32)
    counts = np.zeros((n_rec, len(MATCH_PAIRS)), dtype=np.int32)

    w = 0
    for r, sector in enumerate(sectors):
        rec_event[r] = sector.event
        rec_sector[r] = sector.id
        for c, pair in enumerate(MATCH_PAIRS):
            counts[r, c] = sector.n_matches(*pair)

        hits = sector.all_hits()
        row_of: Dict[int, int] = {id(h): w + n for n, h in enumerate(hits)}
        for h in hits:
            _fill_row(cols, w, h, row_of)
            w += 1

    cols["records/event"] = rec_event
    cols["records/sector"] = rec_sector
    cols["matches/counts"] = counts
    return ptr, cols


def _fill_row(cols: Dict[str, np.ndarray], w: int, h: Hit, row_of: Dict[int, int]) -> None:
    cols["layer"][w] = int(h.layer)
    cols["hit_id"][w] = h.id
    cols["n_strips"][w] = h.n_strips
    cols["energy"][w] = h.energy
    cols["time"][w] = h.time
    cols["x"][w], cols["y"][w], cols["z"][w] = h.glob.x, h.glob.y, h.glob.z
    cols["dx"][w], cols["dy"][w], cols["dz"][w] = h.glob.dx, h.glob.dy, h.glob.dz
    cols["i"][w], cols["j"][w], cols["k"][w] = h.local.i, h.local.j, h.local.k
    cols["di"][w], cols["dj"][w] = h.local.di, h.local.dj
    cols["face_i"][w], cols["face_j"][w] = h.face.i, h.face.j
    cols["thickness"][w] = h.thickness
    cols["width"][w] = h.width
    cols["chi_square"][w] = h.chi_square
    for name in LayerName:
        other = h.match(name)
        if other is not None:
            cols[f"match_{name.name.lower()}"][w] = row_of.get(id(other), -1)
            cols[f"match_chi2_{name.name.lower()}"][w] = h.match_chi_square[name]


def write_hits(f: h5py.File, sectors: Sequence[Sector], *, diagnostics: Dict | None = None) -> None:
    """
    Store reconstructed hits of all (event, sector) records.

    Layout:

    /records/event      (N_rec,)      int64
    /records/sector     (N_rec,)      int32
    /hits/event_ptr     (N_rec+1,)    int64   CSR offsets into /hits/*
    /hits/<column>      (M,)                  one row per hit
    /hits/match_<layer> (M,)          int64   row of the matched hit, -1 if none
    /matches/counts     (N_rec, 6)    int32   columns named by attr "pairs"
    """
    event_ptr, cols = _flatten_sectors(sectors)

    g_rec = f.require_group("records")
    g_hits = f.require_group("hits")
    g_match = f.require_group("matches")

    def _replace_or_create(grp: h5py.Group, name: str, data: np.ndarray, compress: bool = True):
        if name in grp:
            del grp[name]
        if compress and data.size:
            grp.create_dataset(name, data=data, compression="gzip")
        else:
            grp.create_dataset(name, data=data)

    _replace_or_create(g_hits, "event_ptr", event_ptr, compress=False)
    for key, arr in cols.items():
        if "/" in key:
            continue
        _replace_or_create(g_hits, key, arr)

    _replace_or_create(g_rec, "event", cols["records/event"])
    _replace_or_create(g_rec, "sector", cols["records/sector"])
    _replace_or_create(g_match, "counts", cols["matches/counts"])
    g_match.attrs["pairs"] = json_dumps([pair_label(p) for p in MATCH_PAIRS])

    if diagnostics is not None:
        f.attrs["diagnostics"] = json_dumps(diagnostics)


def read_hits(path: str) -> Tuple[np.ndarray, Dict[str, np.ndarray]]:
    """(event_ptr, columns) as written by write_hits."""
    path = str(path)
    with h5py.File(path, "r") as f:
        if "hits" not in f:
            raise KeyError(f"/hits not found in {path}")
        grp = f["hits"]
        ptr = np.array(grp["event_ptr"], dtype=np.int64)
        cols = {k: np.array(grp[k]) for k in grp.keys() if k != "event_ptr"}
    return ptr, cols


def read_records(path: str) -> Dict[str, np.ndarray]:
    path = str(path)
    with h5py.File(path, "r") as f:
        out = {k: np.array(f["records"][k]) for k in f["records"].keys()}
        out["match_counts"] = np.array(f["matches"]["counts"])
    return out


def record_slices(event_ptr: np.ndarray) -> List[slice]:
    return [slice(int(a), int(b)) for a, b in zip(event_ptr[:-1], event_ptr[1:])]
