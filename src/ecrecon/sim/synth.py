from __future__ import annotations
import numpy as np
from typing import Dict, Iterable, List, Sequence, Tuple

from ..geometry.dalitz import projections_for_point
from ..geometry.layout import LayerGeometry, LayerName, SectorGeometry, ViewLabel
from ..physics.sector import Layer, Sector
from ..physics.strips import DEFAULT_ECH, Strip

# (i, j, energy) of one ideal deposit in a layer
Deposit = Tuple[float, float, float]


def strip_shares(distance: float, pitch: float, max_strips: int, spread: bool = True) -> List[Tuple[int, float]]:
    """
    Strip ids and energy shares reproducing an axis distance.

    Strip s is centred at (s - 0.5) * pitch. With spread, the deposit is
    shared linearly between the two nearest strips so the energy-weighted
    centroid lands exactly on distance; otherwise it all goes to the strip
    containing it.
    """
    if not spread:
        sid = int(np.clip(np.floor(distance / pitch) + 1, 1, max_strips))
        return [(sid, 1.0)]
    x = distance / pitch + 0.5  # fractional strip id
    lo = int(np.floor(x))
    frac = x - lo
    out = []
    if 1 <= lo <= max_strips and frac < 1.0:
        out.append((lo, 1.0 - frac))
    if 1 <= lo + 1 <= max_strips and frac > 0.0:
        out.append((lo + 1, frac))
    if not out:
        out.append((int(np.clip(round(x), 1, max_strips)), 1.0))
    total = sum(s for _, s in out)
    return [(sid, s / total) for sid, s in out]


def synth_view_strips(
    geom: LayerGeometry,
    deposits: Iterable[Deposit],
    time_ns: float = 10.0,
    spread: bool = True,
) -> Dict[ViewLabel, List[Strip]]:
    """
    Ideal strip deposits for a list of local points: each point puts its
    full energy into every view at the Dalitz-consistent distance.
    Deposits on the same strip add up.
    """
    acc: Dict[ViewLabel, Dict[int, float]] = {label: {} for label in ViewLabel}
    for i, j, energy in deposits:
        dists = projections_for_point(geom, i, j)
        for label, d in zip(ViewLabel, dists):
            for sid, share in strip_shares(d, geom.pitch(label), geom.max_strips, spread):
                acc[label][sid] = acc[label].get(sid, 0.0) + energy * share

    out: Dict[ViewLabel, List[Strip]] = {}
    for label, by_id in acc.items():
        out[label] = [
            Strip(id=sid, raw_energy=e, raw_adc=e / DEFAULT_ECH, time=time_ns)
            for sid, e in sorted(by_id.items())
            if e > 0
        ]
    return out


def synth_sector(
    sector_id: int,
    sector_geom: SectorGeometry,
    layers: Dict[LayerName, LayerGeometry],
    deposits: Dict[LayerName, Sequence[Deposit]],
    event: int = 0,
    time_ns: float = 10.0,
    spread: bool = True,
) -> Sector:
    """Sector with ideal strips in every configured layer."""
    sector = Sector(id=sector_id, geometry=sector_geom, event=event)
    for name, geom in layers.items():
        layer = Layer.empty(name, geom)
        for label, strips in synth_view_strips(geom, deposits.get(name, ()), time_ns, spread).items():
            for strip in strips:
                layer.view(label).add_strip(strip)
        sector.layers[name] = layer
    return sector


def random_deposits(
    geom: LayerGeometry,
    n: int,
    energy_range: Tuple[float, float] = (0.05, 0.5),
    rng: np.random.Generator | None = None,
) -> List[Deposit]:
    """
    n points drawn uniformly inside the layer triangle, kept where all three
    distances fall inside their edges.
    """
    rng = rng or np.random.default_rng()
    out: List[Deposit] = []
    lv = geom.edge[int(ViewLabel.V)]
    tries = 0
    while len(out) < n:
        tries += 1
        if tries > 1000 * max(n, 1):
            raise ValueError("Layer geometry leaves no room for deposits")
        i = rng.uniform(geom.H2 - geom.H, geom.H2)
        j = rng.uniform(-lv / 2.0, lv / 2.0)
        dists = projections_for_point(geom, i, j)
        if all(0.0 < d < geom.edge[int(label)] for label, d in zip(ViewLabel, dists)):
            out.append((float(i), float(j), float(rng.uniform(*energy_range))))
    return out
