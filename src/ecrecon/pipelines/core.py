from __future__ import annotations

import os
from concurrent.futures import ProcessPoolExecutor, as_completed
from dataclasses import asdict, dataclass, field, fields, is_dataclass
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import typer
from tqdm import tqdm

from ecrecon.config.load import load_config
from ecrecon.config.schemas import Config, RecoCfg
from ecrecon.geometry.layout import LayerName
from ecrecon.geometry.transform import CoordinateTransformer
from ecrecon.io.adapters import make_adapter
from ecrecon.io.hit_store import write_hits, write_init
from ecrecon.physics.sector import Sector
from ecrecon.reco.attenuation import AttenuationCorrector, AttenuationDiagnostics
from ecrecon.reco.clustering import ClusterDiagnostics, StripClusterer
from ecrecon.reco.matching import CrossLayerMatcher, MatchDiagnostics
from ecrecon.reco.triplets import HitDiagnostics, TripletMatcher
from ecrecon.vis.hits import save_hits_png

# Below this many sectors the process pool costs more than it saves
_MIN_PARALLEL_SECTORS = 64


@dataclass
class SectorDiagnostics:
    clustering: ClusterDiagnostics = field(default_factory=ClusterDiagnostics)
    attenuation: AttenuationDiagnostics = field(default_factory=AttenuationDiagnostics)
    hits: HitDiagnostics = field(default_factory=HitDiagnostics)
    matching: MatchDiagnostics = field(default_factory=MatchDiagnostics)
    sectors: int = 0
    skipped: int = 0

    def merge(self, other: "SectorDiagnostics") -> "SectorDiagnostics":
        _merge_counts(self, other)
        return self

    def to_dict(self) -> Dict:
        return asdict(self)


def _merge_counts(dst, src) -> None:
    """Add every counter of src into dst (ints summed, dicts merged, max_* kept as max)."""
    for f in fields(dst):
        a = getattr(dst, f.name)
        b = getattr(src, f.name)
        if is_dataclass(a):
            _merge_counts(a, b)
        elif isinstance(a, dict):
            for k, v in b.items():
                a[k] = a.get(k, 0) + v
        elif f.name.startswith("max_"):
            setattr(dst, f.name, max(a, b))
        else:
            setattr(dst, f.name, a + b)


def reconstruct_sector(sector: Sector, cfg: RecoCfg | None = None) -> Tuple[Sector, SectorDiagnostics]:
    """
    Run the full per-sector reconstruction in place:

      per layer: strips -> peaks -> hits (local + global coordinates)
      then:      cross-layer matching of the finished hits

    Only derived state (peaks, hits, match links and counters) is written.
    """
    cfg = cfg or RecoCfg()
    clusterer = StripClusterer(cfg.clustering)
    corrector = AttenuationCorrector(cfg.attenuation, ln_weights=cfg.clustering.ln_weights)
    finder = TripletMatcher(cfg.hits, corrector)
    transformer = CoordinateTransformer.for_sector(sector.geometry, cfg.tilt_deg)

    sector.reset_matches()
    for layer in sector.iter_layers():
        clusterer.find_peaks(layer)
        finder.run(layer, transformer)

    matcher = CrossLayerMatcher(cfg.matching)
    matcher.run(sector)

    diag = SectorDiagnostics(
        clustering=clusterer.diag,
        attenuation=corrector.diag,
        hits=finder.diag,
        matching=matcher.diag,
        sectors=1,
    )
    return sector, diag


def _reco_task(sector: Sector, cfg: RecoCfg) -> Tuple[Sector, SectorDiagnostics]:
    return reconstruct_sector(sector, cfg)


def _resolve_workers(workers) -> int:
    if workers == "auto":
        return max(1, os.cpu_count() or 1)
    if isinstance(workers, int):
        return max(0, workers)
    raise ValueError("workers must be int or 'auto'")


def reconstruct_all(
    sectors: List[Sector],
    cfg: RecoCfg,
    workers: int | str = "auto",
    progress: bool = True,
) -> Tuple[List[Sector], SectorDiagnostics]:
    """
    Reconstruct independent sectors, in parallel when worth it. If
    workers == 0, runs single-process. Output order follows input order.
    """
    total = SectorDiagnostics()
    n = len(sectors)
    if n == 0:
        return [], total

    workers = _resolve_workers(workers)

    # Single-process path (also good for debugging)
    if workers == 0 or n < _MIN_PARALLEL_SECTORS:
        out: List[Sector] = []
        for s in (tqdm(sectors, desc="reco", unit="sector") if progress else sectors):
            s, diag = reconstruct_sector(s, cfg)
            out.append(s)
            total.merge(diag)
        return out, total

    results: List[Optional[Sector]] = [None] * n
    pbar = tqdm(total=n, desc=f"reco x{workers}", unit="sector") if progress else None
    with ProcessPoolExecutor(max_workers=workers) as ex:
        futs = {ex.submit(_reco_task, s, cfg): k for k, s in enumerate(sectors)}
        for fut in as_completed(futs):
            s, diag = fut.result()
            results[futs[fut]] = s
            total.merge(diag)
            if pbar:
                pbar.update(1)
    if pbar:
        pbar.close()
    return [s for s in results if s is not None], total


def _load_sectors(cfg: Config, max_events: Optional[int]) -> Tuple[List[Sector], int]:
    """Build input sectors; events failing assembly are skipped and counted."""
    adapter = make_adapter(cfg)
    sectors: List[Sector] = []
    skipped = 0
    for event, sector_id, rows in adapter.iter_groups(max_events=max_events):
        try:
            sectors.append(adapter.builder.build(event, sector_id, rows))
        except (KeyError, ValueError, TypeError) as exc:
            skipped += 1
            if skipped <= 5 and cfg.run.diagnostics_level >= 2:
                print(f"[input] Skipping event {event} sector {sector_id}: {exc}")
    if cfg.run.diagnostics_level >= 2 and adapter.stats.reasons:
        print(f"[input] {adapter.stats.reasons}")
    return sectors, skipped


def _print_summary(diag: SectorDiagnostics, sectors: List[Sector]) -> None:
    n_hits: Dict[str, int] = {}
    for s in sectors:
        for layer in s.iter_layers():
            n_hits[layer.name.name.lower()] = n_hits.get(layer.name.name.lower(), 0) + layer.n_hits
    print(f"[reco] sectors={diag.sectors} skipped={diag.skipped} hits={n_hits}")
    print(f"[reco] peaks kept={diag.clustering.peaks_kept} "
          f"hit iterations={diag.hits.iterations} (max {diag.hits.max_iterations}/layer) "
          f"triplets locked={diag.hits.triplets_locked} layers cleared={diag.hits.layers_cleared}")
    n_matched = sum(s.n_matches(LayerName.INNER, LayerName.OUTER) for s in sectors)
    print(f"[match] inner-outer links={n_matched} per pair={diag.matching.matched}")


def run_pipeline(
    cfg_path: str,
    *,
    workers: Optional[int] = None,
    max_events: Optional[int] = None,
    png: bool = False,
) -> Path:
    """
    Orchestrate the full reconstruction from a TOML config file.

    CLI flags (--workers/--max-events) override the corresponding [run]
    fields when not None.

    Returns
    -------
    Path to written HDF5 file.
    """
    cfg = load_config(cfg_path)

    # ---- apply CLI overrides on top of TOML ----
    if workers is not None:
        cfg.run.workers = workers
    if max_events is not None:
        cfg.run.max_events = max_events

    diag_level = cfg.run.diagnostics_level

    if diag_level >= 1:
        print(f"[run] config = {cfg_path}")
        print(f"[run] input={cfg.io.input_path} -> output={cfg.io.output_path}")
        print(f"[run] layers={sorted(cfg.geometry.layers)} workers={cfg.run.workers}")

    sectors, skipped = _load_sectors(cfg, cfg.run.max_events)
    if diag_level >= 1:
        print(f"[pipeline] Got {len(sectors)} sectors ({skipped} skipped)")

    sectors, diag = reconstruct_all(sectors, cfg.reco(), workers=cfg.run.workers, progress=cfg.run.progress)
    diag.skipped = skipped
    if diag_level >= 1:
        _print_summary(diag, sectors)
    if diag_level >= 2:
        print(f"[reco] clustering reasons={diag.clustering.reasons}")
        print(f"[reco] hit reasons={diag.hits.reasons}")
        print(f"[match] reasons={diag.matching.reasons} severed={diag.matching.severed}")

    out_path = Path(cfg.io.output_path)
    out_path.parent.mkdir(parents=True, exist_ok=True)
    f = write_init(str(out_path), cfg_path)
    try:
        write_hits(f, sectors, diagnostics=diag.to_dict())
    finally:
        f.close()

    if png:
        out_png = save_hits_png(str(out_path))
        if diag_level >= 1:
            print(f"[pipeline] Wrote PNG {out_png}")

    return out_path


# ---------------------------------------------------------------------------
# Unified CLI entry point
# ---------------------------------------------------------------------------

app = typer.Typer(help="Calorimeter sector reconstruction (ecrecon.pipelines.core)")


@app.command()
def main(
    cfg_path: str = typer.Argument(
        ...,
        help="Path to TOML config file",
    ),
    workers: Optional[int] = typer.Option(
        None,
        "--workers",
        "-w",
        help="Override [run].workers (0 = single process)",
    ),
    max_events: Optional[int] = typer.Option(
        None,
        "--max-events",
        help="Override [run].max_events",
    ),
    png: bool = typer.Option(
        False,
        "--png",
        help="Also render the global hit map next to the HDF5 file",
    ),
):
    """
    Reconstruct hits for every (event, sector) of the configured input.
    """
    out_path = run_pipeline(cfg_path, workers=workers, max_events=max_events, png=png)
    typer.echo(str(out_path))


if __name__ == "__main__":
    app()
