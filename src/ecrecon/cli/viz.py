from __future__ import annotations

import typer
from typing import Optional

from ecrecon.vis.hits import save_hits_png

app = typer.Typer(help="Calorimeter reconstruction visualization tools")

@app.command("h5-to-png")
def h5_to_png(
    h5_path: str = typer.Argument(..., help="Path to HDF5 file containing /hits"),
    layer: Optional[str] = typer.Option(None, "--layer", "-l", help="Only hits of this layer (inner/outer/whole/cover)"),
    out: Optional[str] = typer.Option(None, "--out", "-o", help="Output PNG path (defaults to file.png)"),
):
    """Render the global hit positions stored in an HDF5 file to a PNG."""
    out_png = save_hits_png(h5_path, out_png=out, layer=layer)
    typer.echo(f"Wrote {out_png}")

if __name__ == "__main__":
    app()
