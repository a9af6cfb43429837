import matplotlib
matplotlib.use("Agg")
import matplotlib.pyplot as plt
import numpy as np
from pathlib import Path

from ecrecon.geometry.layout import layer_name
from ecrecon.io.hit_store import read_hits

def save_hits_png(h5_path: str, out_png: str | None = None, layer: str | None = None):
    """Scatter the global (x, y) of the stored hits, coloured by energy."""
    h5_path = str(h5_path)
    _, cols = read_hits(h5_path)

    mask = np.ones(cols["x"].shape[0], dtype=bool)
    if layer is not None:
        mask &= cols["layer"] == int(layer_name(layer))

    if out_png is None:
        out_png = str(Path(h5_path).with_suffix(".png"))

    plt.figure()
    sc = plt.scatter(cols["x"][mask], cols["y"][mask], c=cols["energy"][mask], s=8)
    plt.colorbar(sc, label="energy")
    plt.xlabel("x [cm]")
    plt.ylabel("y [cm]")
    plt.gca().set_aspect("equal", adjustable="datalim")
    plt.title(Path(h5_path).name + " : " + (layer or "all layers"))
    plt.tight_layout()
    plt.savefig(out_png, dpi=150)
    plt.close()
    return out_png
