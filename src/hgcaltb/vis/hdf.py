import h5py
import numpy as np
import matplotlib
matplotlib.use("Agg")
import matplotlib.pyplot as plt
from pathlib import Path

def save_column_hist(h5_path: str, out_png: str | None = None, column: str = "HGCALTot", bins: int = 100):
    h5_path = str(h5_path)
    with h5py.File(h5_path, "r") as f:
        dset = f"/ntuple/{column}"
        if dset not in f:
            raise KeyError(f"{dset} not found in {h5_path}")
        vals = np.array(f[dset], dtype=np.float64)

    if out_png is None:
        out_png = str(Path(h5_path).with_name(f"{Path(h5_path).stem}_{column}.png"))

    plt.figure()
    plt.hist(vals[np.isfinite(vals)], bins=bins, histtype="step")
    plt.xlabel(column)
    plt.ylabel("events")
    plt.title(Path(h5_path).name + " : " + column)
    plt.tight_layout()
    plt.savefig(out_png, dpi=150)
    plt.close()
    return out_png

def save_layer_profile_png(h5_path: str, name: str, out_png: str | None = None):
    """Mean per-layer signal of one subdetector (needs [io].store_layers)."""
    h5_path = str(h5_path)
    with h5py.File(h5_path, "r") as f:
        dset = f"/layers/{name}"
        if dset not in f:
            raise KeyError(f"{dset} not found in {h5_path}")
        arr = np.array(f[dset], dtype=np.float64)

    if out_png is None:
        out_png = str(Path(h5_path).with_name(f"{Path(h5_path).stem}_{name}_profile.png"))

    mean = arr.mean(axis=0) if arr.shape[0] else np.zeros(arr.shape[1])
    plt.figure()
    plt.step(np.arange(arr.shape[1]), mean, where="mid")
    plt.xlabel(f"{name} layer")
    plt.ylabel("mean signal [MIP]")
    plt.title(Path(h5_path).name + " : " + name)
    plt.tight_layout()
    plt.savefig(out_png, dpi=150)
    plt.close()
    return out_png
