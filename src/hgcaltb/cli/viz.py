from __future__ import annotations

import typer
from typing import Optional

from hgcaltb.vis.hdf import save_column_hist, save_layer_profile_png

app = typer.Typer(help="HGCAL test-beam ntuple visualization tools")

@app.command("hist")
def hist(
    h5_path: str = typer.Argument(..., help="Path to HDF5 ntuple written by hgcaltb-run"),
    column: str = typer.Option("HGCALTot", "--column", "-c", help="Ntuple column"),
    bins: int = typer.Option(100, "--bins", help="Number of histogram bins"),
    out: Optional[str] = typer.Option(None, "--out", "-o", help="Output PNG path"),
):
    """Histogram one /ntuple column to a PNG."""
    out_png = save_column_hist(h5_path, out_png=out, column=column, bins=bins)
    typer.echo(f"Wrote {out_png}")

@app.command("profile")
def profile(
    h5_path: str = typer.Argument(..., help="Path to HDF5 ntuple written with store_layers = true"),
    name: str = typer.Option("CEE", "--detector", "-d", help="CEE | CHE | AHCAL"),
    out: Optional[str] = typer.Option(None, "--out", "-o", help="Output PNG path"),
):
    """Plot the mean per-layer signal of one subdetector."""
    out_png = save_layer_profile_png(h5_path, name, out_png=out)
    typer.echo(f"Wrote {out_png}")

if __name__ == "__main__":
    app()
