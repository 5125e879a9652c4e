# src/hgcaltb/cli/synth.py
'''
Write a toy hits store (see io/hits_store.py) that run_pipeline can consume.
Useful for smoke tests of the full chain without a Geant4 run.
'''
from __future__ import annotations

from typing import Optional

import numpy as np
import typer

from hgcaltb.config.load import default_config, load_config
from hgcaltb.io.hits_store import write_hits_store
from hgcaltb.sim.synth import synth_shower_events

app = typer.Typer(help="Synthetic HGCAL test-beam hits")

@app.command()
def main(
    out: str = typer.Argument(..., help="Output hits store (.h5)"),
    events: int = typer.Option(100, "--events", "-n", help="Number of events"),
    energy: float = typer.Option(50.0, "--energy", help="Beam energy [GeV]"),
    seed: int = typer.Option(0, "--seed", help="Generator seed"),
    cfg_path: Optional[str] = typer.Option(None, "--config", help="TOML config for detector layout"),
):
    """Generate toy showers and write them as raw per-layer hits."""
    cfg = load_config(cfg_path) if cfg_path else default_config()
    rng = np.random.default_rng(seed)
    evs = list(synth_shower_events(events, energy, rng=rng, cfg=cfg))
    write_hits_store(out, evs)
    typer.echo(f"Wrote {len(evs)} events to {out}")

if __name__ == "__main__":
    app()
