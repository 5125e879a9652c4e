from __future__ import annotations
import numpy as np
from typing import Dict, Iterator, List
from ..config.schemas import Config
from ..physics.hits import EventHits, LayerHit

# Fraction of the layer deposit seen by the active material
SAMPLING = {"CEE": 0.015, "CHE": 0.005, "AHCAL": 0.02}

def longitudinal_profile(n_layers: int, start: int, shape: float = 2.5, scale: float = 3.0) -> np.ndarray:
    """
    Gamma-function shower profile over layer indices, starting at `start`.
    Returns weights summing to 1 (all zero layers before `start`).
    """
    t = np.arange(n_layers, dtype=np.float64) - start + 0.5
    w = np.where(t > 0, np.power(np.clip(t, 1e-12, None), shape - 1.0) * np.exp(-t / scale), 0.0)
    s = w.sum()
    if s <= 0:
        w = np.zeros(n_layers)
        w[-1] = 1.0
        return w
    return w / s

def transverse_cells(n_cells: int, layer_edep: float, rng: np.random.Generator, r0: float = 4.0) -> np.ndarray:
    """
    Spread a layer deposit over cells; cell index is taken as distance rank
    from the shower axis. Non-negative, sums to layer_edep.
    """
    if layer_edep <= 0:
        return np.zeros(n_cells, dtype=np.float64)
    w = np.exp(-np.arange(n_cells) / r0) * rng.gamma(2.0, 0.5, size=n_cells)
    return layer_edep * w / w.sum()

def synth_shower_events(
    n_events: int,
    energy_gev: float,
    rng: np.random.Generator | None = None,
    cfg: Config | None = None,
    mean_int_layers: float = 6.0,
    n_steps: int = 64,
) -> Iterator[EventHits]:
    """
    Generate toy showers over the CEE -> CHE -> AHCAL layer sequence.

    - interaction layer drawn from an exponential in units of layers
    - longitudinal gamma profile from there on
    - every layer of every collection is present with its full cell count
    - steps: Dirichlet split of the total deposit, so sum(steps) == deposit
    """
    rng = rng or np.random.default_rng()
    cfg = cfg or Config()
    det = cfg.detectors
    order = [("CEE", det.cee), ("CHE", det.che), ("AHCAL", det.ahcal)]
    n_total = sum(d.layers for _, d in order)
    e_mev = energy_gev * 1000.0

    for ev_id in range(n_events):
        int_layer = int(min(np.floor(rng.exponential(mean_int_layers)), n_total - 1))
        profile = longitudinal_profile(n_total, int_layer)
        containment = float(np.clip(rng.normal(0.95, 0.02), 0.5, 1.0))
        edep = e_mev * containment

        collections: Dict[str, List[LayerHit]] = {}
        offset = 0
        for name, d in order:
            layers = []
            for j in range(d.layers):
                layer_edep = edep * profile[offset + j] * SAMPLING[name]
                layers.append(LayerHit(layer=j, cells=transverse_cells(d.cells, layer_edep, rng)))
            collections[d.collection] = layers
            offset += d.layers

        steps = edep * rng.dirichlet(np.ones(n_steps))
        yield EventHits(
            event_id=ev_id,
            collections=collections,
            steps=steps,
            int_layer=int_layer,
            meta={"energy_gev": energy_gev},
        )
