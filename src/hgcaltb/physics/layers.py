# src/hgcaltb/physics/layers.py
"""
hgcaltb.physics.layers

Per-layer signal building for the three test-beam calorimeters.

For every subdetector and every layer index in [0, n_layers) the raw cell
list is fetched from the event's hit collection, optionally cut down to a
cell subset, and reduced with the subdetector's CalibrationPolicy.

Order of noise draws (and so of generator consumption) is fixed:
CEE, CHE, AHCAL; layers ascending; cells in list order.
"""
from __future__ import annotations
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

import numpy as np

from hgcaltb.config.schemas import CalibrationPolicy, Config
from hgcaltb.errors import CellCountError, CellSubsetError, LayerCountError
from hgcaltb.physics.calibration import NonFinite
from hgcaltb.physics.hits import HitsSource, LayerHit


@dataclass(frozen=True)
class SubsetRule:
    """Only the first `n_cells` cells are read out for layers >= `first_layer`."""
    first_layer: int
    n_cells: int

    def applies(self, layer: int) -> bool:
        return layer >= self.first_layer


def select_cells(
    cells: np.ndarray,
    layer: int,
    rule: Optional[SubsetRule],
    collection: str = "",
) -> np.ndarray:
    """
    Apply the detector's cell-subset rule to one layer.

    A layer shorter than the requested subset raises CellSubsetError;
    it is never truncated silently.
    """
    if rule is None or not rule.applies(layer):
        return cells
    if len(cells) < rule.n_cells:
        raise CellSubsetError(
            f"{collection or 'layer'} {layer}: single-wafer subset needs "
            f"{rule.n_cells} cells, layer holds {len(cells)}",
            collection=collection or None,
            layer=layer,
        )
    return cells[: rule.n_cells]


def check_collection(
    collection: Sequence[LayerHit],
    n_layers: int,
    n_cells: Optional[int] = None,
    name: str = "",
) -> None:
    """
    Raise if the collection does not hold n_layers layers of n_cells cells each.

    n_cells=None skips the per-layer cell check.
    """
    if len(collection) != n_layers:
        raise LayerCountError(
            f"{name or 'collection'} holds {len(collection)} layers, expected {n_layers}",
            collection=name or None,
        )
    if n_cells is None:
        return
    for i, lh in enumerate(collection):
        n = np.asarray(lh.cells).size
        if n != n_cells:
            raise CellCountError(
                f"{name or 'collection'} layer {i} holds {n} cells, expected {n_cells}",
                collection=name or None,
                layer=i,
            )


def aggregate_layers(
    collection: Sequence[LayerHit],
    n_layers: int,
    policy: CalibrationPolicy,
    rng: np.random.Generator,
    *,
    n_cells: Optional[int] = None,
    subset: Optional[SubsetRule] = None,
    name: str = "",
    nonfinite: NonFinite = "cut",
) -> np.ndarray:
    """
    Reduce every layer of one hit collection.

    Layer and cell counts are checked before the subset rule runs.

    Returns
    -------
    (n_layers,) float64 array of per-layer signals [MIP], in layer order.
    """
    check_collection(collection, n_layers, n_cells, name)
    out = np.zeros(n_layers, dtype=np.float64)
    for i in range(n_layers):
        cells = select_cells(np.asarray(collection[i].cells, dtype=np.float64), i, subset, name)
        out[i] = policy.reduce(cells, rng, nonfinite=nonfinite)
    return out


@dataclass(frozen=True)
class DetectorReadout:
    name: str
    collection: str
    n_layers: int
    policy: CalibrationPolicy
    subset: Optional[SubsetRule] = None
    n_cells: Optional[int] = None


class LayerAggregator:
    """
    Turns the hit collections of one event into per-layer signal arrays.

    Collections are all resolved and their layer and cell counts checked
    before any layer is reduced, so a missing or misshapen collection fails
    the event without consuming noise draws.
    """

    def __init__(self, readouts: List[DetectorReadout], nonfinite: NonFinite = "cut"):
        self.readouts = list(readouts)
        self.nonfinite = nonfinite

    @classmethod
    def from_config(cls, cfg: Config) -> "LayerAggregator":
        det, cal, geo = cfg.detectors, cfg.calibration, cfg.geometry
        readouts = [
            DetectorReadout("CEE", det.cee.collection, det.cee.layers, cal.cee, n_cells=det.cee.cells),
            DetectorReadout(
                "CHE", det.che.collection, det.che.layers, cal.che,
                subset=SubsetRule(first_layer=geo.che_seven_wafer_layers,
                                  n_cells=geo.single_wafer_cells),
                n_cells=det.che.cells,
            ),
            DetectorReadout("AHCAL", det.ahcal.collection, det.ahcal.layers, cal.ahcal,
                            n_cells=det.ahcal.cells),
        ]
        return cls(readouts, nonfinite=cal.nonfinite)

    @property
    def names(self) -> List[str]:
        return [r.name for r in self.readouts]

    def layer_counts(self) -> Dict[str, int]:
        return {r.name: r.n_layers for r in self.readouts}

    def run(self, source: HitsSource, rng: np.random.Generator) -> Dict[str, np.ndarray]:
        collections = {r.name: source.get_collection(r.collection) for r in self.readouts}
        for r in self.readouts:
            check_collection(collections[r.name], r.n_layers, r.n_cells, r.name)
        return {
            r.name: aggregate_layers(
                collections[r.name],
                r.n_layers,
                r.policy,
                rng,
                n_cells=r.n_cells,
                subset=r.subset,
                name=r.name,
                nonfinite=self.nonfinite,
            )
            for r in self.readouts
        }
