from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Dict, List, Protocol, Sequence
import numpy as np

from hgcaltb.errors import MissingCollectionError

@dataclass(slots=True)
class LayerHit:
    """
    Raw readout of one calorimeter layer (sensitive-detector hit).

    layer: layer index within its subdetector
    cells: per-cell deposited energy [MeV], shape (n_cells,), in cell order
    """
    layer: int
    cells: np.ndarray

    @classmethod
    def from_values(cls, layer: int, values: Sequence[float]) -> "LayerHit":
        return cls(layer=layer, cells=np.asarray(values, dtype=np.float64))

    @property
    def edep(self) -> float:
        return float(self.cells.sum())


class HitsSource(Protocol):
    """Anything that can hand out the layer hits of one event by collection name."""

    def get_collection(self, name: str) -> Sequence[LayerHit]:
        ...


@dataclass(slots=True)
class EventHits:
    """
    Everything the stepping phase leaves behind for one event.

    collections: collection name -> layer hits ordered by layer index
    steps: per-step deposited energies [MeV], summed over all volumes
    int_layer: auxiliary interaction-layer counter
    """
    event_id: int
    collections: Dict[str, List[LayerHit]] = field(default_factory=dict)
    steps: np.ndarray = field(default_factory=lambda: np.zeros(0, dtype=np.float64))
    int_layer: int = 0
    meta: Dict[str, Any] = field(default_factory=dict)

    def get_collection(self, name: str) -> List[LayerHit]:
        try:
            return self.collections[name]
        except KeyError:
            raise MissingCollectionError(
                f"Cannot access hits collection {name!r} for event {self.event_id}",
                collection=name,
            ) from None
