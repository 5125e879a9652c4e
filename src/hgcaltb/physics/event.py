# src/hgcaltb/physics/event.py
from __future__ import annotations
from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple, TYPE_CHECKING

import numpy as np

from hgcaltb.config.schemas import Config
from hgcaltb.errors import StepDepositError
from hgcaltb.physics.hits import EventHits, HitsSource
from hgcaltb.physics.layers import LayerAggregator

if TYPE_CHECKING:
    from hgcaltb.io.ntuple import NtupleSink


@dataclass(frozen=True)
class EventRecord:
    """
    One ntuple row.

    edep: raw deposited energy summed over all steps [MeV]
    cee_tot, che_tot, ahcal_tot: sums of the per-layer signals [MIP]
    hgcal_tot: cee_tot + che_tot + ahcal_tot
    int_layer: auxiliary interaction-layer counter
    layers: per-layer signal arrays by subdetector name (copies)
    """
    edep: float
    cee_tot: float
    che_tot: float
    ahcal_tot: float
    hgcal_tot: float
    int_layer: int
    event_id: int = -1
    layers: Dict[str, np.ndarray] = field(default_factory=dict)

    def as_row(self) -> Tuple[float, float, float, float, float, int]:
        return (self.edep, self.cee_tot, self.che_tot, self.ahcal_tot, self.hgcal_tot, self.int_layer)


class EventAccumulator:
    """
    Per-event state of the signal pipeline.

    Driven explicitly by the event loop:

        acc.reset()                   # event start
        acc.add_edep(step_edep)       # once per simulation step
        record = acc.finalize(hits, rng)   # event end

    One instance handles one event at a time; parallel workers each need
    their own instance.
    """

    def __init__(self, aggregator: LayerAggregator, sink: Optional["NtupleSink"] = None):
        self.aggregator = aggregator
        self.sink = sink
        self.edep = 0.0
        self.int_layer = 0
        self.signals: Dict[str, np.ndarray] = {
            name: np.zeros(n, dtype=np.float64) for name, n in aggregator.layer_counts().items()
        }

    @classmethod
    def from_config(cls, cfg: Config, sink: Optional["NtupleSink"] = None) -> "EventAccumulator":
        return cls(LayerAggregator.from_config(cfg), sink=sink)

    # --- per-layer views -----------------------------------------------------

    @property
    def cee_signals(self) -> np.ndarray:
        return self.signals["CEE"]

    @property
    def che_signals(self) -> np.ndarray:
        return self.signals["CHE"]

    @property
    def ahcal_signals(self) -> np.ndarray:
        return self.signals["AHCAL"]

    # --- transitions ---------------------------------------------------------

    def reset(self) -> None:
        self.edep = 0.0
        self.int_layer = 0
        for arr in self.signals.values():
            arr.fill(0.0)

    def add_edep(self, step_edep: float) -> None:
        if not step_edep >= 0.0:
            raise ValueError(f"step energy deposit must be >= 0, got {step_edep}")
        self.edep += float(step_edep)

    def set_interaction_layer(self, layer: int) -> None:
        self.int_layer = int(layer)

    def finalize(self, source: HitsSource, rng: np.random.Generator, event_id: int = -1) -> EventRecord:
        """
        Build the layer signals, compute the totals and hand the row to the sink.

        If any collection is missing or malformed the EventDataError propagates
        and the per-layer state is left as it was.
        """
        computed = self.aggregator.run(source, rng)
        for name, arr in computed.items():
            self.signals[name][:] = arr

        totals = {name: float(np.sum(arr)) for name, arr in self.signals.items()}
        cee_tot = totals.get("CEE", 0.0)
        che_tot = totals.get("CHE", 0.0)
        ahcal_tot = totals.get("AHCAL", 0.0)
        record = EventRecord(
            edep=self.edep,
            cee_tot=cee_tot,
            che_tot=che_tot,
            ahcal_tot=ahcal_tot,
            hgcal_tot=cee_tot + che_tot + ahcal_tot,
            int_layer=self.int_layer,
            event_id=event_id,
            layers={name: arr.copy() for name, arr in self.signals.items()},
        )
        if self.sink is not None:
            self.sink.fill(record)
        return record

    def process(self, hits: EventHits, rng: np.random.Generator) -> EventRecord:
        """
        Full reset -> step accumulation -> finalize cycle for a recorded event.

        Negative or NaN step deposits raise StepDepositError before any state
        is touched.
        """
        steps = np.asarray(hits.steps, dtype=np.float64)
        bad = ~(steps >= 0.0)
        if bad.any():
            i = int(np.flatnonzero(bad)[0])
            raise StepDepositError(f"event {hits.event_id}: step {i} deposit is {steps[i]}, must be >= 0")
        self.reset()
        for step in hits.steps:
            self.add_edep(step)
        self.set_interaction_layer(hits.int_layer)
        return self.finalize(hits, rng, event_id=hits.event_id)
