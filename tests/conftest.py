import numpy as np
import pytest

from hgcaltb.config.schemas import Config
from hgcaltb.physics.hits import EventHits, LayerHit


def make_small_cfg(sigma: float = 0.0, threshold: float = 0.0, divisor: float = 1.0, **run) -> Config:
    """Tiny detector: CEE 3x4, CHE 4x10 (single wafer from layer 2, 4 cells/wafer), AHCAL 2x5."""
    policy = {"divisor": divisor, "noise_sigma": sigma, "threshold": threshold}
    return Config(
        run={"diagnostics_level": 0, **run},
        detectors={
            "cee": {"layers": 3, "cells": 4, "collection": "CEE"},
            "che": {"layers": 4, "cells": 10, "collection": "CHE"},
            "ahcal": {"layers": 2, "cells": 5, "collection": "AHCAL"},
        },
        geometry={"che_seven_wafer_layers": 2, "cells_per_wafer": 4},
        calibration={"cee": policy, "che": policy, "ahcal": policy},
    )


def make_event(cfg: Config, event_id: int = 0, fill=None, steps=(1.0, 2.0), int_layer: int = 0) -> EventHits:
    """Event whose cell values are given by fill(detector_name, layer, n_cells) (default arange+1)."""
    fill = fill or (lambda name, layer, n: np.arange(n, dtype=float) + 1.0)
    collections = {}
    for name, d in (("CEE", cfg.detectors.cee), ("CHE", cfg.detectors.che), ("AHCAL", cfg.detectors.ahcal)):
        collections[d.collection] = [
            LayerHit(layer=j, cells=np.asarray(fill(name, j, d.cells), dtype=float)) for j in range(d.layers)
        ]
    return EventHits(event_id=event_id, collections=collections,
                     steps=np.asarray(steps, dtype=float), int_layer=int_layer)


@pytest.fixture
def small_cfg() -> Config:
    return make_small_cfg()
