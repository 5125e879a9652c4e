from __future__ import annotations
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from typing import Literal, Optional, Union

import numpy as np

from hgcaltb.config import constants as C
from hgcaltb.physics.calibration import NonFinite, reduce_cells

class CalibrationPolicy(BaseModel):
    """
    MIP calibration, Gaussian noise and zero-suppression for one subdetector.

    TOML:

    [calibration.cee]
    divisor     = 0.0850   # MeV per MIP
    noise_sigma = 0.1667   # MIP
    threshold   = 0.5      # MIP
    """

    model_config = ConfigDict(frozen=True)

    divisor: float
    noise_sigma: float = 0.0
    threshold: float = 0.0

    @field_validator("divisor")
    def _divisor_positive(cls, v: float) -> float:
        if not v > 0:
            raise ValueError("divisor must be > 0")
        return v

    @field_validator("noise_sigma")
    def _sigma_non_negative(cls, v: float) -> float:
        if not v >= 0:
            raise ValueError("noise_sigma must be >= 0")
        return v

    def reduce(self, cells, rng: np.random.Generator, nonfinite: NonFinite = "cut") -> float:
        return reduce_cells(cells, self.divisor, self.noise_sigma, self.threshold, rng, nonfinite=nonfinite)


def _silicon_policy() -> CalibrationPolicy:
    return CalibrationPolicy(divisor=C.MIP_SILICON, noise_sigma=C.CEE_NOISE_SIGMA, threshold=C.CEE_THRESHOLD)


def _tile_policy() -> CalibrationPolicy:
    return CalibrationPolicy(divisor=C.MIP_TILE, noise_sigma=C.AHCAL_NOISE_SIGMA, threshold=C.AHCAL_THRESHOLD)


class CalibrationCfg(BaseModel):
    """
    Per-subdetector calibration policies.

    CHE shares the silicon policy with CEE unless overridden.
    nonfinite = "cut" drops NaN/inf calibrated cells, "propagate" sums them.
    """

    cee: CalibrationPolicy = Field(default_factory=_silicon_policy)
    che: CalibrationPolicy = Field(default_factory=_silicon_policy)
    ahcal: CalibrationPolicy = Field(default_factory=_tile_policy)
    nonfinite: NonFinite = "cut"


class DetectorCfg(BaseModel):
    layers: int
    cells: int
    collection: str

    @field_validator("layers", "cells")
    def _positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("layer and cell counts must be positive")
        return v


class DetectorsCfg(BaseModel):
    """
    Layer/cell layout and hit collection name of each subdetector.

    TOML:

    [detectors.che]
    layers     = 12
    cells      = 931
    collection = "CHEHitsCollection"
    """

    cee: DetectorCfg = Field(default_factory=lambda: DetectorCfg(
        layers=C.CEE_LAYERS, cells=C.CEE_CELLS, collection=C.CEE_COLLECTION))
    che: DetectorCfg = Field(default_factory=lambda: DetectorCfg(
        layers=C.CHE_LAYERS, cells=C.CHE_CELLS, collection=C.CHE_COLLECTION))
    ahcal: DetectorCfg = Field(default_factory=lambda: DetectorCfg(
        layers=C.AHCAL_LAYERS, cells=C.AHCAL_CELLS, collection=C.AHCAL_COLLECTION))


class GeometryCfg(BaseModel):
    """
    CHE layers with index >= che_seven_wafer_layers only read out one wafer:
    the first (cells_per_wafer - 1) cells of the layer list are summed.
    """

    che_seven_wafer_layers: int = C.CHE_SEVEN_WAFER_LAYERS
    cells_per_wafer: int = C.CEE_CELLS

    @field_validator("cells_per_wafer")
    def _wafer_cells(cls, v: int) -> int:
        if v < 1:
            raise ValueError("cells_per_wafer must be >= 1")
        return v

    @property
    def single_wafer_cells(self) -> int:
        return self.cells_per_wafer - 1


class RunCfg(BaseModel):
    """
    Global run controls.
    """

    seed: int = 0
    n_events: Optional[int] = None  # process at most this many events

    workers: Union[int, Literal["auto"]] = 1
    progress: bool = False

    # "raise" aborts the run on bad event data, "skip" drops the event and continues
    on_error: Literal["raise", "skip"] = "raise"

    # Diagnostics
    diagnostics_level: int = 1  # 0=off, 1=minimal, 2=verbose

    @field_validator("diagnostics_level")
    def _diag_range(cls, v: int) -> int:
        if v not in (0, 1, 2):
            raise ValueError("diagnostics_level must be 0, 1, or 2")
        return v


class IOCfg(BaseModel):
    """
    TOML:

    [io]
    input_path   = "hits.h5"     # ragged hits store (see io/hits_store.py)
    output_path  = "ntuple.h5"
    store_layers = false         # also write per-layer signals
    """

    input_path: str = "hits.h5"
    output_path: str = "ntuple.h5"
    store_layers: bool = False


class VisCfg(BaseModel):
    export_png_on_write: bool = False
    column: str = "HGCALTot"


class Config(BaseModel):
    """
    Top-level TOML configuration.
    """

    run: RunCfg = Field(default_factory=RunCfg)
    io: IOCfg = Field(default_factory=IOCfg)
    detectors: DetectorsCfg = Field(default_factory=DetectorsCfg)
    geometry: GeometryCfg = Field(default_factory=GeometryCfg)
    calibration: CalibrationCfg = Field(default_factory=CalibrationCfg)
    vis: VisCfg = Field(default_factory=VisCfg)

    @model_validator(mode="after")
    def _check_boundary(self) -> "Config":
        if not 0 <= self.geometry.che_seven_wafer_layers <= self.detectors.che.layers:
            raise ValueError(
                f"che_seven_wafer_layers={self.geometry.che_seven_wafer_layers} "
                f"outside [0, {self.detectors.che.layers}]"
            )
        return self
