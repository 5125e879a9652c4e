# src/hgcaltb/errors.py
from __future__ import annotations


class EventDataError(ValueError):
    """Raw hit data of one event cannot be turned into layer signals."""

    def __init__(self, msg: str, *, collection: str | None = None, layer: int | None = None):
        super().__init__(msg)
        self.collection = collection
        self.layer = layer


class MissingCollectionError(EventDataError, KeyError):
    """A subdetector hit collection is not available for the event."""

    def __str__(self) -> str:
        # KeyError would repr() the message
        return str(self.args[0])


class LayerCountError(EventDataError):
    """A hit collection does not hold one entry per configured layer."""


class CellSubsetError(EventDataError):
    """A layer holds fewer cells than the single-wafer subset asks for."""


class CellCountError(EventDataError):
    """A layer does not hold the configured number of cells."""


class StepDepositError(EventDataError):
    """A recorded step deposit is negative or not a number."""
