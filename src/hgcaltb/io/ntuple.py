from __future__ import annotations
from typing import Dict, List, Optional, Protocol, Sequence
import h5py
import numpy as np
from datetime import datetime, timezone

from hgcaltb.config.constants import NTUPLE_COLUMNS
from hgcaltb.physics.event import EventRecord

FORMAT_VERSION = "1.0"
SOFTWARE = "hgcaltb 0.1.0"

_COLUMN_DTYPES = {
    "edep": np.float64,
    "CEETot": np.float64,
    "CHETot": np.float64,
    "AHCALTot": np.float64,
    "HGCALTot": np.float64,
    "IntLayer": np.int32,
}


class NtupleSink(Protocol):
    """Receives one EventRecord per event, in event order."""

    def fill(self, record: EventRecord) -> None:
        ...

    def close(self) -> None:
        ...


class MemorySink:
    """Keeps every filled record in memory (tests, notebooks)."""

    def __init__(self) -> None:
        self.records: List[EventRecord] = []

    def fill(self, record: EventRecord) -> None:
        self.records.append(record)

    def close(self) -> None:
        pass

    def __len__(self) -> int:
        return len(self.records)

    def as_arrays(self) -> Dict[str, np.ndarray]:
        rows = [r.as_row() for r in self.records]
        return {
            col: np.array([row[i] for row in rows], dtype=_COLUMN_DTYPES[col])
            for i, col in enumerate(NTUPLE_COLUMNS)
        }


class H5NtupleSink:
    """
    Append ntuple rows to an HDF5 file.

    Layout:

    /ntuple/edep      (N,) float64
    /ntuple/CEETot    (N,) float64
    /ntuple/CHETot    (N,) float64
    /ntuple/AHCALTot  (N,) float64
    /ntuple/HGCALTot  (N,) float64
    /ntuple/IntLayer  (N,) int32
    /ntuple/event_id  (N,) int64
    /layers/<name>    (N, n_layers) float64   only if layer_counts is given
    """

    def __init__(
        self,
        path: str,
        *,
        config_text: str = "",
        layer_counts: Optional[Dict[str, int]] = None,
        chunk_rows: int = 1024,
    ) -> None:
        self.path = str(path)
        self.f = h5py.File(self.path, "w")
        # Root attrs
        self.f.attrs["format_version"] = FORMAT_VERSION
        self.f.attrs["created_utc"] = datetime.now(timezone.utc).isoformat()
        self.f.attrs["software"] = SOFTWARE
        self.f.attrs["config_text"] = config_text

        self.n_rows = 0
        grp = self.f.create_group("ntuple")
        grp.attrs["columns"] = np.array(NTUPLE_COLUMNS, dtype=h5py.string_dtype())
        for col in NTUPLE_COLUMNS:
            grp.create_dataset(col, shape=(0,), maxshape=(None,), dtype=_COLUMN_DTYPES[col],
                               chunks=(chunk_rows,), compression="gzip")
        grp.create_dataset("event_id", shape=(0,), maxshape=(None,), dtype=np.int64,
                           chunks=(chunk_rows,), compression="gzip")

        self.layer_counts = dict(layer_counts or {})
        if self.layer_counts:
            lg = self.f.create_group("layers")
            for name, n in self.layer_counts.items():
                lg.create_dataset(name, shape=(0, n), maxshape=(None, n), dtype=np.float64,
                                  chunks=(chunk_rows, n), compression="gzip")

    def fill(self, record: EventRecord) -> None:
        i = self.n_rows
        grp = self.f["ntuple"]
        for col, value in zip(NTUPLE_COLUMNS, record.as_row()):
            dset = grp[col]
            dset.resize((i + 1,))
            dset[i] = value
        grp["event_id"].resize((i + 1,))
        grp["event_id"][i] = record.event_id

        for name in self.layer_counts:
            dset = self.f["layers"][name]
            dset.resize((i + 1, dset.shape[1]))
            dset[i, :] = record.layers[name]
        self.n_rows += 1

    def set_attr(self, key: str, value) -> None:
        self.f["ntuple"].attrs[key] = value

    def close(self) -> None:
        if self.f.id.valid:
            self.f["ntuple"].attrs["n_rows"] = self.n_rows
            self.f.close()

    def __enter__(self) -> "H5NtupleSink":
        return self

    def __exit__(self, *exc) -> None:
        self.close()


def read_ntuple(path: str, columns: Sequence[str] = NTUPLE_COLUMNS + ("event_id",)) -> Dict[str, np.ndarray]:
    path = str(path)
    with h5py.File(path, "r") as f:
        grp = f["ntuple"]
        out = {}
        for col in columns:
            if col not in grp:
                raise KeyError(f"{col} not found in /ntuple of {path}")
            out[col] = np.array(grp[col])
    return out


def read_layers(path: str, name: str) -> np.ndarray:
    path = str(path)
    with h5py.File(path, "r") as f:
        if "layers" not in f or name not in f["layers"]:
            raise KeyError(f"/layers/{name} not found in {path}")
        return np.array(f["layers"][name], dtype=np.float64)
