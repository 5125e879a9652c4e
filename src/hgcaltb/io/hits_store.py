"""
hgcaltb.io.hits_store

Ragged HDF5 storage for the raw per-layer hits recorded during stepping.

Every subdetector collection is stored CSR-style, one level for events and
one for layers:

/hits/<collection>/event_ptr  (N_events+1,) int64   -> rows of layer_ptr
/hits/<collection>/layer_ptr  (N_layers+1,) int64   -> offsets into cells
/hits/<collection>/cells      (N_cells,)    float64 raw deposited energy [MeV]
/hits/<collection>/present    (N_events,)   bool    collection recorded for event
/steps/event_ptr              (N_events+1,) int64   -> offsets into edep
/steps/edep                   (N_steps,)    float64 per-step deposits [MeV]
/events/event_id              (N_events,)   int64
/events/int_layer             (N_events,)   int32   optional, zeros if absent

Root attrs: n_events, format_version.
A collection missing from the file, or with present[i] == False, is reported
as missing for that event (MissingCollectionError on lookup).
"""
from __future__ import annotations
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Sequence
import h5py
import numpy as np

from hgcaltb.physics.hits import EventHits, LayerHit

FORMAT_VERSION = "1.0"


def _flatten_collection(events: Sequence[EventHits], name: str):
    """
    Flatten one collection of all events into CSR columns.

    Returns event_ptr, layer_ptr, cells, present.
    """
    n_events = len(events)
    event_ptr = np.zeros(n_events + 1, dtype=np.int64)
    present = np.zeros(n_events, dtype=bool)
    layer_sizes: List[int] = []
    chunks: List[np.ndarray] = []

    for i, ev in enumerate(events):
        layers = ev.collections.get(name)
        if layers is not None:
            present[i] = True
            for lh in layers:
                c = np.asarray(lh.cells, dtype=np.float64).ravel()
                layer_sizes.append(c.size)
                chunks.append(c)
        event_ptr[i + 1] = len(layer_sizes)

    layer_ptr = np.zeros(len(layer_sizes) + 1, dtype=np.int64)
    if layer_sizes:
        layer_ptr[1:] = np.cumsum(layer_sizes)
    cells = np.concatenate(chunks) if chunks else np.zeros(0, dtype=np.float64)
    return event_ptr, layer_ptr, cells, present


def write_hits_store(path: str | Path, events: Sequence[EventHits],
                     collections: Optional[Sequence[str]] = None) -> None:
    """
    Write events to a new hits store.

    collections defaults to every collection name seen, in order of first appearance.
    """
    if collections is None:
        seen: Dict[str, None] = {}
        for ev in events:
            for name in ev.collections:
                seen.setdefault(name, None)
        collections = list(seen)

    with h5py.File(str(path), "w") as f:
        f.attrs["format_version"] = FORMAT_VERSION
        f.attrs["n_events"] = len(events)

        g_hits = f.create_group("hits")
        for name in collections:
            event_ptr, layer_ptr, cells, present = _flatten_collection(events, name)
            g = g_hits.create_group(name)
            g.create_dataset("event_ptr", data=event_ptr, dtype="i8")
            g.create_dataset("layer_ptr", data=layer_ptr, dtype="i8")
            g.create_dataset("cells", data=cells, dtype="f8", compression="gzip" if cells.size else None)
            g.create_dataset("present", data=present, dtype=bool)

        # Step deposits (CSR)
        step_ptr = np.zeros(len(events) + 1, dtype=np.int64)
        for i, ev in enumerate(events):
            step_ptr[i + 1] = step_ptr[i] + len(ev.steps)
        steps = (np.concatenate([np.asarray(ev.steps, dtype=np.float64) for ev in events])
                 if events else np.zeros(0, dtype=np.float64))
        g_steps = f.create_group("steps")
        g_steps.create_dataset("event_ptr", data=step_ptr, dtype="i8")
        g_steps.create_dataset("edep", data=steps, dtype="f8", compression="gzip" if steps.size else None)

        g_ev = f.create_group("events")
        g_ev.create_dataset("event_id", data=np.array([ev.event_id for ev in events], dtype=np.int64))
        g_ev.create_dataset("int_layer", data=np.array([ev.int_layer for ev in events], dtype=np.int32))


def count_events(path: str | Path) -> int:
    with h5py.File(str(path), "r") as f:
        return int(f.attrs["n_events"])


def iter_hits_store(path: str | Path, start: int = 0, stop: Optional[int] = None) -> Iterator[EventHits]:
    """
    Stream events [start, stop) from a hits store.

    Pointer arrays are loaded once; cell values are sliced per event.
    """
    with h5py.File(str(path), "r") as f:
        n_events = int(f.attrs["n_events"])
        stop = n_events if stop is None else min(stop, n_events)

        colls = {}
        for name, g in f["hits"].items():
            colls[name] = (
                np.asarray(g["event_ptr"][...]),
                np.asarray(g["layer_ptr"][...]),
                g["cells"],
                np.asarray(g["present"][...]) if "present" in g else np.ones(n_events, dtype=bool),
            )

        step_ptr = np.asarray(f["steps/event_ptr"][...])
        step_edep = f["steps/edep"]
        g_ev = f["events"]
        event_ids = np.asarray(g_ev["event_id"][...]) if "event_id" in g_ev else np.arange(n_events)
        int_layer = (np.asarray(g_ev["int_layer"][...]) if "int_layer" in g_ev
                     else np.zeros(n_events, dtype=np.int32))

        for i in range(start, stop):
            collections: Dict[str, List[LayerHit]] = {}
            for name, (event_ptr, layer_ptr, cells, present) in colls.items():
                if not present[i]:
                    continue
                l0, l1 = int(event_ptr[i]), int(event_ptr[i + 1])
                if layer_ptr[l1] > layer_ptr[l0]:
                    block = np.asarray(cells[layer_ptr[l0]:layer_ptr[l1]], dtype=np.float64)
                else:
                    block = np.zeros(0, dtype=np.float64)
                base = layer_ptr[l0]
                collections[name] = [
                    LayerHit(layer=j, cells=block[layer_ptr[l0 + j] - base:layer_ptr[l0 + j + 1] - base])
                    for j in range(l1 - l0)
                ]
            s0, s1 = int(step_ptr[i]), int(step_ptr[i + 1])
            steps = (np.asarray(step_edep[s0:s1], dtype=np.float64) if s1 > s0
                     else np.zeros(0, dtype=np.float64))
            yield EventHits(
                event_id=int(event_ids[i]),
                collections=collections,
                steps=steps,
                int_layer=int(int_layer[i]),
            )
