from __future__ import annotations

import os
from concurrent.futures import ProcessPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple
import typer

import numpy as np
from tqdm import tqdm

from hgcaltb.config.load import load_config, snapshot_config_toml
from hgcaltb.config.schemas import Config
from hgcaltb.errors import EventDataError
from hgcaltb.io.hits_store import count_events, iter_hits_store
from hgcaltb.io.ntuple import H5NtupleSink, NtupleSink
from hgcaltb.physics.event import EventAccumulator, EventRecord
from hgcaltb.physics.hits import EventHits
from hgcaltb.physics.layers import LayerAggregator
from hgcaltb.vis.hdf import save_column_hist


def event_rng(seed: int, event_id: int) -> np.random.Generator:
    """
    Independent noise stream for one event.

    Depends only on (seed, event_id), so an event reproduces the same
    signals whatever worker or position it is processed in.
    """
    return np.random.default_rng(np.random.SeedSequence(entropy=seed, spawn_key=(int(event_id),)))


@dataclass
class RunSummary:
    n_events: int = 0
    n_written: int = 0
    n_skipped: int = 0
    skipped_ids: List[int] = field(default_factory=list)
    reasons: Dict[str, int] = field(default_factory=dict)

    def skip(self, event_id: int, exc: Exception) -> None:
        self.n_skipped += 1
        self.skipped_ids.append(event_id)
        key = type(exc).__name__
        self.reasons[key] = self.reasons.get(key, 0) + 1


def process_events(
    cfg: Config,
    events: Iterable[EventHits],
    sink: Optional[NtupleSink] = None,
    summary: Optional[RunSummary] = None,
) -> List[EventRecord]:
    """
    Run reset -> step accumulation -> finalize for each event.

    Bad events raise, or are skipped when cfg.run.on_error == "skip".
    Records go to `sink` when one is given, otherwise they are returned.
    """
    acc = EventAccumulator.from_config(cfg, sink=sink)
    summary = summary if summary is not None else RunSummary()
    diag_level = cfg.run.diagnostics_level
    records: List[EventRecord] = []

    for hits in events:
        summary.n_events += 1
        try:
            rec = acc.process(hits, event_rng(cfg.run.seed, hits.event_id))
        except EventDataError as exc:
            if cfg.run.on_error == "raise":
                raise
            summary.skip(hits.event_id, exc)
            if diag_level >= 2 or (diag_level >= 1 and summary.n_skipped <= 5):
                print(f"[event] Skipping event {hits.event_id}: {exc}")
            continue
        summary.n_written += 1
        if sink is None:
            records.append(rec)
        if diag_level >= 2:
            print(f"[event] {hits.event_id}: edep={rec.edep:.3f} MeV "
                  f"CEE={rec.cee_tot:.2f} CHE={rec.che_tot:.2f} AHCAL={rec.ahcal_tot:.2f} "
                  f"HGCAL={rec.hgcal_tot:.2f} MIP")
    return records


def _process_chunk(cfg: Config, input_path: str, start: int, stop: int) -> Tuple[List[EventRecord], RunSummary]:
    summary = RunSummary()
    records = process_events(cfg, iter_hits_store(input_path, start, stop), summary=summary)
    return records, summary


def _resolve_workers(workers) -> int:
    if workers == "auto":
        return max(1, os.cpu_count() or 1)
    return max(1, int(workers))


def run_pipeline(
    cfg_path: Optional[str] = None,
    *,
    cfg: Optional[Config] = None,
    seed: Optional[int] = None,
    workers: Optional[int] = None,
    skip_bad_events: Optional[bool] = None,
) -> Path:
    """
    Orchestrate the signal pipeline from a TOML config file (or a Config).

    Reads raw hits from [io].input_path, writes the ntuple to [io].output_path.
    CLI flags override the corresponding [run] fields when not None.

    Returns
    -------
    Path to written HDF5 ntuple.
    """
    if cfg is None:
        if cfg_path is None:
            raise ValueError("run_pipeline needs cfg_path or cfg")
        cfg = load_config(cfg_path)
    else:
        cfg = cfg.model_copy(deep=True)

    # ---- apply CLI overrides on top of TOML ----
    if seed is not None:
        cfg.run.seed = seed
    if workers is not None:
        cfg.run.workers = workers
    if skip_bad_events is not None:
        cfg.run.on_error = "skip" if skip_bad_events else "raise"

    diag_level = cfg.run.diagnostics_level
    if diag_level >= 1:
        print(f"[run] config = {cfg_path}")
        print(f"[run] seed={cfg.run.seed} workers={cfg.run.workers} on_error={cfg.run.on_error}")
        print(f"[run] input={cfg.io.input_path} -> output={cfg.io.output_path}")

    n_events = count_events(cfg.io.input_path)
    if cfg.run.n_events is not None:
        n_events = min(n_events, cfg.run.n_events)

    out_path = Path(cfg.io.output_path)
    out_path.parent.mkdir(parents=True, exist_ok=True)

    def _open_sink() -> H5NtupleSink:
        return H5NtupleSink(
            str(out_path),
            config_text=snapshot_config_toml(cfg_path),
            layer_counts=LayerAggregator.from_config(cfg).layer_counts() if cfg.io.store_layers else None,
        )

    summary = RunSummary()
    n_workers = min(_resolve_workers(cfg.run.workers), max(1, n_events))
    if n_workers == 1:
        sink = _open_sink()
        try:
            events = iter_hits_store(cfg.io.input_path, 0, n_events)
            if cfg.run.progress:
                events = tqdm(events, total=n_events, desc="events")
            process_events(cfg, events, sink=sink, summary=summary)
            sink.set_attr("n_skipped", summary.n_skipped)
            sink.set_attr("seed", cfg.run.seed)
        finally:
            sink.close()
    else:
        # workers are forked before any output file is open
        bounds = np.linspace(0, n_events, n_workers + 1).astype(int)
        with ProcessPoolExecutor(max_workers=n_workers) as executor:
            futures = [
                executor.submit(_process_chunk, cfg, str(cfg.io.input_path), int(a), int(b))
                for a, b in zip(bounds[:-1], bounds[1:])
            ]
            # submission order keeps rows in event order
            parts = [fut.result() for fut in tqdm(futures, desc="chunks", disable=not cfg.run.progress)]

        sink = _open_sink()
        try:
            for records, part in parts:
                for rec in records:
                    sink.fill(rec)
                summary.n_events += part.n_events
                summary.n_written += part.n_written
                summary.n_skipped += part.n_skipped
                summary.skipped_ids.extend(part.skipped_ids)
                for k, v in part.reasons.items():
                    summary.reasons[k] = summary.reasons.get(k, 0) + v
            sink.set_attr("n_skipped", summary.n_skipped)
            sink.set_attr("seed", cfg.run.seed)
        finally:
            sink.close()

    if diag_level >= 1:
        print(f"[pipeline] Processed {summary.n_events} events: "
              f"{summary.n_written} written, {summary.n_skipped} skipped")
        if summary.reasons:
            print(f"[pipeline] Skip reasons: {summary.reasons}")

    # Optional PNG export
    if cfg.vis.export_png_on_write:
        try:
            out_png = save_column_hist(str(out_path), column=cfg.vis.column)
            if diag_level >= 1:
                print(f"[pipeline] Wrote PNG {out_png} from /ntuple/{cfg.vis.column}")
        except (KeyError, OSError, ValueError) as e:
            if diag_level >= 1:
                print(f"[pipeline] PNG export failed: {e!r}")

    return out_path


# ---------------------------------------------------------------------------
# Unified CLI entry point
# ---------------------------------------------------------------------------

app = typer.Typer(help="HGCAL test-beam signal pipeline (hgcaltb.pipelines.core)")


@app.command()
def main(
    cfg_path: str = typer.Argument(
        ...,
        help="Path to TOML config file",
    ),
    seed: Optional[int] = typer.Option(
        None,
        "--seed",
        help="Override [run].seed (noise streams are derived per event from it)",
    ),
    workers: Optional[int] = typer.Option(
        None,
        "--workers",
        help="Override [run].workers (number of worker processes)",
    ),
    skip_bad_events: Optional[bool] = typer.Option(
        None,
        "--skip-bad-events / --fail-on-bad-events",
        help="Skip events with missing or malformed hit collections instead of aborting",
    ),
):
    """
    Run the signal pipeline for a single config.
    """
    out_path = run_pipeline(
        cfg_path,
        seed=seed,
        workers=workers,
        skip_bad_events=skip_bad_events,
    )
    typer.echo(str(out_path))


if __name__ == "__main__":
    app()
