import h5py
import numpy as np
import pytest

from hgcaltb.errors import LayerCountError, MissingCollectionError
from hgcaltb.physics.hits import LayerHit
from hgcaltb.io.hits_store import write_hits_store
from hgcaltb.io.ntuple import MemorySink, read_ntuple
from hgcaltb.pipelines.core import RunSummary, event_rng, process_events, run_pipeline
from hgcaltb.sim.synth import synth_shower_events

from conftest import make_event, make_small_cfg


def _write_synth(path, cfg, n=6, seed=0):
    events = list(synth_shower_events(n, 20.0, rng=np.random.default_rng(seed), cfg=cfg))
    write_hits_store(path, events)
    return events


def test_event_rng_depends_only_on_seed_and_event():
    a = event_rng(7, 3).normal(size=4)
    b = event_rng(7, 3).normal(size=4)
    c = event_rng(7, 4).normal(size=4)
    d = event_rng(8, 3).normal(size=4)
    np.testing.assert_array_equal(a, b)
    assert not np.allclose(a, c)
    assert not np.allclose(a, d)


def test_processing_order_does_not_change_results():
    cfg = make_small_cfg(sigma=0.3, threshold=0.5, divisor=0.5)
    events = [make_event(cfg, event_id=i) for i in range(4)]
    fwd = {r.event_id: r for r in process_events(cfg, events)}
    rev = {r.event_id: r for r in process_events(cfg, list(reversed(events)))}
    for i in range(4):
        assert fwd[i].as_row() == rev[i].as_row()


def test_skip_policy_counts_bad_events():
    cfg = make_small_cfg(on_error="skip")
    events = [make_event(cfg, event_id=i) for i in range(3)]
    del events[1].collections["CEE"]
    summary = RunSummary()
    sink = MemorySink()
    out = process_events(cfg, events, sink=sink, summary=summary)
    assert out == []  # records went to the sink
    assert [r.event_id for r in sink.records] == [0, 2]
    assert summary.n_events == 3
    assert summary.n_skipped == 1
    assert summary.skipped_ids == [1]
    assert summary.reasons == {"MissingCollectionError": 1}


def test_skip_policy_covers_cell_counts_and_step_deposits():
    cfg = make_small_cfg(on_error="skip")
    events = [make_event(cfg, event_id=i) for i in range(5)]
    events[1].collections["CEE"] = [LayerHit(layer=j, cells=np.ones(50)) for j in range(3)]
    events[2] = make_event(cfg, event_id=2, steps=(1.0, -0.5))
    events[3] = make_event(cfg, event_id=3, steps=(float("nan"),))
    summary = RunSummary()
    out = process_events(cfg, events, summary=summary)
    assert [r.event_id for r in out] == [0, 4]
    assert summary.skipped_ids == [1, 2, 3]
    assert summary.reasons == {"CellCountError": 1, "StepDepositError": 2}


def test_raise_policy_aborts():
    cfg = make_small_cfg()
    events = [make_event(cfg, event_id=i) for i in range(2)]
    del events[0].collections["AHCAL"]
    with pytest.raises(MissingCollectionError):
        process_events(cfg, events)


def test_run_pipeline_end_to_end(tmp_path):
    cfg = make_small_cfg(sigma=0.1, threshold=0.5, divisor=0.0085, seed=3)
    cfg.io.input_path = str(tmp_path / "hits.h5")
    cfg.io.output_path = str(tmp_path / "out" / "ntuple.h5")
    cfg.io.store_layers = True
    events = _write_synth(cfg.io.input_path, cfg)

    out = run_pipeline(cfg=cfg)
    assert out.exists()
    cols = read_ntuple(str(out))
    assert len(cols["edep"]) == len(events)
    np.testing.assert_allclose(cols["edep"], [ev.steps.sum() for ev in events])
    np.testing.assert_allclose(cols["HGCALTot"], cols["CEETot"] + cols["CHETot"] + cols["AHCALTot"])
    assert list(cols["IntLayer"]) == [ev.int_layer for ev in events]

    # same seed, same numbers
    again = run_pipeline(cfg=cfg, seed=3)
    np.testing.assert_array_equal(read_ntuple(str(again))["HGCALTot"], cols["HGCALTot"])


def test_run_pipeline_skip_and_cap(tmp_path):
    cfg = make_small_cfg()
    cfg.io.input_path = str(tmp_path / "hits.h5")
    cfg.io.output_path = str(tmp_path / "ntuple.h5")
    cfg.run.n_events = 4
    events = [make_event(cfg, event_id=i) for i in range(5)]
    events[2].collections["CHE"] = events[2].collections["CHE"][:-1]
    write_hits_store(cfg.io.input_path, events)

    with pytest.raises(LayerCountError):
        run_pipeline(cfg=cfg)

    out = run_pipeline(cfg=cfg, skip_bad_events=True)
    cols = read_ntuple(str(out))
    assert list(cols["event_id"]) == [0, 1, 3]
    with h5py.File(out, "r") as f:
        assert int(f["ntuple"].attrs["n_skipped"]) == 1


def test_run_pipeline_leaves_caller_config_untouched(tmp_path):
    cfg = make_small_cfg(seed=5)
    cfg.io.input_path = str(tmp_path / "hits.h5")
    cfg.io.output_path = str(tmp_path / "ntuple.h5")
    _write_synth(cfg.io.input_path, cfg, n=2)

    run_pipeline(cfg=cfg, seed=99, skip_bad_events=True)
    assert cfg.run.seed == 5
    assert cfg.run.on_error == "raise"
    with h5py.File(cfg.io.output_path, "r") as f:
        assert int(f["ntuple"].attrs["seed"]) == 99



def test_run_pipeline_workers_match_serial(tmp_path):
    cfg = make_small_cfg(sigma=0.2, threshold=0.5, divisor=0.0085, seed=11)
    cfg.io.input_path = str(tmp_path / "hits.h5")
    _write_synth(cfg.io.input_path, cfg, n=8)

    cfg.io.output_path = str(tmp_path / "serial.h5")
    serial = read_ntuple(str(run_pipeline(cfg=cfg, workers=1)))
    cfg.io.output_path = str(tmp_path / "pool.h5")
    pooled = read_ntuple(str(run_pipeline(cfg=cfg, workers=2)))

    np.testing.assert_array_equal(serial["event_id"], pooled["event_id"])
    np.testing.assert_array_equal(serial["HGCALTot"], pooled["HGCALTot"])


def test_run_pipeline_from_toml_with_png(tmp_path):
    cfg = make_small_cfg()
    hits = tmp_path / "hits.h5"
    _write_synth(hits, cfg, n=3)
    toml = tmp_path / "run.toml"
    toml.write_text(
        "[run]\ndiagnostics_level = 0\n\n"
        f'[io]\ninput_path = "{hits.as_posix()}"\noutput_path = "{(tmp_path / "nt.h5").as_posix()}"\n\n'
        '[detectors.cee]\nlayers = 3\ncells = 4\ncollection = "CEE"\n\n'
        '[detectors.che]\nlayers = 4\ncells = 10\ncollection = "CHE"\n\n'
        '[detectors.ahcal]\nlayers = 2\ncells = 5\ncollection = "AHCAL"\n\n'
        "[geometry]\nche_seven_wafer_layers = 2\ncells_per_wafer = 4\n\n"
        "[vis]\nexport_png_on_write = true\n"
    )
    out = run_pipeline(str(toml))
    assert len(read_ntuple(str(out))["edep"]) == 3
    assert (tmp_path / "nt_HGCALTot.png").exists()
    with h5py.File(out, "r") as f:
        assert "che_seven_wafer_layers = 2" in f.attrs["config_text"]
