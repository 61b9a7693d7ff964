"""Tests for the move command of the CLI."""

import argparse

import bakehouse.__main__ as cli

from fakes import SIM_ID, FakeSimulator, make_batch, make_settings, make_simulation


def _run_move(monkeypatch, sim: FakeSimulator, batch_id: str, start: str, rack: str) -> int:
    monkeypatch.setattr(cli, "get_settings", make_settings)
    monkeypatch.setattr(cli, "_client", lambda settings: sim.client())
    args = argparse.Namespace(simulation_id=SIM_ID, batch_id=batch_id, start_time=start, rack=rack)
    return cli.cmd_move(args)


def test_move_snaps_and_sends(monkeypatch) -> None:
    sim = FakeSimulator()

    assert _run_move(monkeypatch, sim, "b1", "09:06", "rack-5") == 0

    assert sim.calls_to("POST", "/batch/move") == [
        {"batchId": "b1", "newStartTime": "09:00", "newRack": 5}
    ]


def test_move_rejects_batch_without_duration(monkeypatch) -> None:
    sim = FakeSimulator(
        make_simulation(batches=[make_batch("b9", start="07:00", rack=2, bakeTime=None, endTime=None)])
    )

    assert _run_move(monkeypatch, sim, "b9", "09:00", "3") == 1

    assert sim.calls_to("POST", "/batch/move") == []


def test_move_outside_business_hours_sends_nothing(monkeypatch) -> None:
    sim = FakeSimulator()

    assert _run_move(monkeypatch, sim, "b1", "16:50", "3") == 1
    assert _run_move(monkeypatch, sim, "b1", "09:00", "shelf") == 1

    assert sim.calls_to("POST", "/batch/move") == []
