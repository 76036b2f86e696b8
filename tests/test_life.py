"""
Tests for the demo engines, the tick loop and the CLI.
"""

from __future__ import annotations

import io
from pathlib import Path

import numpy as np
import pytest

from gridterm import CLEAR_SCREEN, GraphicConfig, REPLOutput, Terminal
from gridterm_life import (
    RenderStatsLogger,
    build_parser,
    cli,
    elementary_step,
    life_step,
    run,
    seed_grid,
    seed_row,
)


# ── Engines ─────────────────────────────────────────────────────────────

def test_blinker_oscillates() -> None:
    grid = np.zeros((5, 5), dtype=np.uint8)
    grid[2, 1:4] = 1
    nxt = life_step(grid)
    assert nxt[1:4, 2].tolist() == [1, 1, 1]
    assert int(nxt.sum()) == 3
    assert (life_step(nxt) == grid).all()


def test_block_is_still_life() -> None:
    grid = np.zeros((4, 4), dtype=np.uint8)
    grid[1:3, 1:3] = 1
    assert (life_step(grid) == grid).all()


def test_life_wraps_around() -> None:
    grid = np.zeros((5, 5), dtype=np.uint8)
    grid[0, [4, 0, 1]] = 1
    nxt = life_step(grid)
    assert nxt[[4, 0, 1], 0].tolist() == [1, 1, 1]


def test_rule30_from_single_cell() -> None:
    row = np.zeros(7, dtype=bool)
    row[3] = True
    nxt = elementary_step(row, 30)
    assert nxt.astype(int).tolist() == [0, 0, 1, 1, 1, 0, 0]
    nxt = elementary_step(nxt, 30)
    assert nxt.astype(int).tolist() == [0, 1, 1, 0, 0, 1, 0]


def test_rule90_is_xor_of_neighbours() -> None:
    rng = np.random.default_rng(3)
    row = rng.random(16) > 0.5
    expected = np.roll(row, 1) ^ np.roll(row, -1)
    assert (elementary_step(row, 90) == expected).all()


def test_seeds() -> None:
    rng = np.random.default_rng(0)
    grid = seed_grid((10, 12), 0.5, rng)
    assert grid.shape == (10, 12)
    assert set(np.unique(grid)) <= {0, 1}
    row = seed_row(9, 0.0, rng)
    assert row.tolist() == [False] * 4 + [True] + [False] * 4


# ── Tick loop ───────────────────────────────────────────────────────────

class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


def test_run_draws_every_tick(terminal: Terminal, stream: io.StringIO) -> None:
    init = np.zeros(8, dtype=bool)
    init[4] = True
    out = REPLOutput(init, tspan=range(1, 6), store=True, fps=10.0, terminal=terminal)
    clock = FakeClock()
    drawn = run(out, lambda row: elementary_step(row, 30),
                sleep=clock.sleep, clock=clock)
    assert drawn == 5
    assert stream.getvalue().count(CLEAR_SCREEN) == 1
    assert stream.getvalue().count("Time ") == 5
    assert clock.sleeps == [pytest.approx(0.1)] * 5
    assert not out.running
    assert len(out.frames) == 0


def test_run_stops_when_not_running(terminal: Terminal) -> None:
    out = REPLOutput(np.zeros((4, 4)), tspan=range(1, 100),
                     graphicconfig=GraphicConfig(fps=1000.0), terminal=terminal)
    calls = 0

    def step(frame):
        nonlocal calls
        calls += 1
        if calls == 3:
            out.stop()
        return frame

    drawn = run(out, step, sleep=lambda s: None)
    assert drawn == 4
    assert calls == 3


def test_run_closes_output_on_error(terminal: Terminal, stream: io.StringIO) -> None:
    out = REPLOutput(np.zeros((4, 4)), tspan=range(1, 10), terminal=terminal)

    def step(frame):
        raise RuntimeError("engine failed")

    with pytest.raises(RuntimeError):
        run(out, step, sleep=lambda s: None)
    assert stream.getvalue().endswith("\x1b[0m\x1b[?25h")


# ── Telemetry ───────────────────────────────────────────────────────────

def test_stats_logger_writes_rows(tmp_path: Path, terminal: Terminal) -> None:
    path = tmp_path / "render.csv"
    stats = RenderStatsLogger(path)
    stats.open()
    out = REPLOutput(np.ones((8, 8)), tspan=range(1, 4), terminal=terminal)
    run(out, life_step, stats=stats, sleep=lambda s: None)
    stats.close()

    lines = path.read_text().splitlines()
    assert lines[0] == RenderStatsLogger.HEADER.strip()
    assert len(lines) == 4
    tick, _, sim_time, rows, cols, grows, gcols, mode = lines[1].split(",")
    assert (tick, sim_time, rows, cols, grows, gcols, mode) == (
        "1", "1", "24", "80", "4", "8", "block",
    )


def test_stats_logger_open_failure_disables(tmp_path: Path, terminal: Terminal) -> None:
    stats = RenderStatsLogger(tmp_path / "missing" / "render.csv")
    stats.open()
    out = REPLOutput(np.ones((2, 2)), tspan=range(1, 2), terminal=terminal)
    stats.log(1, 1, out)
    stats.close()


# ── CLI ─────────────────────────────────────────────────────────────────

def test_parser_defaults() -> None:
    args = build_parser().parse_args([])
    assert args.rule == "life"
    assert args.mode == "block"
    assert args.cutoff == 0.5


@pytest.mark.parametrize("argv", [
    ["--rule", "life", "--mode", "braille", "--height", "16", "--width", "16"],
    ["--rule", "rule110", "--width", "32", "--color", "196"],
    ["--rule", "rule30", "--store"],
])
def test_cli_runs(argv, tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    stats = tmp_path / "stats.csv"
    log = tmp_path / "run.log"
    code = cli(argv + ["--ticks", "3", "--fps", "1000", "--seed", "1",
                       "--stats", str(stats), "--log-file", str(log)])
    assert code == 0
    written = capsys.readouterr().out
    assert written.count(CLEAR_SCREEN) == 1
    assert "Time 3" in written
    assert len(stats.read_text().splitlines()) == 4
