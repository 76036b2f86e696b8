"""
Tests for the headless profiling harness.
"""

from __future__ import annotations

import pytest

from gridterm import GlyphMode
from gridterm_bench import NullStream, make_output, run_benchmark, time_render_work


@pytest.mark.parametrize("rank", [1, 2])
@pytest.mark.parametrize("mode", list(GlyphMode))
def test_time_render_work_reports_each_stage(rank: int, mode: GlyphMode) -> None:
    out = make_output(rank, mode, n_frames=10, term_rows=12, term_cols=40)
    timings = time_render_work(out, out.frames[-1], 1)
    assert set(timings) == {"window", "threshold+pad", "rasterize", "write", "_glyphs"}
    assert all(v >= 0 for v in timings.values())
    assert isinstance(out.terminal.stream, NullStream)
    assert out.terminal.stream.writes == 1


def test_2d_frame_fills_the_terminal() -> None:
    out = make_output(2, GlyphMode.BRAILLE, n_frames=2, term_rows=12, term_cols=40)
    timings = time_render_work(out, out.frames[-1], 1)
    # (rows - 1) x (cols - 1) glyphs
    assert timings["_glyphs"] == 11 * 39


def test_run_benchmark_line_timing(capsys: pytest.CaptureFixture[str]) -> None:
    run_benchmark(5, term_rows=10, term_cols=20, mode=GlyphMode.BLOCK, line_timing=True)
    out = capsys.readouterr().out
    assert "Per-Frame Component Breakdown" in out
    assert "rasterize" in out


def test_line_timing_reports_stage_shares(capsys: pytest.CaptureFixture[str]) -> None:
    run_benchmark(4, term_rows=8, term_cols=16, mode=GlyphMode.BRAILLE, rank=1, line_timing=True)
    out = capsys.readouterr().out
    for stage in ("step", "window", "threshold+pad", "rasterize", "write"):
        assert f"\n{stage} " in out
    assert "glyphs/frame" in out
    assert "budget" not in out


def test_profile_run_writes_dump(tmp_path, capsys: pytest.CaptureFixture[str]) -> None:
    dump = tmp_path / "render.prof"
    run_benchmark(3, term_rows=8, term_cols=16, mode=GlyphMode.BLOCK, dump_path=str(dump))
    out = capsys.readouterr().out
    assert "3 frames in" in out
    assert dump.exists()
