#!/usr/bin/env python3
"""
  Demo runs for the gridterm renderer.

  Drives a REPLOutput through its time span with one of two toy engines:

    life      Conway's Game of Life on a torus (2-D frames, drawn clipped)
    ruleNN    a Wolfram elementary automaton, e.g. rule30 or rule110
              (1-D frames, drawn as a scrolling trail)

  Usage:
    python3 gridterm_life.py                         # Life, half blocks
    python3 gridterm_life.py --mode braille          # 4x2 dots per glyph
    python3 gridterm_life.py --rule rule30 --fps 30  # 1-D trail
    python3 gridterm_life.py --stats render.csv      # per-tick telemetry

  Logs go to a file (stdout is the screen): see --log-file.
"""

from __future__ import annotations

import argparse
import logging
import time
from pathlib import Path
from typing import IO, Callable, ClassVar

import numpy as np
from numpy.typing import NDArray

from gridterm import (
    DEFAULT_CUTOFF,
    DisplayConfig,
    GlyphMode,
    GraphicConfig,
    REPLOutput,
    SimData,
    TimeSpan,
    show_frame,
)

logger = logging.getLogger(__name__)

RULES: dict[str, int] = {"rule30": 30, "rule90": 90, "rule110": 110}
DEFAULT_LOG = "gridterm.log"

Step = Callable[[NDArray], NDArray]


# ═══════════════════════════════════════════════════════════════════════
#  Engines
# ═══════════════════════════════════════════════════════════════════════

def life_step(grid: NDArray) -> NDArray[np.uint8]:
    """One B3/S23 generation with toroidal wrap-around."""
    g = np.asarray(grid).astype(bool)
    # Neighbour count by shift-and-add
    n = np.zeros(g.shape, dtype=np.int16)
    for dr in (-1, 0, 1):
        for dc in (-1, 0, 1):
            if dr == 0 and dc == 0:
                continue
            n += np.roll(np.roll(g, -dr, axis=0), -dc, axis=1)

    n_is_3 = n == 3
    birth = ~g & n_is_3
    survive = g & (n_is_3 | (n == 2))
    return (birth | survive).astype(np.uint8)


def elementary_step(row: NDArray, rule: int) -> NDArray[np.bool_]:
    """One generation of an elementary automaton, periodic boundary."""
    cells = np.asarray(row).astype(np.uint8)
    left = np.roll(cells, 1)
    right = np.roll(cells, -1)
    pattern = left << 2 | cells << 1 | right
    table = np.array([rule >> i & 1 for i in range(8)], dtype=bool)
    return table[pattern]


def seed_grid(shape: tuple[int, int], density: float, rng: np.random.Generator) -> NDArray[np.uint8]:
    return (rng.random(shape) < density).astype(np.uint8)


def seed_row(width: int, density: float, rng: np.random.Generator) -> NDArray[np.bool_]:
    """Single live centre cell, or random dust when density > 0."""
    if density > 0:
        return rng.random(width) < density
    row = np.zeros(width, dtype=bool)
    row[width // 2] = True
    return row


# ═══════════════════════════════════════════════════════════════════════
#  Render telemetry
# ═══════════════════════════════════════════════════════════════════════

class RenderStatsLogger:
    """Writes per-tick render telemetry to CSV."""

    HEADER: ClassVar[str] = (
        "tick,time_s,sim_time,rows,cols,glyph_rows,glyph_cols,mode\n"
    )

    def __init__(self, path: Path) -> None:
        self._path = path
        self._fh: IO[str] | None = None
        self._t0: float = time.monotonic()

    def open(self) -> None:
        try:
            self._fh = open(self._path, "w")
            self._fh.write(self.HEADER)
            self._fh.flush()
        except OSError:
            logger.warning("cannot open stats file %s, telemetry disabled", self._path)
            self._fh = None

    def log(self, tick: int, sim_time: float, output: REPLOutput) -> None:
        if self._fh is None or output.last_render is None:
            return
        t = time.monotonic() - self._t0
        rows, cols, glyph_rows, glyph_cols = output.last_render
        self._fh.write(
            f"{tick},{t:.3f},{sim_time},{rows},{cols},{glyph_rows},{glyph_cols},"
            f"{output.display.mode.value}\n"
        )
        if tick % 50 == 0:
            self._fh.flush()

    def close(self) -> None:
        if self._fh is not None:
            try:
                self._fh.close()
            except OSError:
                pass
            self._fh = None


# ═══════════════════════════════════════════════════════════════════════
#  Tick loop
# ═══════════════════════════════════════════════════════════════════════

def run(
    output: REPLOutput,
    step: Step,
    *,
    stats: RenderStatsLogger | None = None,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> int:
    """Step, store and draw every tick of the output's time span.

    The stored initial frame is tick 1. Ticks are paced to the configured
    fps. Returns the number of ticks drawn; the output is always closed.
    """
    interval = 1.0 / output.graphicconfig.fps
    frame = output.frames[-1]
    drawn = 0
    logger.info(
        "run start: %d ticks, shape %s, mode %s, %.1f fps",
        len(output.tspan), output.shape, output.display.mode.value,
        output.graphicconfig.fps,
    )
    try:
        for tick, t in enumerate(output.tspan, start=1):
            if not output.running:
                logger.info("stopped before tick %d", tick)
                break
            t0 = clock()
            if tick > 1:
                frame = step(frame)
                output.store_frame(frame)
            show_frame(frame, output, SimData(current_frame=tick, current_time=t))
            drawn += 1
            if stats is not None:
                stats.log(tick, t, output)

            remaining = interval - (clock() - t0)
            if remaining > 0:
                sleep(remaining)
    finally:
        output.close()
        logger.info("run end: %d ticks drawn", drawn)
    return drawn


# ═══════════════════════════════════════════════════════════════════════
#  CLI
# ═══════════════════════════════════════════════════════════════════════

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Render a toy automaton in the terminal")
    parser.add_argument("--rule", choices=["life", *RULES], default="life",
                        help="Engine to run (default: life)")
    parser.add_argument("--mode", choices=[m.value for m in GlyphMode], default="block",
                        help="Glyph mode (default: block)")
    parser.add_argument("--ticks", type=int, default=1000,
                        help="Number of ticks to run (default: 1000)")
    parser.add_argument("--fps", type=float, default=25.0,
                        help="Target ticks per second (default: 25)")
    parser.add_argument("--cutoff", type=float, default=DEFAULT_CUTOFF,
                        help="Values above this are drawn on (default: 0.5)")
    parser.add_argument("--color", default="white",
                        help="ANSI color name or 0-255 index (default: white)")
    parser.add_argument("--store", action="store_true",
                        help="Keep every frame instead of a bounded ring")
    parser.add_argument("--height", type=int, default=96,
                        help="Grid rows for life (default: 96)")
    parser.add_argument("--width", type=int, default=160,
                        help="Grid columns (default: 160)")
    parser.add_argument("--density", type=float, default=None,
                        help="Initial live fraction (default: 0.3 life, centre cell 1-D)")
    parser.add_argument("--seed", type=int, default=None,
                        help="Random seed")
    parser.add_argument("--stats", type=Path, default=None,
                        help="Write per-tick render telemetry CSV here")
    parser.add_argument("--log-file", type=Path, default=Path(DEFAULT_LOG),
                        help=f"Log file (default: {DEFAULT_LOG})")
    parser.add_argument("--log-level", default="WARNING",
                        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
                        help="Log level (default: WARNING)")
    return parser


def _parse_color(value: str) -> str | int:
    return int(value) if value.isdigit() else value


def cli(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        filename=args.log_file,
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    rng = np.random.default_rng(args.seed)
    step: Step
    if args.rule == "life":
        density = 0.3 if args.density is None else args.density
        init = seed_grid((args.height, args.width), density, rng)
        step = life_step
    else:
        rule = RULES[args.rule]
        init = seed_row(args.width, args.density or 0.0, rng)
        step = lambda row: elementary_step(row, rule)  # noqa: E731

    output = REPLOutput(
        init,
        tspan=TimeSpan(1, args.ticks, 1),
        graphicconfig=GraphicConfig(fps=args.fps, store=args.store),
        display=DisplayConfig.build(color=_parse_color(args.color), mode=args.mode,
                                    cutoff=args.cutoff),
    )

    stats: RenderStatsLogger | None = None
    if args.stats is not None:
        stats = RenderStatsLogger(args.stats)
        stats.open()
    try:
        run(output, step, stats=stats)
    except KeyboardInterrupt:
        pass
    finally:
        if stats is not None:
            stats.close()
    return 0


if __name__ == "__main__":
    raise SystemExit(cli())
