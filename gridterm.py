"""
  gridterm: dense, flicker-free terminal rendering of simulation grids.

  Each tick a frame (a 1-D or 2-D numpy array) is thresholded into on/off
  cells, clipped to the live terminal size, and packed several cells to a
  glyph before being written at a fixed origin with the cursor hidden.

  Two glyph modes:
    block     2x1 cells per glyph   (space, half blocks, full block)
    braille   4x2 cells per glyph   (one U+28xx dot pattern per glyph)

  2-D frames are windowed directly. 1-D frames are drawn as a scrolling
  trail: the most recent frames stacked top to bottom, newest last.
"""

from __future__ import annotations

import logging
import shutil
import sys
from collections import deque
from dataclasses import dataclass
from enum import Enum, IntEnum
from itertools import islice
from typing import IO, Iterator, Protocol, Sequence, Union

import numpy as np
from numpy.typing import ArrayLike, NDArray

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════
#  Errors
# ═══════════════════════════════════════════════════════════════════════

class GridTermError(Exception):
    """Base class for renderer errors."""


class GlyphModeError(GridTermError, ValueError):
    """Unknown glyph mode passed to the configuration."""


class ColorError(GridTermError, ValueError):
    """Color specifier that cannot be turned into an SGR sequence."""


class FrameShapeError(GridTermError, ValueError):
    """Frame of an unsupported rank, or of a different shape than the run's."""


class StorageFullError(GridTermError):
    """More frames stored than the time span has ticks."""


class BlockShapeError(GridTermError, AssertionError):
    """Rasterizer input is not a whole number of glyph blocks."""


# ═══════════════════════════════════════════════════════════════════════
#  Constants
# ═══════════════════════════════════════════════════════════════════════

# ── Terminal control sequences ──────────────────────────────────────────
SAVE_POS = "\x1b[s"
RESTORE_POS = "\x1b[u"
HIDE_CURSOR = "\x1b[?25l"
SHOW_CURSOR = "\x1b[?25h"
CLEAR_SCREEN = "\x1bc"
RESET_COLOR = "\x1b[0m"

# ── Block glyphs, indexed by top | bottom << 1 ──────────────────────────
EMPTY = " "
UPPER_HALF = "\u2580"  # ▀  top cell on
LOWER_HALF = "\u2584"  # ▄  bottom cell on
FULL_BLOCK = "\u2588"  # █  both on
BLOCK_GLYPHS: tuple[str, str, str, str] = (EMPTY, UPPER_HALF, LOWER_HALF, FULL_BLOCK)

# ── Braille ─────────────────────────────────────────────────────────────
# Dot (row, col) inside the 4x2 block for each bit offset 0-7:
#   1 4        bits 0 3
#   2 5             1 4
#   3 6             2 5
#   7 8             6 7
BRAILLE_BASE = 0x2800
BRAILLE_DOTS: tuple[tuple[int, int], ...] = (
    (0, 0), (1, 0), (2, 0),
    (0, 1), (1, 1), (2, 1),
    (3, 0), (3, 1),
)

# Sub-cells per glyph: braille dots are half the height and width of blocks
YBRAILLE = 4
XBRAILLE = 2
YBLOCK = 2
XBLOCK = 1

DEFAULT_CUTOFF = 0.5
DEFAULT_FPS = 25.0
DEFAULT_HISTORY = 512
FALLBACK_SIZE = (80, 24)  # columns, lines

# ── Colors ──────────────────────────────────────────────────────────────
ANSI_COLORS: dict[str, int] = {
    "black": 30, "red": 31, "green": 32, "yellow": 33,
    "blue": 34, "magenta": 35, "cyan": 36, "white": 37,
    "default": 39,
    "dark_gray": 90, "light_red": 91, "light_green": 92, "light_yellow": 93,
    "light_blue": 94, "light_magenta": 95, "light_cyan": 96, "light_white": 97,
}

Color = Union[str, int, tuple[int, int, int]]
Position = tuple[int, int]


# ═══════════════════════════════════════════════════════════════════════
#  Glyph modes
# ═══════════════════════════════════════════════════════════════════════

class GlyphMode(Enum):
    """How many cells one glyph packs, and which glyph family draws them."""

    BLOCK = "block"
    BRAILLE = "braille"

    @classmethod
    def parse(cls, value: GlyphMode | str) -> GlyphMode:
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            key = value.strip().lower()
            key = _MODE_ALIASES.get(key, key)
            for mode in cls:
                if mode.value == key:
                    return mode
        raise GlyphModeError(f"unsupported glyph mode: {value!r}")


_MODE_ALIASES: dict[str, str] = {"coarse": "block", "fine": "braille", "braile": "braille"}

_CHARTYPES: dict[GlyphMode, tuple[int, int, str]] = {
    GlyphMode.BLOCK: (YBLOCK, XBLOCK, "block"),
    GlyphMode.BRAILLE: (YBRAILLE, XBRAILLE, "braille"),
}


def chartype(mode: GlyphMode) -> tuple[int, int, str]:
    """(vertical sub-cells, horizontal sub-cells, glyph family) for a mode."""
    return _CHARTYPES[mode]


class FrameRank(IntEnum):
    LINE = 1
    PLANE = 2


def frame_rank(frame: NDArray) -> FrameRank:
    try:
        return FrameRank(frame.ndim)
    except ValueError:
        raise FrameShapeError(
            f"frames must be 1-D or 2-D, got shape {frame.shape}"
        ) from None


# ═══════════════════════════════════════════════════════════════════════
#  Threshold
# ═══════════════════════════════════════════════════════════════════════

def is_on(value: float, cutoff: float = DEFAULT_CUTOFF) -> bool:
    """True if value is strictly above cutoff. NaN is always off."""
    return bool(value > cutoff)


def threshold(frame: ArrayLike, cutoff: float = DEFAULT_CUTOFF) -> NDArray[np.bool_]:
    """Vectorized is_on over a whole array."""
    with np.errstate(invalid="ignore"):
        return np.asarray(frame) > cutoff


# ═══════════════════════════════════════════════════════════════════════
#  Rasterizer
# ═══════════════════════════════════════════════════════════════════════

def _check_blocks(cells: NDArray[np.bool_], ystep: int, xstep: int) -> None:
    if cells.ndim != 2 or cells.shape[0] % ystep or cells.shape[1] % xstep:
        raise BlockShapeError(
            f"cells of shape {cells.shape} do not tile into {ystep}x{xstep} blocks"
        )


def pad_to_blocks(cells: NDArray[np.bool_], ystep: int, xstep: int) -> NDArray[np.bool_]:
    """Pad the bottom and right edges with off cells up to whole blocks."""
    pad_y = -cells.shape[0] % ystep
    pad_x = -cells.shape[1] % xstep
    if pad_y or pad_x:
        cells = np.pad(cells, ((0, pad_y), (0, pad_x)), constant_values=False)
    return cells


def block_encode(top: bool, bottom: bool) -> str:
    return BLOCK_GLYPHS[int(bool(top)) | int(bool(bottom)) << 1]


def block_decode(glyph: str) -> tuple[bool, bool]:
    """Inverse of block_encode: (top, bottom)."""
    try:
        idx = BLOCK_GLYPHS.index(glyph)
    except ValueError:
        raise ValueError(f"not a block glyph: {glyph!r}") from None
    return bool(idx & 1), bool(idx & 2)


def braille_encode(block: ArrayLike) -> int:
    """Code point for a 4x2 block of booleans."""
    cells = np.asarray(block, dtype=bool)
    if cells.shape != (YBRAILLE, XBRAILLE):
        raise BlockShapeError(f"braille block must be 4x2, got {cells.shape}")
    mask = 0
    for bit, (r, c) in enumerate(BRAILLE_DOTS):
        if cells[r, c]:
            mask |= 1 << bit
    return BRAILLE_BASE + mask


def braille_decode(glyph: int | str) -> NDArray[np.bool_]:
    """Inverse of braille_encode: the 4x2 block a braille glyph shows."""
    code = ord(glyph) if isinstance(glyph, str) else int(glyph)
    mask = code - BRAILLE_BASE
    if not 0 <= mask <= 0xFF:
        raise ValueError(f"U+{code:04X} is not in the braille block")
    cells = np.zeros((YBRAILLE, XBRAILLE), dtype=bool)
    for bit, (r, c) in enumerate(BRAILLE_DOTS):
        cells[r, c] = bool(mask >> bit & 1)
    return cells


def block_codes(cells: NDArray[np.bool_]) -> NDArray[np.intp]:
    """Index into BLOCK_GLYPHS for every 2x1 block."""
    _check_blocks(cells, YBLOCK, XBLOCK)
    top = cells[0::2].astype(np.intp)      # even rows → top half
    bottom = cells[1::2].astype(np.intp)   # odd rows  → bottom half
    return top | bottom << 1


def braille_codes(cells: NDArray[np.bool_]) -> NDArray[np.intp]:
    """Code point for every 4x2 block."""
    _check_blocks(cells, YBRAILLE, XBRAILLE)
    masks = np.zeros((cells.shape[0] // YBRAILLE, cells.shape[1] // XBRAILLE), dtype=np.intp)
    for bit, (r, c) in enumerate(BRAILLE_DOTS):
        masks |= cells[r::YBRAILLE, c::XBRAILLE].astype(np.intp) << bit
    return BRAILLE_BASE + masks


def rasterize(cells: ArrayLike, mode: GlyphMode) -> str:
    """Pack a boolean matrix into glyph rows joined by newlines."""
    cells = np.asarray(cells, dtype=bool)
    if mode is GlyphMode.BLOCK:
        codes = block_codes(cells)
        if codes.size == 0:
            return ""
        lines = ["".join([BLOCK_GLYPHS[i] for i in row]) for row in codes.tolist()]
    elif mode is GlyphMode.BRAILLE:
        codes = braille_codes(cells)
        if codes.size == 0:
            return ""
        lines = ["".join(map(chr, row)) for row in codes.tolist()]
    else:
        raise GlyphModeError(f"unsupported glyph mode: {mode!r}")
    return "\n".join(lines)


# ═══════════════════════════════════════════════════════════════════════
#  Viewport
# ═══════════════════════════════════════════════════════════════════════

def window_2d(
    shape: tuple[int, int],
    term_size: tuple[int, int],
    mode: GlyphMode,
    offset: Position = (0, 0),
) -> tuple[slice, slice]:
    """Row and column slices of a 2-D frame visible on the terminal.

    The last terminal row and column are kept free. Offsets are in glyphs
    and clip against the frame edges; an empty window is a valid result.
    """
    ystep, xstep, _ = chartype(mode)
    rows, cols = term_size
    height, width = shape
    yoff, xoff = max(0, offset[0]), max(0, offset[1])

    y0 = min(height, ystep * yoff)
    y1 = max(y0, min(height, ystep * (rows - 1 + yoff)))
    x0 = min(width, xstep * xoff)
    x1 = max(x0, min(width, xstep * (cols - 1 + xoff)))
    return slice(y0, y1), slice(x0, x1)


def trail_length(tick: int, term_rows: int, mode: GlyphMode) -> int:
    """How many past 1-D frames fit on screen at this tick."""
    ystep, _, _ = chartype(mode)
    disprows = (max(term_rows, 1) - 1) * ystep + 1
    return max(0, min(tick, disprows))


def trail_1d(
    frames: Sequence[NDArray],
    tick: int,
    term_size: tuple[int, int],
    mode: GlyphMode,
) -> NDArray:
    """Stack the most recent 1-D frames into a time-by-position matrix.

    Row 0 is the oldest visible tick, the last row the newest. Columns are
    clipped to the terminal width like the 2-D case.
    """
    _, xstep, _ = chartype(mode)
    rows, cols = term_size
    k = min(trail_length(tick, rows, mode), len(frames))
    if k == 0:
        width = len(frames[-1]) if len(frames) else 0
        return np.zeros((0, width), dtype=bool)
    recent = list(islice(frames, len(frames) - k, None))
    trail = np.stack(recent, axis=1).T
    return trail[:, : max(0, xstep * (cols - 1))]


def replframe(
    output: REPLOutput,
    frame: ArrayLike,
    tick: int,
    term_size: tuple[int, int],
) -> str:
    """Glyph string for one tick: window, threshold, pad, pack."""
    display = output.display
    ystep, xstep, _ = chartype(display.mode)
    frame = np.asarray(frame)

    rank = frame_rank(frame)
    if rank is FrameRank.LINE:
        window = trail_1d(output.frames, tick, term_size, display.mode)
    elif rank is FrameRank.PLANE:
        ys, xs = window_2d(frame.shape, term_size, display.mode, display.offset)
        window = frame[ys, xs]
    else:
        raise FrameShapeError(f"unsupported frame rank {rank!r}")

    # Slice first, then threshold only what is visible
    cells = pad_to_blocks(threshold(window, display.cutoff), ystep, xstep)
    logger.debug("tick %d window %s → cells %s", tick, window.shape, cells.shape)
    return rasterize(cells, display.mode)


# ═══════════════════════════════════════════════════════════════════════
#  Terminal control
# ═══════════════════════════════════════════════════════════════════════

class Terminal:
    """Output handle: the stream glyphs go to and how big it is.

    A fixed size can be given for headless use; otherwise the size is
    read from the environment on every call so resizes are picked up.
    """

    def __init__(
        self, stream: IO[str] | None = None, size: tuple[int, int] | None = None
    ) -> None:
        self.stream: IO[str] = stream if stream is not None else sys.stdout
        self._size = size

    def size(self) -> tuple[int, int]:
        """(rows, cols), never smaller than 1x1."""
        if self._size is not None:
            rows, cols = self._size
        else:
            cols, rows = shutil.get_terminal_size(fallback=FALLBACK_SIZE)
        return max(1, rows), max(1, cols)

    def write(self, text: str) -> None:
        self.stream.write(text)
        self.stream.flush()


def savepos() -> str:
    return SAVE_POS


def restorepos() -> str:
    return RESTORE_POS


def cursor_hide() -> str:
    return HIDE_CURSOR


def cursor_show() -> str:
    return SHOW_CURSOR


def clear_screen() -> str:
    return CLEAR_SCREEN


def movepos(pos: Position = (0, 0)) -> str:
    """Cursor move to (col, row)."""
    col, row = pos
    return f"\x1b[{row};{col}H"


def foreground(color: Color) -> str:
    """SGR sequence setting the foreground color.

    Accepts an ANSI color name, a 256-color index, or an (r, g, b) tuple.
    """
    if isinstance(color, str):
        code = ANSI_COLORS.get(color.strip().lower())
        if code is None:
            raise ColorError(f"unknown color name: {color!r}")
        return f"\x1b[{code}m"
    if isinstance(color, (int, np.integer)) and not isinstance(color, bool):
        if 0 <= color <= 255:
            return f"\x1b[38;5;{int(color)}m"
    elif isinstance(color, tuple) and len(color) == 3:
        if all(isinstance(v, (int, np.integer)) and 0 <= v <= 255 for v in color):
            r, g, b = (int(v) for v in color)
            return f"\x1b[38;2;{r};{g};{b}m"
    raise ColorError(f"invalid color: {color!r}")


def print_to_repl(term: Terminal, pos: Position, color: Color, text: str) -> None:
    """Write text at pos without the cursor ever showing in between.

    save → hide → move → color → text → show → restore, in one write.
    Each line after the first gets its own move so the block stays aligned
    under pos instead of following a bare newline back to column 1.
    """
    col, row = pos
    first, *rest = text.split("\n")
    body = [movepos(pos), foreground(color), first]
    # Rows 0 and 1 both address the top line
    for i, line in enumerate(rest, start=1):
        body.append(movepos((col, max(row, 1) + i)))
        body.append(line)
    term.write("".join((savepos(), cursor_hide(), *body, cursor_show(), restorepos())))


def usable_size(term_size: tuple[int, int], origin: Position) -> tuple[int, int]:
    """Rows and columns left below and right of origin, at least 1x1."""
    rows, cols = term_size
    col, row = origin
    return max(1, rows - max(row, 1) + 1), max(1, cols - max(col, 1) + 1)


# ═══════════════════════════════════════════════════════════════════════
#  Configuration
# ═══════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class GraphicConfig:
    """Display-independent knobs: pacing and frame retention."""

    fps: float = DEFAULT_FPS
    store: bool = False          # keep every frame of the time span
    history: int = DEFAULT_HISTORY  # minimum ring size when not storing everything

    def __post_init__(self) -> None:
        if not self.fps > 0:
            raise ValueError(f"fps must be positive, got {self.fps!r}")
        if self.history < 1:
            raise ValueError(f"history must be at least 1, got {self.history!r}")


@dataclass(frozen=True)
class DisplayConfig:
    """What the renderer draws with. Built once per run, never copied."""

    color: Color = "white"
    mode: GlyphMode = GlyphMode.BLOCK
    cutoff: float = DEFAULT_CUTOFF
    offset: Position = (0, 0)      # first visible glyph (row, col) of a 2-D frame
    origin: Position = (0, 0)      # (col, row) the grid is written at
    label_pos: Position = (0, 0)   # (col, row) of the time label

    def __post_init__(self) -> None:
        object.__setattr__(self, "mode", GlyphMode.parse(self.mode))
        foreground(self.color)  # validates

    @classmethod
    def build(
        cls,
        color: Color = "white",
        mode: GlyphMode | str = GlyphMode.BLOCK,
        cutoff: float = DEFAULT_CUTOFF,
        **kw: Position,
    ) -> DisplayConfig:
        return cls(color=color, mode=GlyphMode.parse(mode), cutoff=cutoff, **kw)


@dataclass(frozen=True)
class TimeSpan:
    """Simulated time covered by a run: start, stop (inclusive) and step."""

    start: float = 1
    stop: float = 1
    step: float = 1

    def __post_init__(self) -> None:
        if not self.step > 0:
            raise ValueError(f"step must be positive, got {self.step!r}")

    @classmethod
    def coerce(cls, value: TimeSpan | range | tuple) -> TimeSpan:
        if isinstance(value, TimeSpan):
            return value
        if isinstance(value, range):
            if len(value) == 0:
                raise ValueError("time span is empty")
            return cls(value.start, value[-1], value.step)
        return cls(*value)

    def __len__(self) -> int:
        if self.stop < self.start:
            return 0
        return int((self.stop - self.start) / self.step + 1e-9) + 1

    def time_at(self, tick: int) -> float:
        """Simulated time of a 1-based tick."""
        return self.start + (tick - 1) * self.step

    def __iter__(self) -> Iterator[float]:
        for tick in range(1, len(self) + 1):
            yield self.time_at(tick)


class SimDataLike(Protocol):
    @property
    def current_frame(self) -> int: ...

    @property
    def current_time(self) -> float: ...


@dataclass(frozen=True)
class SimData:
    """Minimal simulation handle: which tick this is and its time."""

    current_frame: int
    current_time: float


# ═══════════════════════════════════════════════════════════════════════
#  Output state
# ═══════════════════════════════════════════════════════════════════════

class REPLOutput:
    """
    Output that draws frames straight onto the terminal.

    Keeps the frames it needs: every frame of the time span when
    ``graphicconfig.store`` is set, otherwise a bounded ring that still
    covers the 1-D trail. Stored frames are read-only copies and must all
    share the shape of the initial frame.
    """

    def __init__(
        self,
        init: ArrayLike,
        *,
        tspan: TimeSpan | range | tuple,
        graphicconfig: GraphicConfig | None = None,
        display: DisplayConfig | None = None,
        running: bool = True,
        terminal: Terminal | None = None,
        color: Color = "white",
        cutoff: float = DEFAULT_CUTOFF,
        style: GlyphMode | str = GlyphMode.BLOCK,
        fps: float = DEFAULT_FPS,
        store: bool = False,
    ) -> None:
        self.tspan: TimeSpan = TimeSpan.coerce(tspan)
        self.graphicconfig: GraphicConfig = (
            graphicconfig if graphicconfig is not None
            else GraphicConfig(fps=fps, store=store)
        )
        self.display: DisplayConfig = (
            display if display is not None
            else DisplayConfig.build(color=color, mode=style, cutoff=cutoff)
        )
        self.terminal: Terminal = terminal if terminal is not None else Terminal()
        self.running: bool = running

        first = np.asarray(init)
        frame_rank(first)
        self._shape: tuple[int, ...] = first.shape
        self._capacity: int | None
        self.frames: list[NDArray] | deque[NDArray]
        if self.graphicconfig.store:
            self._capacity = len(self.tspan)
            self.frames = []
        else:
            self._capacity = None
            self.frames = deque(maxlen=self.graphicconfig.history)
        self.frames_stored: int = 0
        self.last_render: tuple[int, int, int, int] | None = None
        self.store_frame(first)

    @property
    def shape(self) -> tuple[int, ...]:
        return self._shape

    def store_frame(self, frame: ArrayLike) -> None:
        """Append a frame. It is copied and frozen."""
        frame = np.array(frame, copy=True)
        if frame.shape != self._shape:
            raise FrameShapeError(
                f"frame shape {frame.shape} differs from run shape {self._shape}"
            )
        if self._capacity is not None and len(self.frames) >= self._capacity:
            raise StorageFullError(
                f"time span holds {self._capacity} frames; cannot store more"
            )
        frame.setflags(write=False)
        self._fit_ring()
        self.frames.append(frame)
        self.frames_stored += 1

    def _fit_ring(self) -> None:
        """Grow the ring so a 1-D trail can fill the terminal's full height."""
        if self._capacity is not None or len(self._shape) != 1:
            return
        rows, _ = self.terminal.size()
        needed = trail_length(sys.maxsize, rows, self.display.mode)
        if needed > self.frames.maxlen:
            logger.debug("growing frame ring %d → %d", self.frames.maxlen, needed)
            self.frames = deque(self.frames, maxlen=needed)

    def stop(self) -> None:
        self.running = False

    def close(self) -> None:
        """Release stored frames and hand the cursor back."""
        self.running = False
        self.frames.clear()
        self.terminal.write(RESET_COLOR + SHOW_CURSOR)


# ═══════════════════════════════════════════════════════════════════════
#  Render driver
# ═══════════════════════════════════════════════════════════════════════

def show_frame(frame: ArrayLike, output: REPLOutput, data: SimDataLike) -> None:
    """Draw one tick: clear on the first, then grid, then the time label."""
    tick = data.current_frame
    term = output.terminal
    display = output.display

    if tick == 1:
        logger.debug("first tick, clearing terminal")
        term.write(clear_screen())

    rows, cols = term.size()
    text = replframe(output, frame, tick, usable_size((rows, cols), display.origin))
    print_to_repl(term, display.origin, display.color, text)
    print_to_repl(term, display.label_pos, display.color, f"Time {data.current_time}")

    glyph_rows = text.count("\n") + 1 if text else 0
    glyph_cols = text.find("\n") if "\n" in text else len(text)
    output.last_render = (rows, cols, glyph_rows, glyph_cols)
