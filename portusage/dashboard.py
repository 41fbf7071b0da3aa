"""Live dashboard for a single process.

``render`` is pure: it turns one sample, its history and the terminal width
into a list of ``DrawOp``s and keeps nothing between calls, so a resize
shows up on the very next frame. ``paint`` is the only part that touches
curses.
"""

from __future__ import annotations

import curses
import math
import time
from dataclasses import dataclass
from typing import Any

from portusage.config import DEFAULT_CONFIG
from portusage.history import MetricHistory
from portusage.sampler import ProcessSample, SystemSnapshot

# ── Constants ──────────────────────────────────────────────────────────────

SPARK = "▁▂▃▄▅▆▇█"
BAR_FILL = "█"
BAR_EMPTY = "░"

MIN_WIDTH = 60
CPU_TARGET_MAX = 100.0
MEMORY_HEADROOM = 1.2
MEMORY_FLOOR_MB = 100.0

LABEL_X = 1
BAR_X = 10

# Curses colour-pair IDs
C_NORMAL = 1
C_WARNING = 2
C_CRITICAL = 3
C_TITLE = 4
C_DIM = 5
C_BLUE = 6


class RenderError(Exception):
    """The terminal refused a frame; there is no recovering mid-frame."""


# ── Colour helpers ─────────────────────────────────────────────────────────


def init_colors() -> None:
    """Register colour pairs. Raises curses.error on terminals without colour."""
    curses.start_color()
    curses.use_default_colors()
    curses.init_pair(C_NORMAL, curses.COLOR_GREEN, -1)
    curses.init_pair(C_WARNING, curses.COLOR_YELLOW, -1)
    curses.init_pair(C_CRITICAL, curses.COLOR_RED, -1)
    curses.init_pair(C_TITLE, curses.COLOR_CYAN, -1)
    curses.init_pair(C_DIM, curses.COLOR_WHITE, -1)
    curses.init_pair(C_BLUE, curses.COLOR_BLUE, -1)


def _band_color(value: float, levels: dict[str, Any], base: int = C_NORMAL) -> int:
    if value > float(levels["critical"]):
        return C_CRITICAL
    if value > float(levels["warning"]):
        return C_WARNING
    return base


def cpu_color(value: float, thresholds: dict[str, Any] | None = None) -> int:
    thresholds = thresholds or DEFAULT_CONFIG["thresholds"]
    return _band_color(value, thresholds["cpu_percent"])


def memory_color(
    value: float, thresholds: dict[str, Any] | None = None, base: int = C_NORMAL
) -> int:
    thresholds = thresholds or DEFAULT_CONFIG["thresholds"]
    return _band_color(value, thresholds["memory_mb"], base)


# ── Layout ─────────────────────────────────────────────────────────────────


def _clamp(value: int, low: int, high: int) -> int:
    return max(low, min(value, high))


def _round(x: float) -> int:
    """Round half away from zero; ``round()`` would round 2.5 to 2."""
    return int(math.floor(x + 0.5)) if x >= 0 else -int(math.floor(-x + 0.5))


@dataclass(frozen=True)
class TerminalFrame:
    """Layout sizes for one frame, derived from the live terminal width."""

    width: int
    bar_width: int
    sparkline_width: int

    @classmethod
    def from_width(cls, terminal_width: int) -> TerminalFrame:
        width = max(terminal_width, MIN_WIDTH)
        return cls(
            width=width,
            bar_width=_clamp(width - 30, 20, 80),
            sparkline_width=_clamp(width - 20, 20, 100),
        )


def center(text: str, width: int) -> str:
    """Truncate ``text`` to ``width`` and pad it; an odd leftover space goes right."""
    text = text[:width]
    padding = width - len(text)
    left = padding // 2
    return " " * left + text + " " * (padding - left)


def bar_fill(value: float, target_max: float, width: int) -> int:
    """Number of filled cells for ``value`` on a bar of ``width`` cells."""
    filled = _round(value / max(target_max, 0.1) * width)
    return _clamp(filled, 0, width)


def memory_ceiling(peak_seen: float, current: float) -> float:
    """Memory bar maximum: 20% above the highest value seen, never below 100 MB."""
    return max(max(peak_seen, current) * MEMORY_HEADROOM, MEMORY_FLOOR_MB)


def _sparkline_points(values: list[float], width: int) -> list[float]:
    if width < 1:
        return []
    stride = max(len(values) // width, 1)
    return values[::stride][-width:]


def sparkline(values: list[float], width: int) -> str:
    """Map the most recent values onto the eight SPARK glyphs."""
    if not values:
        return ""
    peak = max(max(values), 1.0)
    chars = []
    for v in _sparkline_points(values, width):
        normalized = min(v / peak, 1.0)
        chars.append(SPARK[_clamp(_round(normalized * 7), 0, len(SPARK) - 1)])
    return "".join(chars)


# ── Draw instructions ──────────────────────────────────────────────────────


@dataclass(frozen=True)
class DrawOp:
    """Write ``text`` at row ``y``, column ``x`` in colour pair ``color``."""

    y: int
    x: int
    text: str
    color: int = C_DIM
    bold: bool = False
    reverse: bool = False


def _bar_ops(
    y: int,
    label: str,
    value: float,
    target_max: float,
    width: int,
    color: int,
    suffix: str,
) -> list[DrawOp]:
    filled = bar_fill(value, target_max, width)
    ops = [DrawOp(y, LABEL_X, f"{label:<8s}", C_DIM)]
    if filled:
        ops.append(DrawOp(y, BAR_X, BAR_FILL * filled, color, bold=True))
    if width - filled:
        ops.append(DrawOp(y, BAR_X + filled, BAR_EMPTY * (width - filled), C_DIM))
    ops.append(DrawOp(y, BAR_X + width, suffix, color, bold=True))
    return ops


def _sparkline_ops(
    y: int, x: int, values: list[float], width: int, colors: list[int]
) -> list[DrawOp]:
    """Spark glyphs grouped into runs of equal colour."""
    glyphs = sparkline(values, width)
    ops: list[DrawOp] = []
    start = 0
    for i in range(1, len(glyphs) + 1):
        if i == len(glyphs) or colors[i] != colors[start]:
            ops.append(DrawOp(y, x + start, glyphs[start:i], colors[start]))
            start = i
    return ops


def _system_line(system: SystemSnapshot) -> str:
    return (
        f"Host CPU {system.global_cpu_percent:.1f}%  "
        f"Load {system.load_avg_1:.2f} {system.load_avg_5:.2f} {system.load_avg_15:.2f}  "
        f"Mem {system.free_memory_gb:.1f}/{system.total_memory_gb:.1f} GB free  "
        f"Swap {system.free_swap_gb:.1f}/{system.total_swap_gb:.1f} GB free  "
        f"{system.cpu_count} cores  {system.process_count} procs"
    )


def render(
    sample: ProcessSample,
    history: MetricHistory,
    port: int,
    iteration: int,
    terminal_width: int,
    *,
    system: SystemSnapshot | None = None,
    thresholds: dict[str, Any] | None = None,
    annotation: str | None = None,
) -> list[DrawOp]:
    """Lay out one dashboard frame.

    Args:
        sample: The newest process reading.
        history: Buffers that already include ``sample``.
        port: Port being watched, for the banner.
        iteration: 1-based sample counter.
        terminal_width: Current terminal columns; may be 0 if unknown.
        system: Optional host context shown under the sparklines.
        thresholds: Colour bands, defaults to the built-in ones.
        annotation: Latest insight text, if any.
    """
    thresholds = thresholds or DEFAULT_CONFIG["thresholds"]
    frame = TerminalFrame.from_width(terminal_width)
    w = frame.width
    ops: list[DrawOp] = []

    title = f"port-usage | port {port} | {sample.name} (PID {sample.pid})"
    ops.append(DrawOp(0, 0, center(title, w), C_TITLE, bold=True, reverse=True))

    stamp = time.strftime("%H:%M:%S", time.localtime(sample.timestamp))
    ops.append(DrawOp(2, LABEL_X, f"Sample #{iteration}  {stamp}", C_DIM))

    cpu = sample.cpu_percent
    cpu_suffix = f" {cpu:5.1f}% ({sample.cpu_cores:.2f} cores)"
    ops += _bar_ops(
        4, "CPU", cpu, CPU_TARGET_MAX, frame.bar_width, cpu_color(cpu, thresholds), cpu_suffix
    )

    mem = sample.memory_mb
    ceiling = memory_ceiling(history.memory.session_peak, mem)
    ops += _bar_ops(
        5, "Memory", mem, ceiling, frame.bar_width, memory_color(mem, thresholds), f" {mem:.1f} MB"
    )

    spark_w = frame.sparkline_width
    cpu_values = history.cpu.snapshot()
    cpu_stats = f"avg {history.cpu.average():5.1f}%  peak {history.cpu.peak():5.1f}%"
    ops.append(DrawOp(7, LABEL_X, f"CPU history     {cpu_stats}", C_DIM))
    colors = [cpu_color(v, thresholds) for v in _sparkline_points(cpu_values, spark_w)]
    ops += _sparkline_ops(8, LABEL_X + 1, cpu_values, spark_w, colors)

    mem_values = history.memory.snapshot()
    mem_stats = f"avg {history.memory.average():.1f} MB  peak {history.memory.peak():.1f} MB"
    ops.append(DrawOp(10, LABEL_X, f"Memory history  {mem_stats}", C_DIM))
    colors = [memory_color(v, thresholds, C_BLUE) for v in _sparkline_points(mem_values, spark_w)]
    ops += _sparkline_ops(11, LABEL_X + 1, mem_values, spark_w, colors)

    row = 13
    if system is not None:
        ops.append(DrawOp(row, LABEL_X, _system_line(system)[: w - 2], C_DIM))
        row += 1
    if annotation:
        ops.append(DrawOp(row, LABEL_X, annotation[: w - 2], C_TITLE))
        row += 1

    ops.append(DrawOp(row + 1, LABEL_X, "q/c/Esc: quit", C_DIM))
    return ops


# ── Curses painter ─────────────────────────────────────────────────────────


def _safe(win: curses.window, *args: Any) -> None:
    """addstr wrapper that swallows out-of-bounds errors."""
    try:
        win.addstr(*args)
    except curses.error:
        pass


def paint(win: curses.window, ops: list[DrawOp]) -> None:
    """Draw ``ops`` onto ``win`` in one flicker-free refresh.

    Ops that fall outside a small terminal are clipped. A failed refresh
    raises ``RenderError``.
    """
    max_y, max_x = win.getmaxyx()
    win.erase()
    for op in ops:
        if op.y >= max_y or op.x >= max_x:
            continue
        attr = curses.color_pair(op.color)
        if op.bold:
            attr |= curses.A_BOLD
        if op.reverse:
            attr |= curses.A_REVERSE
        _safe(win, op.y, op.x, op.text[: max_x - op.x], attr)
    try:
        win.refresh()
    except curses.error as e:
        raise RenderError(f"terminal refresh failed: {e}") from e
