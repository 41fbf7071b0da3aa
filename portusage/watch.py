"""Watch mode: sample, render, wait, repeat.

The loop is single-threaded and cooperative. Its states are::

    SAMPLING → RENDERING → WAITING → SAMPLING | TERMINATED

The wait is cut into ``poll_slice`` getch timeouts so a quit key ends the
loop within one slice and a resize redraws immediately without taking a
new sample. ``terminal_session`` owns the curses terminal modes and puts
them back on every exit path.
"""

from __future__ import annotations

import curses
import threading
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from enum import Enum
from queue import Empty, Queue
from typing import Any

from portusage.dashboard import DrawOp, init_colors, paint, render
from portusage.history import DEFAULT_CAPACITY, MetricHistory
from portusage.insight import InsightError
from portusage.sampler import ProcessSample, SampleError, Sampler, SystemSnapshot

QUIT_KEYS = frozenset({ord("q"), ord("Q"), ord("c"), ord("C"), 27})  # 27 = Esc

Painter = Callable[[Any, list[DrawOp]], None]
InsightFn = Callable[[ProcessSample, SystemSnapshot | None, int], str]


class LoopState(Enum):
    """States of the watch loop."""

    SAMPLING = "sampling"
    RENDERING = "rendering"
    WAITING = "waiting"
    TERMINATED = "terminated"


@contextmanager
def terminal_session() -> Iterator[curses.window]:
    """Put the terminal in cbreak/no-echo mode for the duration of the block."""
    stdscr = curses.initscr()
    try:
        curses.noecho()
        curses.cbreak()
        stdscr.keypad(True)
        try:
            init_colors()
        except curses.error:
            pass  # monochrome terminal
        try:
            curses.curs_set(0)
        except curses.error:
            pass
        yield stdscr
    finally:
        stdscr.keypad(False)
        curses.nocbreak()
        curses.echo()
        try:
            curses.curs_set(1)
        except curses.error:
            pass
        curses.endwin()


class WatchLoop:
    """Drives repeated sampling and rendering of one PID.

    The loop is the only writer of ``history``. Sampling errors end the
    loop and are kept on ``error``; render errors propagate.
    """

    def __init__(
        self,
        pid: int,
        port: int,
        sampler: Sampler,
        *,
        interval: float = 1.0,
        poll_slice: float = 0.1,
        history_size: int = DEFAULT_CAPACITY,
        thresholds: dict[str, Any] | None = None,
        insight: InsightFn | None = None,
        painter: Painter = paint,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.pid = pid
        self.port = port
        self.interval = interval
        self.poll_slice = poll_slice
        self.thresholds = thresholds
        self.history = MetricHistory(history_size)
        self.state = LoopState.SAMPLING
        self.iteration = 0
        self.error: SampleError | None = None
        self.annotation: str | None = None
        self._sampler = sampler
        self._insight = insight
        self._painter = painter
        self._clock = clock
        self._sample: ProcessSample | None = None
        self._system: SystemSnapshot | None = None
        self._insight_results: Queue[str] = Queue()
        self._insight_busy = False

    def run(self, screen: Any) -> None:
        """Run until the user quits or sampling fails."""
        while self.state is not LoopState.TERMINATED:
            if self.state is LoopState.SAMPLING:
                self.state = self._take_sample()
            elif self.state is LoopState.RENDERING:
                self.history.add(self._sample)
                self._draw(screen)
                self._start_insight()
                self.state = LoopState.WAITING
            else:
                self.state = self._wait(screen)

    def _take_sample(self) -> LoopState:
        try:
            self._sample = self._sampler.sample(self.pid)
        except SampleError as e:
            self.error = e
            return LoopState.TERMINATED
        self._system = self._sampler.system()
        self.iteration += 1
        return LoopState.RENDERING

    def _draw(self, screen: Any) -> None:
        _, width = screen.getmaxyx()
        ops = render(
            self._sample,
            self.history,
            self.port,
            self.iteration,
            width,
            system=self._system,
            thresholds=self.thresholds,
            annotation=self.annotation,
        )
        self._painter(screen, ops)

    def _wait(self, screen: Any) -> LoopState:
        deadline = self._clock() + self.interval
        screen.timeout(max(1, int(self.poll_slice * 1000)))
        while self._clock() < deadline:
            key = screen.getch()
            if key in QUIT_KEYS:
                return LoopState.TERMINATED
            if key == curses.KEY_RESIZE:
                screen.clear()
                self._draw(screen)
            if self._drain_insight():
                self._draw(screen)
        return LoopState.SAMPLING

    # ── Insight worker ──────────────────────────────────────────────────

    def _start_insight(self) -> None:
        if self._insight is None or self._insight_busy:
            return
        self._insight_busy = True
        threading.Thread(
            target=self._insight_worker,
            args=(self._sample, self._system),
            daemon=True,
            name="InsightWorker",
        ).start()

    def _insight_worker(self, sample: ProcessSample, system: SystemSnapshot | None) -> None:
        text = "insight unavailable"
        try:
            text = self._insight(sample, system, self.port)
        except InsightError as e:
            text = f"insight unavailable: {e}"
        finally:
            # always post, or _insight_busy would never clear
            self._insight_results.put(" ".join(text.split()))

    def _drain_insight(self) -> bool:
        """Take the newest finished annotation, if any. True if it changed."""
        latest = None
        while True:
            try:
                latest = self._insight_results.get_nowait()
            except Empty:
                break
        if latest is None:
            return False
        self._insight_busy = False
        self.annotation = latest
        return True


def run_watch(loop: WatchLoop) -> None:
    """Run ``loop`` inside a curses session; the terminal is restored however it ends."""
    with terminal_session() as stdscr:
        loop.run(stdscr)
