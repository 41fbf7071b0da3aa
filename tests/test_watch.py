"""Tests for the watch loop and terminal session handling."""

from __future__ import annotations

import curses
import itertools
from typing import Any
from unittest.mock import MagicMock, patch

import pytest

from portusage.dashboard import DrawOp, RenderError
from portusage.insight import InsightError
from portusage.resolver import resolve
from portusage.sampler import ProcessGoneError, ProcessSample, SamplePermissionError
from portusage.watch import LoopState, WatchLoop, run_watch


def _sample(cpu: float = 10.0, mem: float = 200.0) -> ProcessSample:
    return ProcessSample(pid=100, name="node", cpu_percent=cpu, memory_mb=mem, timestamp=0.0)


class FakeSampler:
    def __init__(self, *results: ProcessSample | Exception) -> None:
        self.results = list(results)
        self.calls = 0

    def sample(self, pid: int) -> ProcessSample:
        self.calls += 1
        result = self.results.pop(0)
        if isinstance(result, Exception):
            raise result
        return result

    def system(self) -> None:
        return None


class FakeScreen:
    def __init__(self, keys: list[int] | None = None, size: tuple[int, int] = (24, 80)) -> None:
        self.keys = list(keys or [])
        self.size = size
        self.resize_to: tuple[int, int] | None = None
        self.getch_calls = 0
        self.timeouts: list[int] = []

    def getmaxyx(self) -> tuple[int, int]:
        return self.size

    def timeout(self, ms: int) -> None:
        self.timeouts.append(ms)

    def getch(self) -> int:
        self.getch_calls += 1
        if not self.keys:
            return -1
        key = self.keys.pop(0)
        if key == curses.KEY_RESIZE and self.resize_to:
            self.size = self.resize_to
        return key

    def clear(self) -> None:
        pass

    def keypad(self, flag: bool) -> None:
        pass


class RecordingPainter:
    def __init__(self) -> None:
        self.frames: list[list[DrawOp]] = []

    def __call__(self, screen: Any, ops: list[DrawOp]) -> None:
        self.frames.append(ops)


def _loop(sampler: FakeSampler, painter: RecordingPainter, **kwargs: Any) -> WatchLoop:
    kwargs.setdefault("interval", 10.0)
    return WatchLoop(100, 8080, sampler, painter=painter, **kwargs)  # type: ignore[arg-type]


# ── Quit keys ──────────────────────────────────────────────────────────────


@pytest.mark.parametrize("key", [ord("q"), ord("c"), 27])
def test_quit_key_terminates_within_one_slice(key: int) -> None:
    painter = RecordingPainter()
    screen = FakeScreen([key])
    loop = _loop(FakeSampler(_sample()), painter, poll_slice=0.1)

    loop.run(screen)

    assert loop.state is LoopState.TERMINATED
    assert loop.error is None
    assert screen.getch_calls == 1
    assert screen.timeouts == [100]
    assert len(painter.frames) == 1


def test_other_keys_ignored() -> None:
    screen = FakeScreen([ord("x"), ord("q")])
    loop = _loop(FakeSampler(_sample()), RecordingPainter())
    loop.run(screen)
    assert screen.getch_calls == 2
    assert loop.iteration == 1


# ── Sampling failures ──────────────────────────────────────────────────────


def test_process_gone_ends_loop() -> None:
    painter = RecordingPainter()
    sampler = FakeSampler(_sample(), _sample(), ProcessGoneError(100))
    loop = _loop(sampler, painter, interval=0.0)

    loop.run(FakeScreen())

    assert loop.state is LoopState.TERMINATED
    assert isinstance(loop.error, ProcessGoneError)
    assert loop.iteration == 2
    assert len(painter.frames) == 2


def test_first_sample_failure_never_renders() -> None:
    painter = RecordingPainter()
    loop = _loop(FakeSampler(SamplePermissionError(100)), painter)
    loop.run(FakeScreen())
    assert isinstance(loop.error, SamplePermissionError)
    assert loop.iteration == 0
    assert painter.frames == []
    assert len(loop.history) == 0


# ── Waiting ────────────────────────────────────────────────────────────────


def test_waits_until_deadline_then_samples() -> None:
    screen = FakeScreen()
    sampler = FakeSampler(_sample(), ProcessGoneError(100))
    clock = itertools.count()
    loop = _loop(sampler, RecordingPainter(), interval=3.0, clock=lambda: float(next(clock)))

    loop.run(screen)

    assert screen.getch_calls == 2
    assert sampler.calls == 2


def test_resize_redraws_without_sampling() -> None:
    painter = RecordingPainter()
    screen = FakeScreen([curses.KEY_RESIZE, ord("q")], size=(24, 80))
    screen.resize_to = (24, 120)
    sampler = FakeSampler(_sample())
    loop = _loop(sampler, painter)

    loop.run(screen)

    assert sampler.calls == 1
    assert len(painter.frames) == 2
    assert len(loop.history) == 1
    assert len(painter.frames[0][0].text) == 80
    assert len(painter.frames[1][0].text) == 120


# ── Insight worker ─────────────────────────────────────────────────────────


def test_insight_result_becomes_annotation() -> None:
    loop = _loop(FakeSampler(), RecordingPainter(), insight=lambda s, sys, port: "all\n good")
    loop._insight_busy = True
    loop._insight_worker(_sample(), None)
    assert loop._drain_insight() is True
    assert loop.annotation == "all good"
    assert loop._insight_busy is False
    assert loop._drain_insight() is False


def test_insight_failure_is_annotated() -> None:
    def failing(*args: Any) -> str:
        raise InsightError("GEMINI_API_KEY is not set")

    loop = _loop(FakeSampler(), RecordingPainter(), insight=failing)
    loop._insight_worker(_sample(), None)
    loop._drain_insight()
    assert loop.annotation == "insight unavailable: GEMINI_API_KEY is not set"


def test_unexpected_insight_error_frees_worker_slot() -> None:
    def broken(*args: Any) -> str:
        raise RuntimeError("boom")

    loop = _loop(FakeSampler(), RecordingPainter(), insight=broken)
    loop._insight_busy = True
    with pytest.raises(RuntimeError):
        loop._insight_worker(_sample(), None)
    assert loop._drain_insight() is True
    assert loop.annotation == "insight unavailable"
    assert loop._insight_busy is False


@patch("portusage.watch.threading.Thread")
def test_one_insight_request_in_flight(mock_thread: MagicMock) -> None:
    loop = _loop(FakeSampler(), RecordingPainter(), insight=lambda *a: "x")
    loop._start_insight()
    loop._start_insight()
    assert mock_thread.call_count == 1
    assert mock_thread.call_args.kwargs["daemon"] is True


def test_no_insight_configured() -> None:
    loop = _loop(FakeSampler(), RecordingPainter())
    with patch("portusage.watch.threading.Thread") as mock_thread:
        loop._start_insight()
    mock_thread.assert_not_called()


# ── Terminal session ───────────────────────────────────────────────────────


@patch("portusage.watch.init_colors")
@patch("portusage.watch.curses")
def test_terminal_restored_after_quit(mock_curses: MagicMock, mock_colors: MagicMock) -> None:
    mock_curses.initscr.return_value = FakeScreen([ord("q")])
    loop = _loop(FakeSampler(_sample()), RecordingPainter())

    run_watch(loop)

    assert loop.state is LoopState.TERMINATED
    mock_curses.cbreak.assert_called_once()
    mock_curses.nocbreak.assert_called_once()
    mock_curses.echo.assert_called_once()
    mock_curses.endwin.assert_called_once()


@patch("portusage.watch.init_colors")
@patch("portusage.watch.curses")
def test_terminal_restored_after_sample_error(
    mock_curses: MagicMock, mock_colors: MagicMock
) -> None:
    mock_curses.initscr.return_value = FakeScreen()
    loop = _loop(FakeSampler(ProcessGoneError(100)), RecordingPainter())

    run_watch(loop)

    assert isinstance(loop.error, ProcessGoneError)
    mock_curses.nocbreak.assert_called_once()
    mock_curses.endwin.assert_called_once()


@patch("portusage.watch.init_colors")
@patch("portusage.watch.curses")
def test_terminal_restored_after_render_error(
    mock_curses: MagicMock, mock_colors: MagicMock
) -> None:
    def broken(screen: Any, ops: list[DrawOp]) -> None:
        raise RenderError("terminal refresh failed")

    mock_curses.initscr.return_value = FakeScreen()
    loop = WatchLoop(100, 8080, FakeSampler(_sample()), painter=broken)  # type: ignore[arg-type]

    with pytest.raises(RenderError):
        run_watch(loop)
    mock_curses.nocbreak.assert_called_once()
    mock_curses.endwin.assert_called_once()


# ── End to end ─────────────────────────────────────────────────────────────


@patch("portusage.resolver.subprocess.run")
def test_port_to_history(mock_run: MagicMock) -> None:
    mock_run.return_value = MagicMock(stdout="100\n", returncode=0)
    pid = resolve(8080, platform="linux")
    assert pid == 100

    sampler = FakeSampler(_sample(cpu=10.0, mem=200.0), _sample(cpu=12.0, mem=205.0), ProcessGoneError(pid))
    loop = WatchLoop(pid, 8080, sampler, interval=0.0, painter=RecordingPainter())  # type: ignore[arg-type]
    loop.run(FakeScreen())

    assert len(loop.history) == 2
    assert loop.history.memory.average() == 202.5
    assert loop.history.memory.peak() == 205.0
    assert loop.history.cpu.peak() == 12.0
