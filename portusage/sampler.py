"""Process and host resource sampling via psutil.

CPU percentage only means something as a delta, so ``Sampler.sample`` reads
the process counters twice, ``warmup`` seconds apart. Memory is a gauge and
comes from the second reading.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass

import psutil

_MB = 1024 * 1024
_GB = 1024**3


# ── Errors ──────────────────────────────────────────────────────────────────


class SampleError(Exception):
    """Base class for sampling failures."""

    def __init__(self, pid: int, message: str) -> None:
        super().__init__(message)
        self.pid = pid


class ProcessGoneError(SampleError):
    def __init__(self, pid: int) -> None:
        super().__init__(pid, f"process {pid} has exited")


class SamplePermissionError(SampleError):
    def __init__(self, pid: int) -> None:
        super().__init__(pid, f"permission denied reading process {pid}")


class UnknownSampleError(SampleError):
    def __init__(self, pid: int, cause: BaseException) -> None:
        super().__init__(pid, f"failed to sample process {pid}: {cause}")
        self.cause = cause


# ── Data types ──────────────────────────────────────────────────────────────


@dataclass(slots=True, frozen=True)
class ProcessSample:
    """One reading of a single process."""

    pid: int
    name: str
    cpu_percent: float  # 100.0 == one full core
    memory_mb: float  # resident set size
    timestamp: float  # time.time() of the second reading

    @property
    def cpu_cores(self) -> float:
        return self.cpu_percent / 100.0


@dataclass(slots=True, frozen=True)
class SystemSnapshot:
    """Host-wide context taken alongside a process sample."""

    global_cpu_percent: float
    load_avg_1: float
    load_avg_5: float
    load_avg_15: float
    total_memory_gb: float
    free_memory_gb: float
    total_swap_gb: float
    free_swap_gb: float
    cpu_count: int
    process_count: int

    @property
    def free_memory_percent(self) -> float:
        if self.total_memory_gb <= 0:
            return 0.0
        return self.free_memory_gb / self.total_memory_gb * 100.0

    @property
    def free_swap_percent(self) -> float:
        if self.total_swap_gb <= 0:
            return 0.0
        return self.free_swap_gb / self.total_swap_gb * 100.0


# ── Sampler ─────────────────────────────────────────────────────────────────


class Sampler:
    """Takes time-spaced readings of one process at a time.

    Args:
        warmup: Seconds between the two CPU readings.
        sleep: Sleep function, replaceable in tests.
    """

    def __init__(
        self,
        warmup: float = 0.5,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.warmup = warmup
        self._sleep = sleep
        # First call returns a meaningless 0.0; prime it now
        psutil.cpu_percent(interval=None)

    def sample(self, pid: int) -> ProcessSample:
        """Read CPU and memory for ``pid``.

        A process that exits between the two readings raises
        ``ProcessGoneError``; it is never reported as 0% CPU.
        """
        try:
            proc = psutil.Process(pid)
            proc.cpu_percent(interval=None)
            self._sleep(self.warmup)
            with proc.oneshot():
                cpu = proc.cpu_percent(interval=None)
                rss = proc.memory_info().rss
                name = proc.name()
        except (psutil.NoSuchProcess, psutil.ZombieProcess) as e:
            raise ProcessGoneError(pid) from e
        except psutil.AccessDenied as e:
            raise SamplePermissionError(pid) from e
        except (psutil.Error, OSError) as e:
            raise UnknownSampleError(pid, e) from e

        return ProcessSample(
            pid=pid,
            name=name,
            cpu_percent=float(cpu),
            memory_mb=rss / _MB,
            timestamp=time.time(),
        )

    def system(self) -> SystemSnapshot:
        """Snapshot host-wide CPU, load, memory and process counts."""
        ram = psutil.virtual_memory()
        swap = psutil.swap_memory()
        load1, load5, load15 = psutil.getloadavg()
        return SystemSnapshot(
            global_cpu_percent=psutil.cpu_percent(interval=None),
            load_avg_1=load1,
            load_avg_5=load5,
            load_avg_15=load15,
            total_memory_gb=ram.total / _GB,
            free_memory_gb=ram.available / _GB,
            total_swap_gb=swap.total / _GB,
            free_swap_gb=swap.free / _GB,
            cpu_count=psutil.cpu_count() or 1,
            process_count=len(psutil.pids()),
        )
