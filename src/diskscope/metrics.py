"""System resource sampling for diskscope.

Platform specifics sit behind MetricsProvider; select_provider() picks one
implementation at startup. MetricsSampler runs on its own timer and never
lets a sampling failure reach the scan or the UI.
"""

import logging
import sys
import threading
import time
from collections import deque
from datetime import datetime
from typing import Callable, Optional, Protocol

import psutil

from diskscope.errors import MetricsUnavailable
from diskscope.models import MetricSample

logger = logging.getLogger(__name__)

METRICS = ("cpu", "memory", "disk")
FAILURE_THRESHOLD = 3


class MetricsProvider(Protocol):
    """Capability interface for platform metric collection."""

    def sample_cpu(self) -> float:
        """Return CPU utilisation in percent since the previous call."""

    def sample_memory(self) -> tuple[int, int]:
        """Return (used_bytes, total_bytes)."""

    def sample_disk_io(self) -> tuple[int, int]:
        """Return cumulative (read_bytes, write_bytes) since boot."""


class PsutilMetricsProvider:
    """Shared psutil plumbing for the concrete platform providers."""

    def sample_cpu(self) -> float:
        try:
            return float(psutil.cpu_percent(interval=None))
        except (psutil.Error, OSError) as e:
            raise MetricsUnavailable(f"cpu: {e}") from e

    def sample_memory(self) -> tuple[int, int]:
        try:
            vm = psutil.virtual_memory()
        except (psutil.Error, OSError) as e:
            raise MetricsUnavailable(f"memory: {e}") from e
        return self._used_memory(vm), int(vm.total)

    def _used_memory(self, vm) -> int:
        return int(vm.total - vm.available)

    def sample_disk_io(self) -> tuple[int, int]:
        try:
            counters = psutil.disk_io_counters()
        except (psutil.Error, OSError) as e:
            raise MetricsUnavailable(f"disk: {e}") from e
        if counters is None:
            raise MetricsUnavailable("disk: no disk counters on this system")
        return int(counters.read_bytes), int(counters.write_bytes)


class DarwinMetricsProvider(PsutilMetricsProvider):
    """macOS: report used memory the way Activity Monitor does (app + wired)."""

    def _used_memory(self, vm) -> int:
        active = getattr(vm, "active", 0)
        wired = getattr(vm, "wired", 0)
        if active or wired:
            return int(active + wired)
        return super()._used_memory(vm)


class LinuxMetricsProvider(PsutilMetricsProvider):
    """Linux: used memory is everything not available to new processes."""


class UnsupportedMetricsProvider:
    """Fallback for platforms without a provider; every call fails."""

    def __init__(self, platform: str):
        self.platform = platform

    def sample_cpu(self) -> float:
        raise MetricsUnavailable(f"no metrics provider for {self.platform}")

    def sample_memory(self) -> tuple[int, int]:
        raise MetricsUnavailable(f"no metrics provider for {self.platform}")

    def sample_disk_io(self) -> tuple[int, int]:
        raise MetricsUnavailable(f"no metrics provider for {self.platform}")


def select_provider(platform: Optional[str] = None) -> MetricsProvider:
    """Pick the metrics provider for a platform (defaults to the running one)."""
    platform = platform or sys.platform
    if platform == "darwin":
        return DarwinMetricsProvider()
    if platform.startswith("linux"):
        return LinuxMetricsProvider()
    return UnsupportedMetricsProvider(platform)


class MetricsSampler:
    """
    Periodic producer of MetricSample snapshots into a bounded ring buffer.

    Args:
        provider: Platform metrics provider
        interval: Seconds between samples
        history: Number of samples retained
        clock: Monotonic clock, replaceable for tests
    """

    def __init__(
        self,
        provider: Optional[MetricsProvider] = None,
        interval: float = 1.0,
        history: int = 60,
        clock: Callable[[], float] = time.monotonic,
        log: Optional[logging.Logger] = None,
    ):
        self.provider = provider or select_provider()
        self.interval = interval
        self.clock = clock
        self.log = log or logger
        self._samples: deque[MetricSample] = deque(maxlen=history)
        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

        self._failures = {name: 0 for name in METRICS}
        self._last_io: Optional[tuple[int, int, float]] = None
        self._last = MetricSample()

    # -- sampling -------------------------------------------------------------

    def tick(self) -> MetricSample:
        """Take one sample, falling back to last-known values for failing metrics."""
        last = self._last

        cpu = self._read("cpu", self.provider.sample_cpu)
        cpu_percent = last.cpu_percent if cpu is None else cpu

        memory = self._read("memory", self.provider.sample_memory)
        if memory is None:
            mem_used, mem_total = last.memory_used_bytes, last.memory_total_bytes
        else:
            mem_used, mem_total = memory

        read_rate, write_rate = last.disk_read_bytes_per_sec, last.disk_write_bytes_per_sec
        io = self._read("disk", self.provider.sample_disk_io)
        if io is not None:
            now = self.clock()
            if self._last_io is not None:
                prev_read, prev_write, prev_at = self._last_io
                elapsed = now - prev_at
                if elapsed > 0:
                    read_rate = max(0, io[0] - prev_read) / elapsed
                    write_rate = max(0, io[1] - prev_write) / elapsed
            else:
                read_rate = write_rate = 0.0
            self._last_io = (io[0], io[1], now)

        sample = MetricSample(
            timestamp=datetime.now(),
            cpu_percent=cpu_percent,
            memory_used_bytes=mem_used,
            memory_total_bytes=mem_total,
            disk_read_bytes_per_sec=read_rate,
            disk_write_bytes_per_sec=write_rate,
            unavailable=frozenset(self.unavailable),
        )
        with self._lock:
            self._samples.append(sample)
        self._last = sample
        return sample

    def _read(self, name: str, fn: Callable):
        try:
            value = fn()
        except (MetricsUnavailable, psutil.Error, OSError) as e:
            self._failures[name] += 1
            if self._failures[name] == FAILURE_THRESHOLD:
                self.log.warning("Metric %s unavailable: %s", name, e)
            else:
                self.log.debug("Metric %s failed: %s", name, e)
            return None
        self._failures[name] = 0
        return value

    @property
    def unavailable(self) -> set[str]:
        """Metrics that have failed at least FAILURE_THRESHOLD times in a row."""
        return {n for n, count in self._failures.items() if count >= FAILURE_THRESHOLD}

    # -- read side ------------------------------------------------------------

    def samples(self) -> list[MetricSample]:
        """Copy of the ring buffer, oldest first."""
        with self._lock:
            return list(self._samples)

    def latest(self) -> Optional[MetricSample]:
        with self._lock:
            return self._samples[-1] if self._samples else None

    # -- background thread ----------------------------------------------------

    def start(self) -> None:
        """Sample every interval on a daemon thread until stop() is called."""
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(
            target=self._run, name="diskscope-metrics", daemon=True
        )
        self._thread.start()

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout if timeout is not None else self.interval * 2)
            self._thread = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _run(self) -> None:
        while not self._stop.is_set():
            self.tick()
            self._stop.wait(self.interval)
