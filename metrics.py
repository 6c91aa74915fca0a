#!/usr/bin/env python3
"""
Process-wide throughput counters and the periodic reporter.

A single Metrics object is created per run and shared by reference with every
feed task. Each update is one short critical section, including the lazy
per-hour bucket rollover, so readers never observe a half-applied reset.
"""

from asyncio import CancelledError, Task, create_task, sleep
from dataclasses import dataclass
from threading import Lock
from typing import Callable, Optional
import time

import psutil

from config import get_logger
from utils import format_duration

logger = get_logger("metrics")

SECONDS_PER_HOUR = 3600


def hour_index(timestamp: float) -> int:
    """Whole hours since the Unix epoch."""
    return int(timestamp // SECONDS_PER_HOUR)


@dataclass(frozen=True)
class MetricsSnapshot:
    total_found: int
    per_hour: int
    already_seen: int
    feeds_processed: int
    feeds_total: int
    elapsed: float

    @property
    def feeds_per_second(self) -> float:
        return self.feeds_processed / self.elapsed if self.elapsed > 0 else 0.0

    @property
    def articles_per_second(self) -> float:
        return self.total_found / self.elapsed if self.elapsed > 0 else 0.0


class Metrics:
    """Run-scoped counters for found, already-seen and per-hour throughput.

    Updates normally come from the event loop thread, where they could not
    interleave anyway. The lock keeps each read-modify-write, including the
    hour rollover, atomic when a counter is touched from an executor thread.
    """

    def __init__(self, clock: Callable[[], float] = time.time, monotonic: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._monotonic = monotonic
        self._lock = Lock()
        self._started = monotonic()
        self.total_found = 0
        self.already_seen = 0
        self.per_hour_count = 0
        self.current_hour_index = hour_index(clock())
        self.feeds_processed = 0
        self.feeds_total = 0

    def increment_found(self, count: int = 1) -> None:
        """Record ``count`` newly found URLs in the total and the current hour bucket."""
        if count <= 0:
            return
        with self._lock:
            self.total_found += count
            now_hour = hour_index(self._clock())
            if now_hour > self.current_hour_index:
                self.current_hour_index = now_hour
                self.per_hour_count = count
            else:
                self.per_hour_count += count

    def increment_already_seen(self, count: int = 1) -> None:
        if count <= 0:
            return
        with self._lock:
            self.already_seen += count

    def increment_feeds_processed(self) -> None:
        with self._lock:
            self.feeds_processed += 1

    def set_feeds_total(self, total: int) -> None:
        with self._lock:
            self.feeds_total = total

    def snapshot(self) -> MetricsSnapshot:
        """Consistent point-in-time copy of every counter."""
        with self._lock:
            return MetricsSnapshot(
                total_found=self.total_found,
                per_hour=self.per_hour_count,
                already_seen=self.already_seen,
                feeds_processed=self.feeds_processed,
                feeds_total=self.feeds_total,
                elapsed=self._monotonic() - self._started,
            )


@dataclass(frozen=True)
class ResourceUsage:
    cpu_percent: float
    avg_cpu_percent: float
    memory_mb: float
    avg_memory_mb: float


class ResourceSampler:
    """Samples this process's CPU and resident memory and keeps running averages.

    CPU is the share of all cores used since the previous sample, so 100%
    means every core was busy.
    """

    def __init__(self, process: Optional[psutil.Process] = None, cpu_count: Optional[int] = None):
        self._process = process or psutil.Process()
        self._cpus = cpu_count or psutil.cpu_count() or 1
        self._total_cpu = 0.0
        self._total_memory = 0.0
        self._samples = 0
        # First call only sets the baseline for the next interval
        self._process.cpu_percent(None)

    def sample(self) -> ResourceUsage:
        cpu = self._process.cpu_percent(None) / self._cpus
        memory = self._process.memory_info().rss / (1024 * 1024)
        self._total_cpu += cpu
        self._total_memory += memory
        self._samples += 1
        return ResourceUsage(
            cpu_percent=cpu,
            avg_cpu_percent=self._total_cpu / self._samples,
            memory_mb=memory,
            avg_memory_mb=self._total_memory / self._samples,
        )


def format_report(snap: MetricsSnapshot, usage: ResourceUsage) -> str:
    return (
        f"Metrics: found={snap.total_found} this_hour={snap.per_hour} already_seen={snap.already_seen} "
        f"progress={snap.feeds_processed}/{snap.feeds_total} elapsed={format_duration(snap.elapsed)} "
        f"feeds/s={snap.feeds_per_second:.2f} articles/s={snap.articles_per_second:.2f} "
        f"cpu={usage.cpu_percent:.1f}% (avg {usage.avg_cpu_percent:.1f}%) "
        f"rss={usage.memory_mb:.1f}MB (avg {usage.avg_memory_mb:.1f}MB)"
    )


class MetricsReporter:
    """Logs a metrics snapshot every ``interval`` seconds until the process exits.

    Its lifetime is independent of any pass: finishing a pass neither joins
    nor cancels it. ``stop()`` is for an orderly shutdown at process exit.
    """

    def __init__(self, metrics: Metrics, interval: float = 5.0, sampler: Optional[ResourceSampler] = None):
        self.metrics = metrics
        self.interval = interval
        self.sampler = sampler or ResourceSampler()
        self._task: Optional[Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> Task:
        if not self.running:
            self._task = create_task(self._run(), name="metrics-reporter")
            logger.debug(f"Metrics reporter started (interval={self.interval}s)")
        return self._task

    def report(self) -> str:
        """Emit one report line and return it."""
        line = format_report(self.metrics.snapshot(), self.sampler.sample())
        logger.info(line)
        return line

    async def _run(self) -> None:
        while True:
            await sleep(self.interval)
            try:
                self.report()
            except psutil.Error as e:
                logger.warning(f"Could not sample process resources: {e}")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except CancelledError:
            pass
        self._task = None
