"""Prometheus-style metrics: counters, histograms and a registry."""

from __future__ import annotations

import gc
import math
import os
import platform
import threading
import time
from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from typing import Protocol

try:
    import resource
except ImportError:  # not available on every platform
    resource = None  # type: ignore[assignment]

DEFAULT_BUCKETS = (0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0)

_IMPORT_TIME = time.time()


@dataclass(frozen=True)
class _Sample:
    suffix: str
    labels: tuple[tuple[str, str], ...]
    value: float


@dataclass(frozen=True)
class _Family:
    name: str
    help: str
    type: str
    samples: tuple[_Sample, ...]


def _single(name: str, help_text: str, kind: str, value: float) -> _Family:
    return _Family(name, help_text, kind, (_Sample("", (), value),))


class _Collector(Protocol):
    def _names(self) -> Iterable[str]: ...

    def _collect(self) -> Iterable[_Family]: ...


def _full_name(namespace: str, subsystem: str, name: str) -> str:
    return "_".join(part for part in (namespace, subsystem, name) if part)


def _format_value(value: float) -> str:
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "+Inf" if value > 0 else "-Inf"
    if float(value).is_integer() and abs(value) < 1e15:
        return str(int(value))
    return repr(float(value))


def _escape_label(value: str) -> str:
    return value.replace("\\", "\\\\").replace("\n", "\\n").replace('"', '\\"')


def _escape_help(value: str) -> str:
    return value.replace("\\", "\\\\").replace("\n", "\\n")


class Counter:
    """A monotonically increasing value."""

    def __init__(self, name: str, help: str, namespace: str = "", subsystem: str = "") -> None:  # noqa: A002
        self.name = _full_name(namespace, subsystem, name)
        self.help = help
        self._value = 0.0
        self._lock = threading.Lock()

    @property
    def value(self) -> float:
        return self._value

    def inc(self) -> None:
        """Add one to the counter."""
        with self._lock:
            self._value += 1

    def _names(self) -> Iterable[str]:
        return (self.name,)

    def _collect(self) -> Iterable[_Family]:
        yield _single(self.name, self.help, "counter", self._value)


class Histogram:
    """Counts observations in cumulative buckets and keeps their sum."""

    def __init__(
        self,
        name: str,
        help: str,  # noqa: A002
        namespace: str = "",
        subsystem: str = "",
        buckets: Iterable[float] = DEFAULT_BUCKETS,
    ) -> None:
        self.name = _full_name(namespace, subsystem, name)
        self.help = help
        self._bounds = tuple(sorted(float(bound) for bound in buckets))
        self._counts = [0] * len(self._bounds)
        self._sum = 0.0
        self._count = 0
        self._lock = threading.Lock()

    @property
    def sum(self) -> float:
        return self._sum

    @property
    def count(self) -> int:
        return self._count

    def observe(self, value: float) -> None:
        """Add one observation."""
        with self._lock:
            for index, bound in enumerate(self._bounds):
                if value <= bound:
                    self._counts[index] += 1
                    break
            self._sum += value
            self._count += 1

    def _names(self) -> Iterable[str]:
        return (self.name,)

    def _collect(self) -> Iterable[_Family]:
        with self._lock:
            counts, total, count = list(self._counts), self._sum, self._count
        samples = []
        cumulative = 0
        for bound, bucket_count in zip(self._bounds, counts):
            cumulative += bucket_count
            samples.append(_Sample("_bucket", (("le", _format_value(bound)),), cumulative))
        samples.append(_Sample("_bucket", (("le", "+Inf"),), count))
        samples.append(_Sample("_sum", (), total))
        samples.append(_Sample("_count", (), count))
        yield _Family(self.name, self.help, "histogram", tuple(samples))


def _process_start_time() -> float:
    try:
        with open("/proc/self/stat", encoding="ascii") as stat_file:
            fields = stat_file.read().rsplit(")", 1)[1].split()
        start_ticks = int(fields[19])
        with open("/proc/stat", encoding="ascii") as stat_file:
            boot_time = next(int(line.split()[1]) for line in stat_file if line.startswith("btime"))
        return boot_time + start_ticks / os.sysconf("SC_CLK_TCK")
    except (OSError, ValueError, IndexError, StopIteration, AttributeError):
        return _IMPORT_TIME


class ProcessCollector:
    """Collects CPU, memory, file descriptor and start time of this process."""

    _NAMES = (
        "process_cpu_seconds_total",
        "process_start_time_seconds",
        "process_virtual_memory_bytes",
        "process_resident_memory_bytes",
        "process_open_fds",
        "process_max_fds",
    )

    def __init__(self) -> None:
        self._start_time = _process_start_time()

    def _names(self) -> Iterable[str]:
        return self._NAMES

    def _collect(self) -> Iterator[_Family]:
        times = os.times()
        yield _single(
            "process_cpu_seconds_total",
            "Total user and system CPU time spent in seconds.",
            "counter",
            times.user + times.system,
        )
        yield _single(
            "process_start_time_seconds",
            "Start time of the process since unix epoch in seconds.",
            "gauge",
            self._start_time,
        )
        try:
            with open("/proc/self/statm", encoding="ascii") as statm:
                size, rss = (int(part) for part in statm.read().split()[:2])
            page = os.sysconf("SC_PAGE_SIZE")
        except (OSError, ValueError, AttributeError):
            pass
        else:
            yield _single(
                "process_virtual_memory_bytes", "Virtual memory size in bytes.", "gauge", size * page
            )
            yield _single(
                "process_resident_memory_bytes", "Resident memory size in bytes.", "gauge", rss * page
            )
        try:
            open_fds = len(os.listdir("/proc/self/fd"))
        except OSError:
            pass
        else:
            yield _single("process_open_fds", "Number of open file descriptors.", "gauge", open_fds)
        if resource is not None:
            soft_limit = resource.getrlimit(resource.RLIMIT_NOFILE)[0]
            yield _single(
                "process_max_fds",
                "Maximum number of open file descriptors.",
                "gauge",
                math.inf if soft_limit == resource.RLIM_INFINITY else soft_limit,
            )


class _PythonCollector:
    """Collects interpreter information and garbage collector statistics."""

    def _names(self) -> Iterable[str]:
        return (
            "python_info",
            "python_threads",
            "python_gc_objects_collected_total",
            "python_gc_objects_uncollectable_total",
            "python_gc_collections_total",
        )

    def _collect(self) -> Iterator[_Family]:
        major, minor, patch = platform.python_version_tuple()
        info_labels = (
            ("implementation", platform.python_implementation()),
            ("major", major),
            ("minor", minor),
            ("patchlevel", patch),
        )
        yield _Family("python_info", "Python platform information.", "gauge", (_Sample("", info_labels, 1),))
        yield _single("python_threads", "Number of live threads.", "gauge", threading.active_count())
        stats = gc.get_stats()
        for name, key, help_text in (
            ("python_gc_objects_collected_total", "collected", "Objects collected during gc."),
            ("python_gc_objects_uncollectable_total", "uncollectable", "Uncollectable objects found during gc."),
            ("python_gc_collections_total", "collections", "Number of times this generation was collected."),
        ):
            samples = tuple(
                _Sample("", (("generation", str(generation)),), generation_stats[key])
                for generation, generation_stats in enumerate(stats)
            )
            yield _Family(name, help_text, "counter", samples)


class Registry:
    """Holds collectors and renders their metrics in the text exposition format."""

    def __init__(self) -> None:
        self._collectors: list[_Collector] = []
        self._names: set[str] = set()
        self._lock = threading.Lock()

    def register(self, collector: _Collector) -> None:
        """Add a collector; raise ValueError if it or one of its names is already registered."""
        names = set(collector._names())
        with self._lock:
            if any(existing is collector for existing in self._collectors) or names & self._names:
                raise ValueError("duplicate metrics collector registration attempted")
            self._collectors.append(collector)
            self._names |= names

    def render(self) -> str:
        """Render all metrics, sorted by name, as Prometheus text."""
        with self._lock:
            collectors = list(self._collectors)
        families = sorted(
            (family for collector in collectors for family in collector._collect()),
            key=lambda family: family.name,
        )
        lines = []
        for family in families:
            lines.append(f"# HELP {family.name} {_escape_help(family.help)}")
            lines.append(f"# TYPE {family.name} {family.type}")
            for sample in family.samples:
                labels = ",".join(f'{key}="{_escape_label(value)}"' for key, value in sample.labels)
                series = f"{family.name}{sample.suffix}" + (f"{{{labels}}}" if labels else "")
                lines.append(f"{series} {_format_value(sample.value)}")
        return "\n".join(lines) + "\n" if lines else ""


class Generator:
    """Metrics of the router script generation."""

    def __init__(self) -> None:
        self.cache_hits = Counter(
            "hits",
            "The count of cache hits during script generation.",
            namespace="generator",
            subsystem="cache",
        )
        self.cache_misses = Counter(
            "misses",
            "The count of cache misses during script generation.",
            namespace="generator",
            subsystem="cache",
        )
        self.duration = Histogram(
            "duration",
            "Time of script generation (in seconds).",
            namespace="generator",
            subsystem="time",
        )

    def increment_cache_hits(self) -> None:
        self.cache_hits.inc()

    def increment_cache_misses(self) -> None:
        self.cache_misses.inc()

    def observe_generation_duration(self, seconds: float) -> None:
        self.duration.observe(seconds)

    def register(self, registry: Registry) -> None:
        """Register all generator metrics with the registry."""
        for collector in (self.cache_hits, self.cache_misses, self.duration):
            registry.register(collector)


def new_registry() -> Registry:
    """Create a registry with the process and interpreter collectors registered."""
    registry = Registry()
    registry.register(_PythonCollector())
    registry.register(ProcessCollector())
    return registry