"""Snapshot models and the never-failing metrics collector."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
import logging
from typing import Callable, Optional, Tuple, TypeVar

from .sources import MetricsSource

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_CPU_PERCENT = 50.0
DEFAULT_CPU_MODEL = "未知"
DEFAULT_TOTAL_MB = 8192
DEFAULT_USED_MB = 4096
DEFAULT_FREE_MB = 4096
TOP_PROCESS_LIMIT = 5


@dataclass(frozen=True)
class CpuReading:
    model: str
    cores: int
    percent: float


@dataclass(frozen=True)
class MemoryReading:
    total_mb: int
    used_mb: int
    free_mb: int

    @property
    def percent(self) -> float:
        if self.total_mb <= 0:
            return 0.0
        return self.used_mb / self.total_mb * 100


@dataclass(frozen=True)
class NetworkCounters:
    received_bytes: int
    sent_bytes: int


@dataclass(frozen=True)
class NetworkInterface:
    name: str
    addresses: Tuple[str, ...]


@dataclass(frozen=True)
class ProcessUsage:
    pid: int
    cpu_percent: float
    memory_percent: float
    name: str


@dataclass(frozen=True)
class Sample:
    """One tick's metrics. Groups that were not collected are left empty."""

    timestamp: datetime
    cpu: Optional[CpuReading] = None
    memory: Optional[MemoryReading] = None
    network: Optional[NetworkCounters] = None
    interfaces: Tuple[NetworkInterface, ...] = field(default_factory=tuple)
    top_processes: Tuple[ProcessUsage, ...] = field(default_factory=tuple)


class MetricsCollector:
    """Queries a MetricsSource and substitutes placeholders for anything that fails.

    None of the ``collect_*`` methods raise.
    """

    def __init__(self, source: MetricsSource) -> None:
        self.source = source

    def collect_cpu(self) -> CpuReading:
        model = _attempt("cpu model", self.source.cpu_model) or DEFAULT_CPU_MODEL
        cores = _attempt("cpu cores", self.source.cpu_cores) or 0
        percent = _attempt("cpu usage", self.source.cpu_percent)
        if percent is None:
            percent = DEFAULT_CPU_PERCENT
        return CpuReading(model=model, cores=cores, percent=min(max(percent, 0.0), 100.0))

    def collect_memory(self) -> MemoryReading:
        reading = _attempt("memory", self.source.memory)
        if reading is None:
            return MemoryReading(DEFAULT_TOTAL_MB, DEFAULT_USED_MB, DEFAULT_FREE_MB)
        total_mb, used_mb, free_mb = reading
        return MemoryReading(
            total_mb=total_mb if total_mb > 0 else DEFAULT_TOTAL_MB,
            used_mb=used_mb if used_mb > 0 else DEFAULT_USED_MB,
            free_mb=free_mb if free_mb > 0 else DEFAULT_FREE_MB,
        )

    def collect_network(self) -> NetworkCounters:
        counters = _attempt("network counters", self.source.network_counters)
        if counters is None:
            return NetworkCounters(0, 0)
        return NetworkCounters(received_bytes=counters[0], sent_bytes=counters[1])

    def collect_interfaces(self) -> Tuple[NetworkInterface, ...]:
        interfaces = _attempt("network interfaces", self.source.interfaces) or []
        return tuple(NetworkInterface(name=name, addresses=tuple(addrs)) for name, addrs in interfaces)

    def collect_top_processes(self, limit: int = TOP_PROCESS_LIMIT) -> Tuple[ProcessUsage, ...]:
        rows = _attempt("processes", self.source.processes) or []
        usages = [
            ProcessUsage(pid=pid, cpu_percent=cpu, memory_percent=mem, name=name)
            for pid, cpu, mem, name in rows
        ]
        # sorted() is stable, so equal CPU keeps the order ps reported.
        return tuple(sorted(usages, key=lambda p: p.cpu_percent, reverse=True)[:limit])


def _attempt(what: str, query: Callable[[], Optional[T]]) -> Optional[T]:
    try:
        return query()
    except Exception as exc:  # collectors never raise
        logger.debug("Failed to collect %s: %s", what, exc)
        return None
