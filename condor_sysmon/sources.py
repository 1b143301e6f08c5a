"""Platform-specific metric queries for macOS and Linux."""

from __future__ import annotations

from abc import ABC, abstractmethod
import logging
import re
import socket
import subprocess
import sys
from typing import Callable, Dict, List, NoReturn, Optional, Set, Tuple, TypeVar

import psutil

logger = logging.getLogger(__name__)

T = TypeVar("T")

MIB = 1024 * 1024
COMMAND_TIMEOUT = 5.0
DEFAULT_PAGE_SIZE = 4096
ASSUMED_USED_RATIO = 0.7
LOOPBACK_INTERFACES = frozenset({"lo", "lo0"})

MemoryTriple = Tuple[int, int, int]
ByteCounters = Tuple[int, int]
ProcessRow = Tuple[int, float, float, str]
InterfaceRow = Tuple[str, List[str]]

_QUERY_ERRORS = (OSError, subprocess.SubprocessError, ValueError, IndexError)


class UnsupportedPlatformError(RuntimeError):
    """Raised for every query on a platform without a known command set."""


def run_command(args: List[str]) -> str:
    result = subprocess.run(args, capture_output=True, text=True, timeout=COMMAND_TIMEOUT, check=True)
    return result.stdout


def read_text(path: str) -> str:
    with open(path, encoding="utf-8") as handle:
        return handle.read()


class MetricsSource(ABC):
    """Capability interface over the host's metric facilities.

    Methods may raise or return None when nothing usable is available; the
    collector turns both into placeholder values.
    """

    name = "generic"

    @abstractmethod
    def cpu_model(self) -> Optional[str]: ...

    @abstractmethod
    def cpu_cores(self) -> Optional[int]: ...

    @abstractmethod
    def cpu_percent(self) -> Optional[float]: ...

    @abstractmethod
    def memory(self) -> Optional[MemoryTriple]:
        """Return ``(total_mb, used_mb, free_mb)``."""

    @abstractmethod
    def network_counters(self) -> Optional[ByteCounters]:
        """Return cumulative ``(received_bytes, sent_bytes)`` over non-loopback interfaces."""

    @abstractmethod
    def processes(self) -> List[ProcessRow]:
        """Return ``(pid, cpu%, mem%, name)`` rows in the order the OS reports them."""

    def interfaces(self) -> List[InterfaceRow]:
        rows: List[InterfaceRow] = []
        for name, addrs in psutil.net_if_addrs().items():
            if name in LOOPBACK_INTERFACES:
                continue
            addresses = [a.address for a in addrs if a.family in (socket.AF_INET, socket.AF_INET6)]
            rows.append((name, addresses))
        return rows


class MacOSSource(MetricsSource):
    name = "macos"

    def cpu_model(self) -> Optional[str]:
        return run_command(["sysctl", "-n", "machdep.cpu.brand_string"]).strip() or None

    def cpu_cores(self) -> Optional[int]:
        return _first_of(
            lambda: int(run_command(["sysctl", "-n", "hw.ncpu"]).strip()),
            psutil.cpu_count,
        )

    def cpu_percent(self) -> Optional[float]:
        return parse_top_usage(run_command(["top", "-l", "1", "-n", "0"]))

    def memory(self) -> Optional[MemoryTriple]:
        return _first_of(self._memory_from_vm_stat, self._memory_from_memsize, _psutil_memory)

    def network_counters(self) -> Optional[ByteCounters]:
        return _first_of(
            lambda: parse_netstat_ib(run_command(["netstat", "-ib"])),
            _psutil_network_counters,
        )

    def processes(self) -> List[ProcessRow]:
        return parse_ps(run_command(["ps", "-eo", "pid,pcpu,pmem,comm", "-r"]))

    def _memory_from_vm_stat(self) -> Optional[MemoryTriple]:
        pages = parse_vm_stat(run_command(["vm_stat"]))
        if not pages:
            return None
        page_size = _first_of(lambda: int(run_command(["sysctl", "-n", "hw.pagesize"]).strip())) or DEFAULT_PAGE_SIZE
        total_mb = self._total_mb()
        used_pages = (
            pages.get("Pages active", 0)
            + pages.get("Pages wired down", 0)
            + pages.get("Pages occupied by compressor", 0)
        )
        used_mb = used_pages * page_size // MIB
        return total_mb, used_mb, total_mb - used_mb

    def _memory_from_memsize(self) -> Optional[MemoryTriple]:
        total_mb = self._total_mb()
        if total_mb <= 0:
            return None
        # Only the total is known here; report a fixed usage ratio.
        used_mb = round(total_mb * ASSUMED_USED_RATIO)
        return total_mb, used_mb, total_mb - used_mb

    def _total_mb(self) -> int:
        return int(run_command(["sysctl", "-n", "hw.memsize"]).strip()) // MIB


class LinuxSource(MetricsSource):
    name = "linux"

    def __init__(self) -> None:
        self._last_cpu_times: Optional[Tuple[int, int]] = None

    def cpu_model(self) -> Optional[str]:
        return parse_cpuinfo_model(read_text("/proc/cpuinfo"))

    def cpu_cores(self) -> Optional[int]:
        return _first_of(lambda: int(run_command(["nproc"]).strip()), psutil.cpu_count)

    def cpu_percent(self) -> Optional[float]:
        times = parse_proc_stat(read_text("/proc/stat"))
        if times is None:
            return None
        idle, total = times
        if self._last_cpu_times is not None:
            last_idle, last_total = self._last_cpu_times
            if total > last_total:
                idle, total = idle - last_idle, total - last_total
        self._last_cpu_times = times
        if total <= 0:
            return None
        return 100 - idle / total * 100

    def memory(self) -> Optional[MemoryTriple]:
        return _first_of(lambda: parse_free(run_command(["free", "-m"])), _psutil_memory)

    def network_counters(self) -> Optional[ByteCounters]:
        return _first_of(
            lambda: parse_proc_net_dev(read_text("/proc/net/dev")),
            _psutil_network_counters,
        )

    def processes(self) -> List[ProcessRow]:
        return parse_ps(run_command(["ps", "-eo", "pid,pcpu,pmem,comm", "--sort=-pcpu"]))


class UnsupportedSource(MetricsSource):
    """Refuses every query instead of guessing at an unknown command set."""

    name = "unsupported"

    def __init__(self, platform: str) -> None:
        self.platform = platform

    def _refuse(self) -> NoReturn:
        raise UnsupportedPlatformError(f"platform {self.platform!r} is not supported")

    def cpu_model(self) -> Optional[str]:
        self._refuse()

    def cpu_cores(self) -> Optional[int]:
        self._refuse()

    def cpu_percent(self) -> Optional[float]:
        self._refuse()

    def memory(self) -> Optional[MemoryTriple]:
        self._refuse()

    def network_counters(self) -> Optional[ByteCounters]:
        self._refuse()

    def processes(self) -> List[ProcessRow]:
        self._refuse()

    def interfaces(self) -> List[InterfaceRow]:
        self._refuse()


def select_source(platform: str = sys.platform) -> MetricsSource:
    if platform == "darwin":
        return MacOSSource()
    if platform.startswith("linux"):
        return LinuxSource()
    return UnsupportedSource(platform)


def parse_top_usage(output: str) -> Optional[float]:
    for line in output.splitlines():
        if "CPU usage" not in line:
            continue
        match = re.search(r"(\d+(?:\.\d+)?)% idle", line)
        if match:
            return 100 - float(match.group(1))
    return None


def parse_vm_stat(output: str) -> Dict[str, int]:
    pages: Dict[str, int] = {}
    for line in output.splitlines():
        match = re.match(r"^(.+?):\s+(\d+)\.?$", line.strip())
        if match:
            pages[match.group(1)] = int(match.group(2))
    return pages


def parse_free(output: str) -> Optional[MemoryTriple]:
    lines = output.splitlines()
    if len(lines) < 2:
        return None
    parts = lines[1].split()
    if len(parts) < 4:
        return None
    return int(parts[1]), int(parts[2]), int(parts[3])


def parse_cpuinfo_model(text: str) -> Optional[str]:
    for line in text.splitlines():
        if line.startswith("model name"):
            return line.split(":", 1)[1].strip()
    return None


def parse_proc_stat(text: str) -> Optional[Tuple[int, int]]:
    """Return ``(idle, total)`` jiffies from the aggregate ``cpu`` line."""
    for line in text.splitlines():
        if not line.startswith("cpu "):
            continue
        fields = [int(value) for value in line.split()[1:]]
        if len(fields) < 4:
            return None
        idle = fields[3] + (fields[4] if len(fields) > 4 else 0)
        return idle, sum(fields[:8])
    return None


def parse_netstat_ib(output: str) -> Optional[ByteCounters]:
    received = sent = 0
    seen: Set[str] = set()
    for line in output.splitlines()[1:]:
        parts = line.split()
        if len(parts) < 10:
            continue
        name = parts[0].rstrip("*")
        # Each interface has one link-level row plus one per address.
        if name in LOOPBACK_INTERFACES or name in seen or not parts[2].startswith("<Link#"):
            continue
        try:
            received += int(parts[-5])
            sent += int(parts[-2])
        except ValueError:
            continue
        seen.add(name)
    return (received, sent) if seen else None


def parse_proc_net_dev(text: str) -> Optional[ByteCounters]:
    received = sent = 0
    found = False
    for line in text.splitlines()[2:]:
        if ":" not in line:
            continue
        name, _, data = line.partition(":")
        if name.strip() in LOOPBACK_INTERFACES:
            continue
        values = data.split()
        if len(values) < 16:
            continue
        received += int(values[0])
        sent += int(values[8])
        found = True
    return (received, sent) if found else None


def parse_ps(output: str) -> List[ProcessRow]:
    rows: List[ProcessRow] = []
    for line in output.splitlines()[1:]:
        parts = line.split(None, 3)
        if len(parts) < 4:
            continue
        try:
            pid = int(parts[0])
        except ValueError:
            continue
        rows.append((pid, _to_float(parts[1]), _to_float(parts[2]), parts[3].strip()))
    return rows


def _to_float(value: str) -> float:
    try:
        return float(value)
    except ValueError:
        return 0.0


def _psutil_memory() -> MemoryTriple:
    vm = psutil.virtual_memory()
    total_mb = vm.total // MIB
    free_mb = vm.available // MIB
    return total_mb, total_mb - free_mb, free_mb


def _psutil_network_counters() -> Optional[ByteCounters]:
    counters = psutil.net_io_counters(pernic=True)
    received = sent = 0
    found = False
    for name, stats in counters.items():
        if name in LOOPBACK_INTERFACES:
            continue
        received += stats.bytes_recv
        sent += stats.bytes_sent
        found = True
    return (received, sent) if found else None


def _first_of(*queries: Callable[[], Optional[T]]) -> Optional[T]:
    for query in queries:
        try:
            value = query()
        except _QUERY_ERRORS as exc:
            logger.debug("Query %s failed: %s", getattr(query, "__name__", query), exc)
            continue
        if value:
            return value
    return None
