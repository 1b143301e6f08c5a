"""Sampling and full-screen redraw loop for the sysmon command."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
import logging
import threading
import time
from typing import Callable, Optional

from rich.console import Console

from .formatting import render_sample
from .system_state import MetricsCollector, NetworkCounters, Sample
from .terminal import KeyWatcher, hidden_cursor, raw_terminal

logger = logging.getLogger(__name__)


class MonitorState(Enum):
    STARTING = "starting"
    SAMPLING = "sampling"
    RENDERING = "rendering"
    WAITING = "waiting"
    STOPPING = "stopping"
    STOPPED = "stopped"


@dataclass(frozen=True)
class MonitorConfig:
    refresh: int = 1
    show_cpu: bool = True
    show_memory: bool = True
    show_network: bool = True
    show_top: bool = False

    @classmethod
    def from_flags(
        cls,
        *,
        cpu: bool = False,
        memory: bool = False,
        network: bool = False,
        refresh: int = 1,
        top: bool = False,
    ) -> MonitorConfig:
        """Build a config from command-line flags; no group flag selects all three."""
        if refresh < 1:
            raise ValueError(f"refresh interval must be at least 1 second, got {refresh}")
        select_all = not (cpu or memory or network)
        return cls(
            refresh=refresh,
            show_cpu=select_all or cpu,
            show_memory=select_all or memory,
            show_network=select_all or network,
            show_top=top,
        )


@dataclass(frozen=True)
class NetworkRates:
    received_per_second: int = 0
    sent_per_second: int = 0


def compute_rate(previous: int, current: int, interval: int) -> int:
    """Bytes per second between two cumulative readings; a counter reset yields 0."""
    return max(0, current - previous) // interval


@dataclass
class NetworkBaseline:
    received_bytes: int = 0
    sent_bytes: int = 0

    def advance(self, current: NetworkCounters, interval: int) -> NetworkRates:
        rates = NetworkRates(
            received_per_second=compute_rate(self.received_bytes, current.received_bytes, interval),
            sent_per_second=compute_rate(self.sent_bytes, current.sent_bytes, interval),
        )
        self.received_bytes = current.received_bytes
        self.sent_bytes = current.sent_bytes
        return rates


class Monitor:
    """Collect -> render -> wait until a quit key is seen.

    The stop flag is only checked between ticks, so a quit request takes
    effect after the current wait finishes and never interrupts a render.
    Errors raised by a tick propagate to the caller once the terminal has
    been restored.
    """

    def __init__(
        self,
        config: MonitorConfig,
        collector: MetricsCollector,
        console: Optional[Console] = None,
        input_fd: Optional[int] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.config = config
        self.collector = collector
        self.console = console or Console()
        self.input_fd = input_fd
        self.stop_event = threading.Event()
        self.baseline = NetworkBaseline()
        self.state = MonitorState.STOPPED
        self.ticks = 0
        self._sleep = sleep

    def request_stop(self) -> None:
        self.stop_event.set()

    def run(self) -> None:
        self.state = MonitorState.STARTING
        if self.config.show_network:
            seed = self.collector.collect_network()
            self.baseline = NetworkBaseline(seed.received_bytes, seed.sent_bytes)

        try:
            with raw_terminal(self.input_fd), hidden_cursor(self.console), KeyWatcher(
                self.stop_event, self.input_fd
            ):
                while not self.stop_event.is_set():
                    self.state = MonitorState.SAMPLING
                    sample = self.sample()
                    self.state = MonitorState.RENDERING
                    self.render(sample)
                    self.ticks += 1
                    self.state = MonitorState.WAITING
                    self._sleep(self.config.refresh)
                self.state = MonitorState.STOPPING
                logger.debug("Stop requested after %d ticks", self.ticks)
        finally:
            self.state = MonitorState.STOPPED

    def sample(self) -> Sample:
        config = self.config
        collector = self.collector
        return Sample(
            timestamp=datetime.now(),
            cpu=collector.collect_cpu() if config.show_cpu else None,
            memory=collector.collect_memory() if config.show_memory else None,
            network=collector.collect_network() if config.show_network else None,
            interfaces=collector.collect_interfaces() if config.show_network else (),
            top_processes=collector.collect_top_processes() if config.show_top else (),
        )

    def render(self, sample: Sample) -> None:
        rates = NetworkRates()
        if sample.network is not None:
            rates = self.baseline.advance(sample.network, self.config.refresh)
        screen = render_sample(sample, self.config, rates)
        self.console.clear()
        self.console.print(screen)
