"""Terminal rendering for monitor samples."""

from __future__ import annotations

import math
from typing import TYPE_CHECKING, List, Optional, Sequence

from rich import box
from rich.console import Group, RenderableType
from rich.table import Table
from rich.text import Text

from .system_state import CpuReading, MemoryReading, NetworkCounters, NetworkInterface, ProcessUsage, Sample

if TYPE_CHECKING:
    from .monitor import MonitorConfig, NetworkRates

BAR_WIDTH = 50
WARN_THRESHOLD = 60
CRITICAL_THRESHOLD = 85
DIVIDER = "─" * 49


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def usage_style(percent: float) -> str:
    if percent < WARN_THRESHOLD:
        return "bright_green"
    if percent < CRITICAL_THRESHOLD:
        return "bright_yellow"
    return "bright_red"


def filled_cells(percent: float, width: int = BAR_WIDTH) -> int:
    clamped = min(max(percent, 0.0), 100.0)
    return round_half_up(clamped / 100 * width)


def usage_bar(percent: float, width: int = BAR_WIDTH) -> Text:
    filled = filled_cells(percent, width)
    bar = Text("[")
    bar.append("|" * filled, style=usage_style(percent))
    bar.append(" " * (width - filled))
    bar.append("]")
    return bar


def usage_line(label: str, percent: float) -> Text:
    return Text.assemble(label, (f"{round_half_up(percent)}%", usage_style(percent)), " ", usage_bar(percent))


def format_size(num: float) -> str:
    if num < 1024:
        return f"{int(num)} B"
    value = float(num)
    for suffix in ["KB", "MB", "GB"]:
        value /= 1024
        if value < 1024 or suffix == "GB":
            return f"{value:.2f} {suffix}"
    return f"{value:.2f} GB"


def format_speed(bytes_per_second: int) -> str:
    return f"{format_size(bytes_per_second)}/s"


def render_header(refresh: int) -> Text:
    header = Text()
    header.append(f"系统资源监控面板 - 刷新间隔: {refresh}秒\n", style="bright_cyan")
    header.append(f"{DIVIDER}\n", style="bright_cyan")
    header.append("按 q 键或 ESC 键退出监控\n", style="bright_yellow")
    return header


def render_cpu(cpu: CpuReading) -> Group:
    return Group(
        Text("■ CPU 信息", style="bright_green"),
        Text(f"CPU 型号: {cpu.model}"),
        Text(f"CPU 核心数: {cpu.cores}"),
        usage_line("CPU 使用率: ", cpu.percent),
        Text(),
    )


def render_memory(memory: MemoryReading) -> Group:
    return Group(
        Text("■ 内存信息", style="bright_blue"),
        Text(f"总内存: {format_size(memory.total_mb * 1024 * 1024)}"),
        Text(f"已使用: {format_size(memory.used_mb * 1024 * 1024)}"),
        Text(f"可用: {format_size(memory.free_mb * 1024 * 1024)}"),
        usage_line("使用率: ", memory.percent),
        Text(),
    )


def render_network(
    counters: NetworkCounters, rates: NetworkRates, interfaces: Sequence[NetworkInterface]
) -> Group:
    lines: List[RenderableType] = [Text("■ 网络信息", style="bright_magenta")]
    for interface in interfaces:
        lines.append(Text(f"接口: {interface.name}"))
        for address in interface.addresses:
            family = "IPv6" if ":" in address else "IPv4"
            lines.append(Text(f"  地址: {address} ({family})"))
    lines.extend(
        [
            Text(f"  下载速度: {format_speed(rates.received_per_second)}"),
            Text(f"  上传速度: {format_speed(rates.sent_per_second)}"),
            Text(f"  累计下载: {format_size(counters.received_bytes)}"),
            Text(f"  累计上传: {format_size(counters.sent_bytes)}"),
            Text(),
        ]
    )
    return Group(*lines)


def render_processes(processes: Sequence[ProcessUsage]) -> Group:
    title = Text("■ 资源占用前5的进程", style="bright_cyan")
    if not processes:
        return Group(title, Text("无法获取进程信息"), Text())

    table = Table(box=box.SIMPLE_HEAD)
    table.add_column("PID", justify="right")
    table.add_column("CPU(%)", justify="right")
    table.add_column("内存(%)", justify="right")
    table.add_column("进程名")
    for proc in processes:
        table.add_row(
            str(proc.pid),
            f"{proc.cpu_percent:.1f}",
            f"{proc.memory_percent:.1f}",
            proc.name,
            style=_process_style(proc.cpu_percent),
        )
    return Group(title, table)


def render_sample(sample: Sample, config: MonitorConfig, rates: NetworkRates) -> Group:
    """Build the full screen for one tick; sections follow the enabled metric groups."""
    sections: List[RenderableType] = [render_header(config.refresh)]
    if config.show_cpu and sample.cpu is not None:
        sections.append(render_cpu(sample.cpu))
    if config.show_memory and sample.memory is not None:
        sections.append(render_memory(sample.memory))
    if config.show_network and sample.network is not None:
        sections.append(render_network(sample.network, rates, sample.interfaces))
    if config.show_top:
        sections.append(render_processes(sample.top_processes))
    return Group(*sections)


def _process_style(cpu_percent: float) -> Optional[str]:
    if cpu_percent > 50:
        return "bright_red"
    if cpu_percent > 20:
        return "bright_yellow"
    return None
