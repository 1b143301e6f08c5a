"""Entry point for the condor command line tool."""

from __future__ import annotations

import argparse
import logging
import sys
from typing import List, NoReturn, Optional

from rich.console import Console

from .log import setup_logging
from .monitor import Monitor, MonitorConfig
from .sources import UnsupportedSource, select_source
from .system_state import MetricsCollector

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_USAGE = 64
EXIT_SOFTWARE = 70


class UsageError(Exception):
    def __init__(self, message: str, usage: str) -> None:
        super().__init__(message)
        self.usage = usage


class _Parser(argparse.ArgumentParser):
    def error(self, message: str) -> NoReturn:
        raise UsageError(message, self.format_usage())


def build_parser() -> argparse.ArgumentParser:
    parser = _Parser(prog="condor", description="个人开发效率脚本工具集。")
    parser.add_argument("-v", "--verbose", action="store_true", help="输出调试日志")
    commands = parser.add_subparsers(dest="command", metavar="<command>", required=True)

    sysmon = commands.add_parser("sysmon", help="实时监控系统资源使用情况", description="实时监控系统资源使用情况")
    sysmon.add_argument("-c", "--cpu", action="store_true", help="只监控CPU使用情况")
    sysmon.add_argument("-m", "--memory", action="store_true", help="只监控内存使用情况")
    sysmon.add_argument("-n", "--network", action="store_true", help="只监控网络使用情况")
    sysmon.add_argument("-r", "--refresh", type=_refresh_seconds, default=1, help="刷新间隔，单位秒")
    sysmon.add_argument("-t", "--top", action="store_true", help="显示资源占用前5的进程")
    sysmon.set_defaults(handler=run_sysmon)
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    try:
        args = parser.parse_args(argv)
    except UsageError as exc:
        err = Console(stderr=True)
        err.print(str(exc), style="red", markup=False, highlight=False)
        err.print(exc.usage, markup=False, highlight=False)
        return EXIT_USAGE

    setup_logging(logging.DEBUG if args.verbose else logging.INFO)
    return args.handler(args)


def run_sysmon(args: argparse.Namespace) -> int:
    config = MonitorConfig.from_flags(
        cpu=args.cpu,
        memory=args.memory,
        network=args.network,
        refresh=args.refresh,
        top=args.top,
    )
    source = select_source()
    if isinstance(source, UnsupportedSource):
        logger.warning("当前平台 %s 不受支持，将显示占位数据", source.platform)

    logger.info("正在启动系统监控...")
    logger.info("提示: 按 q 键退出监控")
    monitor = Monitor(config, MetricsCollector(source), input_fd=_input_fd())
    try:
        monitor.run()
    except KeyboardInterrupt:
        pass
    except Exception as exc:
        logger.error("监控过程中发生错误: %s", exc)
        logger.debug("Monitor loop failed", exc_info=True)
        return EXIT_SOFTWARE

    logger.info("系统监控已退出")
    return EXIT_OK


def _refresh_seconds(value: str) -> int:
    try:
        seconds = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"刷新间隔必须是整数: {value!r}") from None
    if seconds < 1:
        raise argparse.ArgumentTypeError(f"刷新间隔不能小于 1 秒: {seconds}")
    return seconds


def _input_fd() -> Optional[int]:
    if sys.stdin is None or not sys.stdin.isatty():
        return None
    return sys.stdin.fileno()


if __name__ == "__main__":
    sys.exit(main())
