import logging

from rich.logging import RichHandler


LOG_FORMAT = "%(message)s"
DATE_FMT = "[%X]"


def setup_logging(level: int = logging.INFO, rich_tracebacks: bool = True) -> None:
    """Route the standard logging module through rich so records match the monitor's output."""
    handler = RichHandler(rich_tracebacks=rich_tracebacks, show_path=False)

    logging.basicConfig(
        level=level,
        format=LOG_FORMAT,
        datefmt=DATE_FMT,
        handlers=[handler],
        force=True,
    )
