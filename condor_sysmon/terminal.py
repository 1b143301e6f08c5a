"""Raw keyboard mode and a background quit-key watcher."""

from __future__ import annotations

from contextlib import contextmanager
import logging
import os
import select
import termios
import threading
import tty
from typing import Iterator, Optional

logger = logging.getLogger(__name__)

QUIT_KEYS = frozenset({ord("q"), 27})  # q, ESC
POLL_TIMEOUT = 0.1


def _is_tty(fd: Optional[int]) -> bool:
    return fd is not None and os.isatty(fd)


@contextmanager
def raw_terminal(fd: Optional[int]) -> Iterator[None]:
    """Deliver keystrokes unbuffered and unechoed for the duration of the block.

    Terminal attributes are restored on exit, including when the block raises.
    Does nothing when ``fd`` is not a TTY.
    """
    if not _is_tty(fd):
        yield
        return

    saved = termios.tcgetattr(fd)
    tty.setcbreak(fd)
    try:
        yield
    finally:
        termios.tcsetattr(fd, termios.TCSADRAIN, saved)


class KeyWatcher:
    """Sets ``stop_event`` when a quit key arrives on ``fd``.

    Runs in a daemon thread; use as a context manager so the thread is
    stopped when the monitor exits.
    """

    def __init__(self, stop_event: threading.Event, fd: Optional[int]) -> None:
        self.stop_event = stop_event
        self.fd = fd
        self._running = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.fd is None or self.is_running:
            return
        self._running.set()
        self._thread = threading.Thread(target=self._listen, daemon=True, name="KeyWatcher")
        self._thread.start()

    def stop(self, timeout: float = 1.0) -> None:
        self._running.clear()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None

    def __enter__(self) -> KeyWatcher:
        self.start()
        return self

    def __exit__(self, *exc_info) -> None:
        self.stop()

    def _listen(self) -> None:
        while self._running.is_set():
            try:
                ready, _, _ = select.select([self.fd], [], [], POLL_TIMEOUT)
                if not ready:
                    continue
                data = os.read(self.fd, 1)
            except (OSError, ValueError) as exc:
                logger.debug("Keyboard input unavailable: %s", exc)
                return
            if not data:
                return
            if data[0] in QUIT_KEYS:
                self.stop_event.set()
                return


@contextmanager
def hidden_cursor(console) -> Iterator[None]:
    console.show_cursor(False)
    try:
        yield
    finally:
        console.show_cursor(True)
