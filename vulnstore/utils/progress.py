"""Terminal spinner and progress bar that fall silent in quiet mode."""

from __future__ import annotations

import itertools
import sys
import threading
from typing import TextIO

from tqdm import tqdm

_FRAMES = "⠋⠙⠹⠸⠼⠴⠦⠧⠇⠏"
_quiet = False


def set_quiet(quiet: bool) -> None:
    """Turn quiet mode on or off for spinners and bars created afterwards."""
    global _quiet
    _quiet = bool(quiet)


class Spinner:
    """Animated spinner drawn on a background thread."""

    def __init__(self, suffix: str = "", stream: TextIO | None = None, interval: float = 0.1):
        self.suffix = suffix
        self._enabled = not _quiet
        self._stream = stream or sys.stderr
        self._interval = interval
        self._stopped = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def running(self) -> bool:
        return self._thread is not None

    def start(self) -> None:
        if self._enabled and self._thread is None:
            self._stopped.clear()
            self._thread = threading.Thread(target=self._spin, daemon=True)
            self._thread.start()

    def stop(self) -> None:
        if self._thread is None:
            return
        self._stopped.set()
        self._thread.join()
        self._thread = None
        self._stream.write("\r" + " " * (len(self.suffix) + 1) + "\r")
        self._stream.flush()

    def _spin(self) -> None:
        for frame in itertools.cycle(_FRAMES):
            self._stream.write(f"\r{frame}{self.suffix}")
            self._stream.flush()
            if self._stopped.wait(self._interval):
                return

    def __enter__(self) -> Spinner:
        self.start()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.stop()


class ProgressBar:
    """Progress bar over a known number of steps."""

    def __init__(self, total: int, stream: TextIO | None = None):
        self.total = total
        self.count = 0
        self._bar = None if _quiet else tqdm(total=total, file=stream)

    def increment(self) -> None:
        self.count += 1
        if self._bar is not None:
            self._bar.update(1)

    def finish(self) -> None:
        if self._bar is not None:
            self._bar.close()

    def __enter__(self) -> ProgressBar:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.finish()