"""Progress logging and human-readable formatting."""

from __future__ import annotations

import logging
import math
import time
from collections.abc import Callable
from datetime import timedelta

from avsampler.float import _display_f32

_MINUTE = 60.0
_HOUR = 60 * _MINUTE
_DAY = 24 * _HOUR
_WEEK = 7 * _DAY
_YEAR = 365 * _DAY
_UNITS = (
    (_YEAR, "year"),
    (_WEEK, "week"),
    (_DAY, "day"),
    (_HOUR, "hour"),
    (_MINUTE, "minute"),
    (1.0, "second"),
)
_BINARY_PREFIXES = ("Ki", "Mi", "Gi", "Ti", "Pi", "Ei", "Zi", "Yi")


def _secs(value: float | timedelta) -> float:
    if isinstance(value, timedelta):
        return value.total_seconds()
    return float(value)


def human_duration(seconds: float | timedelta) -> str:
    """Describe a duration roughly, e.g. '3 minutes'."""
    secs = _secs(seconds)
    idx = len(_UNITS) - 1
    for i, (unit, _) in enumerate(_UNITS[:-1]):
        next_unit = _UNITS[i + 1][0]
        if secs + next_unit / 2 >= unit + unit / 2:
            idx = i
            break
    unit, name = _UNITS[idx]
    count = math.floor(secs / unit + 0.5)
    if idx < len(_UNITS) - 1:
        count = max(count, 2)
    return f"{count} {name}" if count == 1 else f"{count} {name}s"


def human_bytes(size: int) -> str:
    """Describe a byte count using binary prefixes, e.g. '1.50 MiB'."""
    amount = float(size)
    if amount < 1024:
        return f"{amount:.0f} B"
    prefix = 0
    while amount >= 1024 and prefix < len(_BINARY_PREFIXES):
        amount /= 1024
        prefix += 1
    return f"{amount:.2f} {_BINARY_PREFIXES[prefix - 1]}B"


class ProgressLogger:
    """Logs progress of a long stream action at growing intervals.

    The first message comes after 16 seconds, then after 32, 64 and so on.
    """

    def __init__(
        self,
        target: str,
        start: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._logger = logging.getLogger(target)
        self._clock = clock
        self._start = clock() if start is None else start
        self._log_count = 0

    def _next_log(self) -> float:
        return float(2 ** (self._log_count + 4))

    def update(
        self, total: float | timedelta, completed: float | timedelta, fps: float
    ) -> None:
        """Record progress and log it if the next interval has passed."""
        completed_s = _secs(completed)
        if not self._logger.isEnabledFor(logging.INFO) or completed_s <= 0:
            return
        total_s = _secs(total)
        done = completed_s / total_s if total_s else math.inf
        elapsed = self._clock() - self._start

        before = self._log_count
        while elapsed > self._next_log():
            self._log_count += 1
        if before == self._log_count:
            return

        eta = max(elapsed / done - elapsed, 0.0)
        self._logger.info(
            "%.0f%%, %s fps, eta %s", done * 100, _display_f32(fps), human_duration(eta)
        )