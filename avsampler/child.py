"""Tracking of child processes so they can be waited on before exiting."""

from __future__ import annotations

import logging
import subprocess
import sys
import threading
import time
from collections.abc import Iterator
from contextlib import contextmanager

logger = logging.getLogger(__name__)

_LOG_AFTER_SECS = 0.5
_RUNNING: list[subprocess.Popen] = []
_LOCK = threading.Lock()


def add(proc: subprocess.Popen) -> None:
    """Track a running process so wait() will wait for it."""
    with _LOCK:
        _RUNNING[:] = [p for p in _RUNNING if p.poll() is None]
        if proc.poll() is None:
            _RUNNING.append(proc)


def _report(message: str) -> None:
    if sys.stderr.isatty():
        print(f"{message}...", file=sys.stderr)
    else:
        logger.info(message)


def wait() -> None:
    """Wait for all tracked processes to exit; Ctrl-C aborts the wait."""
    deadline: float | None = time.monotonic() + _LOG_AFTER_SECS
    with _LOCK:
        procs = list(_RUNNING)
        _RUNNING.clear()
    try:
        for proc in procs:
            if deadline is not None:
                try:
                    proc.wait(timeout=max(0.0, deadline - time.monotonic()))
                except subprocess.TimeoutExpired:
                    _report("Waiting for child processes to exit")
                    deadline = None
            proc.wait()
    except KeyboardInterrupt:
        _report("Aborting wait for child processes")


@contextmanager
def tracked(proc: subprocess.Popen) -> Iterator[subprocess.Popen]:
    """Yield the process and track it on exit so it is waited on later."""
    try:
        yield proc
    finally:
        add(proc)