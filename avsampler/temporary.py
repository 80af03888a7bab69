"""Registry and clean-up of temporary files."""

from __future__ import annotations

import os
import secrets
import string
import threading
from enum import Enum
from functools import lru_cache
from pathlib import Path


class TempKind(Enum):
    """How a temporary file is treated on clean-up."""

    NOT_KEEPABLE = "not_keepable"
    """Always deleted at the end of the program."""
    KEEPABLE = "keepable"
    """Usually deleted but may be kept, e.g. with --keep."""


_TEMPS: dict[Path, TempKind] = {}
_LOCK = threading.Lock()


def add(file: str | os.PathLike, kind: TempKind) -> None:
    """Register a file as temporary so it can be deleted later."""
    with _LOCK:
        _TEMPS[Path(file)] = kind


def unadd(file: str | os.PathLike) -> bool:
    """Unregister a file; return whether it was registered."""
    with _LOCK:
        return _TEMPS.pop(Path(file), None) is not None


def _remove(path: Path) -> None:
    try:
        if path.is_dir():
            path.rmdir()
        else:
            path.unlink()
    except OSError:
        pass


def clean(keep_keepables: bool) -> None:
    """Delete registered files, sparing keepable ones if keep_keepables."""
    if keep_keepables:
        _clean_non_keepables()
    else:
        clean_all()


def clean_all() -> None:
    """Delete all registered temporary files, directories last."""
    with _LOCK:
        files = list(_TEMPS)
        _TEMPS.clear()
    for file in sorted(files, key=Path.is_dir):
        _remove(file)


def _clean_non_keepables() -> None:
    with _LOCK:
        matching = [f for f, k in _TEMPS.items() if k is TempKind.NOT_KEEPABLE]
    for file in sorted(matching, key=Path.is_dir):
        _remove(file)
        with _LOCK:
            _TEMPS.pop(file, None)


@lru_cache(maxsize=None)
def _subdir_name() -> str:
    alphabet = string.ascii_letters + string.digits
    return ".avsampler-" + "".join(secrets.choice(alphabet) for _ in range(12))


def process_dir(conf_parent: str | os.PathLike | None = None) -> Path:
    """Return a temporary directory distinct to this process, creating it.

    It lives under conf_parent, or the current working directory.
    """
    parent = Path(conf_parent) if conf_parent is not None else Path.cwd()
    temp_dir = parent / _subdir_name()
    if not temp_dir.exists():
        add(temp_dir, TempKind.KEEPABLE)
        temp_dir.mkdir(parents=True, exist_ok=True)
    return temp_dir