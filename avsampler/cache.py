"""File system caching of sample encode results."""

from __future__ import annotations

import dataclasses
import hashlib
import os
import sqlite3
import struct
import sys
from contextlib import closing
from dataclasses import dataclass
from datetime import timedelta
from enum import Enum
from pathlib import Path
from typing import Any

from platformdirs import user_cache_dir

from avsampler.ffmpeg import FfmpegEncodeArgs
from avsampler.results import EncodeResult, Scoring

_LOCK_MAX_WAIT_SECS = 2.0


@dataclass(frozen=True)
class Key:
    """Cache key for a sample encode."""

    digest: bytes

    def __str__(self) -> str:
        return self.digest.hex()


def default_cache_path() -> Path:
    """Location of the sample encode cache database."""
    return Path(user_cache_dir("avsampler")) / "sample-encode-cache.sqlite3"


class ResultCache:
    """A persistent store of encode results by key."""

    def __init__(self, path: str | os.PathLike | None = None) -> None:
        self.path = Path(path) if path is not None else default_cache_path()

    def _connect(self) -> sqlite3.Connection:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(self.path, timeout=_LOCK_MAX_WAIT_SECS)
        conn.execute(
            "CREATE TABLE IF NOT EXISTS results (key TEXT PRIMARY KEY, data TEXT NOT NULL)"
        )
        return conn

    def get(self, key: Key) -> EncodeResult | None:
        """Return the stored result for key, if any."""
        with closing(self._connect()) as conn:
            row = conn.execute(
                "SELECT data FROM results WHERE key = ?", (str(key),)
            ).fetchone()
        return None if row is None else EncodeResult.from_json(row[0])

    def put(self, key: Key, result: EncodeResult) -> None:
        """Store result under key, replacing any previous one."""
        with closing(self._connect()) as conn, conn:
            conn.execute(
                "INSERT OR REPLACE INTO results (key, data) VALUES (?, ?)",
                (str(key), result.to_json()),
            )


def _feed_len(hasher: Any, n: int) -> None:
    hasher.update(struct.pack("<Q", n))


def _feed_value(hasher: Any, value: Any) -> None:
    if value is None:
        hasher.update(b"N")
    elif isinstance(value, bool):
        hasher.update(b"B\x01" if value else b"B\x00")
    elif isinstance(value, int):
        text = str(value).encode()
        hasher.update(b"I")
        _feed_len(hasher, len(text))
        hasher.update(text)
    elif isinstance(value, float):
        hasher.update(b"F" + struct.pack("<d", value))
    elif isinstance(value, Enum):
        hasher.update(b"E")
        _feed_value(hasher, value.value)
    elif isinstance(value, timedelta):
        hasher.update(b"D")
        _feed_value(hasher, value // timedelta(microseconds=1))
    elif isinstance(value, os.PathLike):
        _feed_value(hasher, os.fspath(value))
    elif isinstance(value, str):
        data = value.encode("utf-8", errors="surrogateescape")
        hasher.update(b"S")
        _feed_len(hasher, len(data))
        hasher.update(data)
    elif isinstance(value, bytes):
        hasher.update(b"Y")
        _feed_len(hasher, len(value))
        hasher.update(value)
    elif isinstance(value, (tuple, list)):
        hasher.update(b"L")
        _feed_len(hasher, len(value))
        for item in value:
            _feed_value(hasher, item)
    elif dataclasses.is_dataclass(value) and not isinstance(value, type):
        hasher.update(b"C")
        _feed_value(hasher, type(value).__name__)
        for f in dataclasses.fields(value):
            _feed_value(hasher, getattr(value, f.name))
    else:
        raise TypeError(f"cannot hash {type(value).__name__}")


def hash_encode(input_info: Any, enc_args: FfmpegEncodeArgs, scoring_info: Any) -> bytes:
    """A 32-byte digest of everything that determines a sample encode result."""
    hasher = hashlib.blake2b(digest_size=32)
    _feed_value(hasher, input_info)
    enc_args.sample_encode_hash(hasher)
    _feed_value(hasher, scoring_info)
    return hasher.digest()


def cached_encode(
    cache: bool,
    sample: str | os.PathLike,
    input_duration: timedelta,
    input_extension: str | None,
    input_size: int,
    full_pass: bool,
    enc_args: FfmpegEncodeArgs,
    scoring: Scoring,
    store: ResultCache | None = None,
) -> tuple[EncodeResult | None, Key | None]:
    """Look up a stored result for the same sample and settings.

    Returns the result (marked as from the cache) if found, and the key to
    store a new result under; (None, None) if caching is off or failing.
    """
    if not cache:
        return None, None

    # the sample file name (input name, frames and start) plus the input's
    # duration, extension and size identify an input well enough and are
    # far quicker than hashing the file
    input_info = (
        Path(sample).name,
        input_duration,
        input_extension,
        input_size,
        full_pass,
    )
    key = Key(hash_encode(input_info, enc_args, scoring))

    try:
        cached = (store or ResultCache()).get(key)
    except (sqlite3.Error, OSError, ValueError) as err:
        print(f"cache error: {err}", file=sys.stderr)
        return None, None

    if cached is None:
        return None, key
    return dataclasses.replace(cached, from_cache=True), key


def cache_result(key: Key, result: EncodeResult, store: ResultCache | None = None) -> None:
    """Store a result; failures are reported but not raised."""
    try:
        (store or ResultCache()).put(key, result)
    except (sqlite3.Error, OSError) as err:
        print(f"cache error: {err}", file=sys.stderr)