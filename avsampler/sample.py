"""Cutting samples out of an input with a stream copy."""

from __future__ import annotations

import math
import os
import subprocess
from datetime import timedelta
from pathlib import Path

from avsampler import temporary
from avsampler.float import _display_f32, _to_f32
from avsampler.process import CommandBuilder, ProcessError, ensure_success

_UNKNOWN_TIMESTAMP = "Can't write packet with unknown timestamp"


def _start_secs(sample_start: timedelta | float, floor_to_sec: bool) -> float:
    secs = (
        sample_start.total_seconds()
        if isinstance(sample_start, timedelta)
        else float(sample_start)
    )
    secs = _to_f32(secs)
    if floor_to_sec:
        secs = float(math.floor(secs))
    return secs


def _with_extension(path: Path, ext: str) -> Path:
    return path.with_name(f"{path.stem}.{ext}" if ext else path.stem)


def sample_path(
    input: str | os.PathLike,
    sample_start: timedelta | float,
    floor_to_sec: bool,
    frames: int,
    temp_dir: str | os.PathLike | None,
) -> Path:
    """Where the sample for these settings is stored."""
    start = _display_f32(_start_secs(sample_start, floor_to_sec))
    # samples are always mkv, which copes with more inputs than e.g. mp4
    name = _with_extension(Path(input), f"sample{start}+{frames}f.mkv").name
    return temporary.process_dir(temp_dir) / name


def copy_command(
    input: str | os.PathLike,
    sample_start_s: float,
    frames: int,
    dest: str | os.PathLike,
    genpts: bool,
) -> CommandBuilder:
    """The ffmpeg command that stream-copies a sample."""
    # -ss before -i and -frames:v rather than -t
    return (
        CommandBuilder("ffmpeg")
        .arg("-y")
        .arg2_if(genpts, "-fflags", "+genpts")
        .arg2("-ss", float(sample_start_s))
        .arg2("-i", Path(input))
        .arg2("-frames:v", frames)
        .arg2("-c:v", "copy")
        .arg("-an")
        .arg("-sn")
        .arg(Path(dest))
    )


def _run(cmd: CommandBuilder) -> subprocess.CompletedProcess:
    try:
        return subprocess.run(cmd.argv(), stdin=subprocess.DEVNULL, capture_output=True)
    except OSError as err:
        raise ProcessError(f"ffmpeg copy: {err}") from err


def copy(
    input: str | os.PathLike,
    sample_start: timedelta | float,
    floor_to_sec: bool,
    frames: int,
    temp_dir: str | os.PathLike | None,
) -> Path:
    """Create a sample of `frames` frames from sample_start, reusing an existing one.

    Fast, as the video stream is copied rather than encoded.
    """
    start_s = _start_secs(sample_start, floor_to_sec)
    dest = sample_path(input, sample_start, floor_to_sec, frames, temp_dir)
    if dest.exists():
        return dest
    temporary.add(dest, temporary.TempKind.KEEPABLE)

    out = _run(copy_command(input, start_s, frames, dest, genpts=False))
    if out.returncode != 0 and _UNKNOWN_TIMESTAMP in out.stderr.decode(
        "utf-8", errors="replace"
    ):
        out = _run(copy_command(input, start_s, frames, dest, genpts=True))

    ensure_success("ffmpeg copy", out.returncode, out.stderr)
    return dest