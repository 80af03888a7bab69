"""Helpers for running external processes and parsing ffmpeg output."""

from __future__ import annotations

import os
import re
import subprocess
from collections.abc import Callable, Iterable, Iterator
from dataclasses import dataclass
from datetime import timedelta
from typing import TypeVar, Union

from avsampler.float import _display_f32

T = TypeVar("T")

_MAX_CHUNK_LEN = 32_000
_READ_SIZE = 65536
_TIME_RE = re.compile(r"([0-9]{2}):([0-9]{2}):([0-9]{2})\.([0-9]{1,9})")
_UINT_RE = re.compile(r"\+?[0-9]+")


class ProcessError(RuntimeError):
    """An external process failed."""


@dataclass(frozen=True)
class Progress:
    """An ffmpeg progress line."""

    frame: int
    fps: float
    time: timedelta


@dataclass(frozen=True)
class StreamSizes:
    """Final ffmpeg stream sizes in bytes."""

    video: int
    audio: int
    subtitle: int
    other: int


FfmpegOut = Union[Progress, StreamSizes]


def _code_str(returncode: int | None) -> str:
    if returncode is None or returncode < 0:
        return "None"
    return str(returncode)


def _lossy(data: bytes) -> str:
    return data.decode("utf-8", errors="replace")


def ensure_success(name: str, returncode: int | None, stderr: bytes) -> None:
    """Raise ProcessError including stderr unless the process succeeded."""
    if returncode != 0:
        raise ProcessError(
            f"{name} exit code {_code_str(returncode)}\n---stderr---\n"
            f"{_lossy(stderr).strip()}\n------------"
        )


def exit_ok(name: str, returncode: int | None) -> None:
    """Raise ProcessError unless the exit code signals success."""
    if returncode != 0:
        raise ProcessError(f"{name} exit code {_code_str(returncode)}")


def exit_ok_stderr(
    name: str, returncode: int | None, cmd_str: str, chunks: Chunks
) -> None:
    """Like exit_ok but the error carries the command and captured stderr."""
    try:
        exit_ok(name, returncode)
    except ProcessError as err:
        raise cmd_err(err, cmd_str, chunks) from None


def cmd_err(err: object, cmd_str: str, chunks: Chunks) -> ProcessError:
    """Build an error describing a failed command and its stderr."""
    return ProcessError(
        f"{err}\n----cmd-----\n{cmd_str}\n---stderr---\n"
        f"{_lossy(bytes(chunks)).strip()}\n------------"
    )


def _parse_label_substr(label: str, line: str) -> str | None:
    """Parse an ffmpeg `label=  value ` style substring."""
    idx = line.find(label)
    if idx < 0:
        return None
    rest = line[idx + len(label):].lstrip()
    if not rest:
        return None
    return rest.split(maxsplit=1)[0]


def _parse_label_size(label: str, line: str) -> int | None:
    size = _parse_label_substr(label, line)
    if size is None or not size.endswith("kB"):
        return None
    number = size[:-2]
    if not _UINT_RE.fullmatch(number):
        return None
    return int(number) * 1024


def _parse_float(text: str) -> float | None:
    if "_" in text:
        return None
    try:
        return float(text)
    except ValueError:
        return None


def _parse_time(text: str) -> timedelta | None:
    match = _TIME_RE.fullmatch(text)
    if match is None:
        return None
    hours, minutes, seconds = (int(g) for g in match.groups()[:3])
    if hours > 23 or minutes > 59 or seconds > 59:
        return None
    nanos = int(match.group(4).ljust(9, "0"))
    return timedelta(
        hours=hours, minutes=minutes, seconds=seconds, microseconds=nanos // 1000
    )


def parse_ffmpeg_out(line: str) -> Progress | StreamSizes | None:
    """Parse an ffmpeg progress or stream-size line."""
    if line.startswith("frame="):
        frame = _parse_label_substr("frame=", line)
        if frame is None or not _UINT_RE.fullmatch(frame):
            return None
        fps_text = _parse_label_substr("fps=", line)
        fps = _parse_float(fps_text) if fps_text is not None else None
        if fps is None:
            return None
        time_text = _parse_label_substr("time=", line)
        time = _parse_time(time_text) if time_text is not None else None
        if time is None:
            return None
        return Progress(frame=int(frame), fps=fps, time=time)
    if line.startswith("video:") and "muxing overhead" in line:
        sizes = [
            _parse_label_size(label, line)
            for label in ("video:", "audio:", "subtitle:", "other streams:")
        ]
        if any(s is None for s in sizes):
            return None
        video, audio, subtitle, other = sizes
        return StreamSizes(video=video, audio=audio, subtitle=subtitle, other=other)
    return None


class Chunks:
    """Bounded storage of process output, about 32k bytes at most.

    A chunk ending in a carriage return is overwritten by the next push,
    the way a terminal redraws progress lines.
    """

    def __init__(self) -> None:
        self._out = bytearray()
        self._trunc_next_push: int | None = None

    def __bytes__(self) -> bytes:
        return bytes(self._out)

    def push(self, chunk: bytes) -> None:
        """Append a chunk, dropping the oldest lines when over the limit."""
        if self._trunc_next_push is not None:
            del self._out[self._trunc_next_push:]
            self._trunc_next_push = None

        self._out.extend(chunk)

        while len(self._out) > _MAX_CHUNK_LEN:
            self._rm_oldest_line()

        if chunk.endswith(b"\r"):
            self._trunc_next_push = self._out.rfind(b"\n") + 1

    def _rm_oldest_line(self) -> None:
        next_eol = self._out.find(b"\n")
        if next_eol < 0:
            next_eol = len(self._out) - 1
        if self._out[next_eol + 1:next_eol + 2] == b"\r":
            next_eol += 1
        del self._out[: next_eol + 1]

    def _lines_reversed(self) -> Iterator[str]:
        for line in reversed(self._out.split(b"\n")):
            for part in reversed(line.split(b"\r")):
                try:
                    yield part.decode("utf-8")
                except UnicodeDecodeError:
                    continue

    def rfind_line(self, predicate: Callable[[str], bool]) -> str | None:
        """Return the latest line matching the predicate."""
        return self.rfind_line_map(lambda line: line if predicate(line) else None)

    def rfind_line_map(self, func: Callable[[str], T | None]) -> T | None:
        """Return the first non-None result of func over lines, latest first."""
        for line in self._lines_reversed():
            out = func(line)
            if out is not None:
                return out
        return None

    def last_line(self) -> str:
        """Return the last non-empty line, or an empty string."""
        return self.rfind_line(bool) or ""


def arg_string(value: object) -> str:
    """Convert a command argument to its string form."""
    if isinstance(value, str):
        return value
    if isinstance(value, os.PathLike):
        return os.fspath(value)
    if isinstance(value, float):
        return _display_f32(value)
    return str(value)


class CommandBuilder:
    """Accumulates a program and its arguments."""

    def __init__(self, program: str) -> None:
        self.program = program
        self._args: list[str] = []

    def arg(self, value: object) -> CommandBuilder:
        self._args.append(arg_string(value))
        return self

    def args(self, values: Iterable[object]) -> CommandBuilder:
        for value in values:
            self.arg(value)
        return self

    def arg2(self, a: object, b: object) -> CommandBuilder:
        """Add two arguments."""
        return self.arg(a).arg(b)

    def arg2_opt(self, a: object, b: object | None) -> CommandBuilder:
        """Add two arguments unless the second is None."""
        return self if b is None else self.arg2(a, b)

    def arg2_if(self, condition: bool, a: object, b: object) -> CommandBuilder:
        """Add two arguments if condition holds."""
        return self.arg2(a, b) if condition else self

    def arg_if(self, condition: bool, a: object) -> CommandBuilder:
        """Add an argument if condition holds."""
        return self.arg(a) if condition else self

    def to_cmd_str(self) -> str:
        """Readable shell-like form of the command."""
        return " ".join([self.program, *self._args])

    def argv(self) -> list[str]:
        """The full argument vector, program first."""
        return [self.program, *self._args]


class FfmpegOutStream:
    """Iterates parsed ffmpeg output from a process with binary piped stderr.

    Raises ProcessError at the end if the process fails.
    """

    def __init__(self, proc: subprocess.Popen, name: str, cmd_str: str) -> None:
        self.proc = proc
        self.name = name
        self.cmd_str = cmd_str
        self.chunks = Chunks()

    def __iter__(self) -> Iterator[Progress | StreamSizes]:
        stderr = self.proc.stderr
        if stderr is not None:
            while chunk := stderr.read1(_READ_SIZE):
                self.chunks.push(chunk)
                out = parse_ffmpeg_out(self.chunks.last_line())
                if out is not None:
                    yield out
        exit_ok_stderr(self.name, self.proc.wait(), self.cmd_str, self.chunks)

    def wait(self) -> int:
        """Wait for the process to exit and return its exit code."""
        return self.proc.wait()