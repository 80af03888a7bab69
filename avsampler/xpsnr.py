"""XPSNR scoring with ffmpeg's xpsnr filter."""

from __future__ import annotations

import logging
import math
import os
import subprocess
from collections.abc import Iterator
from dataclasses import dataclass
from itertools import takewhile
from pathlib import Path

from avsampler import child
from avsampler.float import _to_f32
from avsampler.process import (
    Chunks,
    CommandBuilder,
    ProcessError,
    Progress,
    StreamSizes,
    cmd_err,
    exit_ok_stderr,
    parse_ffmpeg_out,
)

logger = logging.getLogger(__name__)

_MIN_PREFIX = "minimum: "
_READ_SIZE = 65536


@dataclass(frozen=True)
class XpsnrDone:
    """The final XPSNR score."""

    score: float


def _parse_f32(text: str) -> float | None:
    if not text or not text.isascii() or "_" in text:
        return None
    try:
        return _to_f32(float(text))
    except ValueError:
        return None


def score_from_line(line: str) -> float | None:
    """Read the minimum score from an XPSNR summary line.

    E.g. "XPSNR  y: 33.6547  u: 41.8741  v: 42.2571  (minimum: 33.6547)".
    """
    if "XPSNR" not in line:
        return None
    idx = line.find(_MIN_PREFIX)
    if idx < 0:
        return None
    tail = line[idx + len(_MIN_PREFIX):]
    if tail.startswith("inf"):
        return math.inf
    number = "".join(takewhile(lambda c: c == "." or c.isnumeric(), tail))
    if not number:
        return None
    return _parse_f32(number)


class XpsnrParser:
    """Turns chunks of ffmpeg stderr into progress and score updates."""

    def __init__(self) -> None:
        self.chunks = Chunks()

    def feed(self, chunk: bytes) -> XpsnrDone | Progress | StreamSizes | None:
        """Store a chunk and return the latest update it makes available."""
        self.chunks.push(chunk)

        score = self.chunks.rfind_line_map(score_from_line)
        if score is not None:
            return XpsnrDone(score)
        return parse_ffmpeg_out(self.chunks.last_line())


def _outputs(
    proc: subprocess.Popen, cmd_str: str
) -> Iterator[XpsnrDone | Progress | StreamSizes]:
    with child.tracked(proc):
        parser = XpsnrParser()
        parsed_done = False
        stderr = proc.stderr
        if stderr is not None:
            while chunk := stderr.read1(_READ_SIZE):
                out = parser.feed(chunk)
                if out is not None:
                    if isinstance(out, XpsnrDone):
                        parsed_done = True
                    yield out
        exit_ok_stderr("ffmpeg xpsnr", proc.wait(), cmd_str, parser.chunks)
        if not parsed_done:
            raise cmd_err("could not parse ffmpeg xpsnr score", cmd_str, parser.chunks)


def run(
    reference: str | os.PathLike,
    distorted: str | os.PathLike,
    filter_complex: str,
    fps: float | None = None,
) -> Iterator[XpsnrDone | Progress | StreamSizes]:
    """Start ffmpeg computing XPSNR of distorted against reference.

    The returned iterator yields progress and the score, and raises
    ProcessError if ffmpeg fails or no score was found.
    """
    reference = Path(reference)
    distorted = Path(distorted)
    logger.info("xpsnr %s vs reference %s", distorted.name, reference.name)

    cmd = (
        CommandBuilder("ffmpeg")
        .arg2_opt("-r", fps)
        .arg2("-i", reference)
        .arg2_opt("-r", fps)
        .arg2("-i", distorted)
        .arg2("-filter_complex", filter_complex)
        .arg2("-f", "null")
        .arg("-")
    )
    cmd_str = cmd.to_cmd_str()
    logger.debug("cmd `%s`", cmd_str)
    try:
        proc = subprocess.Popen(
            cmd.argv(),
            stdin=subprocess.DEVNULL,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.PIPE,
        )
    except OSError as err:
        raise ProcessError(f"ffmpeg xpsnr: {err}") from err
    return _outputs(proc, cmd_str)