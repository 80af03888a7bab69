"""VMAF scoring with ffmpeg's libvmaf filter."""

from __future__ import annotations

import logging
import os
import subprocess
from collections.abc import Iterator
from dataclasses import dataclass
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

_SCORE_PREFIX = "VMAF score: "
_READ_SIZE = 65536


@dataclass(frozen=True)
class VmafDone:
    """The final VMAF score."""

    score: float


def _parse_f32(text: str) -> float | None:
    if not text or not text.isascii() or "_" in text or text != text.strip():
        return None
    try:
        return _to_f32(float(text))
    except ValueError:
        return None


class VmafParser:
    """Turns chunks of ffmpeg stderr into progress and score updates."""

    def __init__(self) -> None:
        self.chunks = Chunks()

    def feed(self, chunk: bytes) -> VmafDone | Progress | StreamSizes | None:
        """Store a chunk and return the latest update it makes available."""
        self.chunks.push(chunk)

        line = self.chunks.rfind_line(lambda l: _SCORE_PREFIX in l)
        if line is not None:
            idx = line.find(_SCORE_PREFIX)
            score = _parse_f32(line[idx + len(_SCORE_PREFIX):].strip())
            return None if score is None else VmafDone(score)
        return parse_ffmpeg_out(self.chunks.last_line())


def _outputs(
    proc: subprocess.Popen, cmd_str: str
) -> Iterator[VmafDone | Progress | StreamSizes]:
    with child.tracked(proc):
        parser = VmafParser()
        parsed_done = False
        stderr = proc.stderr
        if stderr is not None:
            while chunk := stderr.read1(_READ_SIZE):
                out = parser.feed(chunk)
                if out is not None:
                    if isinstance(out, VmafDone):
                        parsed_done = True
                    yield out
        exit_ok_stderr("ffmpeg vmaf", proc.wait(), cmd_str, parser.chunks)
        if not parsed_done:
            raise cmd_err("could not parse ffmpeg vmaf score", cmd_str, parser.chunks)


def run(
    reference: str | os.PathLike,
    distorted: str | os.PathLike,
    filter_complex: str,
    fps: float | None = None,
) -> Iterator[VmafDone | Progress | StreamSizes]:
    """Start ffmpeg computing VMAF of distorted against reference.

    The returned iterator yields progress and the score, and raises
    ProcessError if ffmpeg fails or no score was found.
    """
    reference = Path(reference)
    distorted = Path(distorted)
    logger.info("vmaf %s vs reference %s", distorted.name, reference.name)

    cmd = (
        CommandBuilder("ffmpeg")
        .arg2_opt("-r", fps)
        .arg2("-i", distorted)
        .arg2_opt("-r", fps)
        .arg2("-i", reference)
        .arg2("-filter_complex", filter_complex)
        # unused streams can make ffmpeg leak memory
        .arg("-an")
        .arg("-sn")
        .arg("-dn")
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
        raise ProcessError(f"ffmpeg vmaf: {err}") from err
    return _outputs(proc, cmd_str)