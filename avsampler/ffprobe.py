"""Probing of media files with ffprobe."""

from __future__ import annotations

import json
import logging
import math
import os
import subprocess
import sys
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

_HEADER_LEN = 8192
_U32_MAX = 0xFFFF_FFFF
_MAX_DURATION_SECS = timedelta.max.total_seconds()
_HEIF_BRANDS = {
    b"heic", b"heix", b"hevc", b"hevx", b"heim", b"heis",
    b"mif1", b"msf1", b"avif", b"avis",
}


class ProbeError(Exception):
    """A value could not be read from the probe."""


@dataclass
class Ffprobe:
    """What ffprobe found out about a media file.

    ``duration`` and ``fps`` hold a ProbeError instead of a value when
    they could not be determined.
    """

    duration: timedelta | ProbeError
    fps: float | ProbeError
    has_audio: bool
    max_audio_channels: int | None
    resolution: tuple[int, int] | None
    is_image: bool
    pix_fmt: str | None

    def nframes(self) -> int:
        """Estimated number of frames; raises ProbeError if unknown."""
        if isinstance(self.fps, ProbeError):
            raise self.fps
        if isinstance(self.duration, ProbeError):
            raise self.duration
        frames = _round_half_away(self.fps * self.duration.total_seconds())
        if _is_normal(frames) and frames > 0:
            return int(frames)
        raise ProbeError(f"Invalid nframes {_fmt_f64(frames)}")


def _round_half_away(value: float) -> float:
    if not math.isfinite(value):
        return value
    return math.copysign(math.floor(abs(value) + 0.5), value)


def _is_normal(value: float) -> bool:
    return math.isfinite(value) and abs(value) >= sys.float_info.min


def _fmt_f64(value: float) -> str:
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "inf" if value > 0 else "-inf"
    if value == 0 and math.copysign(1.0, value) < 0:
        return "-0"
    if value.is_integer():
        return str(int(value))
    return repr(value)


def _parse_f64(text: str) -> float | None:
    if not text or text != text.strip() or "_" in text:
        return None
    try:
        return float(text)
    except ValueError:
        return None


def parse_frame_rate(rate: str) -> float | None:
    """Parse an "x/y" fraction or a plain float frame rate."""
    if "/" in rate:
        x_text, y_text = rate.split("/", 1)
        x = _parse_f64(x_text)
        y = _parse_f64(y_text)
        if x is None or y is None or x <= 0.0 or y <= 0.0:
            return None
        return x / y
    value = _parse_f64(rate)
    if value is None or not math.isfinite(value) or value <= 0.0:
        return None
    return value


def is_image(path: str | os.PathLike) -> bool:
    """Return whether the file header looks like a still image."""
    with open(path, "rb") as file:
        header = file.read(_HEADER_LEN)
    return _looks_like_image(header)


def _looks_like_image(buf: bytes) -> bool:
    if buf.startswith(b"\xff\xd8\xff"):
        return True
    if buf.startswith(b"\x89PNG"):
        return True
    if buf.startswith(b"GIF8"):
        return True
    if len(buf) >= 12 and buf[:4] == b"RIFF" and buf[8:12] == b"WEBP":
        return True
    if buf.startswith((b"II*\x00", b"MM\x00*")):
        return True
    if buf.startswith(b"BM"):
        return True
    if buf.startswith(b"\x00\x00\x01\x00"):
        return True
    if buf.startswith(b"8BPS"):
        return True
    if buf.startswith(b"II\xbc"):
        return True
    if buf.startswith(b"\xff\x0a"):
        return True
    if buf.startswith(b"\x00\x00\x00\x0cJXL \x0d\x0a\x87\x0a"):
        return True
    if buf.startswith(b"\x00\x00\x00\x0cjP  \x0d\x0a\x87\x0a"):
        return True
    if buf.startswith(b"AT&TFORM") and buf[12:15] == b"DJV":
        return True
    if buf.startswith(b"PK\x03\x04") and buf[30:54] == b"mimetypeimage/openraster":
        return True
    if len(buf) >= 12 and buf[4:8] == b"ftyp" and buf[8:12] in _HEIF_BRANDS:
        return True
    return False


def _error_probe(message: str) -> Ffprobe:
    return Ffprobe(
        duration=ProbeError(message),
        fps=ProbeError(message),
        has_audio=True,
        max_audio_channels=None,
        resolution=None,
        is_image=False,
        pix_fmt=None,
    )


def probe(input: str | os.PathLike) -> Ffprobe:
    """Run ffprobe on the input; failures end up as ProbeError values."""
    try:
        image = is_image(input)
    except OSError:
        image = False

    argv = [
        "ffprobe", "-v", "quiet", "-show_format", "-show_streams",
        "-print_format", "json", os.fspath(Path(input)),
    ]
    try:
        out = subprocess.run(argv, stdin=subprocess.DEVNULL, capture_output=True)
    except OSError as err:
        return _error_probe(f"ffprobe: {err}")
    if out.returncode != 0:
        return _error_probe(f"ffprobe: exit code {out.returncode}")
    try:
        data = json.loads(out.stdout)
    except ValueError as err:
        return _error_probe(f"ffprobe: invalid output: {err}")
    if not isinstance(data, dict):
        return _error_probe("ffprobe: invalid output")
    return probe_from_json(data, image)


def _streams_of(data: dict[str, Any], codec_type: str) -> list[dict[str, Any]]:
    return [s for s in data.get("streams") or [] if s.get("codec_type") == codec_type]


def _as_u32(value: Any) -> int | None:
    if isinstance(value, int) and not isinstance(value, bool) and 0 <= value <= _U32_MAX:
        return value
    return None


def _read_duration(data: dict[str, Any]) -> timedelta:
    duration_s = (data.get("format") or {}).get("duration")
    if duration_s is None:
        return timedelta(0)
    value = _parse_f64(duration_s)
    if value is None:
        raise ProbeError(f'invalid ffprobe video duration: "{duration_s}"')
    if value < 0:
        reason = "cannot convert float seconds to Duration: value is negative"
    elif not math.isfinite(value) or value > _MAX_DURATION_SECS:
        reason = "cannot convert float seconds to Duration: value is either too big or NaN"
    else:
        return timedelta(seconds=value)
    raise ProbeError(f'{reason}: ffprobe video duration: "{duration_s}"')


def _read_fps(data: dict[str, Any]) -> float:
    videos = _streams_of(data, "video")
    if not videos:
        raise ProbeError("no video stream found")
    vstream = videos[0]
    fps = parse_frame_rate(vstream.get("avg_frame_rate") or "")
    if fps is None:
        fps = parse_frame_rate(vstream.get("r_frame_rate") or "")
    if fps is None:
        raise ProbeError("invalid ffprobe video frame rate")
    return fps


def probe_from_json(data: dict[str, Any], is_image: bool) -> Ffprobe:
    """Build an Ffprobe from ffprobe's parsed JSON output."""
    duration: timedelta | ProbeError
    fps: float | ProbeError
    try:
        duration = _read_duration(data)
    except ProbeError as err:
        duration = err
    try:
        fps = _read_fps(data)
    except ProbeError as err:
        fps = err

    audio = _streams_of(data, "audio")
    channels = [
        s["channels"] for s in audio
        if isinstance(s.get("channels"), int) and not isinstance(s.get("channels"), bool)
    ]
    videos = _streams_of(data, "video")

    resolution = None
    for stream in videos:
        width = _as_u32(stream.get("width"))
        height = _as_u32(stream.get("height"))
        if width is not None and height is not None:
            resolution = (width, height)
            break

    pix_fmt = next((s["pix_fmt"] for s in videos if s.get("pix_fmt") is not None), None)

    return Ffprobe(
        duration=duration,
        fps=fps,
        has_audio=bool(audio),
        max_audio_channels=max(channels) if channels else None,
        resolution=resolution,
        is_image=is_image,
        pix_fmt=pix_fmt,
    )