"""Building and running ffmpeg encode commands."""

from __future__ import annotations

import logging
import os
import struct
import subprocess
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import Any

from avsampler import temporary
from avsampler.float import format_terse
from avsampler.process import CommandBuilder, FfmpegOutStream, ProcessError

logger = logging.getLogger(__name__)


@lru_cache(maxsize=None)
def _svt_av1_version() -> bytes:
    try:
        out = subprocess.run(
            ["SvtAv1EncApp", "--version"], stdin=subprocess.DEVNULL, capture_output=True
        )
    except OSError:
        return b""
    return out.stdout


def _feed(hasher: Any, value: Any) -> None:
    if isinstance(value, str):
        value = value.encode("utf-8")
    if isinstance(value, bytes):
        hasher.update(struct.pack("<Q", len(value)))
        hasher.update(value)
    elif isinstance(value, list):
        hasher.update(struct.pack("<Q", len(value)))
        for item in value:
            _feed(hasher, item)
    else:
        raise TypeError(f"cannot hash {type(value).__name__}")


def _feed_opt(hasher: Any, value: Any) -> None:
    if value is None:
        hasher.update(b"\x00")
    else:
        hasher.update(b"\x01")
        _feed(hasher, value)


@dataclass
class FfmpegEncodeArgs:
    """Encoder settings passed to ffmpeg."""

    input: Path
    vcodec: str
    crf: float
    vfilter: str | None = None
    pix_fmt: str | None = None
    preset: str | None = None
    output_args: list[str] = field(default_factory=list)
    input_args: list[str] = field(default_factory=list)
    video_only: bool = False

    def sample_encode_hash(self, hasher: Any) -> None:
        """Feed everything that affects a sample encode into hasher.update."""
        # the encoder version is included so new releases don't reuse old results
        if self.vcodec == "libsvtav1":
            _feed(hasher, _svt_av1_version())
        # the input is not relevant to sample encoding
        _feed(hasher, self.vcodec)
        _feed_opt(hasher, self.vfilter)
        _feed_opt(hasher, self.pix_fmt)
        hasher.update(struct.pack("<f", self.crf))
        _feed_opt(hasher, self.preset)
        _feed(hasher, list(self.output_args))
        _feed(hasher, list(self.input_args))


def pre_extension_name(vcodec: str) -> str:
    """Short codec name used in file names."""
    suffix = vcodec[3:] if vcodec.startswith("lib") else ""
    if not suffix:
        return vcodec
    return {"svtav1": "av1", "vpx-vp9": "vp9"}.get(suffix, suffix)


def preset_arg(vcodec: str) -> str:
    """Argument the encoder takes preset values with."""
    if vcodec in ("libaom-av1", "libvpx-vp9"):
        return "-cpu-used"
    if vcodec == "librav1e":
        return "-speed"
    return "-preset"


def crf_arg(vcodec: str) -> str:
    """Argument the encoder takes crf-like quality values with."""
    if vcodec in ("librav1e", "libvvenc"):
        return "-qp"
    if vcodec == "mpeg2video":
        return "-q"
    if vcodec.endswith("_vaapi"):
        return "-q"
    if vcodec.endswith("_vulkan"):
        return "-qp"
    if vcodec.endswith("_nvenc"):
        return "-cq"
    if vcodec.endswith("_qsv"):
        return "-global_quality"
    return "-crf"


def _with_extension(path: Path, ext: str) -> Path:
    return path.with_name(f"{path.stem}.{ext}" if ext else path.stem)


def _spawn(cmd: CommandBuilder, name: str) -> FfmpegOutStream:
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
        raise ProcessError(f"{name}: {err}") from err
    return FfmpegOutStream(proc, name, cmd_str)


def encode_sample_command(args: FfmpegEncodeArgs, dest: str | os.PathLike) -> CommandBuilder:
    """The ffmpeg command that encodes a sample to dest."""
    return (
        CommandBuilder("ffmpeg")
        .arg("-y")
        .args(args.input_args)
        .arg2("-i", Path(args.input))
        .arg2("-c:v", args.vcodec)
        .args(args.output_args)
        .arg2(crf_arg(args.vcodec), float(args.crf))
        .arg2_opt("-pix_fmt", args.pix_fmt)
        .arg2_opt(preset_arg(args.vcodec), args.preset)
        .arg2_opt("-vf", args.vfilter)
        .arg("-an")
        .arg(Path(dest))
    )


def encode_sample(
    args: FfmpegEncodeArgs, temp_dir: str | os.PathLike | None, dest_ext: str
) -> tuple[Path, FfmpegOutStream]:
    """Start encoding a sample into the process temp dir."""
    pre = pre_extension_name(args.vcodec)
    crf_str = format_terse(args.crf).replace(".", "_")
    if args.preset is not None:
        ext = f"{pre}.crf{crf_str}.{args.preset}.{dest_ext}"
    else:
        ext = f"{pre}.crf{crf_str}.{dest_ext}"
    file_name = _with_extension(Path(args.input), ext).name
    dest = temporary.process_dir(temp_dir) / file_name
    temporary.add(dest, temporary.TempKind.KEEPABLE)

    stream = _spawn(encode_sample_command(args, dest), "ffmpeg encode_sample")
    return dest, stream


def encode_command(
    args: FfmpegEncodeArgs,
    output: str | os.PathLike,
    has_audio: bool,
    audio_codec: str | None,
    downmix_to_stereo: bool,
) -> CommandBuilder:
    """The ffmpeg command for a full encode to output."""
    output = Path(output)
    oargs = set(args.output_args)
    output_ext = output.suffix[1:] if output.suffix else None

    add_faststart = output_ext == "mp4" and "-movflags" not in oargs
    matroska = output_ext in ("mkv", "webm")
    add_cues_to_front = matroska and "-cues_to_front" not in oargs

    if audio_codec is None:
        audio_codec = "libopus" if downmix_to_stereo and has_audio else "copy"

    set_ba_128k = audio_codec == "libopus" and "-b:a" not in oargs
    downmix_to_stereo = downmix_to_stereo and "-ac" not in oargs
    stream_map = "0:v:0" if args.video_only else "0"

    crf_flag = crf_arg(args.vcodec)
    metadata = (
        f"AVSAMPLER_FFMPEG_ARGS=-c:v {args.vcodec} {crf_flag} "
        f"{CommandBuilder('').arg(float(args.crf)).argv()[1]}"
    )
    if args.preset is not None:
        metadata += f" {preset_arg(args.vcodec)} {args.preset}"

    return (
        CommandBuilder("ffmpeg")
        .args(args.input_args)
        .arg("-y")
        .arg2("-i", Path(args.input))
        .arg2("-map", stream_map)
        .arg2("-c:v", "copy")
        .arg2("-c:v:0", args.vcodec)
        .arg2("-metadata", metadata)
        .arg2("-c:a", audio_codec)
        .arg2("-c:s", "copy")
        .args(args.output_args)
        .arg2(crf_flag, float(args.crf))
        .arg2_opt("-pix_fmt", args.pix_fmt)
        .arg2_opt(preset_arg(args.vcodec), args.preset)
        .arg2_opt("-vf", args.vfilter)
        # only audio, video and subtitles are supported by matroska
        .arg_if(matroska, "-dn")
        .arg2_if(downmix_to_stereo, "-ac", 2)
        .arg2_if(set_ba_128k, "-b:a", "128k")
        .arg2_if(add_faststart, "-movflags", "+faststart")
        .arg2_if(add_cues_to_front, "-cues_to_front", "y")
        .arg(output)
    )


def encode(
    args: FfmpegEncodeArgs,
    output: str | os.PathLike,
    has_audio: bool,
    audio_codec: str | None,
    downmix_to_stereo: bool,
) -> FfmpegOutStream:
    """Start a full encode to output."""
    cmd = encode_command(args, output, has_audio, audio_codec, downmix_to_stereo)
    return _spawn(cmd, "ffmpeg encode")