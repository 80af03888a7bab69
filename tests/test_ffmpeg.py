import hashlib
import subprocess
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from avsampler import temporary
from avsampler.ffmpeg import (
    FfmpegEncodeArgs,
    crf_arg,
    encode_command,
    encode_sample,
    encode_sample_command,
    pre_extension_name,
    preset_arg,
)


def _args(**kw):
    base = dict(input=Path("/videos/clip.mp4"), vcodec="libx265", crf=32.5)
    base.update(kw)
    return FfmpegEncodeArgs(**base)


def _pair(argv, flag):
    return argv[argv.index(flag) + 1]


@pytest.mark.parametrize(
    "vcodec, expected",
    [
        ("libsvtav1", "av1"),
        ("libvpx-vp9", "vp9"),
        ("libx265", "x265"),
        ("lib", "lib"),
        ("hevc_nvenc", "hevc_nvenc"),
    ],
)
def test_pre_extension_name(vcodec, expected):
    assert pre_extension_name(vcodec) == expected


@pytest.mark.parametrize(
    "vcodec, expected",
    [
        ("librav1e", "-qp"),
        ("libvvenc", "-qp"),
        ("mpeg2video", "-q"),
        ("h264_vaapi", "-q"),
        ("av1_vulkan", "-qp"),
        ("hevc_nvenc", "-cq"),
        ("av1_qsv", "-global_quality"),
        ("libx264", "-crf"),
    ],
)
def test_crf_arg(vcodec, expected):
    assert crf_arg(vcodec) == expected


@pytest.mark.parametrize(
    "vcodec, expected",
    [
        ("libaom-av1", "-cpu-used"),
        ("libvpx-vp9", "-cpu-used"),
        ("librav1e", "-speed"),
        ("libsvtav1", "-preset"),
    ],
)
def test_preset_arg(vcodec, expected):
    assert preset_arg(vcodec) == expected


def test_encode_sample_command_order():
    args = _args(
        preset="slow",
        pix_fmt="yuv420p10le",
        vfilter="scale=1280:-1",
        input_args=["-hwaccel", "auto"],
        output_args=["-g", "240"],
    )
    argv = encode_sample_command(args, Path("/tmp/out.mkv")).argv()
    assert argv[:4] == ["ffmpeg", "-y", "-hwaccel", "auto"]
    assert _pair(argv, "-i") == "/videos/clip.mp4"
    assert _pair(argv, "-c:v") == "libx265"
    assert _pair(argv, "-crf") == "32.5"
    assert _pair(argv, "-preset") == "slow"
    assert _pair(argv, "-pix_fmt") == "yuv420p10le"
    assert _pair(argv, "-vf") == "scale=1280:-1"
    assert argv[-2:] == ["-an", "/tmp/out.mkv"]
    assert argv.index("-g") < argv.index("-crf")


def test_encode_sample_command_omits_none():
    argv = encode_sample_command(_args(), Path("out.mkv")).argv()
    assert "-preset" not in argv
    assert "-vf" not in argv
    assert "-pix_fmt" not in argv


def test_encode_command_mp4_faststart():
    argv = encode_command(_args(), Path("out.mp4"), True, None, False).argv()
    assert _pair(argv, "-movflags") == "+faststart"
    assert _pair(argv, "-c:a") == "copy"
    assert _pair(argv, "-map") == "0"
    assert "-dn" not in argv
    assert argv[-1] == "out.mp4"


def test_encode_command_mkv():
    argv = encode_command(_args(video_only=True), Path("out.mkv"), True, None, False).argv()
    assert "-dn" in argv
    assert _pair(argv, "-cues_to_front") == "y"
    assert _pair(argv, "-map") == "0:v:0"
    assert "-movflags" not in argv


def test_encode_command_downmix():
    argv = encode_command(_args(), Path("out.mkv"), True, None, True).argv()
    assert _pair(argv, "-c:a") == "libopus"
    assert _pair(argv, "-ac") == "2"
    assert _pair(argv, "-b:a") == "128k"


def test_encode_command_output_args_suppress_defaults():
    args = _args(output_args=["-b:a", "96k", "-ac", "6", "-movflags", "frag"])
    argv = encode_command(args, Path("out.mp4"), True, None, True).argv()
    assert argv.count("-b:a") == 1
    assert argv.count("-ac") == 1
    assert argv.count("-movflags") == 1


def test_encode_command_metadata():
    argv = encode_command(_args(preset="slow"), Path("out.mkv"), False, None, False).argv()
    metadata = _pair(argv, "-metadata")
    assert metadata.endswith("-c:v libx265 -crf 32.5 -preset slow")


def _digest(args):
    hasher = hashlib.blake2b()
    args.sample_encode_hash(hasher)
    return hasher.hexdigest()


def test_sample_encode_hash_ignores_input():
    assert _digest(_args()) == _digest(_args(input=Path("/other/file.mkv")))


def test_sample_encode_hash_sensitive_to_settings():
    assert _digest(_args()) != _digest(_args(crf=33.0))
    assert _digest(_args(preset=None)) != _digest(_args(preset=""))
    assert _digest(_args()) != _digest(_args(output_args=["-g", "240"]))


def test_encode_sample_spawns(tmp_path):
    args = _args(input=tmp_path / "clip.mp4", vcodec="libsvtav1", preset="8")
    with patch("avsampler.ffmpeg.subprocess.Popen", return_value=MagicMock()) as popen:
        dest, stream = encode_sample(args, tmp_path, "mkv")
    try:
        assert dest.name == "clip.av1.crf32_5.8.mkv"
        assert dest.parent.parent == tmp_path
        argv = popen.call_args.args[0]
        assert argv[-1] == str(dest)
        assert popen.call_args.kwargs["stderr"] == subprocess.PIPE
        assert stream.cmd_str == " ".join(argv)
    finally:
        assert temporary.unadd(dest) is True