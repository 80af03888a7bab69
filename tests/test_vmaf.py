import io
from datetime import timedelta
from pathlib import Path
from unittest.mock import patch

import pytest

from avsampler.process import ProcessError, Progress
from avsampler.vmaf import VmafDone, VmafParser, run

CHUNK_SIZE = 64


def _progress_line(frame, fps, seconds):
    return (
        f"frame={frame:5d} fps={fps:3d} q=-0.0 size=N/A "
        f"time=00:00:{seconds:05.2f} bitrate=N/A speed=4.2x    "
    )


def _ffmpeg_stderr():
    """Stderr of a libvmaf run where the score is followed by more output."""
    lines = [
        "ffmpeg version n7.0.1",
        "  libavfilter    10.  1.100 / 10.  1.100",
        "Input #0, matroska,webm, from 'clip 影.sample2+600f.av1.crf37.5.mkv':",
        "  Duration: 00:00:20.00, start: 0.000000, bitrate: 1562 kb/s",
        "Input #1, matroska,webm, from 'clip 影.sample2+600f.mkv':",
        "  Duration: 00:00:20.00, start: 0.000000, bitrate: 6114 kb/s",
        "Stream mapping:",
        "  libvmaf:default -> Stream #0:0 (wrapped_avframe)",
        "Press [q] to stop, [?] for help",
    ]
    lines += [_progress_line(50 * n, 100, 2.1 * n) for n in range(1, 12)]
    lines += [
        "[Parsed_libvmaf_6 @ 0x0000aaaa] VMAF score: 94.826380",
        "[out#0/null @ 0x0000bbbb] video:258KiB audio:0KiB subtitle:0KiB "
        "other streams:0KiB global headers:0KiB muxing overhead: unknown",
    ]
    return "\n".join(lines) + "\n" + _progress_line(600, 102, 24.95).rstrip()


class _FakeProc:
    def __init__(self, stderr: bytes, returncode: int = 0) -> None:
        self.stderr = io.BytesIO(stderr)
        self.returncode = returncode

    def wait(self, timeout=None):
        return self.returncode

    def poll(self):
        return self.returncode


def _fake_popen(proc, calls):
    def popen(argv, **kwargs):
        calls.append(argv)
        return proc

    return popen


def test_parse_vmaf_score_207():
    data = _ffmpeg_stderr().encode("utf-8")
    parser = VmafParser()
    vmaf_score = None
    for start in range(0, len(data), CHUNK_SIZE):
        out = parser.feed(data[start:start + CHUNK_SIZE])
        if isinstance(out, VmafDone):
            vmaf_score = out.score
    assert vmaf_score == pytest.approx(94.82638, abs=1e-4)


def test_feed_progress_line():
    parser = VmafParser()
    out = parser.feed(
        b"frame=  101 fps= 97 q=-0.0 size=N/A time=00:00:04.16 bitrate=N/A speed=   4x    \r"
    )
    assert out == Progress(frame=101, fps=97.0, time=timedelta(seconds=4, microseconds=160_000))


def test_feed_unparseable_score_gives_none():
    parser = VmafParser()
    assert parser.feed(b"[libvmaf] VMAF score: nope\n") is None


def test_run_builds_command_and_yields_score():
    calls = []
    proc = _FakeProc(b"[Parsed_libvmaf_0 @ 0x1] VMAF score: 97.5\n")
    with patch("subprocess.Popen", side_effect=_fake_popen(proc, calls)):
        outputs = list(run(Path("ref.mkv"), Path("dist.mkv"), "libvmaf", 24.0))
    assert calls[0] == [
        "ffmpeg", "-r", "24", "-i", "dist.mkv", "-r", "24", "-i", "ref.mkv",
        "-filter_complex", "libvmaf", "-an", "-sn", "-dn", "-f", "null", "-",
    ]
    assert outputs == [VmafDone(97.5)]


def test_run_without_fps_omits_rate():
    calls = []
    proc = _FakeProc(b"VMAF score: 90\n")
    with patch("subprocess.Popen", side_effect=_fake_popen(proc, calls)):
        outputs = list(run("r.mkv", "d.mkv", "libvmaf"))
    assert calls[0] == [
        "ffmpeg", "-i", "d.mkv", "-i", "r.mkv",
        "-filter_complex", "libvmaf", "-an", "-sn", "-dn", "-f", "null", "-",
    ]
    assert outputs == [VmafDone(90.0)]


def test_run_failure_raises_with_stderr():
    proc = _FakeProc(b"something broke\n", returncode=1)
    with patch("subprocess.Popen", side_effect=_fake_popen(proc, [])):
        with pytest.raises(ProcessError, match="ffmpeg vmaf exit code 1") as info:
            list(run("r.mkv", "d.mkv", "libvmaf"))
    assert "something broke" in str(info.value)


def test_run_without_score_raises():
    proc = _FakeProc(b"no score here\n")
    with patch("subprocess.Popen", side_effect=_fake_popen(proc, [])):
        with pytest.raises(ProcessError, match="could not parse ffmpeg vmaf score"):
            list(run("r.mkv", "d.mkv", "libvmaf"))


def test_run_spawn_failure_raises():
    with patch("subprocess.Popen", side_effect=FileNotFoundError("ffmpeg")):
        with pytest.raises(ProcessError, match="ffmpeg vmaf"):
            run("r.mkv", "d.mkv", "libvmaf")