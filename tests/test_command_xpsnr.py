import io
import subprocess
from unittest.mock import patch

import pytest

from avsampler.command_xpsnr import lavfi, main, run_command
from avsampler.process import ProcessError

XPSNR_STDERR = (
    b"frame=   28 fps= 28 q=-0.0 size=N/A time=00:00:01.08 bitrate=N/A speed=1.08x    \r"
    b"frame=   46 fps= 31 q=-0.0 size=N/A time=00:00:01.80 bitrate=N/A speed= 1.2x    \n"
    b"[Parsed_xpsnr_0 @ 0x1] XPSNR  y: 40.7139  u: 39.1440  v: 41.7907  (minimum: 39.1440)\n"
)


class _FakeProc:
    def __init__(self, stderr: bytes, returncode: int = 0) -> None:
        self.stderr = io.BytesIO(stderr)
        self.returncode = returncode

    def wait(self, timeout=None):
        return self.returncode

    def poll(self):
        return self.returncode


def _failed_probe(argv, **kwargs):
    return subprocess.CompletedProcess(argv, 1, b"", b"")


def test_lavfi_default():
    assert lavfi(None) == "xpsnr=stats_file=-"


def test_lavfi_ref_vfilter():
    assert lavfi("scale=1280:-1") == "[0:v]scale=1280:-1[ref];[ref][1:v]xpsnr=stats_file=-"


def test_run_command_returns_score(tmp_path):
    calls = []

    def popen(argv, **kwargs):
        calls.append(argv)
        return _FakeProc(XPSNR_STDERR)

    with patch("subprocess.run", side_effect=_failed_probe), patch(
        "subprocess.Popen", side_effect=popen
    ):
        score = run_command(tmp_path / "ref.mkv", tmp_path / "dist.mkv", "scale=1280:-1")
    assert score == pytest.approx(39.144, abs=1e-4)
    assert "[0:v]scale=1280:-1[ref];[ref][1:v]xpsnr=stats_file=-" in calls[0]


def test_run_command_failure_raises(tmp_path):
    with patch("subprocess.run", side_effect=_failed_probe), patch(
        "subprocess.Popen", return_value=_FakeProc(b"oops\n", returncode=1)
    ):
        with pytest.raises(ProcessError, match="exit code 1"):
            run_command(tmp_path / "ref.mkv", tmp_path / "dist.mkv")


def test_main_prints_score(tmp_path, capsys):
    with patch("subprocess.run", side_effect=_failed_probe), patch(
        "subprocess.Popen", return_value=_FakeProc(XPSNR_STDERR)
    ):
        code = main(
            ["--reference", str(tmp_path / "r.mkv"), "--distorted", str(tmp_path / "d.mkv")]
        )
    assert code == 0
    assert capsys.readouterr().out.strip() == "39.144"


def test_main_reports_error(tmp_path, capsys):
    with patch("subprocess.run", side_effect=_failed_probe), patch(
        "subprocess.Popen", return_value=_FakeProc(b"no score\n")
    ):
        code = main(
            ["--reference", str(tmp_path / "r.mkv"), "--distorted", str(tmp_path / "d.mkv")]
        )
    assert code == 1
    assert "Error: could not parse ffmpeg xpsnr score" in capsys.readouterr().err


def test_main_requires_arguments():
    with pytest.raises(SystemExit) as info:
        main([])
    assert info.value.code == 2