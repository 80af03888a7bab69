"""Command computing a full XPSNR score of a distorted file against a reference."""

from __future__ import annotations

import argparse
import os
import sys
from functools import lru_cache
from pathlib import Path

from avsampler import child, ffprobe, temporary, xpsnr
from avsampler.ffprobe import ProbeError
from avsampler.float import _display_f32
from avsampler.process import ProcessError, Progress
from avsampler.progress import ProgressLogger


def lavfi(ref_vfilter: str | None) -> str:
    """The xpsnr filter graph, filtering the reference first if asked."""
    if ref_vfilter is None:
        return "xpsnr=stats_file=-"
    return f"[0:v]{ref_vfilter}[ref];[ref][1:v]xpsnr=stats_file=-"


def run_command(
    reference: str | os.PathLike,
    distorted: str | os.PathLike,
    reference_vfilter: str | None = None,
    fps: float | None = None,
) -> float:
    """Compute the XPSNR score, showing progress on the way."""
    reference = Path(reference)
    distorted = Path(distorted)

    dprobe = ffprobe.probe(distorted)
    rprobe = lru_cache(maxsize=None)(lambda: ffprobe.probe(reference))

    nframes: int | None
    try:
        nframes = dprobe.nframes()
    except ProbeError:
        try:
            nframes = rprobe().nframes()
        except ProbeError:
            nframes = None
    duration = dprobe.duration
    if isinstance(duration, ProbeError):
        duration = rprobe().duration

    show = sys.stderr.isatty()
    if show:
        print("xpsnr running", end="", file=sys.stderr, flush=True)
    progress_logger = ProgressLogger(__name__)
    score: float | None = None
    outputs = xpsnr.run(reference, distorted, lavfi(reference_vfilter), fps)
    try:
        for out in outputs:
            if isinstance(out, xpsnr.XpsnrDone):
                score = out.score
                break
            if not isinstance(out, Progress):
                continue
            if show:
                status = f"xpsnr {_display_f32(out.fps)} fps" if out.fps > 0 else "xpsnr running"
                if nframes is not None:
                    status += f", frame {out.frame}/{nframes}"
                print(f"\r\x1b[2K{status}", end="", file=sys.stderr, flush=True)
            if not isinstance(duration, ProbeError):
                progress_logger.update(duration, out.time, out.fps)
    finally:
        outputs.close()
        if show:
            print(file=sys.stderr)

    if score is None:
        raise ProcessError("no xpsnr score")
    return score


def _parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Full XPSNR score calculation, distorted file vs reference file. "
        "Works with videos and images."
    )
    parser.add_argument("--reference", type=Path, required=True, help="Reference video file.")
    parser.add_argument(
        "--distorted", type=Path, required=True, help="Re-encoded/distorted video file."
    )
    parser.add_argument(
        "--reference-vfilter",
        help="Filter applied to the reference before scoring.",
    )
    parser.add_argument(
        "--xpsnr-fps",
        type=float,
        help="Frame rate both inputs are read at.",
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    """Run the command and print the score; return the exit code."""
    args = _parser().parse_args(argv)
    error: str | None = None
    try:
        score = run_command(
            args.reference, args.distorted, args.reference_vfilter, args.xpsnr_fps
        )
    except KeyboardInterrupt:
        error = "ctrl_c"
    except (ProcessError, ProbeError, OSError) as err:
        error = str(err)
    else:
        print(_display_f32(score))

    child.wait()
    temporary.clean(False)

    if error is not None:
        print(f"Error: {error}", file=sys.stderr)
        return 1
    return 0