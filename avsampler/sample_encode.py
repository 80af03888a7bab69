"""Encode and score input samples to predict how a full encode would go.

This is much quicker than a full encode followed by a full scoring run.
"""

from __future__ import annotations

import dataclasses
import json
import logging
import math
import os
import time
from collections.abc import Iterator
from dataclasses import dataclass
from datetime import timedelta
from enum import Enum
from pathlib import Path

from avsampler import cache as result_cache
from avsampler import ffmpeg, ffprobe, sample, temporary, vmaf, xpsnr
from avsampler.command_xpsnr import lavfi as xpsnr_lavfi
from avsampler.ffmpeg import FfmpegEncodeArgs
from avsampler.ffprobe import Ffprobe, ProbeError
from avsampler.float import _display_f32
from avsampler.process import ProcessError, Progress
from avsampler.progress import ProgressLogger, human_bytes, human_duration
from avsampler.results import (
    EncodeResult,
    ScoreKind,
    Scoring,
    encoded_percent_size,
    estimate_encode_size_by_duration,
    estimate_encode_size_by_file_percent,
    estimate_encode_time,
    mean_score,
    results_score_kind,
)

logger = logging.getLogger(__name__)

_MIN_SAMPLE_SIZE = 1024
_FULL_PASS_FRACTION = 0.85
_U32_MAX = 0xFFFF_FFFF


@dataclass(frozen=True)
class Work:
    """Kind of sample-encode work: encoding, or scoring when ``score`` is set."""

    score: ScoreKind | None = None

    def fps_label(self) -> str:
        """Label for fps in progress output."""
        return "enc" if self.score is None else self.score.fps_label()


@dataclass(frozen=True)
class Status:
    """Progress of the sample encode."""

    work: Work
    fps: float
    """Frames per second; 0.0 means unknown."""
    progress: float
    """Overall progress in [0, 1]."""
    sample: int
    """Sample number 1..n."""
    samples: int
    full_pass: bool
    """The entire input is encoded as a single sample."""


@dataclass(frozen=True)
class SampleResult:
    """The result of one sample."""

    sample: int
    result: EncodeResult


@dataclass(frozen=True)
class Output:
    """Final sample encode prediction."""

    score: float
    score_kind: ScoreKind
    predicted_encode_size: int
    """Estimated full encoded video stream size."""
    encode_percent: float
    predicted_encode_time: timedelta
    from_cache: bool
    """All sample results were read from the cache."""


def _fmt_f64(value: float) -> str:
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "inf" if value > 0 else "-inf"
    if value.is_integer():
        return "-0" if value == 0 and math.copysign(1.0, value) < 0 else str(int(value))
    return repr(value)


def _json_number(value: float) -> float | None:
    return value if math.isfinite(value) else None


class StdoutFormat(Enum):
    """How the final result is written to stdout."""

    HUMAN = "human"
    JSON = "json"

    def format_result(self, output: Output, image: bool) -> str:
        """The text printed for the final result."""
        if self is StdoutFormat.JSON:
            data: dict[str, object] = {
                "predicted_encode_size": output.predicted_encode_size,
                "predicted_encode_percent": _json_number(output.encode_percent),
                "predicted_encode_seconds": int(output.predicted_encode_time.total_seconds()),
            }
            key = "vmaf" if output.score_kind is ScoreKind.VMAF else "xpsnr"
            data[key] = _json_number(output.score)
            return json.dumps(data, sort_keys=True, separators=(",", ":"))

        percent = _fmt_f64(round(output.encode_percent)) if math.isfinite(
            output.encode_percent
        ) else _fmt_f64(output.encode_percent)
        description = "image" if image else "video stream"
        size = human_bytes(output.predicted_encode_size)
        taking = human_duration(output.predicted_encode_time.total_seconds())
        return (
            f"{output.score_kind} {output.score:.2f} predicted {description} "
            f"size {size} ({percent}%) taking {taking}"
        )


def plan_samples(
    samples: int,
    sample_duration: timedelta,
    duration: timedelta,
    input_fps: float,
    input_is_image: bool,
) -> tuple[int, timedelta, bool]:
    """Return (samples, sample duration, full pass) for an input."""
    if input_is_image:
        return 1, max(duration, timedelta(seconds=1)), True
    if not sample_duration or sample_duration * samples >= duration * _FULL_PASS_FRACTION:
        # samples covering most of the input: just encode the whole thing
        return 1, duration, True
    if input_fps > 0.0:
        # a sample is at least a single frame long
        sample_duration = max(sample_duration, timedelta(seconds=1.0 / input_fps))
    return samples, sample_duration, False


def sample_start(
    sample_idx: int, samples: int, sample_duration: timedelta, duration: timedelta
) -> timedelta:
    """Start of a sample, spreading the samples evenly over the input."""
    spare = max(duration - sample_duration * samples, timedelta(0))
    gap = spare // (samples + 1)
    return gap * (sample_idx + 1) + sample_duration * sample_idx


def sample_frames(sample_duration: timedelta, fps: float) -> int:
    """Number of frames in a sample, at least one."""
    frames = sample_duration.total_seconds() * fps
    if math.isnan(frames) or frames <= 0:
        return 1
    return max(min(math.floor(frames + 0.5), _U32_MAX), 1)


def _micros(value: timedelta) -> int:
    return value // timedelta(microseconds=1)


def _fraction(num: float, den: float) -> float:
    if den == 0:
        return math.nan
    return num / den


def _copy_sample(
    input: Path,
    sample_idx: int,
    samples: int,
    sample_duration: timedelta,
    duration: timedelta,
    fps: float,
    temp_dir: str | os.PathLike | None,
) -> tuple[Path, int]:
    start = sample_start(sample_idx, samples, sample_duration, duration)
    frames = sample_frames(sample_duration, fps)
    floor_to_sec = sample_duration >= timedelta(seconds=2)
    path = sample.copy(input, start, floor_to_sec, frames, temp_dir)
    size = path.stat().st_size
    # a copy can "succeed" yet leave a tiny or empty file
    if size <= _MIN_SAMPLE_SIZE:
        raise ProcessError("ffmpeg copy failed: encoded sample too small")
    return path, size


def _vmaf_lavfi(scoring: Scoring, reference_vfilter: str | None) -> str:
    opts = "=" + ":".join(scoring.options) if scoring.options else ""
    if reference_vfilter is None:
        return f"[0:v][1:v]libvmaf{opts}"
    return f"[1:v]{reference_vfilter}[ref];[0:v][ref]libvmaf{opts}"


def run(
    input: str | os.PathLike,
    probe: Ffprobe,
    enc_args: FfmpegEncodeArgs,
    samples: int,
    sample_duration: timedelta,
    scoring: Scoring,
    keep: bool = False,
    temp_dir: str | os.PathLike | None = None,
    extension: str | None = None,
    cache: bool = True,
) -> Iterator[Status | SampleResult | Output]:
    """Encode and score samples, yielding progress, per-sample results and
    finally the Output prediction."""
    input = Path(input)
    input_len = input.stat().st_size
    if isinstance(probe.duration, ProbeError):
        raise probe.duration
    if isinstance(probe.fps, ProbeError):
        raise probe.fps
    duration: timedelta = probe.duration
    input_fps: float = probe.fps
    crf = enc_args.crf
    samples = max(samples, 1)

    samples, sample_duration, full_pass = plan_samples(
        samples, sample_duration, duration, input_fps, probe.is_image
    )
    sample_duration_us = _micros(sample_duration)
    total_us = sample_duration_us * samples * 2
    reference_vfilter = (
        scoring.reference_vfilter if scoring.reference_vfilter is not None else enc_args.vfilter
    )
    input_extension = input.suffix[1:] if input.suffix else None

    results: list[EncodeResult] = []
    for sample_idx in range(samples):
        sample_n = sample_idx + 1
        if full_pass:
            sample_file, sample_size = input, input_len
        else:
            sample_file, sample_size = _copy_sample(
                input, sample_idx, samples, sample_duration, duration, input_fps, temp_dir
            )

        def status(work: Work, fps: float, progress: float) -> Status:
            return Status(work, fps, progress, sample_n, samples, full_pass)

        logger.info("encoding sample %s/%s crf %s", sample_n, samples, _display_f32(crf))
        yield status(Work(), 0.0, sample_idx / samples)

        result, key = result_cache.cached_encode(
            cache, sample_file, duration, input_extension, input_len,
            full_pass, enc_args, scoring,
        )
        if result is not None:
            if samples > 1:
                result.log_attempt(sample_n, samples, crf)
        else:
            started = time.monotonic()
            progress_logger = ProgressLogger(__name__)
            encoded_sample, output = ffmpeg.encode_sample(
                dataclasses.replace(enc_args, input=sample_file),
                temp_dir,
                extension or "mkv",
            )
            for out in output:
                if isinstance(out, Progress):
                    done_us = _micros(out.time) + sample_idx * sample_duration_us * 2
                    yield status(Work(), out.fps, _fraction(done_us, total_us))
                    progress_logger.update(sample_duration, out.time, out.fps)
            output.wait()

            encode_time = timedelta(seconds=time.monotonic() - started)
            encoded_size = encoded_sample.stat().st_size
            encoded_probe = ffprobe.probe(encoded_sample)

            kind = scoring.kind
            work = Work(kind)
            yield status(work, 0.0, (sample_idx + 0.5) / samples)
            if kind is ScoreKind.VMAF:
                outputs = vmaf.run(
                    sample_file, encoded_sample,
                    _vmaf_lavfi(scoring, reference_vfilter), scoring.fps,
                )
                done_type: type = vmaf.VmafDone
            else:
                outputs = xpsnr.run(
                    sample_file, encoded_sample, xpsnr_lavfi(reference_vfilter), scoring.fps
                )
                done_type = xpsnr.XpsnrDone

            score: float | None = None
            score_logger = ProgressLogger(f"avsampler.{kind.fps_label()}")
            try:
                for out in outputs:
                    if isinstance(out, done_type):
                        score = out.score
                        break
                    if isinstance(out, Progress):
                        done_us = (
                            sample_duration_us
                            + _micros(out.time)
                            + sample_idx * sample_duration_us * 2
                        )
                        yield status(work, out.fps, _fraction(done_us, total_us))
                        score_logger.update(sample_duration, out.time, out.fps)
            finally:
                outputs.close()
            if score is None:
                raise ProcessError(f"no {kind.fps_label()} score")

            measured = encoded_probe.duration
            result = EncodeResult(
                sample_size=sample_size,
                encoded_size=encoded_size,
                score=score,
                score_kind=kind,
                encode_time=encode_time,
                sample_duration=(
                    measured
                    if isinstance(measured, timedelta) and measured
                    else sample_duration
                ),
                from_cache=False,
            )
            if samples > 1:
                result.log_attempt(sample_n, samples, crf)
            if key is not None:
                result_cache.cache_result(key, result)

            # early clean, sparing the copied samples
            temporary.clean(True)
            if not keep:
                try:
                    encoded_sample.unlink()
                except OSError:
                    pass

        results.append(result)
        yield SampleResult(sample_n, result)

    score_kind = results_score_kind(results)
    # the file-percentage estimate can over-estimate, but when it comes out
    # lower than the duration estimate it may well be the more accurate one
    predicted_size = min(
        estimate_encode_size_by_duration(results, duration, full_pass),
        estimate_encode_size_by_file_percent(results, input, full_pass),
    )
    output_result = Output(
        score=mean_score(results),
        score_kind=score_kind,
        predicted_encode_size=predicted_size,
        encode_percent=encoded_percent_size(results),
        predicted_encode_time=estimate_encode_time(results, duration, full_pass),
        from_cache=all(r.from_cache for r in results),
    )
    logger.info(
        "crf %s %s %.2f predicted video stream size %s (%.0f%%) taking %s%s",
        _display_f32(crf),
        score_kind,
        output_result.score,
        human_bytes(output_result.predicted_encode_size),
        output_result.encode_percent,
        human_duration(output_result.predicted_encode_time.total_seconds()),
        " (cache)" if output_result.from_cache else "",
    )
    yield output_result