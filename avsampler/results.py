"""Sample encode results and the estimates drawn from them."""

from __future__ import annotations

import json
import logging
import math
import os
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import timedelta
from enum import Enum

from avsampler.float import _display_f32

logger = logging.getLogger("avsampler.sample_encode")

_U64_MAX = 2**64 - 1


class ScoreKind(Enum):
    """The quality metric a score was measured with."""

    VMAF = "Vmaf"
    XPSNR = "Xpsnr"

    def fps_label(self) -> str:
        """Label for fps in progress output."""
        return "vmaf" if self is ScoreKind.VMAF else "xpsnr"

    def display_str(self) -> str:
        """General display name."""
        return "VMAF" if self is ScoreKind.VMAF else "XPSNR"

    def __str__(self) -> str:
        return self.display_str()


@dataclass(frozen=True)
class Scoring:
    """How encoded samples are scored; all fields affect cached results."""

    kind: ScoreKind
    reference_vfilter: str | None = None
    fps: float | None = None
    options: tuple[str, ...] = ()


def _percent(encoded: int, sample: int) -> float:
    if sample == 0:
        return math.nan if encoded == 0 else math.inf
    return 100.0 * encoded / sample


def _duration_to_json(value: timedelta) -> dict[str, int]:
    micros = (value.days * 86_400 + value.seconds) * 1_000_000 + value.microseconds
    secs, rem = divmod(micros, 1_000_000)
    return {"secs": secs, "nanos": rem * 1000}


def _duration_from_json(value: dict[str, int]) -> timedelta:
    return timedelta(seconds=int(value["secs"]), microseconds=int(value["nanos"]) // 1000)


@dataclass(frozen=True)
class EncodeResult:
    """Result of encoding and scoring one sample."""

    sample_size: int
    encoded_size: int
    score: float
    score_kind: ScoreKind
    encode_time: timedelta
    sample_duration: timedelta
    """Duration of the sample; may deviate a little from the requested one."""
    from_cache: bool = False

    def _percent_str(self) -> str:
        return f"{_percent(self.encoded_size, self.sample_size):.0f}"

    def attempt_line(self, sample_n: int, crf: float | None = None) -> str:
        """One-line description of this sample attempt."""
        crf_part = f"crf {_display_f32(crf)}: " if crf is not None else ""
        cache = " (cache)" if self.from_cache else ""
        return (
            f"- {crf_part}Sample {sample_n} ({self._percent_str()}%) "
            f"{self.score_kind} {self.score:.2f}{cache}"
        )

    def log_attempt(self, sample_n: int, samples: int, crf: float) -> None:
        """Log this sample attempt at info level."""
        cache = " (cache)" if self.from_cache else ""
        logger.info(
            "sample %s/%s crf %s %s %.2f (%s%%)%s",
            sample_n,
            samples,
            _display_f32(crf),
            self.score_kind,
            self.score,
            self._percent_str(),
            cache,
        )

    def to_json(self) -> str:
        """Serialize to a JSON document."""
        return json.dumps(
            {
                "sample_size": self.sample_size,
                "encoded_size": self.encoded_size,
                "score": self.score,
                "score_kind": self.score_kind.value,
                "encode_time": _duration_to_json(self.encode_time),
                "sample_duration": _duration_to_json(self.sample_duration),
                "from_cache": self.from_cache,
            }
        )

    @staticmethod
    def from_json(data: str | bytes) -> EncodeResult:
        """Deserialize from a JSON document; raises ValueError if malformed."""
        try:
            obj = json.loads(data)
            return EncodeResult(
                sample_size=int(obj["sample_size"]),
                encoded_size=int(obj["encoded_size"]),
                score=float(obj["score"]),
                score_kind=ScoreKind(obj["score_kind"]),
                encode_time=_duration_from_json(obj["encode_time"]),
                sample_duration=_duration_from_json(obj["sample_duration"]),
                from_cache=bool(obj["from_cache"]),
            )
        except (KeyError, TypeError) as err:
            raise ValueError(f"invalid encode result: {err}") from err


def encoded_percent_size(results: Sequence[EncodeResult]) -> float:
    """Total encoded size as a percentage of total sample size."""
    if not results:
        return 100.0
    encoded = sum(r.encoded_size for r in results)
    sample = sum(r.sample_size for r in results)
    return _percent(encoded, sample)


def results_score_kind(results: Sequence[EncodeResult]) -> ScoreKind:
    """Score kind of the results, VMAF if there are none."""
    return results[0].score_kind if results else ScoreKind.VMAF


def mean_score(results: Sequence[EncodeResult]) -> float:
    """Mean sample score, 0 if there are none."""
    if not results:
        return 0.0
    return sum(r.score for r in results) / len(results)


def _round_to_u64(value: float) -> int:
    if math.isnan(value) or value <= 0:
        return 0
    if value >= _U64_MAX:
        return _U64_MAX
    return int(math.floor(value + 0.5))


def _sample_factor(results: Sequence[EncodeResult], input_duration: timedelta) -> float:
    sample_secs = sum((r.sample_duration for r in results), timedelta()).total_seconds()
    input_secs = input_duration.total_seconds()
    if sample_secs == 0:
        return math.nan if input_secs == 0 else math.inf
    return input_secs / sample_secs


def estimate_encode_size_by_duration(
    results: Sequence[EncodeResult], input_duration: timedelta, single_full_pass: bool
) -> int:
    """Estimated encoded video stream size, scaling sample sizes by duration."""
    if not results:
        return 0
    if single_full_pass:
        return results[0].encoded_size
    factor = _sample_factor(results, input_duration)
    encoded = float(sum(r.encoded_size for r in results))
    return _round_to_u64(encoded * factor)


def estimate_encode_time(
    results: Sequence[EncodeResult], input_duration: timedelta, single_full_pass: bool
) -> timedelta:
    """Estimated full encode time, whole seconds unless under one second."""
    if not results:
        return timedelta(0)
    if single_full_pass:
        return results[0].encode_time
    factor = _sample_factor(results, input_duration)
    encode_time = sum((r.encode_time for r in results), timedelta())
    estimate = encode_time * factor
    if estimate < timedelta(seconds=1):
        return estimate
    return estimate - timedelta(microseconds=estimate.microseconds)


def estimate_encode_size_by_file_percent(
    results: Sequence[EncodeResult], input: str | os.PathLike, single_full_pass: bool
) -> int:
    """Estimated encoded video stream size, applying the sample percentage to
    the input file size. Over-estimates with more non-video data in the input."""
    if not results:
        return 0
    if single_full_pass:
        return results[0].encoded_size
    proportion = encoded_percent_size(results) / 100.0
    return _round_to_u64(os.stat(input).st_size * proportion)