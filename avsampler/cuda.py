"""CUDA hardware decoding settings for ffmpeg."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class CudaConfig:
    """CUDA decoder, filters and surface count."""

    decoder: str
    filters: list[str] = field(default_factory=list)
    surfaces: int = 0

    def ffmpeg_args(self) -> list[str]:
        """ffmpeg input arguments enabling CUDA decoding."""
        args = [
            "-hwaccel", "cuda",
            "-hwaccel_output_format", "cuda",
            "-extra_hw_frames", str(self.surfaces),
            "-c:v", self.decoder,
        ]
        if self.filters:
            args += ["-vf", ",".join(self.filters)]
        return args