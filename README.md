# avsampler

Tools for estimating how a full video encode will turn out without running
it. Short samples are cut from the input, encoded with ffmpeg at a chosen
CRF, and scored against the originals with VMAF or XPSNR. From the sample
results the package predicts the mean quality score, the encoded video
stream size and the encode time of the whole file.

`ffmpeg` and `ffprobe` must be on your `PATH`. Scoring needs an ffmpeg
build with `libvmaf` (for VMAF) or the `xpsnr` filter (for XPSNR).

## Installation

```
pip install .
```

To run the tests:

```
pip install ".[test]"
pytest
```

## Command line

An XPSNR score of a re-encoded file against its reference:

```
avsampler-xpsnr --reference original.mkv --distorted encoded.mkv
```

Options:

- `--reference` – the reference video file (required).
- `--distorted` – the re-encoded/distorted video file (required).
- `--reference-vfilter` – a filter applied to the reference before scoring.
- `--xpsnr-fps` – the frame rate both inputs are read at.

When stderr is a terminal, progress is shown while ffmpeg runs. The score is
printed to stdout; on failure an `Error: ...` line goes to stderr and the
exit code is 1. Run `avsampler-xpsnr --help` for the option list.

## Library use

Sample encoding and scoring is driven by `avsampler.sample_encode.run`.
Given the input, its `Ffprobe`, the `FfmpegEncodeArgs`, a sample count and
duration and a `Scoring` (from `avsampler.results`), it yields `Status`
progress updates, a `SampleResult` for each sample and finally an `Output`
holding the mean score, predicted size, encode percentage and predicted
encode time. If the samples would cover most of the input (or the input is
an image), the whole input is encoded once instead. `StdoutFormat.format_result`
renders an `Output` as a human-readable line or as JSON.

Smaller pieces are usable on their own:

- `avsampler.ffprobe.probe` reads duration, frame rate, resolution, pixel
  format and audio information of a file; values that cannot be read are
  held as `ProbeError` instances. `probe_from_json` builds the same from
  ffprobe's JSON output.
- `avsampler.ffmpeg.encode_sample` and `avsampler.ffmpeg.encode` start
  ffmpeg encodes; `encode_sample_command` and `encode_command` build the
  commands without running them. `crf_arg` and `preset_arg` pick the right
  flag for an encoder, e.g. `-cq` for `*_nvenc` encoders, or `-cpu-used` as
  the preset flag of `libaom-av1`.
- `avsampler.sample.copy` cuts a sample with a stream copy, reusing one
  already made.
- `avsampler.process.parse_ffmpeg_out` parses ffmpeg progress and stream
  size lines; `Chunks` keeps a bounded tail of stderr output, handling
  carriage-return progress overwrites; `CommandBuilder` assembles commands.
- `avsampler.vmaf.run` and `avsampler.xpsnr.run` stream progress and the
  final score from ffmpeg, raising `ProcessError` if ffmpeg fails or no
  score is found.
- `avsampler.command_xpsnr.lavfi` builds the XPSNR filter graph, optionally
  applying a filter to the reference first.
- `avsampler.results` holds `EncodeResult` and the size and time estimates
  drawn from a list of results.
- `avsampler.cuda.CudaConfig.ffmpeg_args` gives ffmpeg input arguments for
  CUDA hardware decoding.
- `avsampler.float.format_terse` formats a CRF with as few decimals as
  needed, e.g. `32` or `32.5`.
- `avsampler.progress` has `ProgressLogger`, which logs progress at 16, 32,
  64... seconds, and `human_duration` / `human_bytes` formatters.

```python
from avsampler.process import parse_ffmpeg_out

line = "frame=  161 fps= 73 q=-0.0 size=N/A time=00:00:06.71 bitrate=N/A speed=3.03x"
print(parse_ffmpeg_out(line))
```

## Caching

Sample encode results are cached in an SQLite database in the user cache
directory (`avsampler.cache.default_cache_path`), keyed by a hash of the
sample file name, the input's duration, extension and size, whether it was
a full pass, the encoder arguments and the scoring settings. A repeated run
with the same settings reuses earlier results instead of encoding again;
see `avsampler.cache.ResultCache`. Cache errors are reported on stderr and
otherwise ignored.

## Temporary files

Samples and encoded samples are written to a per-run hidden directory
(`.avsampler-` followed by random characters) under the chosen temp
directory, or the working directory. `avsampler.temporary.clean` removes
registered files, optionally sparing the keepable ones.

## What is not included

The only command is `avsampler-xpsnr`. Sample encoding, VMAF scoring and
full encodes are available from Python only, with no command of their own.
There is no search for the CRF that reaches a target score, and no
automatic choice of VMAF model or pixel format: the VMAF filter graph used
during sample encoding is plain `libvmaf` with any options given in
`Scoring.options`.