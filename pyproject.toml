[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "avsampler"
version = "0.1.0"
description = "Predict video encode quality, size and time by encoding and scoring short samples with ffmpeg"
requires-python = ">=3.10"
dependencies = [
    "platformdirs",
]
keywords = ["av1", "vmaf", "xpsnr", "ffmpeg", "video", "encoding", "crf"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Environment :: Console",
    "Intended Audience :: End Users/Desktop",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Multimedia :: Video :: Conversion",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[project.scripts]
avsampler-xpsnr = "avsampler.command_xpsnr:main"

[tool.hatch.build.targets.wheel]
packages = ["avsampler"]

[tool.pytest.ini_options]
addopts = "-ra"
testpaths = ["tests"]

[tool.ruff]
line-length = 100
target-version = "py310"
