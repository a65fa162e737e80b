[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "sigsentinel"
version = "0.1.0"
description = "Scanner audio tooling: RTP/u-law decoding, a jitter-buffered live monitor and an atomic FLAC clip writer"
requires-python = ">=3.10"
dependencies = []
keywords = ["rtp", "ulaw", "flac", "audio", "scanner", "monitor", "jitter-buffer"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Multimedia :: Sound/Audio :: Capture/Recording",
    "Topic :: Multimedia :: Sound/Audio",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["sigsentinel"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
