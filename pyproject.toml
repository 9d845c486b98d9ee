[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "xdputil"
version = "1.2.2"
description = "Helpers for XDP tooling: option parsing, logging, statistics formatting, program locks and PcapNG writing"
requires-python = ">=3.10"
dependencies = []
keywords = ["xdp", "bpf", "pcapng", "networking", "command-line"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: POSIX :: Linux",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Networking",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["xdputil"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
