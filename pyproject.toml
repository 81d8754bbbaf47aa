[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "tracelog"
version = "0.8.0"
description = "Logging building blocks: per-module verbosity, stack traces, ELF symbol lookup"
requires-python = ">=3.10"
dependencies = []
keywords = ["logging", "vlog", "vmodule", "stacktrace", "symbolize", "elf", "proc-maps"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Operating System :: POSIX :: Linux",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Logging",
    "Topic :: Software Development :: Debuggers",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["tracelog"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
