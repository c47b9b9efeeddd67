[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "benchkit"
version = "0.1.0"
description = "Micro-benchmarks for timing, memory, disk, HTTP and CPU behaviour of Unix systems"
requires-python = ">=3.10"
dependencies = []
keywords = [
    "benchmark",
    "latency",
    "bandwidth",
    "timing",
    "memory",
    "disk",
    "http",
]
classifiers = [
    "Development Status :: 4 - Beta",
    "Environment :: Console",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: POSIX",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Benchmark",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
lmdd = "benchkit.lmdd:main"
lmhttp = "benchkit.lmhttp:main"
rhttp = "benchkit.rhttp:main"
msleep = "benchkit.msleep:main"
benchkit-seek = "benchkit.seek:main"
memsize = "benchkit.memsize:main"
mhz = "benchkit.mhz:main"
par-ops = "benchkit.par_ops:main"
benchkit-stream = "benchkit.stream:main"
loop-o = "benchkit.overhead:loop_main"
timing-o = "benchkit.overhead:timing_main"

[tool.hatch.build.targets.wheel]
packages = ["benchkit"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 88
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "W", "I", "B", "UP"]

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
warn_redundant_casts = true
