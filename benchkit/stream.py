"""Memory bandwidth kernels in the manner of the STREAM benchmark."""

from __future__ import annotations

import getopt
import re
import sys
from array import array
from dataclasses import dataclass, field
from typing import Callable

from benchkit.benchmp import TRIES, benchmp
from benchkit.timing import mb, nano, parse_size

_DOUBLE = 8
_USAGE = (
    "Usage: stream [-v <stream version 1|2>] [-M <len>[K|M]] "
    "[-P <parallelism>] [-W <warmup>] [-N <repetitions>]\n"
)
_INT = re.compile(r"\s*([+-]?\d+)")


def _atoi(text: str) -> int:
    match = _INT.match(text)
    return int(match.group(1)) if match else 0


def _empty() -> array:
    return array("d")


@dataclass
class StreamState:
    """Three arrays of ``length`` doubles and the scalar the kernels use."""

    length: int = 1000 * 1000
    scalar: float = 3.0
    a: array = field(default_factory=_empty)
    b: array = field(default_factory=_empty)
    c: array = field(default_factory=_empty)


def initialize(iterations: int, state: StreamState) -> None:
    """Allocate and fill the arrays (only on the first call, with 0 iterations)."""
    if iterations:
        return
    state.a = array("d", [1.0]) * state.length
    state.b = array("d", [2.0]) * state.length
    state.c = array("d", [0.0]) * state.length


def cleanup(iterations: int, state: StreamState) -> None:
    """Release the arrays (only on the final call, with 0 iterations)."""
    if iterations:
        return
    state.a, state.b, state.c = _empty(), _empty(), _empty()


def _rotate(state: StreamState) -> tuple[array, array, array]:
    a, b, c = state.a, state.b, state.c
    state.a, state.b, state.c = b, c, a
    return a, b, c


def copy(iterations: int, state: StreamState) -> None:
    for _ in range(iterations):
        a, b, c = _rotate(state)
        c[:] = array("d", a)


def scale(iterations: int, state: StreamState) -> None:
    for _ in range(iterations):
        a, b, c = _rotate(state)
        k = state.scalar
        b[:] = array("d", (k * x for x in c))


def add(iterations: int, state: StreamState) -> None:
    for _ in range(iterations):
        a, b, c = _rotate(state)
        c[:] = array("d", (x + y for x, y in zip(a, b)))


def triad(iterations: int, state: StreamState) -> None:
    for _ in range(iterations):
        a, b, c = _rotate(state)
        k = state.scalar
        a[:] = array("d", (y + k * z for y, z in zip(b, c)))


def fill(iterations: int, state: StreamState) -> None:
    for _ in range(iterations):
        a, b, c = _rotate(state)
        a[:] = array("d", [0.0]) * len(a)


def daxpy(iterations: int, state: StreamState) -> None:
    for _ in range(iterations):
        a, b, c = _rotate(state)
        k = state.scalar
        a[:] = array("d", (x + k * y for x, y in zip(a, b)))


def total(iterations: int, state: StreamState) -> float:
    """Sum the first array on each pass; returns the running sum."""
    s = 0.0
    for _ in range(iterations):
        a, b, c = _rotate(state)
        s += sum(a)
    return s


def _fits(nbytes: int) -> int:
    """Halve ``nbytes`` until that much memory can be had."""
    while nbytes > 0:
        try:
            bytearray(nbytes)
        except MemoryError:
            nbytes //= 2
            continue
        break
    return nbytes


def _run(
    label: str,
    kernel: Callable,
    passes: int,
    state: StreamState,
    parallel: int,
    warmup: int,
    repetitions: int,
    datasize: int,
) -> None:
    results = benchmp(initialize, kernel, cleanup, 0, parallel, warmup, repetitions, state)
    if results.median().usecs <= 0:
        return
    sample = results.minimum() if parallel <= 1 else results.median()
    text = nano("%s latency" % label, state.length * sample.n, sample.usecs)
    if text:
        sys.stderr.write(text)
    sys.stderr.write("%s bandwidth: " % label)
    text = mb(passes * datasize * sample.n, sample.usecs)
    if text:
        sys.stderr.write(text)


def main(argv=None) -> int:
    """Usage: stream [-v 1|2] [-M len[K|M]] [-P n] [-W warmup] [-N repetitions]."""
    args = sys.argv[1:] if argv is None else list(argv)
    try:
        opts, _ = getopt.getopt(args, "v:M:P:W:N:")
    except getopt.GetoptError:
        sys.stderr.write(_USAGE)
        return 255
    version, parallel, warmup, repetitions = 1, 1, 0, TRIES
    nbytes = 1000 * 1000 * 3 * _DOUBLE
    for flag, value in opts:
        if flag == "-v":
            version = _atoi(value)
            if version not in (1, 2):
                sys.stderr.write(_USAGE)
                return 255
        elif flag == "-P":
            parallel = _atoi(value)
            if parallel <= 0:
                sys.stderr.write(_USAGE)
                return 255
        elif flag == "-M":
            nbytes = parse_size(value)
        elif flag == "-W":
            warmup = _atoi(value)
        elif flag == "-N":
            repetitions = _atoi(value)

    state = StreamState(length=_fits(nbytes) // (3 * _DOUBLE))
    datasize = _DOUBLE * state.length * parallel

    if version == 1:
        plan = (
            ("STREAM copy", copy, 2),
            ("STREAM scale", scale, 2),
            ("STREAM add", total, 3),
            ("STREAM triad", triad, 3),
        )
    else:
        plan = (
            ("STREAM2 fill", fill, 1),
            ("STREAM2 copy", copy, 2),
            ("STREAM2 daxpy", daxpy, 3),
            ("STREAM2 sum", total, 1),
        )
    for label, kernel, passes in plan:
        _run(label, kernel, passes, state, parallel, warmup, repetitions, datasize)
    return 0