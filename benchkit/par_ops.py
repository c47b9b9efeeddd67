"""Measure how many independent simple operations the processor overlaps.

Each operation family has sixteen benchmarks; benchmark ``k`` runs ``k + 1``
independent dependency chains of the same operation side by side.
"""

from __future__ import annotations

import getopt
import math
import re
import struct
import sys
from dataclasses import dataclass, field
from typing import Callable, Optional, Sequence

from benchkit.benchmp import TRIES, benchmp

MAX_LOAD_PARALLELISM = 16
_USAGE = "Usage: par_ops [-W <warmup>] [-N <repetitions>]\n"
_INT = re.compile(r"\s*([+-]?\d+)")


def _atoi(text: str) -> int:
    match = _INT.match(text)
    return int(match.group(1)) if match else 0


def _i32(x: int) -> int:
    x &= 0xFFFFFFFF
    return x - (1 << 32) if x >= 1 << 31 else x


def _i64(x: int) -> int:
    x &= 0xFFFFFFFFFFFFFFFF
    return x - (1 << 64) if x >= 1 << 63 else x


def _cdiv(a: int, b: int) -> int:
    """Integer division truncating towards zero."""
    q = abs(a) // abs(b)
    return q if (a >= 0) == (b >= 0) else -q


def _cmod(a: int, b: int) -> int:
    return a - b * _cdiv(a, b)


def _f32(x: float) -> float:
    """Round to single precision."""
    try:
        return struct.unpack("f", struct.pack("f", x))[0]
    except OverflowError:
        return math.copysign(math.inf, x)


def _to_int(x) -> int:
    """The value as a 32-bit int, as a cast would give it."""
    if isinstance(x, float):
        if not math.isfinite(x):
            return 0
        x = int(x)
    return _i32(x)


def _default_ints() -> list:
    return [i + 1 for i in range(MAX_LOAD_PARALLELISM)]


def _default_doubles() -> list:
    return [1.0] * MAX_LOAD_PARALLELISM


@dataclass
class OpsState:
    """Inputs shared by every benchmark, plus a sink for their results."""

    n: int = 1
    m: int = 1000
    k: int = -1023
    int_data: list = field(default_factory=_default_ints)
    double_data: list = field(default_factory=_default_doubles)
    sink: int = 0


@dataclass(frozen=True)
class _Family:
    init: Callable[[int, OpsState, int], tuple]
    body: Callable[[tuple], tuple]
    save: Callable[[tuple], int]
    preamble: Optional[Callable[[tuple], tuple]] = None


def _base(k: int, st: OpsState) -> int:
    return st.int_data[k] - k + 1


# -- 32-bit integers ---------------------------------------------------------

def _bit_body(regs):
    r, s = regs
    r ^= s
    s ^= r
    r |= s
    return r, s


def _mul_init(k, st, it, extra, wrap):
    r = wrap(_base(k, st) + extra)
    s = _base(k, st) + 4
    t = wrap(r * s ** 10 - r)
    return wrap(r + t), s, t


def _mul_preamble(wrap):
    return lambda regs: (wrap(regs[0] - regs[2]), regs[1], regs[2])


def _mul_body(wrap):
    return lambda regs: (wrap(regs[0] * regs[1]), regs[1], regs[2])


def _div_body(regs):
    r, s = regs
    return _cdiv(s, r), s


def _first(regs) -> int:
    return _to_int(regs[0])


def _both(regs) -> int:
    return _to_int(regs[0]) + _to_int(regs[1])


def _int64_mul_init(k, st, it):
    r = _base(k, st) + 37420
    r += (_base(k, st) + 6) << 32
    s = _base(k, st) + 4
    t = _i64(r * s ** 10 - r)
    return _i64(r + t), s, t


def _int64_bit_init(k, st, it):
    r = _base(k, st)
    r = _i64(r | (r << 32))
    s = _i64(it + _base(k, st))
    s = _i64(s | (s << 32))
    return r, s, _i64((s << 2) - 1)


def _int64_bit_body(regs):
    r, s, i = regs
    r ^= i
    s ^= r
    r |= s
    return r, s, i


def _int64_add_init(k, st, it):
    a = _base(k, st) + 37420
    a = _i64(a + ((0xFE + _base(k, st)) << 30))
    b = _base(k, st) + 21698324
    b = _i64(b + ((0xFFFE + _base(k, st)) << 29))
    return a, b


def _int64_div_init(k, st, it):
    r = st.int_data[k] - k + 37
    r = _i64(r + (r << 33))
    return r, _i64((r + 17) << 13)


def _add_body(wrap):
    def body(regs):
        a, b = regs
        a = wrap(a + b)
        b = wrap(b - a)
        return a, b
    return body


# -- floating point ------------------------------------------------------------

def _fp_add(rnd):
    return _Family(
        init=lambda k, st, it: (rnd(st.double_data[k] + 1023.0), rnd(float(st.k))),
        preamble=lambda regs: (rnd(regs[0] + regs[1]), regs[1]),
        body=lambda regs: (rnd(regs[0] + regs[0]), regs[1]),
        save=_first,
    )


def _fp_mul(rnd):
    def body(regs):
        r, s = regs
        r = rnd(r * r)
        return rnd(r * s), s

    return _Family(
        init=lambda k, st, it: (
            rnd(8.0 * rnd(st.double_data[k])),
            rnd(0.125 * rnd(float(st.m)) * st.double_data[k] / 1000.0),
        ),
        body=body,
        save=_both,
    )


def _fp_div(rnd):
    return _Family(
        init=lambda k, st, it: (
            rnd(1.41421356 * rnd(st.double_data[k])),
            rnd(3.14159265 * rnd(float(_base(k, st)))),
        ),
        body=lambda regs: (rnd(regs[1] / regs[0]), regs[1]),
        save=_both,
    )


def _identity(x: float) -> float:
    return x


_FAMILIES: dict[str, _Family] = {
    "integer_bit": _Family(
        init=lambda k, st, it: (
            _i32(st.int_data[k] + 1),
            _i32(k + 1 + st.int_data[k] + 1),
        ),
        body=_bit_body,
        save=_first,
    ),
    "integer_add": _Family(
        init=lambda k, st, it: (_i32(st.int_data[k] + 57), _i32(st.int_data[k] + 31)),
        body=_add_body(_i32),
        save=lambda regs: _i32(regs[0] + regs[1]),
    ),
    "integer_mul": _Family(
        init=lambda k, st, it: _mul_init(k, st, it, 37431, _i32),
        preamble=_mul_preamble(_i32),
        body=_mul_body(_i32),
        save=_first,
    ),
    "integer_div": _Family(
        init=lambda k, st, it: (
            _base(k, st) + 36,
            _i32((_base(k, st) + 36 + 1) << 20),
        ),
        body=_div_body,
        save=_first,
    ),
    "integer_mod": _Family(
        init=lambda k, st, it: (_i32(_base(k, st) + it), _base(k, st) + 62),
        body=lambda regs: (_cmod(regs[0], regs[1]) | regs[1], regs[1]),
        save=_first,
    ),
    "int64_bit": _Family(
        init=_int64_bit_init,
        preamble=lambda regs: (regs[0], regs[1], _i64(regs[2] - 1)),
        body=_int64_bit_body,
        save=_first,
    ),
    "int64_add": _Family(
        init=_int64_add_init,
        body=_add_body(_i64),
        save=lambda regs: _i32(_to_int(regs[0]) + _to_int(regs[1])),
    ),
    "int64_mul": _Family(
        init=_int64_mul_init,
        preamble=_mul_preamble(_i64),
        body=_mul_body(_i64),
        save=_first,
    ),
    "int64_div": _Family(init=_int64_div_init, body=_div_body, save=_first),
    "int64_mod": _Family(
        init=lambda k, st, it: (st.int_data[k], 0),
        preamble=lambda regs: (regs[0], regs[1] + 1),
        body=lambda regs: (_cmod(regs[1], regs[0]) ^ regs[0], regs[1]),
        save=_first,
    ),
    "float_add": _fp_add(_f32),
    "float_mul": _fp_mul(_f32),
    "float_div": _fp_div(_f32),
    "double_add": _fp_add(_identity),
    "double_mul": _fp_mul(_identity),
    "double_div": _fp_div(_identity),
}

FAMILIES: tuple[str, ...] = tuple(_FAMILIES)


def _make(family: _Family, chains: int) -> Callable[[int, OpsState], int]:
    def benchmark(iterations: int, state: OpsState) -> int:
        regs = [family.init(k, state, iterations) for k in range(chains)]
        for _ in range(iterations):
            if family.preamble is not None:
                regs = [family.preamble(r) for r in regs]
            for _ in range(10):
                regs = [family.body(r) for r in regs]
        saved = _i32(sum(family.save(r) for r in regs))
        state.sink = _i32(state.sink + saved)
        return saved

    return benchmark


def make_benchmarks(family: str) -> list[Callable[[int, OpsState], int]]:
    """The sixteen benchmarks of ``family``; the k-th runs k + 1 chains."""
    try:
        spec = _FAMILIES[family]
    except KeyError:
        raise ValueError("unknown operation family: %s" % family) from None
    return [_make(spec, k + 1) for k in range(MAX_LOAD_PARALLELISM)]


def _initialize(iterations: int, state: OpsState) -> None:
    if iterations:
        return
    state.int_data = _default_ints()
    state.double_data = _default_doubles()


def _cleanup(iterations: int, state: OpsState) -> None:
    if iterations:
        return
    state.int_data = []
    state.double_data = []


def max_parallelism(
    benchmarks: Sequence[Callable], warmup: int, repetitions: int, state: OpsState
) -> float:
    """The largest speed-up of several chains over one, or -1 if timing failed."""
    best = 1.0
    baseline = 0.0
    for index, benchmark in enumerate(benchmarks[:MAX_LOAD_PARALLELISM]):
        sample = benchmp(
            _initialize, benchmark, _cleanup, 0, 1, warmup, repetitions, state
        ).minimum()
        if sample.usecs == 0:
            return -1.0
        if index == 0:
            baseline = sample.usecs / sample.n
        else:
            par = baseline / sample.usecs * ((index + 1) * sample.n)
            best = max(best, par)
    return best


def main(argv=None) -> int:
    """Usage: par_ops [-W <warmup>] [-N <repetitions>]."""
    args = sys.argv[1:] if argv is None else list(argv)
    try:
        opts, _ = getopt.getopt(args, "W:N:")
    except getopt.GetoptError:
        sys.stderr.write(_USAGE)
        return 255
    warmup, repetitions = 0, TRIES
    for flag, value in opts:
        if flag == "-W":
            warmup = _atoi(value)
        elif flag == "-N":
            repetitions = _atoi(value)
    state = OpsState(n=1, m=1000, k=-1023)
    for family in FAMILIES:
        par = max_parallelism(make_benchmarks(family), warmup, repetitions, state)
        if par > 0.0:
            sys.stderr.write(
                "%s parallelism: %.2f\n" % (family.replace("_", " "), par)
            )
    return 0