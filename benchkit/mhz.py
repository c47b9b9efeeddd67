"""Estimate the processor clock rate from loops of simple dependent expressions.

The clock period is taken as the greatest common divisor of the times the
various expressions take, found by fitting guessed cycle counts.
"""

from __future__ import annotations

import getopt
import os
import sys
from typing import Callable, Optional, Sequence

from benchkit.benchmp import TRIES, Calibration, calibration
from benchkit.stats import median, regression
from benchkit.timing import Results, Stopwatch

_MASK = (1 << 64) - 1
_MAX_COUNT = 6
_MAX_BATCH = 1 << 27
_USAGE = "Usage: mhz [-d] [-c]\n"


def _chain() -> list:
    cell: list = []
    cell.append(cell)
    return cell


def _mhz_1(n, p, a, b):
    for _ in range(100 * n):
        p = p[0]
    return p


def _mhz_2(n, p, a, b):
    for _ in range(100 * n):
        a = (a ^ (a + a)) & _MASK
    return a


def _mhz_3(n, p, a, b):
    for _ in range(100 * n):
        a = (a ^ (a + a + a)) & _MASK
    return a


def _mhz_4(n, p, a, b):
    for _ in range(100 * n):
        a >>= b & 63
    return a


def _mhz_5(n, p, a, b):
    for _ in range(100 * n):
        a >>= (a + a) & 63
    return a


def _mhz_6(n, p, a, b):
    for _ in range(100 * n):
        a = (a ^ (a << (b & 63))) & _MASK
    return a


def _mhz_7(n, p, a, b):
    for _ in range(100 * n):
        a = (a ^ (a + b)) & _MASK
    return a


def _mhz_8(n, p, a, b):
    for _ in range(100 * n):
        a = (a + ((a + b) & 0o7)) & _MASK
    return a


def _mhz_9(n, p, a, b):
    for i in range(100 * n):
        a ^= i
        b ^= a
        a |= b
    return a


LOOPS: tuple[tuple[str, Callable], ...] = (
    ("p=(TYPE**)*p;", _mhz_1),
    ("a^=a+a;", _mhz_2),
    ("a^=a+a+a;", _mhz_3),
    ("a>>=b;", _mhz_4),
    ("a>>=a+a;", _mhz_5),
    ("a^=a<<b;", _mhz_6),
    ("a^=a+b;", _mhz_7),
    ("a+=(a+b)&07;", _mhz_8),
    ("a^=n;b^=a;a|=b;", _mhz_9),
)
NTESTS = len(LOOPS)


def filter_data(values: Sequence[float]) -> list[float]:
    """The values within a factor of 20 of the median, in their original order."""
    values = list(values)
    if not values:
        return []
    mid = median(values)
    return [v for v in values if 0.05 * mid < v < 20.0 * mid]


def classes(values: Sequence[float]) -> int:
    """The number of groups of values that differ by more than 5% of the median."""
    ordered = sorted(values)
    if not ordered:
        return 0
    mid = median(ordered)
    return 1 + sum(
        1 for lo, hi in zip(ordered, ordered[1:]) if hi - lo > 0.05 * mid
    )


def mode(values: Sequence[float]) -> int:
    """The most common value after rounding to an integer."""
    rounded = [int(v + 0.5) for v in sorted(values)]
    if not rounded:
        raise ValueError("mode of no values")
    best = curr = rounded[0]
    n_best = n_curr = 1
    for v in rounded[1:]:
        if v != curr:
            curr = v
            n_curr = 0
        n_curr += 1
        if n_curr > n_best:
            best, n_best = curr, n_curr
    return best


def cross_values(values: Sequence[float]) -> list[float]:
    """Each value followed by its absolute differences from the later values."""
    values = list(values)
    out: list[float] = []
    for i, v in enumerate(values):
        out.append(v)
        out.extend(abs(v - w) for w in values[i + 1:])
    return out


def gcd(values: Sequence[float]) -> float:
    """The approximate greatest common divisor of measured durations."""
    values = list(values)
    if not values:
        raise ValueError("gcd of no values")
    smallest = min(values)
    result = smallest
    y = cross_values(values)
    y.append(0.0)  # the line should go through the origin
    min_chi2 = 0.0
    for count in range(1, _MAX_COUNT):
        x = [float(int(count * yi / smallest + 0.5)) for yi in y]
        fit = regression(x, y)
        if count == 1 or count * count * fit.chi2 < min_chi2:
            result = fit.b
            min_chi2 = fit.chi2
    return result


def _rate(results: Results, offset: int) -> float:
    """The ``offset``-th fastest time per expression."""
    ordered = sorted(results, key=lambda s: s.usecs / s.n)
    sample = ordered[offset]
    return sample.usecs / sample.n


def compute_mhz(results: Sequence[Results]) -> int:
    """The clock rate in MHz from per-loop results, or -1 if they disagree."""
    results = list(results)
    estimates = []
    for offset in (0, 1):
        found = []
        for subset in range(1, 1 << len(results)):
            data = [
                _rate(r, offset)
                for j, r in enumerate(results)
                if subset & (1 << j) and len(r) > TRIES // 2
            ]
            if len(data) < 2:
                continue
            data = filter_data(data)
            if len(data) < 2 or classes(data) < 2:
                continue
            period = gcd(data)
            if period > 0:
                found.append(1.0 / period)
        if not found:
            return -1
        estimates.append(mode(found))
    first, second = estimates
    diff = abs(first - second)
    if diff <= 1 or (first != 0 and diff / first <= 0.01):
        return first
    return -1


def _bench(kernel: Callable, enough: int, calib: Calibration) -> tuple[int, int]:
    """Time ``kernel`` with a growing batch until it runs ``enough`` microseconds."""
    p = _chain()
    kernel(1, p, 1, 1)
    watch = Stopwatch()
    n = 1
    while True:
        watch.start()
        kernel(n, p, 1, 1)
        usecs = watch.stop()
        if usecs >= enough or n >= _MAX_BATCH:
            break
        n *= 2
    adjusted = usecs - calib.timing_overhead() - n * calib.loop_overhead()
    return max(int(adjusted), 0), 100 * n


def measure(calibration: Calibration) -> tuple[int, list[Results]]:
    """Up to three attempts at a consistent clock rate, with the data of the last."""
    enough = calibration.get_enough(0)
    mhz = -1
    data: list[Results] = []
    for _ in range(3):
        data = [Results() for _ in LOOPS]
        # One sample of every loop per round spreads bursts of activity.
        for _ in range(TRIES):
            for (_, kernel), results in zip(LOOPS, data):
                usecs, n = _bench(kernel, enough, calibration)
                results.insert(usecs, n)
        mhz = compute_mhz(data)
        if mhz >= 0:
            break
    return mhz, data


def _print_data(mhz: float, data: Sequence[Results], calib: Calibration) -> None:
    print(
        '/* "%s", "%s", "%s", %d, %.0f, %d, %f, %f */'
        % ("CPU", "uname", "email", -1, mhz, calib.get_enough(0),
           calib.loop_overhead(), float(calib.timing_overhead()))
    )
    print("result_t* data[] = { ")
    parts = []
    for i, ((name, _), results) in enumerate(zip(LOOPS, data)):
        samples = list(results)
        parts.append("\t/* %s */ { %d, {" % (name, len(samples)))
        for j, s in enumerate(samples):
            parts.append("\n\t\t{ /* %f */ %d, %d}" % (s.usecs / (100.0 * s.n), s.usecs, s.n))
            if j < TRIES - 1:
                parts.append(", ")
        parts.append("}},\n" if i < len(LOOPS) - 1 else "}}\n")
    sys.stdout.write("".join(parts))
    print("};")


def main(argv=None) -> int:
    """Usage: mhz [-d] [-c]."""
    args = sys.argv[1:] if argv is None else list(argv)
    try:
        opts, _ = getopt.getopt(args, "cd")
    except getopt.GetoptError:
        sys.stderr.write(_USAGE)
        return 255
    os.environ["LOOP_O"] = "0.0"
    calib = calibration()
    runtime = NTESTS * TRIES * 3 * calib.get_enough(0) / 1000000.0
    if runtime > 3.0:
        sys.stderr.write("mhz: should take approximately %.0f seconds\n" % runtime)
    mhz, data = measure(calib)
    for flag, _ in opts:
        if flag == "-c":
            if mhz > 0:
                print("%.4f" % (1000.0 / mhz))
                mhz = 0
        elif flag == "-d":
            _print_data(mhz, data, calib)
    if mhz < 0:
        print("-1 System too busy")
        return 1
    if mhz > 0:
        print("%d MHz, %.4f nanosec clock" % (mhz, 1000.0 / mhz))
    return 0