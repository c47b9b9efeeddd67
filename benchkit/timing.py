"""Timing primitives, result bookkeeping and report formatting for benchmarks."""

from __future__ import annotations

import mmap
import os
import random
import re
import time
from array import array
from dataclasses import dataclass
from typing import Iterator, Optional

# Sizes and bandwidths are quoted in powers of ten.
MB = 1000 * 1000.0
KB = 1000.0

_SIZE_TAGS = " KMGTPE"
_LEADING_INT = re.compile(r"\s*\+?(\d+)")


@dataclass(frozen=True)
class Sample:
    """One measurement: ``usecs`` microseconds spent on ``n`` iterations."""

    usecs: int
    n: int

    @property
    def per_iteration(self) -> float:
        return self.usecs / self.n


class Results:
    """Measurements kept sorted from the slowest to the fastest per iteration."""

    def __init__(self) -> None:
        self._samples: list[Sample] = []

    def insert(self, usecs: int, n: int) -> None:
        """Add a measurement; measurements of zero time are ignored."""
        if usecs == 0:
            return
        ratio = usecs / n
        index = next(
            (i for i, s in enumerate(self._samples) if ratio > s.per_iteration),
            len(self._samples),
        )
        self._samples.insert(index, Sample(usecs, n))

    def median(self) -> Sample:
        """The middle measurement, or the mean of the two middle ones."""
        count = len(self._samples)
        if count == 0:
            return Sample(0, 1)
        mid = count // 2
        if count % 2:
            return self._samples[mid]
        upper, lower = self._samples[mid - 1], self._samples[mid]
        return Sample((upper.usecs + lower.usecs) // 2, (upper.n + lower.n) // 2)

    def minimum(self) -> Sample:
        """The fastest measurement per iteration."""
        if not self._samples:
            return Sample(0, 1)
        return self._samples[-1]

    def __len__(self) -> int:
        return len(self._samples)

    def __iter__(self) -> Iterator[Sample]:
        return iter(self._samples)


def _clock_usecs() -> int:
    return time.perf_counter_ns() // 1000


def tvdelta(start: int, stop: int) -> int:
    """Microseconds from ``start`` to ``stop``; time never runs backwards."""
    return max(0, stop - start)


def now() -> int:
    """Wall-clock time in microseconds since the epoch."""
    return time.time_ns() // 1000


class Stopwatch:
    """Measures an interval in microseconds and remembers its iteration count."""

    def __init__(self) -> None:
        self._start = 0
        self._stop = 0
        self.n = 1

    def start(self) -> None:
        self._start = _clock_usecs()

    def stop(self) -> int:
        """Stop timing and return the elapsed microseconds."""
        self._stop = _clock_usecs()
        return tvdelta(self._start, self._stop)

    def settime(self, usecs: int) -> None:
        """Make the recorded interval exactly ``usecs`` microseconds."""
        self._start = 0
        self._stop = int(usecs)

    def gettime(self) -> int:
        return tvdelta(self._start, self._stop)

    def timespent(self) -> float:
        return self.gettime() / 1000000.0


def bandwidth(nbytes: int, usecs: int, times: int = 1, verbose: bool = False) -> str:
    """Report megabytes moved and the rate per second."""
    secs = usecs / 1000000.0 / times
    megabytes = nbytes / MB
    rate = megabytes / secs if secs else float("inf")
    if verbose:
        return "%.4f MB in %.4f secs, %.4f MB/sec\n" % (megabytes, secs, rate)
    size_text = "%.6f " % megabytes if megabytes < 1 else "%.2f " % megabytes
    rate_text = "%.6f\n" % rate if rate < 1 else "%.2f\n" % rate
    return size_text + rate_text


def kb(nbytes: int, usecs: int) -> Optional[str]:
    secs = usecs / 1000000.0
    if secs == 0.0:
        return None
    return "%.0f KB/sec\n" % (nbytes / secs / KB)


def mb(nbytes: int, usecs: int) -> Optional[str]:
    secs = usecs / 1000000.0
    if secs == 0.0:
        return None
    return "%.2f MB/sec\n" % (nbytes / secs / MB)


def latency(xfers: int, size: int, usecs: int) -> Optional[str]:
    secs = usecs / 1000000.0
    if secs == 0.0:
        return None
    if xfers > 1:
        head = "%d %dKB xfers in %.2f secs, " % (xfers, int(size / KB), secs)
    else:
        head = "%.1fKB in " % (size / KB)
    per_xfer = secs * 1000 / xfers
    suffix = "/xfer" if xfers > 1 else "s"
    fmt = "%.0f millisec%s, " if per_xfer > 100 else "%.4f millisec%s, "
    middle = fmt % (per_xfer, suffix)
    total = xfers * size
    if total / (MB * secs) > 1:
        tail = "%.2f MB/sec\n" % (total / (MB * secs))
    else:
        tail = "%.2f KB/sec\n" % (total / (KB * secs))
    return head + middle + tail


def context(xfers: int, usecs: int) -> Optional[str]:
    secs = usecs / 1000000.0
    if secs == 0.0:
        return None
    return "%d context switches in %.2f secs, %.0f microsec/switch\n" % (
        xfers,
        secs,
        secs * 1000000 / xfers,
    )


def nano(label: str, n: int, usecs: int) -> Optional[str]:
    nanos = float(usecs) * 1000
    if nanos == 0.0:
        return None
    return "%s: %.2f nanoseconds\n" % (label, nanos / n)


def micro(label: str, n: int, usecs: int) -> Optional[str]:
    per = usecs / n
    if per == 0.0:
        return None
    return "%s: %.4f microseconds\n" % (label, per)


def micromb(size: int, n: int, usecs: int) -> Optional[str]:
    per = usecs / n
    megabytes = size / MB
    if per == 0.0:
        return None
    if per >= 10:
        return "%.6f %.0f\n" % (megabytes, per)
    return "%.6f %.3f\n" % (megabytes, per)


def milli(label: str, n: int, usecs: int) -> Optional[str]:
    millis = (usecs // 1000) // n
    if millis == 0:
        return None
    return "%s: %d milliseconds\n" % (label, millis)


def ptime(n: int, usecs: int) -> Optional[str]:
    secs = usecs / 1000000.0
    if secs == 0.0:
        return None
    return "%d in %.2f secs, %.0f microseconds each\n" % (n, secs, secs * 1000000 / n)


def p64sz(big: int) -> str:
    """Human-readable size with a binary suffix (blank for plain bytes)."""
    value = float(big)
    tag = 0
    while value > 512:
        tag += 1
        value /= 1024
    if value == 0:
        return "0"
    if value < 100:
        return "%.4f%s" % (value, _SIZE_TAGS[tag])
    return "%.2f%s" % (value, _SIZE_TAGS[tag])


def parse_size(text: str) -> int:
    """Parse a byte count with an optional k/K or m/M (binary) suffix."""
    match = _LEADING_INT.match(text)
    if not match:
        return 0
    value = int(match.group(1))
    suffix = text[-1]
    if suffix in "kK":
        value *= 1024
    elif suffix in "mM":
        value *= 1024 * 1024
    return value


def bread(buf) -> int:
    """Read every native word of ``buf`` and return their wrapped sum."""
    words = array("l")
    data = memoryview(buf).cast("B")
    usable = len(data) - len(data) % words.itemsize
    words.frombytes(data[:usable].tobytes())
    bits = words.itemsize * 8
    total = sum(words) & ((1 << bits) - 1)
    if total >= 1 << (bits - 1):
        total -= 1 << bits
    return total


def touch(buf, nbytes: int, pagesize: Optional[int] = None) -> None:
    """Write one byte into every page of the first ``nbytes`` of ``buf``."""
    step = pagesize or mmap.PAGESIZE
    for offset in range(0, max(nbytes, 0), step):
        buf[offset] = 1


def permutation(count: int, scale: int = 1, rng: Optional[random.Random] = None) -> list[int]:
    """The multiples ``0, scale, ..., (count-1)*scale`` in random order."""
    values = [i * scale for i in range(count)]
    (rng or random).shuffle(values)
    return values


def copy_file(src, dst, mode: int = 0o644) -> None:
    """Copy ``src`` to ``dst``, creating it with ``mode`` and syncing it to disk."""
    with open(src, "rb") as source:
        fd = os.open(dst, os.O_CREAT | os.O_TRUNC | os.O_RDWR, mode)
        with os.fdopen(fd, "wb") as target:
            while chunk := source.read(8192):
                target.write(chunk)
            target.flush()
            os.fsync(target.fileno())