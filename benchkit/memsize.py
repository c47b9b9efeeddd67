"""Find out how much memory can be allocated and touched quickly."""

from __future__ import annotations

import mmap
import re
import signal
import sys
from contextlib import contextmanager
from typing import Iterator, Optional

from benchkit.timing import Stopwatch, parse_size

TOO_LONG = 10  # microseconds per page
_MB = 1024 * 1024


def test_malloc(size: int) -> bool:
    """Whether ``size`` bytes of memory can be reserved."""
    if size <= 0:
        return True
    try:
        area = mmap.mmap(-1, size)
    except (OSError, OverflowError, ValueError):
        return False
    area.close()
    return True


def find_size(max_bytes: int) -> int:
    """The largest allocatable size up to ``max_bytes``, found by binary search."""
    size = limit = max_bytes
    while not test_malloc(size):
        limit = size
        size >>= 1
    delta = size >> 21
    while delta > 0:
        candidate = size + delta * _MB
        if candidate <= limit and test_malloc(candidate):
            size = candidate
        delta >>= 1
    return size


class _Alarm:
    def __init__(self) -> None:
        self.triggered = False

    def _ring(self, signum, frame) -> None:
        self.triggered = True

    @contextmanager
    def armed(self, usecs: int) -> Iterator[None]:
        self.triggered = False
        previous = signal.signal(signal.SIGALRM, self._ring)
        signal.setitimer(signal.ITIMER_REAL, usecs / 1000000.0)
        try:
            yield
        finally:
            signal.setitimer(signal.ITIMER_REAL, 0)
            signal.signal(signal.SIGALRM, previous)


def _touch_range(buf, start: int, length: int, stride: int, alarm: _Alarm) -> None:
    for offset in range(start, start + (length // stride) * stride, stride):
        if alarm.triggered:
            break
        buf[offset] = 0


def timeit(buf, size: int, pagesize: int = mmap.PAGESIZE) -> Optional[int]:
    """Grow the touched region until touching it gets slow; print and return its size."""
    if size < _MB - 16 * 1024:
        sys.stderr.write("Bad size\n")
        return None
    alarm = _Alarm()
    watch = Stopwatch()
    span = incr = _MB
    _touch_range(buf, 0, span, pagesize, alarm)
    span += incr
    while span <= size:
        pages = span // pagesize
        with alarm.armed(pages * TOO_LONG):
            _touch_range(buf, span - incr, incr, pagesize, alarm)
        with alarm.armed(pages * TOO_LONG):
            watch.start()
            _touch_range(buf, 0, span, pagesize, alarm)
            usecs = watch.stop()
        if usecs // pages > TOO_LONG or alarm.triggered:
            size = span - incr
            break
        step = 8 * _MB
        while step <= span:
            step *= 2
        incr = step // 8
        if span < size < span + incr:
            incr = size - span
        sys.stderr.write("%dMB OK\r" % (span // _MB))
        span += incr
    sys.stderr.write("\n")
    print(size >> 20)
    return size


def main(argv=None) -> int:
    """Usage: memsize [max_wanted_in_MB]."""
    args = sys.argv[1:] if argv is None else list(argv)
    max_bytes = 0
    if len(args) == 1:
        max_bytes = parse_size(args[0]) * _MB
    if max_bytes < _MB:
        max_bytes = 1024 * _MB
    size = find_size(max_bytes)
    if size <= 0:
        return 0
    try:
        area = mmap.mmap(-1, size)
    except (OSError, OverflowError, ValueError):
        return 0
    with area:
        timeit(area, size, mmap.PAGESIZE)
    return 0