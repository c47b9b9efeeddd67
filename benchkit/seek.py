"""Time seeks on a file or disk as a function of seek distance."""

from __future__ import annotations

import contextlib
import os
import re
import sys
from typing import Iterator

from benchkit.timing import Stopwatch

STRIDE = 1024 * 1024
_BLOCK = 512
_INT = re.compile(r"\s*([+-]?\d+)")
_MULTIPLIERS = {
    "k": 1 << 10,
    "K": 1000,
    "m": 1 << 20,
    "M": 1000000,
    "g": 1 << 30,
    "G": 1000000000,
}


def parse_disk_size(text: str) -> int:
    """A size with k/m/g (binary) or K/M/G (decimal) multiplier."""
    match = _INT.match(text)
    value = int(match.group(1)) if match else 0
    return value * _MULTIPLIERS.get(text[-1:], 1)


def seek_offsets(size: int, stride: int = STRIDE) -> Iterator[tuple[int, int]]:
    """Pairs of (distance, offset), closing in alternately from both ends."""
    end, begin = size, 0
    while end > begin:
        end -= stride
        yield end - begin, end
        begin += stride
        yield end - begin, begin


def _probe(fd: int, offset: int) -> None:
    with contextlib.suppress(OSError):
        os.lseek(fd, offset, os.SEEK_SET)
        os.read(fd, _BLOCK)


def main(argv=None) -> int:
    """Usage: seek file size."""
    args = sys.argv[1:] if argv is None else list(argv)
    if len(args) != 2:
        return 1
    try:
        fd = os.open(args[0], os.O_RDONLY)
    except OSError:
        return 1
    watch = Stopwatch()
    try:
        _probe(fd, 0)
        for distance, offset in seek_offsets(parse_disk_size(args[1])):
            watch.start()
            _probe(fd, offset)
            usecs = watch.stop()
            print("%.04f %.04f" % (distance / 1000000.0, usecs / 1000.0))
    finally:
        os.close(fd)
    return 0