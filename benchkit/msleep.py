"""Sleep for a number of milliseconds."""

from __future__ import annotations

import re
import sys
import time

_INT = re.compile(r"\s*([+-]?\d+)")


def main(argv=None) -> int:
    """Sleep for the milliseconds given as the first argument."""
    args = sys.argv[1:] if argv is None else list(argv)
    if not args:
        sys.stderr.write("usage: msleep milliseconds\n")
        return 1
    match = _INT.match(args[0])
    millis = int(match.group(1)) if match else 0
    time.sleep(max(millis, 0) / 1000.0)
    return 0