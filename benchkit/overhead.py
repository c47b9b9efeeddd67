"""Print the measured loop and timing overheads."""

from __future__ import annotations

import os
import sys

from benchkit.benchmp import calibration


def loop_main(argv=None) -> int:
    """Print the per-iteration loop overhead in microseconds."""
    sys.stdout.write("%.8f\n" % calibration().loop_overhead())
    return 0


def timing_main(argv=None) -> int:
    """Print the overhead of reading the clock, in whole microseconds."""
    os.environ["LOOP_O"] = "0.0"
    sys.stdout.write("%d\n" % int(calibration().timing_overhead()))
    return 0