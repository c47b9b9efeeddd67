"""Small statistics helpers: central values and straight-line fitting."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Optional, Sequence


@dataclass(frozen=True)
class Fit:
    """The line ``y = a + b * x`` with the standard errors of both and chi-square."""

    a: float
    b: float
    sig_a: float
    sig_b: float
    chi2: float


def median(values: Sequence[float]) -> float:
    """The middle value, or the mean of the two middle values."""
    ordered = sorted(values)
    if not ordered:
        raise ValueError("median of no values")
    half = len(ordered) // 2
    if len(ordered) % 2:
        return ordered[half]
    return (ordered[half] + ordered[half - 1]) / 2.0


def mean(values: Sequence[float]) -> float:
    """The arithmetic mean."""
    values = list(values)
    if not values:
        raise ValueError("mean of no values")
    return sum(values) / len(values)


def regression(
    x: Sequence[float], y: Sequence[float], sig: Optional[Sequence[float]] = None
) -> Fit:
    """Least-squares fit of a straight line, weighted by ``sig`` when given.

    Without ``sig`` the errors of the parameters are estimated from the
    scatter of the points about the line.
    """
    x, y = list(x), list(y)
    if len(x) != len(y):
        raise ValueError("x and y differ in length")
    if sig is not None:
        sig = list(sig)
        if len(sig) != len(x):
            raise ValueError("sig and x differ in length")
    if len(x) < 2:
        raise ValueError("a line needs at least two points")
    weights = [1.0] * len(x) if sig is None else [1.0 / (s * s) for s in sig]
    sigmas = [1.0] * len(x) if sig is None else sig

    ss = sum(weights)
    sx = sum(w * xi for w, xi in zip(weights, x))
    sy = sum(w * yi for w, yi in zip(weights, y))
    sxoss = sx / ss

    ts = [(xi - sxoss) / s for xi, s in zip(x, sigmas)]
    st2 = sum(t * t for t in ts)
    if st2 == 0.0:
        raise ValueError("all x values are equal")
    b = sum(t * yi / s for t, yi, s in zip(ts, y, sigmas)) / st2
    a = (sy - sx * b) / ss
    sig_a = math.sqrt((1.0 + sx * sx / (ss * st2)) / ss)
    sig_b = math.sqrt(1.0 / st2)
    chi2 = sum(((yi - a - b * xi) / s) ** 2 for xi, yi, s in zip(x, y, sigmas))

    if sig is None and len(x) > 2:
        sigdat = math.sqrt(chi2 / (len(x) - 2))
        sig_a *= sigdat
        sig_b *= sigdat
    return Fit(a, b, sig_a, sig_b, chi2)