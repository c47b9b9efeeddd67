"""Micro-benchmarks for Unix systems and the timing library they share."""

__version__ = "0.1.0"