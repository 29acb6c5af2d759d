"""Target parsing, adaptive tuning, defence profiling and service detection for port scanning."""

__version__ = "0.1.0"