"""Rounding and unit helpers shared by the engines."""

import math

KIB = 1024
MIB = 1024**2
GIB = 1024**3


def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves away from zero."""
    if value >= 0:
        return math.floor(value + 0.5)
    return -math.floor(-value + 0.5)


def clamp(value: int, low: int = 0, high: int = 100) -> int:
    return max(low, min(high, value))


def percent(value: float, total: float) -> int:
    """Whole percentage of ``value`` in ``total``; 0 when total is not positive."""
    if total <= 0:
        return 0
    return round_half_up(value * 100 / total)


def to_kilobytes(size: int) -> float:
    return size / KIB


def to_megabytes(size: int) -> float:
    return size / MIB


def to_gigabytes(size: int) -> float:
    return size / GIB
