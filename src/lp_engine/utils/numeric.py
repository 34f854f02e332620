import math


def clamp(v: float, lo: float = 0.0, hi: float = 100.0) -> float:
    if v < lo:
        return lo
    if v > hi:
        return hi
    return v


def round_half_away(v: float) -> int:
    """Round to nearest int, ties away from zero (2.5 -> 3, -2.5 -> -3)."""
    return int(math.copysign(math.floor(abs(v) + 0.5), v))
