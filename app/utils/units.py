"""Byte-size formatting used in replies."""

from __future__ import annotations

import math

KILOBYTE = 1024
MEGABYTE = 1024 * 1024


def round_half_up(value: float) -> int:
    """Round .5 away from zero for non-negative values (``round`` uses banker's rounding)."""

    return int(math.floor(value + 0.5))


def format_kb(size_bytes: int) -> str:
    return f"{size_bytes / KILOBYTE:.1f}"


def format_mb(size_bytes: int, *, decimals: int = 1) -> str:
    return f"{size_bytes / MEGABYTE:.{decimals}f}"


__all__ = ["KILOBYTE", "MEGABYTE", "format_kb", "format_mb", "round_half_up"]
