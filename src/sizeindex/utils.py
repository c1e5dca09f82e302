"""General helpers shared by the builder, CLI and API."""

from __future__ import annotations

import math


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def format_bytes(num_bytes: float) -> str:
    if num_bytes < 1024:
        return f"{round_half_up(num_bytes)} B"
    if num_bytes < 1024 * 1024:
        return f"{num_bytes / 1024:.1f} KB"
    if num_bytes < 1024 * 1024 * 1024:
        return f"{num_bytes / (1024 * 1024):.1f} MB"
    return f"{num_bytes / (1024 * 1024 * 1024):.2f} GB"


__all__ = ["format_bytes", "round_half_up"]
