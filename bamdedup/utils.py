"""Helpers for reporting elapsed time."""

from __future__ import annotations

from datetime import timedelta


def _as_seconds(seconds: float | timedelta) -> float:
    if isinstance(seconds, timedelta):
        return seconds.total_seconds()
    return float(seconds)


def format_duration(seconds: float | timedelta) -> tuple[int, int]:
    """Split a duration into whole minutes and remaining whole seconds."""
    whole = int(_as_seconds(seconds))
    return divmod(whole, 60)


def format_duration_verbose(seconds: float | timedelta) -> str:
    """Render a duration as "M min S sec", or "S.s sec" under a minute."""
    value = _as_seconds(seconds)
    whole = int(value)
    if whole >= 60:
        minutes, secs = divmod(whole, 60)
        return f"{minutes} min {secs} sec"
    return f"{value:.1f} sec"