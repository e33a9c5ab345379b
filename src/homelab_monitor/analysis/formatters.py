"""
Human-readable formatting helpers shared by the detector and narrator.
"""

from datetime import timedelta

_BYTE_UNITS = ("B", "KB", "MB", "GB", "TB")


def format_bytes(num_bytes: float) -> str:
    """
    Format a byte count with binary (1024-based) units and one decimal.

    Examples:
        >>> format_bytes(512)
        '512.0 B'
        >>> format_bytes(100 * 1024 * 1024)
        '100.0 MB'
    """
    value = float(num_bytes)
    order = 0
    while value >= 1024 and order < len(_BYTE_UNITS) - 1:
        value /= 1024
        order += 1
    return f"{value:.1f} {_BYTE_UNITS[order]}"


def format_duration(delta: timedelta) -> str:
    """
    Format a duration compactly: "1d 3h", "2h 35m" or "12m".

    Examples:
        >>> format_duration(timedelta(hours=2, minutes=35))
        '2h 35m'
    """
    total_seconds = max(0, int(delta.total_seconds()))
    days, rem = divmod(total_seconds, 86400)
    hours, rem = divmod(rem, 3600)
    minutes = rem // 60
    if days >= 1:
        return f"{days}d {hours}h"
    if hours >= 1:
        return f"{hours}h {minutes}m"
    return f"{minutes}m"
