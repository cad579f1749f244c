"""Global utilities for the CLI.
"""

from datetime import datetime

from typing import Optional


def format_date(date: Optional[datetime]) -> str:
    """Format a date in the local timezone, or a dash if none.
    """
    if date is None:
        return "-"
    return date.astimezone().strftime("%c")


def format_number(n: float) -> str:
    """Return a number with suffix k, M, G or nothing.
    The string is at most 7 chars unless the size exceed 1 T.
    """
    if n < 1000:
        return f"{int(n)}"
    elif n < 1000000:
        return f"{(int(n / 100) / 10):.1f} k"
    elif n < 1000000000:
        return f"{(int(n / 100000) / 10):.1f} M"
    else:
        return f"{(int(n / 100000000) / 10):.1f} G"
