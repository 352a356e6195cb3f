"""Wall-clock helpers for the timestamp token prepended to sequence messages."""

from datetime import datetime


def local_now() -> datetime:
    """Return the current local wall-clock time."""

    return datetime.now()


def format_clock(moment: datetime) -> str:
    """Format a moment as a zero-padded ``HH:MM:SS`` token."""

    return f"{moment.hour:02d}:{moment.minute:02d}:{moment.second:02d}"
