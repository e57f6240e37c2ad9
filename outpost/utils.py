"""Utility functions for outpost."""

import fcntl
from datetime import datetime
from pathlib import Path

SECONDS_PER_MINUTE = 60
SECONDS_PER_HOUR = 3600
SECONDS_PER_DAY = 86400

MASK_PREFIX = "****"
MASK_VISIBLE_CHARS = 4


def mask_secret(value: str) -> str:
    """Redact all but the last four characters of a secret.

    Parameters
    ----------
    value : str
        Secret value, e.g. an access key id

    Returns
    -------
    str
        ``****`` followed by the last four characters
        (``AKIAABCDEFGH1234`` -> ``****1234``)
    """
    return f"{MASK_PREFIX}{value[-MASK_VISIBLE_CHARS:]}"


def format_time_ago(dt: datetime, now: datetime | None = None) -> str:
    """Format an aware datetime relative to now ("just now", "5m ago", "2d ago").

    Raises
    ------
    ValueError
        If dt is naive
    """
    if dt.tzinfo is None:
        raise ValueError("datetime must be timezone-aware")

    seconds = ((now or datetime.now(dt.tzinfo)) - dt).total_seconds()

    if seconds < SECONDS_PER_MINUTE:
        return "just now"
    if seconds < SECONDS_PER_HOUR:
        return f"{int(seconds / SECONDS_PER_MINUTE)}m ago"
    if seconds < SECONDS_PER_DAY:
        return f"{int(seconds / SECONDS_PER_HOUR)}h ago"
    return f"{int(seconds / SECONDS_PER_DAY)}d ago"


def atomic_file_write(path: Path, content: str) -> None:
    """Replace a file atomically under an exclusive lock.

    Content goes to a sibling ``.tmp`` file that is renamed over the target,
    so readers never observe a partially written file.

    Parameters
    ----------
    path : Path
        Target file path
    content : str
        File content to write
    """
    temp_path = path.with_suffix(".tmp")
    lock_path = path.with_suffix(".lock")

    with open(lock_path, "w") as lock_file:
        fcntl.flock(lock_file.fileno(), fcntl.LOCK_EX)
        try:
            with open(temp_path, "w") as f:
                f.write(content)
            temp_path.replace(path)
        except OSError:
            temp_path.unlink(missing_ok=True)
            raise
        finally:
            fcntl.flock(lock_file.fileno(), fcntl.LOCK_UN)
