"""Unit tests for utility functions."""

from datetime import datetime, timedelta, timezone
from pathlib import Path
from unittest.mock import patch

import pytest

from outpost.utils import atomic_file_write, format_time_ago, mask_secret

NOW = datetime(2026, 5, 1, 12, 0, tzinfo=timezone.utc)


def test_mask_secret_keeps_last_four_characters() -> None:
    assert mask_secret("AKIAABCDEFGH1234") == "****1234"


def test_mask_secret_short_value() -> None:
    assert mask_secret("ab") == "****ab"


@pytest.mark.parametrize(
    "delta,expected",
    [
        (timedelta(seconds=30), "just now"),
        (timedelta(minutes=5), "5m ago"),
        (timedelta(hours=2, minutes=59), "2h ago"),
        (timedelta(days=3), "3d ago"),
    ],
)
def test_format_time_ago(delta: timedelta, expected: str) -> None:
    assert format_time_ago(NOW - delta, now=NOW) == expected


def test_format_time_ago_rejects_naive_datetime() -> None:
    with pytest.raises(ValueError, match="timezone-aware"):
        format_time_ago(datetime(2026, 5, 1, 12, 0))


def test_atomic_file_write_replaces_content(tmp_path: Path) -> None:
    target = tmp_path / "data.json"
    target.write_text("old")

    atomic_file_write(target, "new")

    assert target.read_text() == "new"
    assert not (tmp_path / "data.tmp").exists()


def test_atomic_file_write_cleans_up_temp_file_on_error(tmp_path: Path) -> None:
    target = tmp_path / "data.json"

    with patch.object(Path, "replace", side_effect=OSError("disk full")):
        with pytest.raises(OSError, match="disk full"):
            atomic_file_write(target, "content")

    assert not target.exists()
    assert not (tmp_path / "data.tmp").exists()
