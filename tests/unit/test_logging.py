"""Unit tests for stream routing log formatters and filters."""

import logging
from collections.abc import Generator

import pytest

from outpost.logging import configure_logging
from outpost.logging.formatters import StreamFormatter, StreamRoutingFilter


def make_record(level: int = logging.INFO, stream: str | None = None) -> logging.LogRecord:
    record = logging.LogRecord("test", level, __file__, 1, "hello %s", ("world",), None)
    if stream is not None:
        record.stream = stream
    return record


@pytest.fixture
def restore_root_logger() -> Generator[None, None, None]:
    root = logging.getLogger()
    handlers = root.handlers[:]
    level = root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


def test_formatter_prefixes_tagged_records() -> None:
    formatter = StreamFormatter("%(message)s")

    assert formatter.format(make_record(stream="stderr")) == "[stderr] hello world"
    assert formatter.format(make_record(stream="stdout")) == "[stdout] hello world"


def test_formatter_leaves_untagged_records() -> None:
    assert StreamFormatter("%(message)s").format(make_record()) == "hello world"


@pytest.mark.parametrize(
    "level,stream,expected",
    [
        (logging.INFO, None, "stdout"),
        (logging.DEBUG, None, "stdout"),
        (logging.WARNING, None, "stderr"),
        (logging.ERROR, None, "stderr"),
        (logging.INFO, "stderr", "stderr"),
        (logging.ERROR, "stdout", "stdout"),
    ],
)
def test_routing_filter(level: int, stream: str | None, expected: str) -> None:
    record = make_record(level, stream)

    assert StreamRoutingFilter(expected).filter(record) is True
    other = "stderr" if expected == "stdout" else "stdout"
    assert StreamRoutingFilter(other).filter(record) is False


def test_routing_filter_rejects_unknown_stream() -> None:
    with pytest.raises(ValueError, match="stream must be"):
        StreamRoutingFilter("stdlog")


def test_configure_logging_installs_two_handlers(restore_root_logger: None) -> None:
    configure_logging(logging.DEBUG)

    root = logging.getLogger()
    assert root.level == logging.DEBUG
    assert len(root.handlers) == 2
    assert {h.filters[0].stream for h in root.handlers} == {"stdout", "stderr"}
    assert logging.getLogger("botocore").level == logging.WARNING
    assert logging.getLogger("paramiko").level == logging.WARNING
