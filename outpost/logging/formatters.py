"""Logging formatters and filters for stream routing."""

import logging

QUIET_LOGGERS = ("botocore", "boto3", "urllib3", "paramiko")
"""Third-party loggers capped at WARNING."""


class StreamFormatter(logging.Formatter):
    """Prefix records tagged with ``extra={"stream": ...}`` by their stream name."""

    def format(self, record: logging.LogRecord) -> str:
        msg = super().format(record)
        stream = getattr(record, "stream", None)

        if stream in ("stdout", "stderr"):
            return f"[{stream}] {msg}"

        return msg


class StreamRoutingFilter(logging.Filter):
    """Admit records belonging to one output stream.

    A record tagged with ``extra={"stream": ...}`` goes to the stream it
    names. Untagged records go to stdout below WARNING and to stderr from
    WARNING up.

    Parameters
    ----------
    stream : str
        ``"stdout"`` or ``"stderr"``
    """

    def __init__(self, stream: str) -> None:
        super().__init__()
        if stream not in ("stdout", "stderr"):
            raise ValueError(f"stream must be 'stdout' or 'stderr', got {stream!r}")
        self.stream = stream

    def filter(self, record: logging.LogRecord) -> bool:
        tagged = getattr(record, "stream", None)
        if tagged is not None:
            return tagged == self.stream

        routed = "stderr" if record.levelno >= logging.WARNING else "stdout"
        return routed == self.stream
