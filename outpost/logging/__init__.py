"""Logging setup for outpost."""

import logging
import sys

from outpost.logging.formatters import QUIET_LOGGERS, StreamFormatter, StreamRoutingFilter

__all__ = ["StreamFormatter", "StreamRoutingFilter", "configure_logging"]


def configure_logging(level: int = logging.INFO, fmt: str = "%(message)s") -> None:
    """Install stdout/stderr handlers on the root logger.

    Parameters
    ----------
    level : int
        Root log level
    fmt : str
        Record format passed to ``StreamFormatter``
    """
    stdout_handler = logging.StreamHandler(sys.stdout)
    stdout_handler.setFormatter(StreamFormatter(fmt))
    stdout_handler.addFilter(StreamRoutingFilter("stdout"))

    stderr_handler = logging.StreamHandler(sys.stderr)
    stderr_handler.setFormatter(StreamFormatter(fmt))
    stderr_handler.addFilter(StreamRoutingFilter("stderr"))

    logging.basicConfig(level=level, handlers=[stdout_handler, stderr_handler], force=True)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
