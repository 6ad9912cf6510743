"""
Logging setup for the feed client.

One stdout handler on the root logger; every record carries a monotonic
nanosecond stamp so frame arrival, poll ticks and reconnects can be lined
up across modules. The websockets handshake/ping chatter is held at
WARNING unless the client itself runs quieter than that.
"""

from __future__ import annotations
import logging
import sys
import time

_THIRD_PARTY_LOGGERS = ("websockets", "asyncio")

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s | mono_ns=%(mono_ns)d | %(message)s"


class _MonotonicFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        record.mono_ns = time.monotonic_ns()
        return super().format(record)


def setup_logging(level: str = "INFO") -> int:
    """Install the stdout handler; returns the numeric level in effect."""
    numeric = logging.getLevelName(level.upper())
    if not isinstance(numeric, int):
        numeric = logging.INFO
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(_MonotonicFormatter(fmt=LOG_FORMAT, datefmt="%Y-%m-%dT%H:%M:%S"))
    root = logging.getLogger()
    root.setLevel(numeric)
    root.handlers.clear()
    root.addHandler(handler)
    for name in _THIRD_PARTY_LOGGERS:
        logging.getLogger(name).setLevel(max(numeric, logging.WARNING))
    return numeric
