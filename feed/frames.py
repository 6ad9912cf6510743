"""
Normalizes raw WebSocket frames into candidate JSON text.

The venue may interleave keep-alive or diagnostic frames that are not JSON;
those are dropped quietly rather than treated as errors.
"""

from __future__ import annotations
import logging
from typing import Any

log = logging.getLogger(__name__)

_JSON_OPENERS = ("{", "[")


def decode_frame(frame: Any) -> str | None:
    """Text frames pass through; binary frames are decoded as UTF-8."""
    if isinstance(frame, str):
        return frame
    if isinstance(frame, (bytes, bytearray, memoryview)):
        try:
            return bytes(frame).decode("utf-8")
        except UnicodeDecodeError as exc:
            log.warning("Dropping undecodable binary frame (%d bytes): %s", len(frame), exc)
            return None
    log.warning("Dropping frame of unsupported type %s", type(frame).__name__)
    return None


def normalize_frame(frame: Any) -> str | None:
    """
    Returns trimmed JSON candidate text, or None if the frame should be
    discarded (undecodable, empty, or not starting with '{' / '[').
    """
    text = decode_frame(frame)
    if text is None:
        return None
    text = text.strip()
    if not text or text[0] not in _JSON_OPENERS:
        if text:
            log.debug("Ignoring non-protocol frame: %.80s", text)
        return None
    return text
