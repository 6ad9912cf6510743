"""
Routes decoded feed messages into client state.

Every inbound frame goes: normalize -> JSON parse -> parse_message ->
MarketState.apply (+ PnLAggregator for PnL snapshots). Nothing raised here
reaches the connection: malformed input is logged and dropped.

Execution notices carry no PnL of their own, so on each one the router asks
the connection for a fresh all-PnL snapshot via the on_execution hook.
"""

from __future__ import annotations
import json
import logging
from typing import Any, Callable

from feed.frames import normalize_frame
from models.messages import (
    Execution,
    Message,
    PnLSnapshot,
    Unrecognized,
    parse_message,
)
from models.series import PnLAggregator
from models.state import MarketState

log = logging.getLogger(__name__)

OnExecution = Callable[[], Any]


class MessageRouter:
    """
    Dispatches Message variants to the state store and the aggregator.

    Usage:
        router = MessageRouter(state, aggregator)
        router.on_execution = connection.request_all_pnl
        router.route_frame(raw)
    """

    def __init__(
        self,
        state: MarketState,
        aggregator: PnLAggregator,
        on_execution: OnExecution | None = None,
    ) -> None:
        self._state = state
        self._aggregator = aggregator
        self.on_execution = on_execution
        self.dropped_frames = 0
        self.unrecognized_kinds: dict[str, int] = {}

    @property
    def state(self) -> MarketState:
        return self._state

    @property
    def aggregator(self) -> PnLAggregator:
        return self._aggregator

    def route_frame(self, frame: Any) -> Message | None:
        text = normalize_frame(frame)
        if text is None:
            self.dropped_frames += 1
            return None
        return self.route_text(text)

    def route_text(self, text: str) -> Message | None:
        try:
            payload = json.loads(text)
        except (ValueError, RecursionError) as exc:
            self.dropped_frames += 1
            log.warning("Malformed feed message (%s): %.80s", exc, text)
            return None
        try:
            message = parse_message(payload)
            self.dispatch(message)
        except Exception as exc:
            self.dropped_frames += 1
            log.exception("Feed message dropped, handling failed: %s", exc)
            return None
        return message

    def dispatch(self, message: Message) -> None:
        if isinstance(message, Unrecognized):
            self.unrecognized_kinds[message.kind] = self.unrecognized_kinds.get(message.kind, 0) + 1
            log.debug("Unhandled message type %r", message.kind)
            return

        self._state.apply(message)

        if isinstance(message, PnLSnapshot):
            totals = self._aggregator.record_snapshot(message.clients)
            log.debug(
                "PnL totals realized=%.4f unrealized=%.4f over %d clients",
                totals.realized, totals.unrealized, len(message.clients),
            )
        elif isinstance(message, Execution):
            log.info("Execution for order %s, re-pulling PnL", message.order_id)
            if self.on_execution is not None:
                self.on_execution()
