"""
Latest authoritative venue state held by the feed client.

Every field is replaced wholesale by the snapshot message of its kind
(trade prints are the only append). Nothing here is merged across
snapshots: after a PnL snapshot the client list is exactly that snapshot.

MarketState is owned by the single event-loop context that runs the feed.
Renderers read it, they never write to it.
"""

from __future__ import annotations
import logging
from dataclasses import dataclass, field

from models.messages import (
    ClientPnL,
    Message,
    OrderBookLevel,
    OrderBookSnapshot,
    PnLSnapshot,
    ServerError,
    Trade,
    TradeHistory,
    TradePrint,
)

log = logging.getLogger(__name__)


@dataclass(slots=True)
class MarketState:
    """
    Reducer over the inbound message union.

    apply() returns True when the message changed state. Kinds with no state
    payload (welcome, auth_response, execution, unrecognized) are accepted
    and leave everything untouched.
    """
    clients: list[ClientPnL] = field(default_factory=list)
    bids: list[OrderBookLevel] = field(default_factory=list)
    asks: list[OrderBookLevel] = field(default_factory=list)
    trades: list[Trade] = field(default_factory=list)
    last_error: str | None = None

    def apply(self, message: Message) -> bool:
        if isinstance(message, PnLSnapshot):
            self.clients = list(message.clients)
            log.debug("PnL snapshot (%s): %d clients", message.kind, len(self.clients))
            return True
        if isinstance(message, OrderBookSnapshot):
            self.bids = list(message.bids)
            self.asks = list(message.asks)
            log.debug("Order book snapshot: bids=%d asks=%d", len(self.bids), len(self.asks))
            return True
        if isinstance(message, TradeHistory):
            self.trades = list(message.trades)
            log.debug("Trade history: %d trades", len(self.trades))
            return True
        if isinstance(message, TradePrint):
            self.trades.append(message.trade)
            log.debug(
                "Trade px=%s qty=%s buy=%s sell=%s",
                message.trade.price, message.trade.quantity,
                message.trade.buy_order_id, message.trade.sell_order_id,
            )
            return True
        if isinstance(message, ServerError):
            self.last_error = message.message
            log.warning("Server error: %s", message.message)
            return True
        return False

    def record_transport_error(self, reason: str = "socket error") -> None:
        self.last_error = reason

    @property
    def trade_count(self) -> int:
        return len(self.trades)

    def best_bid(self) -> float | None:
        return max((lvl.price for lvl in self.bids if lvl.quantity > 0), default=None)

    def best_ask(self) -> float | None:
        return min((lvl.price for lvl in self.asks if lvl.quantity > 0), default=None)
