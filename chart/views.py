"""
Read-only view models for the dashboard panels.

Bars for realized/unrealized PnL per client, the top of the order book,
and the most recent trades. Renderers format these; they hold no state.
"""

from __future__ import annotations
import time
from dataclasses import dataclass
from typing import Literal, Sequence

from models.messages import ClientPnL, OrderBookLevel, Trade
from models.series import PnLTotals
from models.state import MarketState

PnLField = Literal["realized", "unrealized"]
Tone = Literal["positive", "negative"]

BOOK_DEPTH = 50
RECENT_TRADES = 20


@dataclass(frozen=True, slots=True)
class PnLBar:
    client_id: str
    label: str
    value: float
    tone: Tone


@dataclass(frozen=True, slots=True)
class BookLadder:
    bids: tuple[OrderBookLevel, ...]
    asks: tuple[OrderBookLevel, ...]


@dataclass(frozen=True, slots=True)
class TradeRow:
    key: str
    time: str
    price: float
    quantity: float


def pnl_bars(clients: Sequence[ClientPnL], field: PnLField) -> list[PnLBar]:
    bars = []
    for client in clients:
        value = client.realized if field == "realized" else client.unrealized
        bars.append(PnLBar(
            client_id=client.client_id,
            label=client.name,
            value=value,
            tone="positive" if value >= 0 else "negative",
        ))
    return bars


def book_ladder(state: MarketState, depth: int = BOOK_DEPTH) -> BookLadder:
    return BookLadder(bids=tuple(state.bids[:depth]), asks=tuple(state.asks[:depth]))


def recent_trades(state: MarketState, limit: int = RECENT_TRADES) -> list[TradeRow]:
    """Newest first."""
    if limit <= 0:
        return []
    rows = []
    for trade in reversed(state.trades[-limit:]):
        rows.append(TradeRow(
            key=trade.key,
            time=_clock_time(trade),
            price=trade.price,
            quantity=trade.quantity,
        ))
    return rows


def _clock_time(trade: Trade) -> str:
    try:
        return time.strftime("%H:%M:%S", time.localtime(trade.timestamp))
    except (OverflowError, OSError, ValueError):
        return "--:--:--"


def status_line(state: MarketState, totals: PnLTotals, connection_label: str) -> str:
    bid = state.best_bid()
    ask = state.best_ask()
    return (
        f"[{connection_label}] clients={len(state.clients)} "
        f"realized={totals.realized:.2f} unrealized={totals.unrealized:.2f} "
        f"bid={'-' if bid is None else f'{bid:.2f}'} ask={'-' if ask is None else f'{ask:.2f}'} "
        f"trades={state.trade_count}"
        + (f" last_error={state.last_error}" if state.last_error else "")
    )
