"""
Wire protocol for the venue telemetry feed.

Inbound frames are JSON objects tagged by "type". parse_message() turns one
decoded object into exactly one variant of the Message union; a kind this
client does not know becomes Unrecognized instead of failing, so the venue
can add message kinds without breaking older clients.

Payloads are tolerated rather than validated: absent lists become empty,
absent numbers become 0, absent strings become "".

Outbound requests are plain dicts built by the *_request() helpers.
"""

from __future__ import annotations
import math
from dataclasses import dataclass, field
from typing import Any, Union

# Inbound kinds
WELCOME = "welcome"
AUTH_RESPONSE = "auth_response"
ALL_PNL_RESPONSE = "all_pnl_response"
ALL_PNL_PUSH = "all_pnl_push"
ORDER_BOOK_SNAPSHOT_RESPONSE = "order_book_snapshot_response"
TRADE_HISTORY_RESPONSE = "trade_history_response"
TRADE = "trade"
EXECUTION = "execution"
ERROR = "error"


def _num(value: Any) -> float:
    """Coerce a wire number; absent, garbage or non-finite values become 0."""
    if not isinstance(value, (int, float, str)):
        return 0.0
    try:
        number = float(value)
    except (OverflowError, ValueError):
        return 0.0
    return number if math.isfinite(number) else 0.0


def _text(value: Any) -> str:
    return "" if value is None else str(value)


def _dicts(value: Any) -> list[dict[str, Any]]:
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, dict)]


# ---------------------------------------------------------------------------
# Records carried by messages
# ---------------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class ClientPnL:
    client_id: str       # kept as text so 7 and "7" key the same series
    name: str
    realized: float
    unrealized: float

    @staticmethod
    def from_wire(raw: dict[str, Any]) -> "ClientPnL":
        client_id = _text(raw.get("client_id"))
        return ClientPnL(
            client_id=client_id,
            name=_text(raw.get("name")) or f"Client {client_id}",
            realized=_num(raw.get("realized")),
            unrealized=_num(raw.get("unrealized")),
        )


@dataclass(frozen=True, slots=True)
class OrderBookLevel:
    id: str          # stable key for list rendering
    price: float
    quantity: float  # never negative

    @staticmethod
    def from_wire(raw: dict[str, Any], position: int) -> "OrderBookLevel":
        level_id = raw.get("id")
        return OrderBookLevel(
            id=_text(level_id) if level_id is not None else str(position),
            price=_num(raw.get("price")),
            quantity=max(0.0, _num(raw.get("quantity"))),
        )


@dataclass(frozen=True, slots=True)
class Trade:
    buy_order_id: str
    sell_order_id: str
    price: float
    quantity: float
    timestamp: float  # seconds

    @staticmethod
    def from_wire(raw: dict[str, Any]) -> "Trade":
        return Trade(
            buy_order_id=_text(raw.get("buy_order_id")),
            sell_order_id=_text(raw.get("sell_order_id")),
            price=_num(raw.get("price")),
            quantity=_num(raw.get("quantity")),
            timestamp=_num(raw.get("timestamp")),
        )

    @property
    def key(self) -> str:
        return f"{self.timestamp}-{self.buy_order_id}-{self.sell_order_id}"


# ---------------------------------------------------------------------------
# Inbound message union
# ---------------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class Welcome:
    kind: str = WELCOME


@dataclass(frozen=True, slots=True)
class AuthResponse:
    kind: str = AUTH_RESPONSE


@dataclass(frozen=True, slots=True)
class PnLSnapshot:
    """all_pnl_response and all_pnl_push carry the same full snapshot."""
    clients: tuple[ClientPnL, ...]
    kind: str = ALL_PNL_RESPONSE


@dataclass(frozen=True, slots=True)
class OrderBookSnapshot:
    bids: tuple[OrderBookLevel, ...]
    asks: tuple[OrderBookLevel, ...]
    kind: str = ORDER_BOOK_SNAPSHOT_RESPONSE


@dataclass(frozen=True, slots=True)
class TradeHistory:
    trades: tuple[Trade, ...]
    kind: str = TRADE_HISTORY_RESPONSE


@dataclass(frozen=True, slots=True)
class TradePrint:
    trade: Trade
    kind: str = TRADE


@dataclass(frozen=True, slots=True)
class Execution:
    """A fill notice. Carries no PnL; the client re-pulls PnL on receipt."""
    order_id: str
    payload: dict[str, Any] = field(default_factory=dict, compare=False)
    kind: str = EXECUTION


@dataclass(frozen=True, slots=True)
class ServerError:
    message: str
    kind: str = ERROR


@dataclass(frozen=True, slots=True)
class Unrecognized:
    kind: str
    payload: Any = field(default=None, compare=False)


Message = Union[
    Welcome,
    AuthResponse,
    PnLSnapshot,
    OrderBookSnapshot,
    TradeHistory,
    TradePrint,
    Execution,
    ServerError,
    Unrecognized,
]


def parse_message(payload: Any) -> Message:
    """Map one decoded JSON value onto the Message union. Never raises."""
    if not isinstance(payload, dict):
        return Unrecognized(kind="", payload=payload)
    kind = payload.get("type")
    if not isinstance(kind, str):
        return Unrecognized(kind="", payload=payload)

    if kind == WELCOME:
        return Welcome()
    if kind == AUTH_RESPONSE:
        return AuthResponse()
    if kind in (ALL_PNL_RESPONSE, ALL_PNL_PUSH):
        return PnLSnapshot(
            clients=tuple(ClientPnL.from_wire(c) for c in _dicts(payload.get("clients"))),
            kind=kind,
        )
    if kind == ORDER_BOOK_SNAPSHOT_RESPONSE:
        return OrderBookSnapshot(
            bids=tuple(OrderBookLevel.from_wire(b, i) for i, b in enumerate(_dicts(payload.get("bids")))),
            asks=tuple(OrderBookLevel.from_wire(a, i) for i, a in enumerate(_dicts(payload.get("asks")))),
        )
    if kind == TRADE_HISTORY_RESPONSE:
        return TradeHistory(trades=tuple(Trade.from_wire(t) for t in _dicts(payload.get("trades"))))
    if kind == TRADE:
        return TradePrint(trade=Trade.from_wire(payload))
    if kind == EXECUTION:
        return Execution(order_id=_text(payload.get("order_id")), payload=payload)
    if kind == ERROR:
        return ServerError(message=_text(payload.get("message")) or "error")
    return Unrecognized(kind=kind, payload=payload)


# ---------------------------------------------------------------------------
# Outbound requests
# ---------------------------------------------------------------------------

def _request(kind: str, corr: Any = None) -> dict[str, Any]:
    msg: dict[str, Any] = {"type": kind}
    if corr is not None:
        msg["corr"] = corr
    return msg


def auth_request(token: str) -> dict[str, Any]:
    return {"type": "auth", "token": token}


def all_pnl_request(corr: Any = None) -> dict[str, Any]:
    return _request("getAllPnL", corr)


def order_book_request(corr: Any = None) -> dict[str, Any]:
    return _request("getOrderBookSnapshot", corr)


def trade_history_request(corr: Any = None) -> dict[str, Any]:
    return _request("getTradeHistory", corr)
