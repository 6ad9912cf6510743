"""Tests for the feed connection state machine."""

import asyncio
import json
import unittest

from feed.router import MessageRouter
from feed.ws_client import ConnectionState, FeedConnection
from models.messages import Execution
from models.series import PnLAggregator
from models.state import MarketState

INITIAL_PULLS = [
    {"type": "auth", "token": "secret"},
    {"type": "getAllPnL", "corr": 1},
    {"type": "getOrderBookSnapshot", "corr": 2},
    {"type": "getTradeHistory", "corr": 3},
]

_CLOSE = object()


class FakeSocket:
    """In-memory stand-in for a websockets client connection."""

    def __init__(self, fail_on_send=None):
        self.sent = []
        self.closed = False
        self.fail_on_send = fail_on_send
        self._sends = 0
        self._inbox = asyncio.Queue()

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        self.closed = True
        return False

    def __aiter__(self):
        return self

    async def __anext__(self):
        item = await self._inbox.get()
        if item is _CLOSE:
            raise StopAsyncIteration
        if isinstance(item, Exception):
            raise item
        return item

    async def send(self, data):
        self._sends += 1
        if self._sends == self.fail_on_send:
            raise RuntimeError("transient")
        self.sent.append(json.loads(data))

    def deliver(self, frame):
        self._inbox.put_nowait(frame)

    def drop(self):
        self._inbox.put_nowait(_CLOSE)


class FailingHandshake:
    async def __aenter__(self):
        raise OSError("connection refused")

    async def __aexit__(self, *exc):
        return False


class FakeConnector:
    def __init__(self, failures=0, first_send_failure=None):
        self.failures = failures
        self.first_send_failure = first_send_failure
        self.calls = 0
        self.urls = []
        self.sockets = []

    def __call__(self, url):
        self.calls += 1
        self.urls.append(url)
        if self.failures > 0:
            self.failures -= 1
            return FailingHandshake()
        sock = FakeSocket(fail_on_send=self.first_send_failure if not self.sockets else None)
        self.sockets.append(sock)
        return sock


async def settle(seconds=0.02):
    await asyncio.sleep(seconds)


class TestFeedConnection(unittest.IsolatedAsyncioTestCase):
    def make_connection(self, connector, reconnect_delay_s=0.05, poll_interval_s=30.0, poll_book_and_trades=True):
        self.state = MarketState()
        self.aggregator = PnLAggregator(window_size=10)
        self.router = MessageRouter(self.state, self.aggregator)
        conn = FeedConnection(
            ws_url="ws://venue.test:9001",
            token="secret",
            router=self.router,
            reconnect_delay_s=reconnect_delay_s,
            poll_interval_s=poll_interval_s,
            poll_book_and_trades=poll_book_and_trades,
            connector=connector,
        )
        self.router.on_execution = conn.request_all_pnl
        self.conn = conn
        return conn

    async def asyncTearDown(self):
        await self.conn.stop()

    async def test_open_sends_auth_then_initial_pulls(self):
        connector = FakeConnector()
        conn = self.make_connection(connector)
        assert conn.state is ConnectionState.IDLE

        conn.start()
        await settle()

        assert connector.calls == 1
        assert connector.urls == ["ws://venue.test:9001"]
        assert conn.state is ConnectionState.OPEN
        assert conn.status.ready is True
        assert connector.sockets[0].sent == INITIAL_PULLS

    async def test_inbound_frames_reach_state(self):
        connector = FakeConnector()
        conn = self.make_connection(connector)
        conn.start()
        await settle()

        sock = connector.sockets[0]
        sock.deliver(json.dumps({
            "type": "all_pnl_push",
            "clients": [{"client_id": 1, "name": "alpha", "realized": 10, "unrealized": 5}],
        }))
        sock.deliver(b'{"type": "trade", "price": 101.5, "quantity": 2, "timestamp": 1700000000}')
        sock.deliver("ping")
        await settle()

        assert [c.name for c in self.state.clients] == ["alpha"]
        assert self.state.trade_count == 1
        assert len(self.aggregator.samples("1")) == 1
        assert conn.state is ConnectionState.OPEN

    async def test_close_then_delay_reconnects_exactly_once(self):
        connector = FakeConnector()
        conn = self.make_connection(connector, reconnect_delay_s=0.05)
        conn.start()
        await settle()

        connector.sockets[0].drop()
        await settle(0.01)
        assert conn.state is ConnectionState.CLOSED
        assert conn.reconnect_pending is True
        assert connector.calls == 1
        assert connector.sockets[0].closed is True

        await settle(0.1)
        assert connector.calls == 2
        assert conn.state is ConnectionState.OPEN
        assert conn.reconnect_pending is False
        assert connector.sockets[1].sent == INITIAL_PULLS
        # Nothing more was written to the dead socket
        assert connector.sockets[0].sent == INITIAL_PULLS

    async def test_handshake_failure_is_retried_and_surfaced(self):
        connector = FakeConnector(failures=1)
        conn = self.make_connection(connector, reconnect_delay_s=0.05)
        conn.start()
        await settle(0.01)

        assert conn.state is ConnectionState.CLOSED
        assert conn.status.last_error == "connection refused"
        assert conn.status.label == "error"
        assert self.state.last_error == "socket error"

        await settle(0.1)
        assert connector.calls == 2
        assert conn.state is ConnectionState.OPEN
        assert conn.status.last_error is None

    async def test_execution_while_open_requests_pnl_once(self):
        connector = FakeConnector()
        conn = self.make_connection(connector)
        conn.start()
        await settle()

        sock = connector.sockets[0]
        sock.deliver(json.dumps({"type": "execution", "order_id": 42, "qty": 3}))
        await settle()

        refreshes = [m for m in sock.sent if m == {"type": "getAllPnL"}]
        assert len(refreshes) == 1

    async def test_execution_while_closed_sends_nothing(self):
        connector = FakeConnector()
        conn = self.make_connection(connector, reconnect_delay_s=5.0)
        conn.start()
        await settle()
        connector.sockets[0].drop()
        await settle()
        assert conn.state is ConnectionState.CLOSED

        self.router.dispatch(Execution(order_id="42"))
        await settle()

        assert conn.request_all_pnl() is False
        assert connector.sockets[0].sent == INITIAL_PULLS

    async def test_poll_repulls_while_open_and_stops_on_close(self):
        connector = FakeConnector()
        conn = self.make_connection(connector, reconnect_delay_s=5.0, poll_interval_s=0.02)
        conn.start()
        await settle(0.15)

        sock = connector.sockets[0]
        polls = [m for m in sock.sent[len(INITIAL_PULLS):]]
        assert polls.count({"type": "getAllPnL"}) >= 2
        assert {"type": "getOrderBookSnapshot"} in polls
        assert {"type": "getTradeHistory"} in polls

        sock.drop()
        await settle()
        sent_at_close = len(sock.sent)
        await settle(0.1)
        assert len(sock.sent) == sent_at_close

    async def test_poll_can_skip_book_and_trades(self):
        connector = FakeConnector()
        conn = self.make_connection(connector, poll_interval_s=0.02, poll_book_and_trades=False)
        conn.start()
        await settle(0.1)

        polls = connector.sockets[0].sent[len(INITIAL_PULLS):]
        assert polls
        assert all(m == {"type": "getAllPnL"} for m in polls)

    async def test_stop_closes_socket_and_prevents_reconnect(self):
        connector = FakeConnector()
        conn = self.make_connection(connector, reconnect_delay_s=0.02, poll_interval_s=0.02)
        conn.start()
        await settle()
        sock = connector.sockets[0]

        await conn.stop()
        sent_at_stop = len(sock.sent)
        await settle(0.1)

        assert sock.closed is True
        assert conn.state is ConnectionState.IDLE
        assert conn.reconnect_pending is False
        assert connector.calls == 1
        assert len(sock.sent) == sent_at_stop
        assert conn.send({"type": "getAllPnL"}) is False

    async def test_stop_cancels_pending_reconnect(self):
        connector = FakeConnector()
        conn = self.make_connection(connector, reconnect_delay_s=0.05)
        conn.start()
        await settle()
        connector.sockets[0].drop()
        await settle(0.01)
        assert conn.reconnect_pending is True

        await conn.stop()
        await settle(0.1)

        assert connector.calls == 1
        assert conn.state is ConnectionState.IDLE

    async def test_start_twice_keeps_single_connection(self):
        connector = FakeConnector()
        conn = self.make_connection(connector)
        conn.start()
        conn.start()
        await settle()

        assert connector.calls == 1

    async def test_failed_send_closes_and_reconnects(self):
        connector = FakeConnector(first_send_failure=2)
        conn = self.make_connection(connector, reconnect_delay_s=0.05)
        conn.start()
        await settle(0.01)

        first = connector.sockets[0]
        assert first.sent == [{"type": "auth", "token": "secret"}]
        assert first.closed is True
        assert conn.state is ConnectionState.CLOSED
        assert conn.request_all_pnl() is False
        assert conn.status.label == "error"
        assert conn.status.last_error == "transient"
        assert self.state.last_error == "socket error"

        await settle(0.1)
        assert connector.calls == 2
        assert conn.state is ConnectionState.OPEN
        assert connector.sockets[1].sent == INITIAL_PULLS
        assert conn.request_all_pnl() is True

    async def test_colors_survive_reconnect(self):
        connector = FakeConnector()
        conn = self.make_connection(connector, reconnect_delay_s=0.05)
        conn.start()
        await settle()

        connector.sockets[0].deliver(json.dumps({"type": "all_pnl_push", "clients": [
            {"client_id": "a", "realized": 1, "unrealized": 1},
            {"client_id": "b", "realized": 2, "unrealized": 2},
        ]}))
        await settle()
        before = dict(self.aggregator.colors)
        assert set(before) == {"a", "b"}

        connector.sockets[0].drop()
        await settle(0.1)
        assert connector.calls == 2
        assert conn.state is ConnectionState.OPEN

        connector.sockets[1].deliver(json.dumps({"type": "all_pnl_response", "clients": [
            {"client_id": "c", "realized": 0, "unrealized": 0},
            {"client_id": "b", "realized": 3, "unrealized": 3},
            {"client_id": "a", "realized": 4, "unrealized": 4},
        ]}))
        await settle()

        colors = dict(self.aggregator.colors)
        assert {cid: colors[cid] for cid in before} == before
        assert colors["c"] not in before.values()
        assert len(self.aggregator.samples("a")) == 2
