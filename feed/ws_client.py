"""
Venue telemetry WebSocket connection.

Keeps exactly one live connection to the venue feed and routes every inbound
frame through the MessageRouter.

Lifecycle (repeats until stop()):
    IDLE -> CONNECTING -> OPEN -> CLOSED -> CONNECTING -> ...

On OPEN:
- auth request, then the three initial pulls (all PnL, order book, trades)
- safety-net poll task re-pulls PnL (and optionally book + trades) on a
  fixed interval, covering pushes the venue failed to deliver
On CLOSED:
- poll and writer tasks are cancelled, queued outbound frames are dropped
- exactly one reconnect is scheduled after a fixed delay (no backoff growth,
  no retry cap)

Outbound frames go through a per-connection queue drained by one writer
task, so requests reach the socket in the order they were enqueued.
Inbound frames are decoded synchronously in arrival order.
"""

from __future__ import annotations
import asyncio
import json
import logging
from dataclasses import dataclass
from enum import Enum, auto
from typing import Any, AsyncContextManager, Callable

import websockets
from websockets.exceptions import ConnectionClosed

from feed.router import MessageRouter
from models.messages import (
    all_pnl_request,
    auth_request,
    order_book_request,
    trade_history_request,
)

log = logging.getLogger(__name__)

# Factory returning an async context manager that yields a connected socket.
# The socket must be async-iterable (inbound frames) and expose send().
Connector = Callable[[str], AsyncContextManager[Any]]

PING_INTERVAL_S = 20
OUTBOX_MAXSIZE = 1000


class ConnectionState(Enum):
    IDLE = auto()        # not started, or stopped
    CONNECTING = auto()
    OPEN = auto()
    CLOSED = auto()      # reconnect pending


@dataclass(frozen=True, slots=True)
class ConnectionStatus:
    state: ConnectionState
    attempts: int
    last_error: str | None

    @property
    def ready(self) -> bool:
        return self.state is ConnectionState.OPEN

    @property
    def label(self) -> str:
        if self.state is ConnectionState.OPEN:
            return "connected"
        if self.state is ConnectionState.CONNECTING:
            return "connecting"
        if self.state is ConnectionState.CLOSED:
            return "error" if self.last_error else "disconnected"
        return "stopped"


def websocket_connector(url: str) -> AsyncContextManager[Any]:
    return websockets.connect(
        url,
        ping_interval=PING_INTERVAL_S,
        ping_timeout=10,
        max_size=None,
    )


class FeedConnection:
    """
    Owns the feed socket, the reconnect timer and the safety-net poll.

    Usage:
        conn = FeedConnection(ws_url, token, router)
        router.on_execution = conn.request_all_pnl
        conn.start()          # inside a running event loop
        ...
        await conn.stop()
    """

    def __init__(
        self,
        ws_url: str,
        token: str,
        router: MessageRouter,
        reconnect_delay_s: float = 1.0,
        poll_interval_s: float = 0.1,
        poll_book_and_trades: bool = True,
        connector: Connector | None = None,
    ) -> None:
        self._ws_url = ws_url
        self._token = token
        self._router = router
        self._reconnect_delay_s = reconnect_delay_s
        self._poll_interval_s = poll_interval_s
        self._poll_book_and_trades = poll_book_and_trades
        self._connector = connector or websocket_connector

        self._state = ConnectionState.IDLE
        self._stopped = True
        self._attempts = 0
        self._last_error: str | None = None
        self._ws: Any = None
        self._outbox: asyncio.Queue[dict[str, Any]] | None = None
        self._session_task: asyncio.Task | None = None
        self._writer_task: asyncio.Task | None = None
        self._poll_task: asyncio.Task | None = None
        self._reconnect_handle: asyncio.TimerHandle | None = None

    # ------------------------------------------------------------------
    # Public surface
    # ------------------------------------------------------------------

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def status(self) -> ConnectionStatus:
        return ConnectionStatus(state=self._state, attempts=self._attempts, last_error=self._last_error)

    @property
    def reconnect_pending(self) -> bool:
        return self._reconnect_handle is not None

    def start(self) -> None:
        """Open the first connection. Must be called from a running event loop."""
        if not self._stopped:
            log.warning("Feed connection already started")
            return
        self._stopped = False
        log.info("Feed connection starting: %s", self._ws_url)
        self._connect()

    async def stop(self) -> None:
        """Close the socket and cancel every timer. Nothing fires afterwards."""
        self._stopped = True
        self._state = ConnectionState.IDLE
        if self._reconnect_handle is not None:
            self._reconnect_handle.cancel()
            self._reconnect_handle = None
        current = asyncio.current_task()
        tasks = [
            t for t in (self._poll_task, self._writer_task, self._session_task)
            if t is not None and t is not current
        ]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._release()
        log.info("Feed connection stopped")

    def send(self, payload: dict[str, Any]) -> bool:
        """Enqueue one outbound frame. Only accepted while the connection is OPEN."""
        if self._state is not ConnectionState.OPEN or self._outbox is None:
            log.debug("Send skipped (connection %s): %s", self._state.name, payload)
            return False
        try:
            self._outbox.put_nowait(payload)
        except asyncio.QueueFull:
            log.warning("Outbound queue full, dropping %s", payload.get("type"))
            return False
        return True

    def request_all_pnl(self) -> bool:
        return self.send(all_pnl_request())

    # ------------------------------------------------------------------
    # State machine
    # ------------------------------------------------------------------

    def _connect(self) -> None:
        self._reconnect_handle = None
        if self._stopped or self._session_task is not None:
            return
        self._attempts += 1
        self._state = ConnectionState.CONNECTING
        log.info("Connecting to feed (attempt %d)", self._attempts)
        self._session_task = asyncio.get_running_loop().create_task(
            self._run_session(), name="feed-session"
        )

    async def _run_session(self) -> None:
        try:
            async with self._connector(self._ws_url) as ws:
                self._on_open(ws)
                async for frame in ws:
                    if self._stopped:
                        break
                    self._router.route_frame(frame)
            if not self._stopped:
                log.warning("Feed connection closed by server, reconnecting in %.1fs", self._reconnect_delay_s)
        except asyncio.CancelledError:
            raise
        except ConnectionClosed as exc:
            log.warning("Feed connection closed: %s, reconnecting in %.1fs", exc, self._reconnect_delay_s)
        except Exception as exc:
            self._last_error = str(exc) or type(exc).__name__
            self._router.state.record_transport_error()
            log.error("Feed connection error: %s, reconnecting in %.1fs", self._last_error, self._reconnect_delay_s)
        finally:
            self._on_closed()

    def _on_open(self, ws: Any) -> None:
        self._ws = ws
        self._state = ConnectionState.OPEN
        self._last_error = None
        self._outbox = asyncio.Queue(maxsize=OUTBOX_MAXSIZE)
        loop = asyncio.get_running_loop()
        self._writer_task = loop.create_task(self._write_loop(ws, self._outbox), name="feed-writer")
        log.info("Feed connected, sending auth + initial pulls")

        self.send(auth_request(self._token))
        self.send(all_pnl_request(corr=1))
        self.send(order_book_request(corr=2))
        self.send(trade_history_request(corr=3))

        self._poll_task = loop.create_task(self._poll_loop(), name="feed-poll")

    def _on_closed(self) -> None:
        self._release()
        if self._stopped:
            self._state = ConnectionState.IDLE
            return
        self._state = ConnectionState.CLOSED
        if self._reconnect_handle is None:
            self._reconnect_handle = asyncio.get_running_loop().call_later(
                self._reconnect_delay_s, self._connect
            )

    def _release(self) -> None:
        """Drop per-connection resources; the session task exits on its own."""
        current = asyncio.current_task()
        for task in (self._poll_task, self._writer_task):
            if task is not None and task is not current and not task.done():
                task.cancel()
        self._poll_task = None
        self._writer_task = None
        self._outbox = None
        self._ws = None
        self._session_task = None

    # ------------------------------------------------------------------
    # Per-connection tasks
    # ------------------------------------------------------------------

    async def _write_loop(self, ws: Any, outbox: asyncio.Queue[dict[str, Any]]) -> None:
        while True:
            payload = await outbox.get()
            try:
                await ws.send(json.dumps(payload))
            except asyncio.CancelledError:
                raise
            except ConnectionClosed as exc:
                log.warning("Send of %s failed, connection closed: %s", payload.get("type"), exc)
                self._abort_session(ws, str(exc) or type(exc).__name__)
                return
            except Exception as exc:
                log.error("Send of %s failed: %s", payload.get("type"), exc)
                self._abort_session(ws, str(exc) or type(exc).__name__)
                return
            log.debug("Sent %s", payload)

    def _abort_session(self, ws: Any, reason: str) -> None:
        """A socket that cannot send is torn down so the reconnect cycle takes over."""
        if ws is not self._ws or self._session_task is None:
            return
        self._last_error = reason
        self._router.state.record_transport_error()
        self._state = ConnectionState.CLOSED
        self._session_task.cancel()

    async def _poll_loop(self) -> None:
        while True:
            await asyncio.sleep(self._poll_interval_s)
            self.request_all_pnl()
            if self._poll_book_and_trades:
                self.send(order_book_request())
                self.send(trade_history_request())
