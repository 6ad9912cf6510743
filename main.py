"""
PnL Telemetry Feed: Main Entrypoint

Boots the asyncio event loop, wires the feed pipeline together, and runs
until SIGINT/SIGTERM is received.

Startup sequence:
  1. Load settings from environment (.env supported) and config/feed.yaml
  2. Build state store, PnL aggregator and message router
  3. Start the feed connection (auth + initial pulls happen on open)
  4. Log a status line and chart summary on a fixed interval

Shutdown sequence:
  1. Stop the status task
  2. Stop the feed connection (socket closed, reconnect + poll timers cancelled)
"""

from __future__ import annotations
import asyncio
import logging
import signal

from dotenv import load_dotenv

# Load .env before reading settings from the environment
load_dotenv()

from chart.mapper import ChartGeometry, build_chart
from chart.views import status_line
from config.settings import load_chart_config, load_settings
from feed.router import MessageRouter
from feed.ws_client import FeedConnection
from models.series import PnLAggregator
from models.state import MarketState
from utils.logger import setup_logging

log = logging.getLogger(__name__)


async def _report_status(
    state: MarketState,
    aggregator: PnLAggregator,
    connection: FeedConnection,
    geometry: ChartGeometry,
    interval_s: float,
) -> None:
    while True:
        await asyncio.sleep(interval_s)
        log.info("%s", status_line(state, aggregator.totals, connection.status.label))
        frame = build_chart(aggregator.series, aggregator.colors, geometry)
        if frame.series:
            log.info(
                "Chart domain [%.4f, %.4f]%s over %d series",
                frame.domain.lo, frame.domain.hi,
                " (micro-scale)" if frame.micro_scale else "",
                len(frame.series),
            )


async def run() -> None:
    settings = load_settings()
    setup_logging(settings.log_level)
    log.info("PnL telemetry feed starting (url=%s)", settings.ws_url)

    geometry, palette = load_chart_config(settings.config_path)

    # -----------------------------------------------------------------------
    # Pipeline
    # -----------------------------------------------------------------------
    state = MarketState()
    aggregator = PnLAggregator(window_size=settings.window_size, palette=palette)
    router = MessageRouter(state, aggregator)

    connection = FeedConnection(
        ws_url=settings.ws_url,
        token=settings.auth_token,
        router=router,
        reconnect_delay_s=settings.reconnect_delay_s,
        poll_interval_s=settings.poll_interval_s,
        poll_book_and_trades=settings.poll_book_and_trades,
    )
    # Fills change PnL without carrying it; re-pull on every execution
    router.on_execution = connection.request_all_pnl

    # -----------------------------------------------------------------------
    # Run
    # -----------------------------------------------------------------------
    shutdown_event = asyncio.Event()

    def _handle_signal(sig: signal.Signals) -> None:
        log.info("Received %s, initiating graceful shutdown", sig.name)
        shutdown_event.set()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, _handle_signal, sig)

    connection.start()
    status_task = asyncio.create_task(
        _report_status(state, aggregator, connection, geometry, settings.status_interval_s),
        name="status",
    )
    log.info("Feed client is live.")

    await shutdown_event.wait()

    # -----------------------------------------------------------------------
    # Graceful shutdown
    # -----------------------------------------------------------------------
    log.info("Shutting down...")
    status_task.cancel()
    await asyncio.gather(status_task, return_exceptions=True)
    await connection.stop()
    log.info("Feed client stopped cleanly.")


def main() -> None:
    try:
        import uvloop  # type: ignore
    except ImportError:
        asyncio.run(run())
        return
    uvloop.run(run())


if __name__ == "__main__":
    main()
