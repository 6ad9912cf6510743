"""
Rolling per-client PnL time series.

Each PnL snapshot adds one sample per client to that client's ring buffer
(deque with maxlen, oldest sample evicted first). Colors are handed out in
first-seen order from a fixed palette and wrap around once it runs out; a
client keeps its color for the life of the aggregator, across reconnects.
"""

from __future__ import annotations
import logging
import time
from collections import deque
from dataclasses import dataclass
from types import MappingProxyType
from typing import Callable, Iterable, Mapping, Sequence

from models.messages import ClientPnL

log = logging.getLogger(__name__)

DEFAULT_WINDOW_SIZE = 600

DEFAULT_PALETTE: tuple[str, ...] = (
    "#60a5fa",
    "#31c48d",
    "#f59e0b",
    "#ef4444",
    "#a78bfa",
    "#f472b6",
    "#22d3ee",
    "#facc15",
)


@dataclass(frozen=True, slots=True)
class TimeSeriesSample:
    t: float           # wall-clock seconds
    realized: float
    unrealized: float


@dataclass(frozen=True, slots=True)
class PnLTotals:
    realized: float = 0.0
    unrealized: float = 0.0


class PnLAggregator:
    """
    Owns the per-client ring buffers and the color map.

    Usage:
        agg = PnLAggregator(window_size=600)
        totals = agg.record_snapshot(state.clients)
        frame = build_chart(agg.series, agg.colors, geometry)
    """

    def __init__(
        self,
        window_size: int = DEFAULT_WINDOW_SIZE,
        palette: Sequence[str] = DEFAULT_PALETTE,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if window_size < 1:
            raise ValueError(f"window_size must be >= 1, got {window_size}")
        if not palette:
            raise ValueError("palette must contain at least one color")
        self._window_size = window_size
        self._palette = tuple(palette)
        self._clock = clock
        self._series: dict[str, deque[TimeSeriesSample]] = {}
        self._colors: dict[str, str] = {}
        self._totals = PnLTotals()

    @property
    def window_size(self) -> int:
        return self._window_size

    @property
    def totals(self) -> PnLTotals:
        return self._totals

    @property
    def colors(self) -> Mapping[str, str]:
        return MappingProxyType(self._colors)

    @property
    def series(self) -> dict[str, tuple[TimeSeriesSample, ...]]:
        """Read-only copy of every buffer, in client first-seen order."""
        return {cid: tuple(buf) for cid, buf in self._series.items()}

    def samples(self, client_id: str) -> tuple[TimeSeriesSample, ...]:
        return tuple(self._series.get(client_id, ()))

    def color_for(self, client_id: str) -> str:
        color = self._colors.get(client_id)
        if color is None:
            color = self._palette[len(self._colors) % len(self._palette)]
            self._colors[client_id] = color
            log.debug("Assigned color %s to client %s", color, client_id)
        return color

    def record_snapshot(self, clients: Iterable[ClientPnL], now: float | None = None) -> PnLTotals:
        """
        Append one sample per client and recompute the session totals.
        Totals come from this snapshot alone; snapshots are not deltas.
        """
        t = self._clock() if now is None else now
        realized = 0.0
        unrealized = 0.0
        for client in clients:
            self.color_for(client.client_id)
            buf = self._series.get(client.client_id)
            if buf is None:
                buf = self._series[client.client_id] = deque(maxlen=self._window_size)
            buf.append(TimeSeriesSample(t=t, realized=client.realized, unrealized=client.unrealized))
            realized += client.realized
            unrealized += client.unrealized
        self._totals = PnLTotals(realized=realized, unrealized=unrealized)
        return self._totals
