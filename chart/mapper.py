"""
Chart coordinate mapping for the rolling unrealized-PnL chart.

Pure functions: every call recomputes the domain from the series it is
given, nothing is cached. Any renderer (SVG, canvas, terminal) consumes
ChartFrame and must not mutate it.

Value domain rules, applied in order:
  1. min/max unrealized over every sample of every client (0/0 when empty)
  2. flat domain (min == max) is widened by +/- flat_epsilon
  3. padded by padding_ratio of the span on both ends
  4. if the padded span is still under micro_span, it is re-centered on its
     midpoint with span exactly micro_span and flagged micro_scale
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Mapping, Sequence

from models.series import TimeSeriesSample

FALLBACK_COLOR = "#9ca3af"


@dataclass(frozen=True, slots=True)
class ChartGeometry:
    width: float = 800.0
    height: float = 300.0
    margin_top: float = 20.0
    margin_bottom: float = 20.0
    padding_ratio: float = 0.15
    flat_epsilon: float = 0.001
    micro_span: float = 0.05
    gridlines: int = 5
    label_precision: int = 2
    micro_label_precision: int = 4


@dataclass(frozen=True, slots=True)
class ValueDomain:
    lo: float
    hi: float
    micro_scale: bool = False

    @property
    def span(self) -> float:
        return self.hi - self.lo

    def contains(self, value: float) -> bool:
        return self.lo <= value <= self.hi


@dataclass(frozen=True, slots=True)
class ChartPoint:
    x: float
    y: float


@dataclass(frozen=True, slots=True)
class SeriesPath:
    client_id: str
    color: str
    points: tuple[ChartPoint, ...]
    path: str             # SVG path data, "M x,y L x,y ..."
    marker: ChartPoint    # last sample
    label: str            # last unrealized value
    last_value: float


@dataclass(frozen=True, slots=True)
class Gridline:
    y: float
    value: float
    label: str


@dataclass(frozen=True, slots=True)
class ChartScale:
    """Linear time -> x and value -> y (inverted) mappings."""
    domain: ValueDomain
    t_min: float
    t_max: float
    geometry: ChartGeometry

    def x(self, t: float) -> float:
        # A single instant has no width; pin it to the right edge (newest)
        if self.t_max <= self.t_min:
            return float(self.geometry.width)
        return (t - self.t_min) / (self.t_max - self.t_min) * self.geometry.width

    def y(self, value: float) -> float:
        top = self.geometry.margin_top
        bottom = self.geometry.height - self.geometry.margin_bottom
        if self.domain.span <= 0:
            return (top + bottom) / 2
        return bottom - (value - self.domain.lo) / self.domain.span * (bottom - top)

    def point(self, sample: TimeSeriesSample) -> ChartPoint:
        return ChartPoint(x=self.x(sample.t), y=self.y(sample.unrealized))


@dataclass(frozen=True, slots=True)
class ChartFrame:
    scale: ChartScale
    series: tuple[SeriesPath, ...]
    gridlines: tuple[Gridline, ...]
    zero_line: float | None   # y of value 0 when 0 lies inside the domain

    @property
    def domain(self) -> ValueDomain:
        return self.scale.domain

    @property
    def micro_scale(self) -> bool:
        return self.scale.domain.micro_scale


Series = Mapping[str, Sequence[TimeSeriesSample]]


def _all_samples(series: Series):
    for samples in series.values():
        yield from samples or ()


def value_domain(series: Series, geometry: ChartGeometry = ChartGeometry()) -> ValueDomain:
    values = [s.unrealized for s in _all_samples(series)]
    lo = min(values, default=0.0)
    hi = max(values, default=0.0)

    if lo == hi:
        lo -= geometry.flat_epsilon
        hi += geometry.flat_epsilon

    pad = (hi - lo) * geometry.padding_ratio
    lo -= pad
    hi += pad

    if hi - lo < geometry.micro_span:
        mid = (lo + hi) / 2
        half = geometry.micro_span / 2
        return ValueDomain(lo=mid - half, hi=mid + half, micro_scale=True)
    return ValueDomain(lo=lo, hi=hi)


def time_domain(series: Series) -> tuple[float, float]:
    instants = [s.t for s in _all_samples(series)]
    return min(instants, default=0.0), max(instants, default=0.0)


def make_scale(series: Series, geometry: ChartGeometry = ChartGeometry()) -> ChartScale:
    t_min, t_max = time_domain(series)
    return ChartScale(domain=value_domain(series, geometry), t_min=t_min, t_max=t_max, geometry=geometry)


def format_value(value: float, geometry: ChartGeometry, micro_scale: bool) -> str:
    precision = geometry.micro_label_precision if micro_scale else geometry.label_precision
    return f"{value:.{precision}f}"


def polyline_path(points: Sequence[ChartPoint]) -> str:
    if not points:
        return ""
    head, *rest = points
    parts = [f"M {head.x:.2f},{head.y:.2f}"]
    parts.extend(f"L {p.x:.2f},{p.y:.2f}" for p in rest)
    return " ".join(parts)


def gridlines(scale: ChartScale) -> tuple[Gridline, ...]:
    count = scale.geometry.gridlines
    domain = scale.domain
    if count <= 0:
        return ()
    if count == 1:
        values = [(domain.lo + domain.hi) / 2]
    else:
        step = domain.span / (count - 1)
        values = [domain.lo + i * step for i in range(count)]
    return tuple(
        Gridline(y=scale.y(v), value=v, label=format_value(v, scale.geometry, domain.micro_scale))
        for v in values
    )


def build_chart(
    series: Series,
    colors: Mapping[str, str] | None = None,
    geometry: ChartGeometry = ChartGeometry(),
) -> ChartFrame:
    """Map every client series onto the canvas. Empty input gives an empty frame."""
    colors = colors or {}
    scale = make_scale(series, geometry)

    paths: list[SeriesPath] = []
    for client_id, samples in series.items():
        if not samples:
            continue
        points = tuple(scale.point(s) for s in samples)
        last = samples[-1]
        paths.append(SeriesPath(
            client_id=client_id,
            color=colors.get(client_id, FALLBACK_COLOR),
            points=points,
            path=polyline_path(points),
            marker=points[-1],
            label=format_value(last.unrealized, geometry, scale.domain.micro_scale),
            last_value=last.unrealized,
        ))

    zero_line = scale.y(0.0) if scale.domain.contains(0.0) else None
    return ChartFrame(scale=scale, series=tuple(paths), gridlines=gridlines(scale), zero_line=zero_line)
