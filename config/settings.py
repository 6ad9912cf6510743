"""
Environment-based configuration.
The auth token comes from the environment (or .env) and is never hardcoded.

Usage:
    from config.settings import load_settings, load_chart_config
    settings = load_settings()
    geometry, palette = load_chart_config(settings.config_path)

Chart geometry and the client palette live in config/feed.yaml; any key
missing there falls back to the built-in default.
"""

from __future__ import annotations
import logging
import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any

import yaml

from chart.mapper import ChartGeometry
from models.series import DEFAULT_PALETTE, DEFAULT_WINDOW_SIZE

log = logging.getLogger(__name__)


def _require(key: str) -> str:
    val = os.environ.get(key)
    if not val:
        raise EnvironmentError(f"Required environment variable '{key}' is not set.")
    return val


def _optional(key: str, default: str = "") -> str:
    return os.environ.get(key, default)


def _flag(key: str, default: str) -> bool:
    return _optional(key, default).lower() in ("1", "true", "yes")


@dataclass(frozen=True)
class Settings:
    # --- Feed ---
    ws_url: str                     # e.g. ws://localhost:9001
    auth_token: str
    reconnect_delay_s: float        # fixed delay, no backoff growth
    poll_interval_s: float          # safety-net re-pull period
    poll_book_and_trades: bool      # also re-pull book + history on each poll

    # --- Series ---
    window_size: int                # samples kept per client

    # --- Runtime ---
    log_level: str
    status_interval_s: float        # how often main logs a status line
    config_path: str                # YAML with chart geometry + palette


def load_settings() -> Settings:
    return Settings(
        ws_url=_optional("FEED_WS_URL", "ws://localhost:9001"),
        auth_token=_require("FEED_AUTH_TOKEN"),
        reconnect_delay_s=float(_optional("FEED_RECONNECT_DELAY_S", "1.0")),
        poll_interval_s=float(_optional("FEED_POLL_INTERVAL_S", "0.1")),
        poll_book_and_trades=_flag("FEED_POLL_BOOK_AND_TRADES", "true"),
        window_size=int(_optional("FEED_WINDOW_SIZE", str(DEFAULT_WINDOW_SIZE))),
        log_level=_optional("FEED_LOG_LEVEL", "INFO"),
        status_interval_s=float(_optional("FEED_STATUS_INTERVAL_S", "5")),
        config_path=_optional("FEED_CONFIG_PATH", "config/feed.yaml"),
    )


def chart_config_from_dict(
    raw: dict[str, Any] | None,
    source: str = "chart config",
) -> tuple[ChartGeometry, tuple[str, ...]]:
    raw = raw or {}
    if not isinstance(raw, dict):
        raise ValueError(f"{source}: top level must be a mapping, got {type(raw).__name__}")
    chart = raw.get("chart") or {}
    if not isinstance(chart, dict):
        raise ValueError(f"{source}: 'chart' must be a mapping, got {type(chart).__name__}")
    palette_raw = raw.get("palette") or DEFAULT_PALETTE
    if not isinstance(palette_raw, (list, tuple)):
        raise ValueError(f"{source}: 'palette' must be a list of colors")
    known = {f.name for f in fields(ChartGeometry)}
    overrides: dict[str, Any] = {}
    for key, value in chart.items():
        if key not in known:
            log.warning("Unknown chart setting %r ignored", key)
            continue
        overrides[key] = int(value) if key in ("gridlines", "label_precision", "micro_label_precision") else float(value)
    palette = tuple(str(c) for c in palette_raw)
    return ChartGeometry(**overrides), palette


def load_chart_config(path: str | Path) -> tuple[ChartGeometry, tuple[str, ...]]:
    path = Path(path)
    if not path.exists():
        log.info("No chart config at %s, using defaults", path)
        return chart_config_from_dict(None)
    with path.open() as f:
        return chart_config_from_dict(yaml.safe_load(f), source=str(path))
