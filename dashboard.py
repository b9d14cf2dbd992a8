#!/usr/bin/env python3
"""Dashboard client: polls the API and keeps the rendered view current.

The latest-status renderer turns ``/api/latest`` into status cards; the
history renderer turns ``/api/history`` into one Chart.js line chart config per
location canvas. ``DashboardPoller`` drives both on a fixed interval.
"""
from __future__ import annotations

import asyncio
import html
import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

import httpx


logger = logging.getLogger("dashboard")

REFRESH_INTERVAL_SEC = 30.0

LOCATION_PRIORITY: List[str] = ["Dows Lake", "Fifth Avenue", "NAC"]
UNRANKED_PRIORITY = 999

# Location as stored (exact string) -> canvas id on the page.
HISTORY_CANVASES: List[Tuple[str, str]] = [
    ("Dows Lake", "chart-dows"),
    ("Fifth Avenue", "chart-fifth"),
    ("NAC", "chart-nac"),
]
HISTORY_HOURS = 24
MAX_X_TICKS = 6

DASH = "—"
NO_DATA_HTML = '<p class="section-subtitle">No data available yet.</p>'
ERROR_HTML = '<p class="section-subtitle">Error loading data from API.</p>'

TOOLTIP_FORMATS = ("Ice: {value} cm", "Temp: {value} °C")


# -------------------- Formatting helpers --------------------


def _to_number(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        n = float(value)
    elif isinstance(value, str):
        s = value.strip()
        if not s:
            return None
        try:
            n = float(s)
        except ValueError:
            return None
    else:
        return None
    if math.isnan(n) or math.isinf(n):
        return None
    return n


def num_or_dash(value: Any) -> str:
    n = _to_number(value)
    if n is None:
        return DASH
    return f"{n:.1f}"


def count_or_dash(value: Any) -> str:
    # Zero is a real count; only a missing value becomes a dash.
    if value is None:
        return DASH
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def parse_window_end(ts: Any) -> Optional[datetime]:
    if not ts or not isinstance(ts, str):
        return None
    s = ts.strip()
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"
    try:
        dt = datetime.fromisoformat(s)
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def format_clock(ts: Any) -> str:
    """``HH:MM`` in local time, or a dash when the timestamp is missing or invalid."""
    dt = parse_window_end(ts)
    if dt is None:
        return DASH
    return dt.astimezone().strftime("%H:%M")


def classify_safety(status: Any) -> str:
    s = str(status or "Unknown").lower()
    if s == "safe":
        return "status-safe"
    if s in ("warning", "caution"):
        return "status-warning"
    if s in ("unsafe", "closed"):
        return "status-danger"
    return "status-warning"


def location_priority(location: str) -> int:
    try:
        return LOCATION_PRIORITY.index(location)
    except ValueError:
        return UNRANKED_PRIORITY


def sort_by_location_priority(docs: List[Mapping[str, Any]]) -> List[Mapping[str, Any]]:
    def _key(doc: Mapping[str, Any]) -> Tuple[int, str, str]:
        loc = str(doc.get("location") or "")
        return location_priority(loc), loc.casefold(), loc

    return sorted(docs, key=_key)


def _esc(value: Any) -> str:
    return html.escape(str(value))


def render_status_card(doc: Mapping[str, Any]) -> str:
    location = doc.get("location") or "Unknown"
    label = doc.get("safetyStatus") or "Unknown"
    badge_class = classify_safety(label)

    return (
        '<article class="status-card">'
        '<div class="status-header">'
        "<div>"
        f'<div class="status-location">{_esc(location)}</div>'
        f'<div class="status-time">Window end: {_esc(format_clock(doc.get("windowEnd")))}</div>'
        "</div>"
        f'<div class="status-badge {badge_class}">'
        '<span class="status-dot"></span>'
        f"<span>{_esc(label)}</span>"
        "</div>"
        "</div>"
        '<div class="metrics-row">'
        + _metric_chip("Avg ice thickness", f"{num_or_dash(doc.get('avgIceThickness'))} cm")
        + _metric_chip("Avg surface temp", f"{num_or_dash(doc.get('avgSurfaceTemperature'))} °C")
        + _metric_chip("Max snow", f"{num_or_dash(doc.get('maxSnowAccumulation'))} cm")
        + _metric_chip("Readings", count_or_dash(doc.get("readingCount")))
        + "</div>"
        "</article>"
    )


def _metric_chip(label: str, value: str) -> str:
    return (
        '<div class="metric-chip">'
        f'<span class="metric-label">{_esc(label)}</span>'
        f'<span class="metric-value">{_esc(value)}</span>'
        "</div>"
    )


# -------------------- Latest status --------------------


class RenderState(str, Enum):
    IDLE = "idle"
    FETCHING = "fetching"
    RENDERED = "rendered"
    ERROR = "error"


def _local_now() -> datetime:
    return datetime.now().astimezone()


class LatestStatusRenderer:
    def __init__(self, clock: Callable[[], datetime] = _local_now) -> None:
        self._clock = clock
        self.state = RenderState.IDLE
        self.cards: List[str] = []
        self.placeholder: Optional[str] = None
        self.last_updated: Optional[str] = None

    @property
    def html(self) -> str:
        if self.placeholder is not None:
            return self.placeholder
        return "".join(self.cards)

    async def refresh(self, client: httpx.AsyncClient) -> None:
        self.state = RenderState.FETCHING
        try:
            resp = await client.get("/api/latest")
            resp.raise_for_status()
            data = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error("Failed to load latest data: %s", e)
            self.show_error()
            return
        try:
            self.render(data)
        except Exception:
            logger.exception("Failed to render latest data")
            self.show_error()

    def show_error(self) -> None:
        self.cards = []
        self.placeholder = ERROR_HTML
        self.state = RenderState.ERROR

    def render(self, data: Any) -> None:
        self.cards = []
        self.state = RenderState.RENDERED
        docs = [d for d in data if isinstance(d, Mapping)] if isinstance(data, list) else []
        if not docs:
            self.placeholder = NO_DATA_HTML
            return

        self.placeholder = None
        self.cards = [render_status_card(doc) for doc in sort_by_location_priority(docs)]
        self.last_updated = "Last update: " + self._clock().strftime("%H:%M")


# -------------------- History charts --------------------


class Canvas:
    """Drawing surface for one location's chart; holds at most one chart."""

    def __init__(self, canvas_id: str, width: int = 600, height: int = 260) -> None:
        self.canvas_id = canvas_id
        self.width = width
        self.height = height
        self.chart: Optional["Chart"] = None
        self.cleared = False
        self.revision = 0

    def attach(self, chart: "Chart") -> None:
        if self.chart is not None:
            raise RuntimeError(f"canvas {self.canvas_id} is already in use by a chart")
        self.chart = chart
        self.cleared = False
        self.revision += 1

    def detach(self, chart: "Chart") -> None:
        if self.chart is chart:
            self.chart = None

    def clear(self) -> None:
        self.cleared = True
        self.revision += 1


class Chart:
    def __init__(self, canvas: Canvas, config: Dict[str, Any]) -> None:
        self.canvas = canvas
        self.config = config
        self.destroyed = False
        canvas.attach(self)

    def destroy(self) -> None:
        if self.destroyed:
            return
        self.destroyed = True
        self.canvas.detach(self)


class ChartRegistry:
    """Owned table of the live chart per canvas id."""

    def __init__(self) -> None:
        self._charts: Dict[str, Optional[Chart]] = {}

    def get(self, canvas_id: str) -> Optional[Chart]:
        return self._charts.get(canvas_id)

    def replace(self, canvas_id: str, build: Callable[[], Chart]) -> Chart:
        """Destroy the current chart for ``canvas_id`` and install the one ``build`` returns.

        The old chart is released before the new one is constructed, since a
        canvas accepts a single chart at a time.
        """
        prior = self._charts.get(canvas_id)
        if prior is not None:
            prior.destroy()
            self._charts[canvas_id] = None
        chart = build()
        self._charts[canvas_id] = chart
        return chart

    def dispose_all(self) -> None:
        for canvas_id, chart in list(self._charts.items()):
            if chart is not None:
                chart.destroy()
            self._charts[canvas_id] = None

    def __len__(self) -> int:
        return sum(1 for c in self._charts.values() if c is not None and not c.destroyed)


@dataclass
class HistorySeries:
    labels: List[str] = field(default_factory=list)
    ice: List[float] = field(default_factory=list)
    temperature: List[float] = field(default_factory=list)


def _number_or_zero(value: Any) -> float:
    n = _to_number(value)
    return 0.0 if n is None else n


def build_history_series(docs: List[Mapping[str, Any]]) -> HistorySeries:
    series = HistorySeries()
    for doc in docs:
        series.labels.append(format_clock(doc.get("windowEnd")))
        series.ice.append(_number_or_zero(doc.get("avgIceThickness")))
        series.temperature.append(_number_or_zero(doc.get("avgSurfaceTemperature")))
    return series


def format_tooltip(dataset_index: int, value: float) -> str:
    fmt = TOOLTIP_FORMATS[0] if dataset_index == 0 else TOOLTIP_FORMATS[1]
    return fmt.format(value=f"{value:.1f}")


def build_chart_config(series: HistorySeries) -> Dict[str, Any]:
    """Chart.js line chart: ice on the left axis, temperature on the right.

    Tooltip callbacks cannot travel as JSON, so the label formats ride along
    under ``plugins.tooltip.labelFormats`` and the page installs the callback.
    """
    return {
        "type": "line",
        "data": {
            "labels": list(series.labels),
            "datasets": [
                {
                    "label": "Avg ice thickness (cm)",
                    "data": list(series.ice),
                    "yAxisID": "y-ice",
                    "tension": 0.3,
                    "pointRadius": 2,
                },
                {
                    "label": "Avg surface temp (°C)",
                    "data": list(series.temperature),
                    "yAxisID": "y-temp",
                    "tension": 0.3,
                    "pointRadius": 2,
                },
            ],
        },
        "options": {
            "responsive": True,
            "maintainAspectRatio": False,
            "interaction": {"mode": "index", "intersect": False},
            "plugins": {
                "legend": {"display": True, "labels": {"boxWidth": 10}},
                "tooltip": {"labelFormats": list(TOOLTIP_FORMATS), "decimals": 1},
            },
            "scales": {
                "x": {"ticks": {"maxTicksLimit": MAX_X_TICKS}},
                "y-ice": {
                    "type": "linear",
                    "position": "left",
                    "title": {"display": True, "text": "Ice (cm)"},
                },
                "y-temp": {
                    "type": "linear",
                    "position": "right",
                    "title": {"display": True, "text": "Temp (°C)"},
                    "grid": {"drawOnChartArea": False},
                },
            },
        },
    }


class HistoryChartRenderer:
    def __init__(
        self,
        canvases: List[Tuple[str, str]] = HISTORY_CANVASES,
        hours: int = HISTORY_HOURS,
        registry: Optional[ChartRegistry] = None,
    ) -> None:
        self.locations = list(canvases)
        self.hours = hours
        self.canvases: Dict[str, Canvas] = {cid: Canvas(cid) for _, cid in self.locations}
        self.registry = registry if registry is not None else ChartRegistry()

    async def refresh(self, client: httpx.AsyncClient) -> None:
        results = await asyncio.gather(
            *(self.refresh_location(client, loc, cid) for loc, cid in self.locations),
            return_exceptions=True,
        )
        for (loc, _), res in zip(self.locations, results):
            if isinstance(res, Exception):
                logger.error("History render failed for %s: %r", loc, res)

    async def refresh_location(self, client: httpx.AsyncClient, location: str, canvas_id: str) -> None:
        canvas = self.canvases.get(canvas_id)
        if canvas is None:
            return

        try:
            resp = await client.get("/api/history", params={"location": location, "hours": str(self.hours)})
            resp.raise_for_status()
            data = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            # Keep whatever chart is on the canvas.
            logger.error("Failed to load history for %s: %s", location, e)
            return

        docs = [d for d in data if isinstance(d, Mapping)] if isinstance(data, list) else []
        if not docs:
            canvas.clear()
            return

        config = build_chart_config(build_history_series(docs))
        self.registry.replace(canvas_id, lambda: Chart(canvas, config))

    def canvas_state(self, canvas_id: str) -> Dict[str, Any]:
        canvas = self.canvases[canvas_id]
        chart = canvas.chart
        show = chart is not None and not canvas.cleared
        return {
            "revision": canvas.revision,
            "cleared": canvas.cleared,
            "config": chart.config if show else None,
        }


# -------------------- Poller --------------------


class DashboardPoller:
    """Refreshes both renderers every ``interval_sec``.

    Each tick is awaited to completion before the wait for the next one starts,
    so a slow response can never overwrite the results of a later tick.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        interval_sec: float = REFRESH_INTERVAL_SEC,
        latest: Optional[LatestStatusRenderer] = None,
        history: Optional[HistoryChartRenderer] = None,
    ) -> None:
        self.client = client
        self.interval_sec = interval_sec
        self.latest = latest if latest is not None else LatestStatusRenderer()
        self.history = history if history is not None else HistoryChartRenderer()
        self.ticks = 0

    async def tick(self) -> None:
        self.ticks += 1
        results = await asyncio.gather(
            self.latest.refresh(self.client),
            self.history.refresh(self.client),
            return_exceptions=True,
        )
        for res in results:
            if isinstance(res, Exception):
                logger.error("dashboard tick=%s failed: %r", self.ticks, res)

    async def run(self, stop: Optional[asyncio.Event] = None) -> None:
        if stop is None:
            stop = asyncio.Event()
        logger.info("[poller] start interval=%ss", self.interval_sec)
        while not stop.is_set():
            await self.tick()
            try:
                await asyncio.wait_for(stop.wait(), timeout=self.interval_sec)
            except asyncio.TimeoutError:
                pass
        logger.info("[poller] stopped after %s ticks", self.ticks)

    def snapshot(self) -> Dict[str, Any]:
        return {
            "state": self.latest.state.value,
            "cards_html": self.latest.html,
            "last_updated": self.latest.last_updated,
            "ticks": self.ticks,
            "charts": {
                cid: dict(location=loc, **self.history.canvas_state(cid)) for loc, cid in self.history.locations
            },
        }
