#!/usr/bin/env python3
from __future__ import annotations

import asyncio
import html
import json
import logging
import sys
import time
from typing import Any, Dict, Iterable, Optional

import httpx
from fastapi import FastAPI, Request
from fastapi.responses import HTMLResponse, JSONResponse, Response

from config import debug_enabled, load_ui_settings
from dashboard import DashboardPoller
from logging_setup import setup_logging


logger = logging.getLogger("ui")

SETTINGS = load_ui_settings()
BUILD_ID = str(int(time.time()))
CHART_JS_URL = "https://cdn.jsdelivr.net/npm/chart.js@4.4.1/dist/chart.umd.min.js"

app = FastAPI(title="Rideau Canal Dashboard UI")
_httpx_client: Optional[httpx.AsyncClient] = None  # created lazily
_poller: Optional[DashboardPoller] = None
_poller_task: Optional[asyncio.Task] = None
_poller_stop: Optional[asyncio.Event] = None


def _hop_by_hop_headers() -> set:
    return {
        "connection",
        "keep-alive",
        "proxy-authenticate",
        "proxy-authorization",
        "te",
        "trailers",
        "transfer-encoding",
        "upgrade",
        "host",
        "content-length",
        "content-encoding",
    }


def _filter_headers(headers: Iterable[tuple[str, str]]) -> Dict[str, str]:
    bad = _hop_by_hop_headers()
    return {k: v for k, v in headers if k.lower() not in bad}


def _get_httpx() -> httpx.AsyncClient:
    global _httpx_client
    if _httpx_client is None:
        _httpx_client = httpx.AsyncClient(base_url=SETTINGS.api_upstream, timeout=SETTINGS.http_timeout_sec)
    return _httpx_client


def install_poller(poller: Optional[DashboardPoller]) -> None:
    global _poller
    _poller = poller


def get_poller() -> DashboardPoller:
    global _poller
    if _poller is None:
        _poller = DashboardPoller(_get_httpx(), interval_sec=SETTINGS.refresh_sec)
    return _poller


@app.on_event("startup")
async def _start_poller() -> None:
    global _poller_task, _poller_stop
    _poller_stop = asyncio.Event()
    _poller_task = asyncio.create_task(get_poller().run(_poller_stop))


@app.on_event("shutdown")
async def _shutdown() -> None:
    global _httpx_client, _poller_task
    if _poller_stop is not None:
        _poller_stop.set()
    if _poller_task is not None:
        try:
            await asyncio.wait_for(_poller_task, timeout=SETTINGS.http_timeout_sec)
        except asyncio.TimeoutError:
            _poller_task.cancel()
        _poller_task = None
    if _poller is not None:
        _poller.history.registry.dispose_all()
    if _httpx_client is not None:
        try:
            await _httpx_client.aclose()
        finally:
            _httpx_client = None


@app.get("/api/{path:path}")
async def proxy_api(path: str, request: Request) -> Response:
    client = _get_httpx()
    try:
        resp = await client.get(f"/api/{path}", params=dict(request.query_params))
    except httpx.HTTPError as e:
        logger.exception("proxy_api upstream error path=%s upstream=%s", path, SETTINGS.api_upstream)
        return Response(status_code=502, content=f"Upstream API error: {e}".encode("utf-8"))

    resp_headers = _filter_headers(resp.headers.items())
    resp_headers.setdefault("cache-control", "no-store")
    return Response(
        content=resp.content,
        status_code=resp.status_code,
        headers=resp_headers,
        media_type=resp.headers.get("content-type"),
    )


@app.get("/ui/state")
def ui_state() -> JSONResponse:
    return JSONResponse(content=get_poller().snapshot(), headers={"cache-control": "no-store"})


_HTML_TEMPLATE = """<!doctype html>
<html lang="en">
<head>
  <meta charset="utf-8" />
  <meta name="viewport" content="width=device-width, initial-scale=1" />
  <meta http-equiv="Cache-Control" content="no-store" />
  <meta http-equiv="refresh" content="__REFRESH__" />
  <title>Rideau Canal Ice Dashboard</title>
  <style>
    body { font-family: system-ui, -apple-system, Segoe UI, Roboto, sans-serif; margin: 0; background: #0b0f14; color: #e6edf3; }
    header { padding: 12px 16px; border-bottom: 1px solid #202938; display: flex; gap: 12px; align-items: baseline; }
    header h1 { font-size: 16px; margin: 0; font-weight: 600; }
    main { padding: 16px; display: grid; gap: 16px; }
    .cards { display: grid; gap: 12px; grid-template-columns: repeat(auto-fit, minmax(260px, 1fr)); }
    .status-card, .chart-card { background: #0f1723; border: 1px solid #202938; border-radius: 10px; padding: 12px; }
    .status-header { display: flex; justify-content: space-between; gap: 8px; }
    .status-location { font-weight: 600; }
    .status-time, .section-subtitle, .muted { font-size: 12px; opacity: 0.75; }
    .status-badge { display: flex; gap: 6px; align-items: center; font-size: 12px; border-radius: 999px; padding: 2px 10px; height: 20px; }
    .status-dot { width: 8px; height: 8px; border-radius: 50%; background: currentColor; }
    .status-safe { color: #3fb950; background: rgba(63, 185, 80, 0.12); }
    .status-warning { color: #d29922; background: rgba(210, 153, 34, 0.12); }
    .status-danger { color: #f85149; background: rgba(248, 81, 73, 0.12); }
    .metrics-row { display: grid; grid-template-columns: repeat(2, 1fr); gap: 8px; margin-top: 10px; }
    .metric-chip { display: flex; flex-direction: column; font-size: 12px; }
    .metric-label { opacity: 0.7; }
    .metric-value { font-size: 15px; }
    .charts { display: grid; gap: 12px; grid-template-columns: repeat(auto-fit, minmax(320px, 1fr)); }
    .chart-box { position: relative; height: 260px; }
    .build { margin-left: auto; opacity: 0.55; font-size: 11px; }
  </style>
</head>
<body data-build="__BUILD__">
  <header>
    <h1>Rideau Canal Ice Dashboard</h1>
    <div class="muted" id="last-updated">__LAST_UPDATED__</div>
    <div class="build">build: __BUILD__</div>
  </header>
  <main>
    <section>
      <div class="cards" id="cards-container">__CARDS__</div>
    </section>
    <section class="charts">
      __CHARTS__
    </section>
  </main>
  <script src="__CHART_JS__"></script>
  <script>
  (function () {
    if (typeof Chart === 'undefined') return;
    document.querySelectorAll('script[data-chart-for]').forEach(function (node) {
      var canvas = document.getElementById(node.getAttribute('data-chart-for'));
      if (!canvas) return;
      var cfg = JSON.parse(node.textContent);
      var tip = cfg.options.plugins.tooltip;
      var formats = tip.labelFormats || [];
      var decimals = tip.decimals || 1;
      tip.callbacks = {
        label: function (ctx) {
          var fmt = formats[ctx.datasetIndex === 0 ? 0 : 1] || '{value}';
          return fmt.replace('{value}', ctx.parsed.y.toFixed(decimals));
        }
      };
      var existing = Chart.getChart(canvas);
      if (existing) existing.destroy();
      new Chart(canvas.getContext('2d'), cfg);
    });
  })();
  </script>
</body>
</html>
"""


def _render_chart_block(location: str, canvas_id: str, state: Dict[str, Any]) -> str:
    config_tag = ""
    if state.get("config") is not None:
        # "</" must not appear inside the script element.
        payload = json.dumps(state["config"]).replace("</", "<\\/")
        config_tag = f'<script type="application/json" data-chart-for="{html.escape(canvas_id)}">{payload}</script>'
    return (
        '<div class="chart-card">'
        f'<div class="status-location">{html.escape(location)}</div>'
        f'<div class="chart-box"><canvas id="{html.escape(canvas_id)}"></canvas></div>'
        f"{config_tag}"
        "</div>"
    )


def render_page(poller: DashboardPoller) -> str:
    snap = poller.snapshot()
    charts = "".join(
        _render_chart_block(state["location"], cid, state) for cid, state in snap["charts"].items()
    )
    refresh = max(1, int(round(poller.interval_sec)))

    doc = _HTML_TEMPLATE
    doc = doc.replace("__REFRESH__", str(refresh))
    doc = doc.replace("__BUILD__", BUILD_ID)
    doc = doc.replace("__LAST_UPDATED__", html.escape(snap["last_updated"] or ""))
    doc = doc.replace("__CHART_JS__", CHART_JS_URL)
    doc = doc.replace("__CHARTS__", charts)
    doc = doc.replace("__CARDS__", snap["cards_html"])
    return doc


@app.get("/", response_class=HTMLResponse)
def index() -> HTMLResponse:
    return HTMLResponse(content=render_page(get_poller()), headers={"cache-control": "no-store"})


def main() -> int:
    import uvicorn

    # Rotating file logs (LOG_DIR/ui.log) + optional stdout
    setup_logging("ui", debug_default=debug_enabled())

    logger.info(
        "[start] ui host=%s port=%s api_upstream=%s refresh=%ss",
        SETTINGS.host,
        SETTINGS.port,
        SETTINGS.api_upstream,
        SETTINGS.refresh_sec,
    )
    uvicorn.run(app, host=SETTINGS.host, port=SETTINGS.port, log_level="info", log_config=None)
    return 0


if __name__ == "__main__":
    sys.exit(main())
