from __future__ import annotations

import asyncio
import json
import re

import httpx
import pytest
from fastapi.testclient import TestClient

import ui_server
from dashboard import DashboardPoller

SERIES = [
    {"location": "Dows Lake", "windowEnd": "2025-01-15T10:00:00.000Z", "avgIceThickness": 31.0, "avgSurfaceTemperature": -2.0},
]


def _upstream(request: httpx.Request) -> httpx.Response:
    if request.url.path == "/api/latest":
        return httpx.Response(200, json=[{"location": "NAC", "safetyStatus": "Unsafe"}, {"location": "Dows Lake"}])
    if request.url.path == "/api/history":
        if request.url.params.get("location") == "Dows Lake":
            return httpx.Response(200, json=SERIES)
        return httpx.Response(200, json=[])
    return httpx.Response(404, json={"detail": "Not Found"})


@pytest.fixture
def upstream_client(monkeypatch) -> httpx.AsyncClient:
    client = httpx.AsyncClient(transport=httpx.MockTransport(_upstream), base_url="http://api.test")
    monkeypatch.setattr(ui_server, "_httpx_client", client)
    return client


@pytest.fixture
def poller(upstream_client):
    p = DashboardPoller(upstream_client, interval_sec=30)
    asyncio.run(p.tick())
    ui_server.install_poller(p)
    yield p
    ui_server.install_poller(None)


def test_index_renders_cards_and_charts(poller) -> None:
    resp = TestClient(ui_server.app).get("/")

    assert resp.status_code == 200
    page = resp.text
    assert '<meta http-equiv="refresh" content="30" />' in page
    assert page.index(">Dows Lake<") < page.index(">NAC<")
    assert "status-danger" in page
    for cid in ("chart-dows", "chart-fifth", "chart-nac"):
        assert f'<canvas id="{cid}"></canvas>' in page

    configs = re.findall(r'<script type="application/json" data-chart-for="([^"]+)">(.*?)</script>', page)
    assert [cid for cid, _ in configs] == ["chart-dows"]
    cfg = json.loads(configs[0][1])
    assert cfg["data"]["datasets"][0]["data"] == [31.0]


def test_ui_state_snapshot(poller) -> None:
    resp = TestClient(ui_server.app).get("/ui/state")

    assert resp.status_code == 200
    body = resp.json()
    assert body["state"] == "rendered"
    assert body["charts"]["chart-nac"]["cleared"] is True
    assert body["charts"]["chart-dows"]["config"]["type"] == "line"


def test_api_proxy_passes_through(upstream_client) -> None:
    resp = TestClient(ui_server.app).get("/api/history", params={"location": "Dows Lake", "hours": "24"})

    assert resp.status_code == 200
    assert resp.json() == SERIES
    assert resp.headers["cache-control"] == "no-store"


def test_api_proxy_upstream_down(monkeypatch) -> None:
    def _down(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    client = httpx.AsyncClient(transport=httpx.MockTransport(_down), base_url="http://api.test")
    monkeypatch.setattr(ui_server, "_httpx_client", client)

    resp = TestClient(ui_server.app).get("/api/latest")

    assert resp.status_code == 502
