from __future__ import annotations

import asyncio
import re
from datetime import datetime, timezone

import httpx

import dashboard
from dashboard import DASH, ERROR_HTML, NO_DATA_HTML, LatestStatusRenderer, RenderState


def _locations(cards_html: str) -> list:
    return re.findall(r'<div class="status-location">([^<]*)</div>', cards_html)


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="http://api.test")


def _refresh(renderer: LatestStatusRenderer, handler) -> None:
    async def _go() -> None:
        async with _client(handler) as client:
            await renderer.refresh(client)

    asyncio.run(_go())


def _fixed_clock() -> datetime:
    return datetime(2025, 1, 15, 9, 5)


def test_priority_order_then_alphabetical() -> None:
    docs = [{"location": loc} for loc in ["NAC", "Dows Lake", "Zebra", "Fifth Avenue", "Aardvark"]]

    ordered = [d["location"] for d in dashboard.sort_by_location_priority(docs)]

    assert ordered == ["Dows Lake", "Fifth Avenue", "NAC", "Aardvark", "Zebra"]


def test_cards_render_in_priority_order() -> None:
    renderer = LatestStatusRenderer(clock=_fixed_clock)
    body = [{"location": loc, "windowEnd": "2025-01-15T12:00:00Z"} for loc in ["NAC", "Dows Lake", "Zebra", "Fifth Avenue"]]

    _refresh(renderer, lambda request: httpx.Response(200, json=body))

    assert renderer.state is RenderState.RENDERED
    assert _locations(renderer.html) == ["Dows Lake", "Fifth Avenue", "NAC", "Zebra"]
    assert renderer.last_updated == "Last update: 09:05"


def test_caution_is_warning_with_original_label() -> None:
    card = dashboard.render_status_card({"location": "NAC", "safetyStatus": "CAUTION"})

    assert 'class="status-badge status-warning"' in card
    assert "<span>CAUTION</span>" in card


def test_badge_classification() -> None:
    assert dashboard.classify_safety("Safe") == "status-safe"
    assert dashboard.classify_safety("warning") == "status-warning"
    assert dashboard.classify_safety("Unsafe") == "status-danger"
    assert dashboard.classify_safety("CLOSED") == "status-danger"
    assert dashboard.classify_safety("melting?") == "status-warning"
    assert dashboard.classify_safety(None) == "status-warning"


def test_unknown_defaults_on_card() -> None:
    card = dashboard.render_status_card({})

    assert '<div class="status-location">Unknown</div>' in card
    assert "<span>Unknown</span>" in card
    assert f"Window end: {DASH}" in card


def test_metric_formatting() -> None:
    card = dashboard.render_status_card(
        {
            "location": "Dows Lake",
            "avgSurfaceTemperature": -3.456,
            "maxSnowAccumulation": "n/a",
            "readingCount": 0,
        }
    )

    assert f'Avg ice thickness</span><span class="metric-value">{DASH} cm</span>' in card
    assert f'Max snow</span><span class="metric-value">{DASH} cm</span>' in card
    assert "-3.5 °C" in card
    assert '<span class="metric-value">0</span>' in card


def test_num_or_dash() -> None:
    assert dashboard.num_or_dash(12) == "12.0"
    assert dashboard.num_or_dash("7.26") == "7.3"
    assert dashboard.num_or_dash(None) == DASH
    assert dashboard.num_or_dash("thick") == DASH
    assert dashboard.num_or_dash(float("nan")) == DASH
    assert dashboard.count_or_dash(None) == DASH
    assert dashboard.count_or_dash(0) == "0"


def test_window_end_is_local_clock_time() -> None:
    ts = "2025-01-15T17:45:00.000Z"
    expected = datetime(2025, 1, 15, 17, 45, tzinfo=timezone.utc).astimezone().strftime("%H:%M")

    assert dashboard.format_clock(ts) == expected
    assert dashboard.format_clock("not a time") == DASH
    assert dashboard.format_clock(None) == DASH


def test_document_text_is_escaped() -> None:
    card = dashboard.render_status_card({"location": "<b>NAC</b>", "safetyStatus": "<i>x</i>"})

    assert "<b>" not in card
    assert "&lt;b&gt;NAC&lt;/b&gt;" in card


def test_empty_array_shows_no_data() -> None:
    renderer = LatestStatusRenderer(clock=_fixed_clock)

    _refresh(renderer, lambda request: httpx.Response(200, json=[]))

    assert renderer.html == NO_DATA_HTML
    assert renderer.cards == []
    assert renderer.last_updated is None


def test_non_array_shows_no_data() -> None:
    renderer = LatestStatusRenderer(clock=_fixed_clock)

    _refresh(renderer, lambda request: httpx.Response(200, json={"error": "nope"}))

    assert renderer.html == NO_DATA_HTML


def test_http_error_shows_error_and_drops_cards() -> None:
    renderer = LatestStatusRenderer(clock=_fixed_clock)
    _refresh(renderer, lambda request: httpx.Response(200, json=[{"location": "NAC"}]))
    assert renderer.cards

    _refresh(renderer, lambda request: httpx.Response(500, json={"error": "Failed to fetch latest data"}))

    assert renderer.state is RenderState.ERROR
    assert renderer.html == ERROR_HTML
    assert renderer.cards == []
    assert renderer.last_updated == "Last update: 09:05"


def test_network_error_shows_error() -> None:
    renderer = LatestStatusRenderer(clock=_fixed_clock)

    def _boom(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    _refresh(renderer, _boom)

    assert renderer.html == ERROR_HTML


def test_unranked_locations_sort_case_insensitively() -> None:
    docs = [{"location": loc} for loc in ["Zebra", "apple", "NAC"]]

    ordered = [d["location"] for d in dashboard.sort_by_location_priority(docs)]

    assert ordered == ["NAC", "apple", "Zebra"]


def test_non_string_location_still_renders_cards() -> None:
    renderer = LatestStatusRenderer(clock=_fixed_clock)

    _refresh(renderer, lambda request: httpx.Response(200, json=[{"location": 5}, {"location": "Zebra"}]))

    assert renderer.state is RenderState.RENDERED
    assert _locations(renderer.html) == ["5", "Zebra"]


def test_render_failure_shows_error_placeholder(monkeypatch) -> None:
    renderer = LatestStatusRenderer(clock=_fixed_clock)

    def _broken(doc):
        raise KeyError("avgIceThickness")

    monkeypatch.setattr(dashboard, "render_status_card", _broken)
    _refresh(renderer, lambda request: httpx.Response(200, json=[{"location": "NAC"}]))

    assert renderer.state is RenderState.ERROR
    assert renderer.html == ERROR_HTML


def test_integral_float_count_renders_as_integer() -> None:
    assert dashboard.count_or_dash(12.0) == "12"
    assert dashboard.count_or_dash(12.5) == "12.5"
    assert dashboard.count_or_dash(7) == "7"
