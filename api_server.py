#!/usr/bin/env python3
from __future__ import annotations

import logging
import sys
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, Query
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

import query_service
from config import debug_enabled, load_api_settings, load_store_settings
from errors import ConfigurationError
from logging_setup import setup_logging
from store import AggregationStore


logger = logging.getLogger("api")

app = FastAPI(title="Rideau Canal Dashboard API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["GET"],
    allow_headers=["*"],
)

_store: Optional[AggregationStore] = None


def install_store(store: Optional[AggregationStore]) -> None:
    global _store
    _store = store


def get_store() -> AggregationStore:
    if _store is None:
        raise RuntimeError("aggregation store not initialised")
    return _store


@app.on_event("startup")
def _startup() -> None:
    # ConfigurationError propagates so the server refuses to start.
    if _store is None:
        install_store(AggregationStore.from_settings(load_store_settings()))


@app.on_event("shutdown")
def _shutdown() -> None:
    if _store is not None:
        _store.close()


@app.get("/api/health")
def health() -> JSONResponse:
    try:
        get_store().ping()
        return JSONResponse(content={"status": "ok"})
    except Exception as e:
        logger.error("Cosmos health check failed: %s", e)
        return JSONResponse(
            status_code=500,
            content={"status": "error", "message": "Cosmos DB is not reachable"},
        )


@app.get("/api/latest")
def latest() -> JSONResponse:
    """Newest aggregation document per location."""
    try:
        docs: List[Dict[str, Any]] = query_service.get_latest(get_store().collection)
        return JSONResponse(content=jsonable_encoder(docs))
    except Exception:
        logger.exception("Error in /api/latest")
        return JSONResponse(status_code=500, content={"error": "Failed to fetch latest data"})


@app.get("/api/history")
def history(
    location: Optional[str] = Query(None),
    hours: Optional[str] = Query(None),
) -> JSONResponse:
    """Documents with windowEnd inside the last ``hours`` (default 6), oldest first."""
    try:
        docs = query_service.get_history(get_store().collection, location=location, hours=hours)
        return JSONResponse(content=jsonable_encoder(docs))
    except Exception:
        logger.exception("Error in /api/history location=%r hours=%r", location, hours)
        return JSONResponse(status_code=500, content={"error": "Failed to fetch history"})


def main() -> int:
    import uvicorn

    # Rotating file logs (LOG_DIR/api.log) + optional stdout
    setup_logging("api", debug_default=debug_enabled())

    try:
        store_settings = load_store_settings()
    except ConfigurationError as e:
        logger.error("ERROR: %s", e)
        return 1

    api = load_api_settings()
    install_store(AggregationStore.from_settings(store_settings))

    logger.info(
        "[start] api host=%s port=%s database=%s container=%s",
        api.host,
        api.port,
        store_settings.database_id,
        store_settings.container_id,
    )
    uvicorn.run(app, host=api.host, port=api.port, log_level="info", log_config=None)
    return 0


if __name__ == "__main__":
    sys.exit(main())
