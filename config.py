#!/usr/bin/env python3
from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional
from urllib.parse import urlparse

from dotenv import load_dotenv

from errors import ConfigurationError


load_dotenv()


def _env(name: str, default: str = "") -> str:
    v = os.getenv(name)
    return default if v is None else v


def _env_int(name: str, default: int) -> int:
    v = os.getenv(name)
    if v is None or v == "":
        return default
    try:
        return int(v)
    except Exception:
        return default


def _env_float(name: str, default: float) -> float:
    v = os.getenv(name)
    if v is None or v == "":
        return default
    try:
        return float(v)
    except Exception:
        return default


def _env_bool(name: str, default: bool) -> bool:
    v = os.getenv(name)
    if v is None or v == "":
        return default
    return str(v).strip().lower() in ("1", "true", "yes", "y", "on")


DEFAULT_DATABASE_ID = "RideauCanalDB"
DEFAULT_CONTAINER_ID = "SensorAggregations"
DEFAULT_PORT = 3000


def _account_from_endpoint(endpoint: str) -> Optional[str]:
    # Cosmos DB for MongoDB uses the account name (first host label) as the user.
    host = urlparse(endpoint).hostname or ""
    label = host.split(".", 1)[0]
    return label or None


@dataclass(frozen=True)
class StoreSettings:
    endpoint: str
    key: str
    username: Optional[str]
    database_id: str = DEFAULT_DATABASE_ID
    container_id: str = DEFAULT_CONTAINER_ID
    timeout_ms: int = 5000


@dataclass(frozen=True)
class ApiSettings:
    host: str = "0.0.0.0"
    port: int = DEFAULT_PORT


@dataclass(frozen=True)
class UiSettings:
    host: str = "0.0.0.0"
    port: int = 8000
    api_upstream: str = "http://127.0.0.1:3000"
    refresh_sec: float = 30.0
    http_timeout_sec: float = 10.0


def load_store_settings() -> StoreSettings:
    """Read store connection settings from the environment.

    COSMOS_ENDPOINT and COSMOS_KEY are required; everything else has a default.
    Raises ConfigurationError when a required value is missing.
    """
    endpoint = _env("COSMOS_ENDPOINT").strip()
    key = _env("COSMOS_KEY").strip()
    if not endpoint or not key:
        raise ConfigurationError(
            "Missing Cosmos DB credentials. Please set COSMOS_ENDPOINT and COSMOS_KEY in your .env file."
        )

    username = _env("COSMOS_USERNAME").strip() or _account_from_endpoint(endpoint)
    return StoreSettings(
        endpoint=endpoint,
        key=key,
        username=username,
        database_id=_env("COSMOS_DATABASE_ID").strip() or DEFAULT_DATABASE_ID,
        container_id=_env("COSMOS_CONTAINER_ID").strip() or DEFAULT_CONTAINER_ID,
        timeout_ms=_env_int("COSMOS_TIMEOUT_MS", 5000),
    )


def load_api_settings() -> ApiSettings:
    return ApiSettings(
        host=_env("HOST", "0.0.0.0"),
        port=_env_int("PORT", DEFAULT_PORT),
    )


def load_ui_settings() -> UiSettings:
    refresh = _env_float("UI_REFRESH_SEC", 30.0)
    if refresh <= 0:
        refresh = 30.0
    return UiSettings(
        host=_env("UI_HOST", "0.0.0.0"),
        port=_env_int("UI_PORT", 8000),
        api_upstream=_env("UI_API_UPSTREAM", "http://127.0.0.1:3000").rstrip("/"),
        refresh_sec=refresh,
        http_timeout_sec=_env_float("UI_HTTP_TIMEOUT_SEC", 10.0),
    )


def debug_enabled() -> bool:
    return _env_bool("DEBUG", False)
