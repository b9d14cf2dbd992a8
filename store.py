#!/usr/bin/env python3
from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from pymongo import MongoClient
from pymongo.collection import Collection
from pymongo.database import Database

from config import StoreSettings


logger = logging.getLogger("store")


class AggregationStore:
    """Read-only handle on the collection of per-location aggregation documents.

    The client manages its own connection pool; a single instance is shared by
    every request handler.
    """

    def __init__(self, database: Database, container_id: str, client: Optional[MongoClient] = None) -> None:
        self._client = client
        self._database = database
        self._collection = database[container_id]

    @classmethod
    def from_settings(cls, settings: StoreSettings) -> "AggregationStore":
        kwargs: Dict[str, Any] = {
            "password": settings.key,
            "serverSelectionTimeoutMS": int(settings.timeout_ms),
            "retryWrites": False,
        }
        if settings.username:
            kwargs["username"] = settings.username
        client: MongoClient = MongoClient(settings.endpoint, **kwargs)
        logger.info(
            "[store] client created database=%s container=%s", settings.database_id, settings.container_id
        )
        return cls(client[settings.database_id], settings.container_id, client=client)

    @property
    def collection(self) -> Collection:
        return self._collection

    def ping(self) -> None:
        # Raises pymongo errors when the database is unreachable.
        self._database.command("ping")

    def close(self) -> None:
        if self._client is not None:
            try:
                self._client.close()
            finally:
                self._client = None
