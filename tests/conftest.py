from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterator, List, Optional

import pytest
from pymongo import DESCENDING

import api_server
from query_service import iso_utc
from store import AggregationStore


def _matches(doc: Dict[str, Any], flt: Optional[Dict[str, Any]]) -> bool:
    if not flt:
        return True
    for key, cond in flt.items():
        if key == "$and":
            if not all(_matches(doc, sub) for sub in cond):
                return False
            continue
        value = doc.get(key)
        if isinstance(cond, dict):
            for op, operand in cond.items():
                if op == "$gte" and not (value is not None and value >= operand):
                    return False
                if op == "$eq" and value != operand:
                    return False
        elif value != cond:
            return False
    return True


class FakeCursor:
    def __init__(self, docs: List[Dict[str, Any]]) -> None:
        self._docs = docs

    def sort(self, key: str, direction: int) -> "FakeCursor":
        self._docs.sort(key=lambda d: d.get(key) or "", reverse=direction == DESCENDING)
        return self

    def limit(self, n: int) -> "FakeCursor":
        if n:
            self._docs = self._docs[:n]
        return self

    def __iter__(self) -> Iterator[Dict[str, Any]]:
        return iter(self._docs)


class FakeCollection:
    """In-memory stand-in for the pymongo calls the query service makes."""

    def __init__(self, docs: Optional[List[Dict[str, Any]]] = None, error: Optional[Exception] = None) -> None:
        self.docs = list(docs or [])
        self.error = error
        self.filters: List[Dict[str, Any]] = []

    def find(self, flt: Optional[Dict[str, Any]] = None, projection: Optional[Dict[str, Any]] = None) -> FakeCursor:
        if self.error is not None:
            raise self.error
        self.filters.append(flt or {})
        hidden = {k for k, v in (projection or {}).items() if not v}
        out = [{k: v for k, v in d.items() if k not in hidden} for d in self.docs if _matches(d, flt)]
        return FakeCursor(out)


class FakeDatabase:
    def __init__(self, collection: FakeCollection, error: Optional[Exception] = None) -> None:
        self.collection = collection
        self.error = error
        self.commands: List[str] = []

    def __getitem__(self, name: str) -> FakeCollection:
        return self.collection

    def command(self, name: str) -> Dict[str, Any]:
        self.commands.append(name)
        if self.error is not None:
            raise self.error
        return {"ok": 1.0}


def make_store(docs: Optional[List[Dict[str, Any]]] = None, **kwargs: Any) -> AggregationStore:
    db_error = kwargs.pop("db_error", None)
    coll = FakeCollection(docs, **kwargs)
    return AggregationStore(FakeDatabase(coll, error=db_error), "SensorAggregations")


def doc(location: Optional[str], window_end: str, **fields: Any) -> Dict[str, Any]:
    d: Dict[str, Any] = {"_id": f"{location}-{window_end}", "windowEnd": window_end}
    if location is not None:
        d["location"] = location
    d.update(fields)
    return d


def hours_ago(h: float, now: Optional[datetime] = None) -> str:
    if now is None:
        now = datetime.now(timezone.utc)
    return iso_utc(now - timedelta(hours=h))


@pytest.fixture
def install_store():
    def _install(store: AggregationStore) -> AggregationStore:
        api_server.install_store(store)
        return store

    yield _install
    api_server.install_store(None)
