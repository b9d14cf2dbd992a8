#!/usr/bin/env python3
"""Read operations over the aggregation store.

Two queries back the API: the newest document per location (taken from a
bounded newest-first sample) and the documents of a recent time window,
optionally narrowed to one location.
"""
from __future__ import annotations

import logging
import math
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from pymongo import ASCENDING, DESCENDING
from pymongo.collection import Collection
from pymongo.errors import PyMongoError

from errors import UpstreamUnavailable


logger = logging.getLogger("query")

# Newest-first sample used to pick the latest document per location. A location
# whose newest document is older than this many documents overall is missed.
LATEST_SAMPLE_SIZE = 100

DEFAULT_HISTORY_HOURS = 6.0
UNKNOWN_LOCATION = "Unknown"

# The store's ObjectId is not JSON serialisable and not part of the document contract.
_PROJECTION = {"_id": 0}


def location_key(doc: Dict[str, Any]) -> str:
    return doc.get("location") or UNKNOWN_LOCATION


def latest_per_location(docs: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Keep the first document seen per location.

    ``docs`` must already be ordered newest first, so the first hit per location
    is the newest one in the sample.
    """
    latest: Dict[str, Dict[str, Any]] = {}
    for doc in docs:
        key = location_key(doc)
        if key not in latest:
            latest[key] = doc
    return list(latest.values())


def get_latest(collection: Collection, sample_size: int = LATEST_SAMPLE_SIZE) -> List[Dict[str, Any]]:
    try:
        cursor = collection.find({}, _PROJECTION).sort("windowEnd", DESCENDING).limit(int(sample_size))
        docs = list(cursor)
    except PyMongoError as e:
        raise UpstreamUnavailable(f"latest query failed: {e}") from e
    return latest_per_location(docs)


def coerce_hours(raw: Any, default: float = DEFAULT_HISTORY_HOURS) -> float:
    """Turn the ``hours`` query value into a number of hours.

    Missing, empty, zero, NaN, infinite and non-numeric inputs fall back to the
    default. Negative values are passed through.
    """
    if raw is None or isinstance(raw, bool):
        return default
    try:
        hours = float(str(raw).strip()) if isinstance(raw, str) else float(raw)
    except (TypeError, ValueError):
        return default
    if hours == 0 or math.isnan(hours) or math.isinf(hours):
        return default
    return hours


def iso_utc(dt: datetime) -> str:
    """Format as ``YYYY-MM-DDTHH:MM:SS.mmmZ``, the layout stored in ``windowEnd``."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def history_since(hours: float, now: Optional[datetime] = None) -> str:
    if now is None:
        now = datetime.now(timezone.utc)
    try:
        since = now - timedelta(hours=hours)
    except OverflowError:
        # Window reaches past the representable range; clamp to its edge.
        since = (datetime.min if hours > 0 else datetime.max).replace(tzinfo=timezone.utc)
    return iso_utc(since)


# -------------------- History filter builder --------------------


def window_predicate(since: str) -> Dict[str, Any]:
    return {"windowEnd": {"$gte": since}}


def location_predicate(location: Optional[str]) -> Optional[Dict[str, Any]]:
    if not isinstance(location, str) or location == "":
        return None
    return {"location": {"$eq": location}}


def build_history_filter(since: str, location: Optional[str] = None) -> Dict[str, Any]:
    """Compose the window predicate with the optional location predicate.

    Values travel as filter document values, never as query text.
    """
    base = window_predicate(since)
    extra = location_predicate(location)
    if extra is None:
        return base
    return {"$and": [base, extra]}


def get_history(
    collection: Collection,
    location: Optional[str] = None,
    hours: Any = None,
    now: Optional[datetime] = None,
) -> List[Dict[str, Any]]:
    h = coerce_hours(hours)
    since = history_since(h, now=now)
    query = build_history_filter(since, location)
    logger.debug("history query location=%r hours=%s since=%s", location, h, since)
    try:
        return list(collection.find(query, _PROJECTION).sort("windowEnd", ASCENDING))
    except PyMongoError as e:
        raise UpstreamUnavailable(f"history query failed: {e}") from e
