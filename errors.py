from __future__ import annotations


class DashboardError(Exception):
    """Base class for errors raised by the canal dashboard services."""


class ConfigurationError(DashboardError):
    """Required settings (store endpoint or credential) are missing."""


class UpstreamUnavailable(DashboardError):
    """The aggregation store could not be queried."""
