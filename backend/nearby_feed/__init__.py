"""
nearby_feed
~~~~~~~~~~~
Location-aware discovery feed: gate noisy location / signal updates, run
one places query at a time, merge local + remote results and hand the
capped feed to a single subscriber.
"""

from __future__ import annotations

from .categories import popular_categories, suggest_categories
from .change_gate import ChangeGate
from .exceptions import (
    NearbyFeedError,
    PermissionDenied,
    ProviderFailure,
    SourceUnavailable,
)
from .geo import distance_km
from .merge import MergeRanker
from .models import (
    BusinessRecord,
    Coordinate,
    Feed,
    LocationReading,
    Origin,
    SignalReading,
)
from .pipeline import PipelineSettings, PipelineStatus, UpdatePipeline
from .query_guard import QueryGuard
from .visits import Visit, VisitLog

__all__ = [
    "BusinessRecord",
    "ChangeGate",
    "Coordinate",
    "Feed",
    "LocationReading",
    "MergeRanker",
    "NearbyFeedError",
    "Origin",
    "PermissionDenied",
    "PipelineSettings",
    "PipelineStatus",
    "ProviderFailure",
    "QueryGuard",
    "SignalReading",
    "SourceUnavailable",
    "UpdatePipeline",
    "Visit",
    "VisitLog",
    "distance_km",
    "popular_categories",
    "suggest_categories",
]
