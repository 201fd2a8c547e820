"""Application services: persistence, aggregation and sync around the scoring engines."""

from .validation import (
    ValidationError,
    validate_participants_for_format,
    validate_sync_payload,
)
from .tournaments import (
    TripSettings,
    TeamRef,
    UnknownTeamError,
    aggregate,
    rank_by_win_percentage,
    roster_listing,
)
from .sync import SyncResult, reconcile

__all__ = [
    "ValidationError",
    "validate_participants_for_format",
    "validate_sync_payload",
    "TripSettings",
    "TeamRef",
    "UnknownTeamError",
    "aggregate",
    "rank_by_win_percentage",
    "roster_listing",
    "SyncResult",
    "reconcile",
]
