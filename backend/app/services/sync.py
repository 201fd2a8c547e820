"""Merge locally queued scoring events into the canonical log."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Protocol, Sequence

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import SYNC_EVENT_TIMEOUT_SECONDS
from ..models import Match, ScoringEvent as ScoringEventRow
from ..time_utils import parse_timestamp, to_naive_utc
from .scoring import next_seq
from .validation import ValidationError, validate_sync_event

logger = logging.getLogger(__name__)

LOCAL_ONLY = "local-only"
REMOTE = "remote"


@dataclass
class SyncResult:
    success: bool
    synced: int = 0
    failed: int = 0
    errors: List[str] = field(default_factory=list)
    mode: str = REMOTE
    failed_event_ids: List[str] = field(default_factory=list)
    synced_event_ids: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "success": self.success,
            "synced": self.synced,
            "failed": self.failed,
            "mode": self.mode,
        }
        if self.errors:
            data["errors"] = list(self.errors)
        if self.failed_event_ids:
            data["failedEventIds"] = list(self.failed_event_ids)
        return data


@dataclass(frozen=True)
class IncomingEvent:
    id: str
    type: str
    hole_number: Optional[int]
    data: Dict[str, Any]
    timestamp: datetime
    device_id: Optional[str] = None


class CanonicalStore(Protocol):
    async def upsert_event(self, match_id: str, event: IncomingEvent) -> bool:
        """Store ``event``; return False when its id was already present."""

    async def mark_synced(self, match_id: str, when: datetime) -> None:
        ...

    async def commit(self) -> None:
        ...


def parse_incoming(raw: Any, *, device_id: str | None = None) -> IncomingEvent:
    checked = validate_sync_event(raw)
    try:
        timestamp = parse_timestamp(checked["timestamp"])
    except ValueError as exc:
        raise ValidationError(str(exc)) from None
    return IncomingEvent(
        id=checked["id"],
        type=checked["type"],
        hole_number=checked["holeNumber"],
        data=checked["data"],
        timestamp=timestamp,
        device_id=device_id,
    )


class SqlCanonicalStore:
    """Canonical log backed by the ``scoring_event`` table.

    Every upsert runs inside a SAVEPOINT so a failed event leaves the rest of
    the batch intact.
    """

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def upsert_event(self, match_id: str, event: IncomingEvent) -> bool:
        async with self.session.begin_nested():
            existing = await self.session.get(ScoringEventRow, event.id)
            if existing is not None:
                if existing.match_id != match_id:
                    raise ValueError(
                        f"event id already used by match {existing.match_id}"
                    )
                if existing.synced_at is None:
                    existing.synced_at = to_naive_utc(datetime.now(timezone.utc))
                return False

            data = dict(event.data)
            previous = data.pop("previousState", None)
            self.session.add(
                ScoringEventRow(
                    id=event.id,
                    match_id=match_id,
                    seq=await next_seq(self.session, match_id),
                    type=event.type,
                    hole_number=event.hole_number,
                    payload=data,
                    previous_state=previous if isinstance(previous, dict) else None,
                    created_at=to_naive_utc(event.timestamp),
                    synced_at=to_naive_utc(datetime.now(timezone.utc)),
                    device_id=event.device_id,
                )
            )
            await self.session.flush()
        return True

    async def mark_synced(self, match_id: str, when: datetime) -> None:
        match = await self.session.get(Match, match_id)
        if match is not None:
            match.last_synced_at = to_naive_utc(when)

    async def commit(self) -> None:
        await self.session.commit()


async def reconcile(
    match_id: str,
    events: Sequence[Any],
    store: CanonicalStore | None,
    *,
    device_id: str | None = None,
    timeout: float | None = None,
) -> SyncResult:
    """Upsert each event into ``store``, collecting failures per event.

    A replayed id counts as synced. Without a store every event is
    acknowledged in local-only mode.
    """

    if store is None:
        return SyncResult(success=True, synced=len(events), mode=LOCAL_ONLY)

    limit = SYNC_EVENT_TIMEOUT_SECONDS if timeout is None else timeout
    result = SyncResult(success=True)

    for raw in events:
        raw_id = raw.get("id") if isinstance(raw, dict) else None
        label = raw_id if isinstance(raw_id, str) and raw_id else "<unknown>"
        try:
            event = parse_incoming(raw, device_id=device_id)
            await asyncio.wait_for(store.upsert_event(match_id, event), timeout=limit)
        except ValidationError as exc:
            _fail(result, label, exc.detail)
        except asyncio.TimeoutError:
            _fail(result, label, f"timed out after {limit:g}s")
        except (SQLAlchemyError, ValueError) as exc:
            _fail(result, label, str(exc))
        else:
            result.synced += 1
            result.synced_event_ids.append(event.id)

    if result.synced > 0:
        await store.mark_synced(match_id, datetime.now(timezone.utc))
    await store.commit()

    result.success = result.failed == 0
    return result


def _fail(result: SyncResult, event_id: str, message: str) -> None:
    logger.warning("Sync of event %s failed: %s", event_id, message)
    result.failed += 1
    result.errors.append(f"Event {event_id}: {message}")
    result.failed_event_ids.append(event_id)
