"""Client side of score sync: push a device's unsynced events upstream."""

from __future__ import annotations

import logging
from typing import Any, Dict, List

import httpx

from ..config import API_PREFIX
from ..scoring.events import EventLog, ScoringEvent, SyncStatus
from .sync import SyncResult

logger = logging.getLogger(__name__)

SYNC_PATH = f"{API_PREFIX}/v0/sync/scores"


def event_to_wire(event: ScoringEvent) -> Dict[str, Any]:
    data = dict(event.payload)
    if event.previous_state is not None:
        data["previousState"] = event.previous_state.to_dict()
    wire: Dict[str, Any] = {
        "id": event.id,
        "type": event.type.value,
        "data": data,
        "timestamp": event.timestamp.isoformat(),
    }
    if event.hole_number is not None:
        wire["holeNumber"] = event.hole_number
    return wire


def pending_events(log: EventLog) -> List[ScoringEvent]:
    return [e for e in log.events if e.sync_status == SyncStatus.LOCAL]


async def push_pending_events(
    client: httpx.AsyncClient,
    match_id: str,
    log: EventLog,
    *,
    path: str = SYNC_PATH,
    device_id: str | None = None,
) -> SyncResult:
    """POST the log's local events and mark the acknowledged ones as synced.

    Events the server reports as failed stay local so the next call retries
    them. Transport errors propagate to the caller.
    """

    pending = pending_events(log)
    if not pending:
        return SyncResult(success=True)

    headers = {"X-Device-Id": device_id} if device_id else None
    response = await client.post(
        path,
        json={"matchId": match_id, "events": [event_to_wire(e) for e in pending]},
        headers=headers,
    )
    response.raise_for_status()
    body = response.json()

    failed_ids = set(body.get("failedEventIds") or [])
    for event in pending:
        if event.id not in failed_ids:
            event.sync_status = SyncStatus.SYNCED

    result = SyncResult(
        success=bool(body.get("success")),
        synced=int(body.get("synced", 0)),
        failed=int(body.get("failed", 0)),
        errors=list(body.get("errors") or []),
        mode=body.get("mode", "remote"),
        failed_event_ids=sorted(failed_ids),
    )
    if result.failed:
        logger.warning(
            "Sync for match %s left %d event(s) pending", match_id, result.failed
        )
    return result
