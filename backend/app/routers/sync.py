"""Offline score sync endpoints used by scorer devices."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, Header, Request
from sqlalchemy.ext.asyncio import AsyncSession

from .. import db
from ..cache import standings_cache
from ..exceptions import MatchIntegrity, MatchNotFound, http_problem
from ..models import Match
from ..scoring.match_play import MatchIntegrityError
from ..schemas import SyncHealthOut
from ..services import scoring
from ..services.notifications import notify_match_closed
from ..services.sync import SqlCanonicalStore, reconcile
from ..services.validation import ValidationError, validate_sync_payload
from .streams import broadcast

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/sync", tags=["sync"])


@router.post("/scores")
async def sync_scores(
    request: Request,
    session: Optional[AsyncSession] = Depends(db.get_optional_session),
    x_device_id: Optional[str] = Header(default=None),
):
    try:
        body = await request.json()
    except ValueError:
        body = None
    try:
        match_id, events = validate_sync_payload(body)
    except ValidationError as exc:
        raise http_problem(status_code=400, detail=exc.detail, code="sync_invalid_payload")

    if session is None:
        logger.info("No canonical store configured; acknowledging %d event(s) locally", len(events))
        result = await reconcile(match_id, events, None)
        return result.to_dict()

    match = await session.get(Match, match_id)
    if not match:
        raise MatchNotFound(match_id)
    trip_id = match.trip_id

    result = await reconcile(
        match_id, events, SqlCanonicalStore(session), device_id=x_device_id
    )
    if result.synced > 0:
        await standings_cache.invalidate_trip(trip_id)
        try:
            outcome = await scoring.rebuild_match(session, match)
        except MatchIntegrityError as exc:
            logger.error("Match %s failed its status check after sync: %s", match_id, exc)
            raise MatchIntegrity(str(exc))
        await broadcast(
            match_id,
            {
                "matchId": match_id,
                "events": result.synced_event_ids + [e.id for e in outcome.applied],
                "state": outcome.state.to_dict(),
            },
        )
        if outcome.closed_now:
            await notify_match_closed(session, match, outcome.state)
    return result.to_dict()


@router.get("/scores", response_model=SyncHealthOut)
async def sync_health():
    return SyncHealthOut(
        status="ok",
        endpoint="score-sync",
        timestamp=datetime.now(timezone.utc),
        hasRemoteDb=db.is_configured(),
    )
