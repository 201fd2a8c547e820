"""Web push subscription endpoints for trip updates."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Response
from sqlalchemy.ext.asyncio import AsyncSession

from ..db import get_session
from ..exceptions import TripNotFound, http_problem
from ..models import Trip
from ..schemas import PushSubscribeIn, PushSubscriptionOut, PushUnsubscribeIn
from ..services.notifications import (
    delete_push_subscription,
    register_push_subscription,
)
from ..time_utils import coerce_utc


router = APIRouter(prefix="/push", tags=["notifications"])


@router.post("/subscribe", response_model=PushSubscriptionOut, status_code=201)
async def subscribe(body: PushSubscribeIn, session: AsyncSession = Depends(get_session)):
    if body.trip_id is not None and not await session.get(Trip, body.trip_id):
        raise TripNotFound(body.trip_id)

    subscription = await register_push_subscription(
        session,
        endpoint=body.subscription.endpoint,
        p256dh=body.subscription.keys.p256dh,
        auth=body.subscription.keys.auth,
        content_encoding=body.subscription.content_encoding,
        trip_id=body.trip_id,
        player_id=body.player_id,
    )
    return PushSubscriptionOut(
        id=subscription.id,
        endpoint=subscription.endpoint,
        tripId=subscription.trip_id,
        createdAt=coerce_utc(subscription.created_at),
    )


@router.delete("/subscribe", status_code=204)
async def unsubscribe(body: PushUnsubscribeIn, session: AsyncSession = Depends(get_session)):
    removed = await delete_push_subscription(session, body.endpoint)
    if not removed:
        raise http_problem(
            status_code=404,
            detail="push subscription not found",
            code="push_subscription_not_found",
        )
    return Response(status_code=204)
