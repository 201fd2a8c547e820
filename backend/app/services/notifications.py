"""Push subscriptions and web push delivery for trip updates."""

from __future__ import annotations

import asyncio
import json
import logging
import uuid
from typing import Any, Dict

from pywebpush import WebPushException, webpush
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from .. import config
from ..models import Match, PushSubscription, Team
from ..scoring.events import Winner
from ..scoring.match_play import MatchState


LOGGER = logging.getLogger(__name__)


async def register_push_subscription(
    session: AsyncSession,
    *,
    endpoint: str,
    p256dh: str,
    auth: str,
    content_encoding: str | None = None,
    trip_id: str | None = None,
    player_id: str | None = None,
) -> PushSubscription:
    """Store a subscription. A known endpoint is updated in place."""

    encoding = content_encoding or "aes128gcm"

    existing = (
        await session.execute(
            select(PushSubscription).where(PushSubscription.endpoint == endpoint)
        )
    ).scalar_one_or_none()

    if existing:
        existing.p256dh = p256dh
        existing.auth = auth
        existing.content_encoding = encoding
        existing.trip_id = trip_id
        existing.player_id = player_id
        await session.commit()
        await session.refresh(existing)
        return existing

    subscription = PushSubscription(
        id=uuid.uuid4().hex,
        endpoint=endpoint,
        p256dh=p256dh,
        auth=auth,
        content_encoding=encoding,
        trip_id=trip_id,
        player_id=player_id,
    )
    session.add(subscription)
    await session.commit()
    await session.refresh(subscription)
    return subscription


async def delete_push_subscription(session: AsyncSession, endpoint: str) -> bool:
    result = await session.execute(
        delete(PushSubscription).where(PushSubscription.endpoint == endpoint)
    )
    await session.commit()
    return bool(result.rowcount)


async def notify_match_closed(
    session: AsyncSession, match: Match, state: MatchState
) -> int:
    """Push the final result of ``match`` to the trip's subscribers."""

    names = {
        team.id: team.name
        for team in (
            await session.execute(
                select(Team).where(Team.id.in_([match.team_a_id, match.team_b_id]))
            )
        ).scalars()
    }
    team_a = names.get(match.team_a_id, "Team A")
    team_b = names.get(match.team_b_id, "Team B")

    if state.result == Winner.A:
        body = f"{team_a} beat {team_b} {state.margin}"
    elif state.result == Winner.B:
        body = f"{team_b} beat {team_a} {state.margin}"
    else:
        body = f"{team_a} and {team_b} halved their match"

    payload = {
        "title": "Match final",
        "body": body,
        "url": f"/matches/{match.id}/",
        "matchId": match.id,
        "tripId": match.trip_id,
        "points": dict(state.points),
    }
    return await notify_trip(session, match.trip_id, payload)


async def notify_trip(session: AsyncSession, trip_id: str, payload: Dict[str, Any]) -> int:
    """Send ``payload`` to every subscription for ``trip_id``.

    Returns the number of deliveries attempted.
    """

    if not _push_available():
        return 0

    subscriptions = (
        await session.execute(
            select(PushSubscription).where(PushSubscription.trip_id == trip_id)
        )
    ).scalars().all()
    if not subscriptions:
        return 0

    invalid_ids: list[str] = []
    for subscription in subscriptions:
        try:
            await _send_push(subscription, payload)
        except _InvalidSubscriptionError:
            invalid_ids.append(subscription.id)

    if invalid_ids:
        LOGGER.info("Pruning %d expired push subscription(s)", len(invalid_ids))
        await session.execute(
            delete(PushSubscription).where(PushSubscription.id.in_(invalid_ids))
        )
        await session.commit()
    return len(subscriptions)


def _push_available() -> bool:
    return bool(config.VAPID_PRIVATE_KEY and config.VAPID_PUBLIC_KEY)


class _InvalidSubscriptionError(Exception):
    """Raised when a push subscription is no longer valid."""


async def _send_push(subscription: PushSubscription, payload: Dict[str, Any]) -> None:
    subscription_info = {
        "endpoint": subscription.endpoint,
        "keys": {"p256dh": subscription.p256dh, "auth": subscription.auth},
    }
    try:
        await asyncio.to_thread(
            webpush,
            subscription_info=subscription_info,
            data=json.dumps(payload),
            vapid_private_key=config.VAPID_PRIVATE_KEY,
            vapid_claims={"sub": config.VAPID_SUBJECT},
            content_encoding=subscription.content_encoding,
        )
    except WebPushException as exc:
        status = getattr(getattr(exc, "response", None), "status_code", None)
        if status in {404, 410}:
            raise _InvalidSubscriptionError from exc
        LOGGER.warning("Web push delivery failed: %s", exc)
