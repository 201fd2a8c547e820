import logging
import uuid
from typing import Awaitable

from fastapi import APIRouter, Depends, Response
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..cache import standings_cache
from ..db import get_session
from ..exceptions import (
    MatchClosed,
    MatchIntegrity,
    MatchNotFound,
    TripNotFound,
    UnknownTeam,
    http_problem,
)
from ..models import Match, MatchParticipant, Player, Team, TeeSet, Trip
from ..schemas import (
    CloseIn,
    HoleIn,
    HoleResultOut,
    MatchCreate,
    MatchOut,
    MatchStateOut,
    ParticipantOut,
    ScoringEventOut,
)
from ..scoring import handicap
from ..scoring.events import EventLog, InvalidTransition, MatchClosedError, NothingToUndo
from ..scoring.match_play import MatchIntegrityError, state_for_log
from ..services import scoring
from ..services.notifications import notify_match_closed
from ..services.scoring import EventIdConflict, ScoringOutcome
from ..services.validation import ValidationError, validate_participants_for_format
from ..time_utils import coerce_utc
from .streams import broadcast

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/matches", tags=["matches"])


async def _get_match(session: AsyncSession, mid: str) -> Match:
    match = await session.get(Match, mid)
    if not match:
        raise MatchNotFound(mid)
    return match


async def _match_out(
    session: AsyncSession, match: Match, log: EventLog | None = None
) -> MatchOut:
    if log is None:
        log = await scoring.load_log(session, match.id)
    state = state_for_log(log, match.format, points_value=match.points_value)
    sides = await scoring.load_sides(session, match.id)
    tables = await scoring.stroke_tables(session, match)

    return MatchOut(
        id=match.id,
        tripId=match.trip_id,
        format=match.format,
        teamAId=match.team_a_id,
        teamBId=match.team_b_id,
        teeSetId=match.tee_set_id,
        status=match.status,
        pointsValue=match.points_value,
        matchOrder=match.match_order,
        participants=[
            ParticipantOut(
                side=p.side,
                playerIds=list(p.player_ids or []),
                courseHandicaps=dict(p.course_handicaps or {}),
            )
            for p in sorted(sides.values(), key=lambda p: p.side)
        ],
        holes=[HoleResultOut(**r.to_dict()) for r in log.results],
        events=[
            ScoringEventOut(
                id=e.id,
                type=e.type.value,
                holeNumber=e.hole_number,
                payload=e.payload,
                previousState=HoleResultOut(**e.previous_state.to_dict())
                if e.previous_state
                else None,
                timestamp=e.timestamp,
                syncStatus=e.sync_status.value,
            )
            for e in log.events
        ],
        state=MatchStateOut(**state.to_dict()),
        strokeTables=tables.tables,
        strokeAllocationError=tables.error,
        canUndo=log.can_undo,
        canRedo=log.can_redo,
        lastSyncedAt=coerce_utc(match.last_synced_at),
    )


async def _score(session: AsyncSession, match: Match, action: Awaitable[ScoringOutcome]) -> MatchOut:
    try:
        outcome = await action
    except MatchClosedError as exc:
        raise MatchClosed(str(exc))
    except MatchIntegrityError as exc:
        logger.error("Match %s failed its status check: %s", match.id, exc)
        raise MatchIntegrity(str(exc))
    except InvalidTransition as exc:
        raise http_problem(status_code=409, detail=str(exc), code="invalid_transition")
    except NothingToUndo as exc:
        raise http_problem(status_code=409, detail=str(exc), code="nothing_to_undo")
    except EventIdConflict as exc:
        raise http_problem(status_code=409, detail=str(exc), code="event_id_conflict")
    except ValueError as exc:
        raise http_problem(status_code=422, detail=str(exc), code="invalid_score")

    await standings_cache.invalidate_trip(match.trip_id)
    await broadcast(
        match.id,
        {
            "matchId": match.id,
            "events": [e.id for e in outcome.applied],
            "state": outcome.state.to_dict(),
        },
    )
    if outcome.closed_now:
        await notify_match_closed(session, match, outcome.state)
    return await _match_out(session, match, outcome.log)


@router.post("", response_model=MatchOut, status_code=201)
async def create_match(body: MatchCreate, session: AsyncSession = Depends(get_session)):
    trip = await session.get(Trip, body.tripId)
    if not trip:
        raise TripNotFound(body.tripId)

    team_ids = set(
        (await session.execute(select(Team.id).where(Team.trip_id == trip.id))).scalars().all()
    )
    for team_id in (body.teamAId, body.teamBId):
        if team_id not in team_ids:
            raise UnknownTeam(f"team '{team_id}' is not part of trip '{trip.id}'")
    if body.teamAId == body.teamBId:
        raise http_problem(
            status_code=422,
            detail="a match needs two different teams",
            code="match_same_team",
        )

    side_players = {p.side: list(p.playerIds) for p in body.participants}
    try:
        validate_participants_for_format(body.format, side_players)
    except ValidationError as e:
        raise http_problem(
            status_code=422,
            detail=e.detail,
            code="match_invalid_participants",
        )

    all_ids = [pid for ids in side_players.values() for pid in ids]
    players = {
        p.id: p
        for p in (
            await session.execute(select(Player).where(Player.id.in_(all_ids)))
        ).scalars().all()
    }
    team_for_side = {"A": body.teamAId, "B": body.teamBId}
    for side, ids in side_players.items():
        for pid in ids:
            player = players.get(pid)
            if not player or player.trip_id != trip.id:
                raise http_problem(
                    status_code=422,
                    detail=f"player '{pid}' is not on the trip roster",
                    code="match_unknown_player",
                )
            if player.team_id != team_for_side[side]:
                raise http_problem(
                    status_code=422,
                    detail=f"player '{pid}' does not play for side {side}'s team",
                    code="match_player_wrong_team",
                )

    tee = None
    if body.teeSetId is not None:
        tee = await session.get(TeeSet, body.teeSetId)
        if not tee:
            raise http_problem(
                status_code=404,
                detail="tee set not found",
                code="tee_set_not_found",
            )

    def _course_handicap(player: Player) -> int:
        if tee is None:
            return handicap.round_half_away_from_zero(player.handicap_index)
        try:
            return handicap.course_handicap(
                player.handicap_index, tee.slope_rating, tee.course_rating, tee.par
            )
        except handicap.InvalidCourseData as exc:
            raise http_problem(
                status_code=422,
                detail=exc.detail,
                code="invalid_course_data",
            )

    match = Match(
        id=uuid.uuid4().hex,
        trip_id=trip.id,
        format=body.format,
        team_a_id=body.teamAId,
        team_b_id=body.teamBId,
        tee_set_id=body.teeSetId,
        status="not_started",
        points_value=body.pointsValue,
        match_order=body.matchOrder,
    )
    session.add(match)
    await session.flush()
    for side, ids in sorted(side_players.items()):
        session.add(
            MatchParticipant(
                id=uuid.uuid4().hex,
                match_id=match.id,
                side=side,
                player_ids=ids,
                course_handicaps={pid: _course_handicap(players[pid]) for pid in ids},
            )
        )
    await session.commit()
    await standings_cache.invalidate_trip(trip.id)
    return await _match_out(session, match, EventLog(match.id))


@router.get("/{mid}", response_model=MatchOut)
async def get_match(mid: str, session: AsyncSession = Depends(get_session)):
    match = await _get_match(session, mid)
    return await _match_out(session, match)


# DELETE /api/v0/matches/{mid}
@router.delete("/{mid}", status_code=204)
async def delete_match(mid: str, session: AsyncSession = Depends(get_session)):
    match = await _get_match(session, mid)
    trip_id = match.trip_id
    await scoring.delete_match(session, match)
    await standings_cache.invalidate_trip(trip_id)
    return Response(status_code=204)


# POST /api/v0/matches/{mid}/holes
@router.post("/{mid}/holes", response_model=MatchOut)
async def record_hole(mid: str, body: HoleIn, session: AsyncSession = Depends(get_session)):
    match = await _get_match(session, mid)
    return await _score(
        session,
        match,
        scoring.record_hole(
            session,
            match,
            body.holeNumber,
            winner=body.winner,
            strokes=body.strokes,
            event_id=body.eventId,
            timestamp=body.timestamp,
        ),
    )


@router.post("/{mid}/undo", response_model=MatchOut)
async def undo(mid: str, session: AsyncSession = Depends(get_session)):
    match = await _get_match(session, mid)
    return await _score(session, match, scoring.undo_last(session, match))


@router.post("/{mid}/redo", response_model=MatchOut)
async def redo(mid: str, session: AsyncSession = Depends(get_session)):
    match = await _get_match(session, mid)
    return await _score(session, match, scoring.redo_last(session, match))


@router.post("/{mid}/close", response_model=MatchOut)
async def close(
    mid: str, body: CloseIn | None = None, session: AsyncSession = Depends(get_session)
):
    match = await _get_match(session, mid)
    conceded_to = body.concededTo if body else None
    return await _score(
        session, match, scoring.close_match(session, match, conceded_to=conceded_to)
    )


@router.post("/{mid}/reopen", response_model=MatchOut)
async def reopen(mid: str, session: AsyncSession = Depends(get_session)):
    match = await _get_match(session, mid)
    return await _score(session, match, scoring.reopen_match(session, match))
