import uuid

from fastapi import APIRouter, Depends
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..cache import PLAYER_STATS, STANDINGS, standings_cache
from ..db import get_session
from ..exceptions import PlayerNotFound, TripNotFound, UnknownTeam, http_problem
from ..models import Player, Team, Trip
from ..schemas import (
    PairingValidationOut,
    PairingsValidateIn,
    PlayerCreate,
    PlayerOut,
    PlayerRecordOut,
    PlayerStatsListOut,
    PlayerUpdate,
    StandingsOut,
    TeamOut,
    TeamStandingOut,
    TripCreate,
    TripOut,
)
from ..services.tournaments import (
    MatchSummary,
    PlayerRecord,
    Standings,
    TripSettings,
    UnknownTeamError,
    load_player_stats,
    load_trip_standings,
    rank_by_win_percentage,
    roster_listing,
    validate_pairings,
)
from ..scoring.events import empty_results
from ..scoring.match_play import calculate_match_state
from ..time_utils import coerce_utc

router = APIRouter(prefix="/trips", tags=["trips"])


async def _get_trip(session: AsyncSession, trip_id: str) -> Trip:
    trip = await session.get(Trip, trip_id)
    if not trip:
        raise TripNotFound(trip_id)
    return trip


async def _trip_out(session: AsyncSession, trip: Trip) -> TripOut:
    teams = (
        await session.execute(
            select(Team).where(Team.trip_id == trip.id).order_by(Team.position)
        )
    ).scalars().all()
    return TripOut(
        id=trip.id,
        name=trip.name,
        pointsToWin=TripSettings(teams=(), points_to_win=trip.points_to_win).resolved_points_to_win,
        teams=[TeamOut(id=t.id, name=t.name) for t in teams],
        createdAt=coerce_utc(trip.created_at),
    )


def _player_out(player: Player) -> PlayerOut:
    return PlayerOut(
        id=player.id,
        tripId=player.trip_id,
        teamId=player.team_id,
        name=player.name,
        handicapIndex=player.handicap_index,
    )


@router.post("", response_model=TripOut, status_code=201)
async def create_trip(body: TripCreate, session: AsyncSession = Depends(get_session)):
    trip = Trip(id=uuid.uuid4().hex, name=body.name, points_to_win=body.pointsToWin)
    session.add(trip)
    await session.flush()
    for position, team in enumerate(body.teams):
        session.add(
            Team(id=uuid.uuid4().hex, trip_id=trip.id, name=team.name, position=position)
        )
    await session.commit()
    await session.refresh(trip)
    return await _trip_out(session, trip)


@router.get("/{trip_id}", response_model=TripOut)
async def get_trip(trip_id: str, session: AsyncSession = Depends(get_session)):
    trip = await _get_trip(session, trip_id)
    return await _trip_out(session, trip)


@router.post("/{trip_id}/players", response_model=PlayerOut, status_code=201)
async def add_player(
    trip_id: str, body: PlayerCreate, session: AsyncSession = Depends(get_session)
):
    await _get_trip(session, trip_id)
    if body.teamId is not None:
        team = await session.get(Team, body.teamId)
        if not team or team.trip_id != trip_id:
            raise UnknownTeam(f"team '{body.teamId}' is not part of trip '{trip_id}'")

    player = Player(
        id=uuid.uuid4().hex,
        trip_id=trip_id,
        team_id=body.teamId,
        name=body.name,
        handicap_index=body.handicapIndex,
    )
    session.add(player)
    await session.commit()
    await standings_cache.invalidate_trip(trip_id)
    return _player_out(player)


@router.patch("/{trip_id}/players/{player_id}", response_model=PlayerOut)
async def update_player_index(
    trip_id: str,
    player_id: str,
    body: PlayerUpdate,
    session: AsyncSession = Depends(get_session),
):
    player = await session.get(Player, player_id)
    if not player or player.trip_id != trip_id:
        raise PlayerNotFound(player_id)

    # Existing matches keep the course handicaps snapshotted at creation.
    player.handicap_index = body.handicapIndex
    await session.commit()
    await standings_cache.invalidate_trip(trip_id)
    return _player_out(player)


def _standings_out(trip_id: str, standings: Standings) -> StandingsOut:
    return StandingsOut(
        tripId=trip_id,
        teams=[
            TeamStandingOut(
                teamId=t.team_id,
                name=t.name,
                points=t.points,
                projectedPoints=round(t.projected_points, 3),
                maxPossiblePoints=t.max_possible_points,
                pointsNeeded=t.points_needed,
                matchesWon=t.matches_won,
                matchesLost=t.matches_lost,
                matchesHalved=t.matches_halved,
                matchesInProgress=t.matches_in_progress,
                clinched=t.clinched,
                eliminated=t.eliminated,
            )
            for t in standings.teams
        ],
        pointsToWin=standings.points_to_win,
        matchesTotal=standings.matches_total,
        matchesClosed=standings.matches_closed,
        matchesInProgress=standings.matches_in_progress,
        fairnessScore=standings.fairness_score,
        decided=standings.decided,
        winnerId=standings.winner_id,
    )


@router.get("/{trip_id}/standings", response_model=StandingsOut)
async def get_standings(trip_id: str, session: AsyncSession = Depends(get_session)):
    cached = await standings_cache.get(trip_id, STANDINGS)
    if cached is not None:
        return cached

    trip = await _get_trip(session, trip_id)
    try:
        standings = await load_trip_standings(session, trip)
    except UnknownTeamError as exc:
        raise UnknownTeam(str(exc))
    except ValueError as exc:
        raise http_problem(
            status_code=409,
            detail=str(exc),
            code="standings_inconsistent",
        )

    out = _standings_out(trip_id, standings)
    await standings_cache.put(trip_id, STANDINGS, out)
    return out


def _record_out(record: PlayerRecord) -> PlayerRecordOut:
    return PlayerRecordOut(
        playerId=record.player_id,
        name=record.name,
        teamId=record.team_id,
        matches=record.matches,
        wins=record.wins,
        losses=record.losses,
        halves=record.halves,
        points=record.points,
        winPct=record.win_pct,
        noMatches=record.no_matches,
    )


@router.get("/{trip_id}/players/stats", response_model=PlayerStatsListOut)
async def get_player_stats(trip_id: str, session: AsyncSession = Depends(get_session)):
    cached = await standings_cache.get(trip_id, PLAYER_STATS)
    if cached is not None:
        return cached

    trip = await _get_trip(session, trip_id)
    records = await load_player_stats(session, trip)
    out = PlayerStatsListOut(
        ranking=[_record_out(r) for r in rank_by_win_percentage(records)],
        roster=[_record_out(r) for r in roster_listing(records)],
    )
    await standings_cache.put(trip_id, PLAYER_STATS, out)
    return out


@router.post("/{trip_id}/pairings/validate", response_model=PairingValidationOut)
async def check_pairings(
    trip_id: str, body: PairingsValidateIn, session: AsyncSession = Depends(get_session)
):
    """Validate a proposed session of pairings before the matches are created."""

    await _get_trip(session, trip_id)
    players = (
        await session.execute(select(Player).where(Player.trip_id == trip_id))
    ).scalars().all()
    by_id = {p.id: p for p in players}

    def _avg_index(ids):
        values = [by_id[pid].handicap_index for pid in ids if pid in by_id]
        return sum(values) / len(values) if values else None

    not_started = calculate_match_state(empty_results())
    summaries = [
        MatchSummary(
            match_id=f"pairing-{number}",
            team_a_id="A",
            team_b_id="B",
            state=not_started,
            players_a=list(p.sideA),
            players_b=list(p.sideB),
            index_a=_avg_index(p.sideA),
            index_b=_avg_index(p.sideB),
            match_format=p.format,
        )
        for number, p in enumerate(body.pairings, start=1)
    ]
    result = validate_pairings(summaries, {p.id: p.name for p in players})
    return PairingValidationOut(
        isValid=result.is_valid,
        warnings=result.warnings,
        errors=result.errors,
        fairnessScore=result.fairness_score,
    )
