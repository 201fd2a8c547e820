"""Tournament aggregation.

Folds match states into team points, standings, projections and player
records. The functions here are pure; ``load_trip_standings`` and
``load_player_stats`` gather their inputs from the database.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import DEFAULT_POINTS_TO_WIN
from ..models import Match, MatchParticipant, Player, Team, Trip
from ..scoring.events import MatchStatus, Winner
from ..scoring.match_play import MatchState
from .scoring import load_state
from .validation import FORMAT_RULES


class UnknownTeamError(ValueError):
    """Raised when a match references a team that is not part of the trip."""

    def __init__(self, team_id: str, match_id: str | None = None) -> None:
        where = f" in match {match_id}" if match_id else ""
        super().__init__(f"unknown team '{team_id}'{where}")
        self.team_id = team_id
        self.match_id = match_id


@dataclass(frozen=True)
class TeamRef:
    id: str
    name: str


@dataclass(frozen=True)
class TripSettings:
    teams: Sequence[TeamRef]
    points_to_win: float | None = None

    @property
    def resolved_points_to_win(self) -> float:
        if self.points_to_win is None:
            return DEFAULT_POINTS_TO_WIN
        return float(self.points_to_win)


@dataclass
class MatchSummary:
    match_id: str
    team_a_id: str
    team_b_id: str
    state: MatchState
    points_value: float = 1.0
    players_a: Sequence[str] = ()
    players_b: Sequence[str] = ()
    # average handicap index per side, used for pairing fairness
    index_a: Optional[float] = None
    index_b: Optional[float] = None
    match_format: Optional[str] = None

    @property
    def closed(self) -> bool:
        return self.state.status == MatchStatus.CLOSED


@dataclass
class TeamStanding:
    team_id: str
    name: str
    points: float = 0.0
    projected_points: float = 0.0
    max_possible_points: float = 0.0
    points_needed: float = 0.0
    matches_won: int = 0
    matches_lost: int = 0
    matches_halved: int = 0
    matches_in_progress: int = 0
    clinched: bool = False
    eliminated: bool = False


@dataclass
class Standings:
    teams: List[TeamStanding]
    points_to_win: float
    matches_total: int
    matches_closed: int
    matches_in_progress: int
    fairness_score: float
    decided: bool = False
    winner_id: Optional[str] = None

    def team(self, team_id: str) -> TeamStanding:
        for standing in self.teams:
            if standing.team_id == team_id:
                return standing
        raise UnknownTeamError(team_id)


def match_points(summary: MatchSummary) -> Dict[str, float]:
    """Actual points per team id. Only closed matches score."""

    a, b = summary.team_a_id, summary.team_b_id
    if not summary.closed or summary.state.result is None:
        return {a: 0.0, b: 0.0}
    pv = summary.points_value
    if summary.state.result == Winner.A:
        return {a: pv, b: 0.0}
    if summary.state.result == Winner.B:
        return {a: 0.0, b: pv}
    return {a: pv / 2, b: pv / 2}


def projected_points(summary: MatchSummary) -> Dict[str, float]:
    """Expected points per team id.

    Closed matches keep their actual points. A live lead is weighted by the
    holes left: the leader's share is ``0.5 + 0.5 * lead / (remaining + 1)``.
    """

    if summary.closed:
        return match_points(summary)
    a, b = summary.team_a_id, summary.team_b_id
    pv = summary.points_value
    state = summary.state
    if state.holes_played == 0 or state.leader is None:
        return {a: pv / 2, b: pv / 2}
    share = min(1.0, 0.5 + 0.5 * state.lead / (state.holes_remaining + 1))
    if state.leader == Winner.A:
        return {a: pv * share, b: pv * (1 - share)}
    return {a: pv * (1 - share), b: pv * share}


def fairness_score(matches: Iterable[MatchSummary]) -> float:
    diffs = [
        abs(m.index_a - m.index_b)
        for m in matches
        if m.index_a is not None and m.index_b is not None
    ]
    if not diffs:
        return 100.0
    avg = sum(diffs) / len(diffs)
    return round(max(0.0, 100.0 - avg * 10), 1)


FAIRNESS_WARNING_THRESHOLD = 70.0


@dataclass
class PairingValidation:
    is_valid: bool
    warnings: List[str]
    errors: List[str]
    fairness_score: float


def validate_pairings(
    matches: Sequence[MatchSummary], names: Optional[Dict[str, str]] = None
) -> PairingValidation:
    """Check the pairings of one session before it is played.

    Wrong side sizes for a match's format are errors. A player paired more
    than once on the same side, or a lopsided handicap spread, only warns.
    """

    names = names or {}
    errors: List[str] = []
    warnings: List[str] = []

    for number, summary in enumerate(matches, start=1):
        team_sizes = FORMAT_RULES.get(summary.match_format or "", {}).get("team_sizes")
        if not isinstance(team_sizes, set) or not team_sizes:
            continue
        sizes = sorted(int(size) for size in team_sizes)
        expected = " or ".join(str(s) for s in sizes)
        for side, players in (("A", summary.players_a), ("B", summary.players_b)):
            if len(players) not in sizes:
                errors.append(f"Match {number} needs {expected} side {side} player(s)")

    for side, attr in (("A", "players_a"), ("B", "players_b")):
        seen: set[str] = set()
        for summary in matches:
            for pid in getattr(summary, attr):
                if pid in seen:
                    name = names.get(pid, "Unknown")
                    warnings.append(f"{name} appears in multiple side {side} pairings")
                seen.add(pid)

    score = fairness_score(matches)
    if score < FAIRNESS_WARNING_THRESHOLD:
        warnings.append(f"Handicap spread seems unbalanced (Fairness: {int(score)}%)")

    return PairingValidation(
        is_valid=not errors, warnings=warnings, errors=errors, fairness_score=score
    )


def aggregate(matches: Sequence[MatchSummary], settings: TripSettings) -> Standings:
    """Compute standings for a trip from its match summaries.

    Team identity is always the team id; display names are carried along
    for presentation only.
    """

    teams = {t.id: TeamStanding(team_id=t.id, name=t.name) for t in settings.teams}
    points_to_win = settings.resolved_points_to_win

    for summary in matches:
        for team_id in (summary.team_a_id, summary.team_b_id):
            if team_id not in teams:
                raise UnknownTeamError(team_id, summary.match_id)
        if summary.team_a_id == summary.team_b_id:
            raise ValueError(f"match {summary.match_id} pits a team against itself")

        actual = match_points(summary)
        projected = projected_points(summary)
        for team_id in (summary.team_a_id, summary.team_b_id):
            standing = teams[team_id]
            standing.points += actual[team_id]
            standing.projected_points += projected[team_id]
            standing.max_possible_points += (
                actual[team_id] if summary.closed else summary.points_value
            )

        if summary.closed:
            team_a, team_b = teams[summary.team_a_id], teams[summary.team_b_id]
            result = summary.state.result
            if result == Winner.A:
                team_a.matches_won += 1
                team_b.matches_lost += 1
            elif result == Winner.B:
                team_b.matches_won += 1
                team_a.matches_lost += 1
            else:
                team_a.matches_halved += 1
                team_b.matches_halved += 1
        elif summary.state.holes_played:
            teams[summary.team_a_id].matches_in_progress += 1
            teams[summary.team_b_id].matches_in_progress += 1

    closed = sum(1 for m in matches if m.closed)
    in_progress = sum(1 for m in matches if not m.closed and m.state.holes_played)
    all_closed = bool(matches) and closed == len(matches)

    decided, winner_id = _decide(list(teams.values()), points_to_win, all_closed)

    for standing in teams.values():
        standing.points_needed = max(0.0, points_to_win - standing.points)
        standing.clinched = winner_id == standing.team_id
        standing.eliminated = not standing.clinched and (
            winner_id is not None or standing.max_possible_points < points_to_win
        )

    return Standings(
        teams=sorted(teams.values(), key=lambda s: (-s.points, -s.projected_points)),
        points_to_win=points_to_win,
        matches_total=len(matches),
        matches_closed=closed,
        matches_in_progress=in_progress,
        fairness_score=fairness_score(matches),
        decided=decided,
        winner_id=winner_id,
    )


def _decide(
    teams: Sequence[TeamStanding], points_to_win: float, all_closed: bool
) -> tuple[bool, Optional[str]]:
    if not teams:
        return False, None

    reached = [t for t in teams if t.points >= points_to_win]
    pool = reached or (list(teams) if all_closed else [])
    if not pool:
        return False, None

    top = max(t.points for t in pool)
    leaders = [t for t in pool if t.points == top]
    if len(leaders) == 1:
        return True, leaders[0].team_id
    # Level on points: decided only once every match is closed.
    return all_closed, None


@dataclass
class PlayerRecord:
    player_id: str
    name: str
    team_id: Optional[str]
    matches: int = 0
    wins: int = 0
    losses: int = 0
    halves: int = 0
    points: float = 0.0

    @property
    def no_matches(self) -> bool:
        return self.matches == 0

    @property
    def win_pct(self) -> Optional[float]:
        if self.matches == 0:
            return None
        return round(100.0 * (self.wins + 0.5 * self.halves) / self.matches, 1)


@dataclass(frozen=True)
class RosterPlayer:
    id: str
    name: str
    team_id: Optional[str] = None


def player_records(
    roster: Sequence[RosterPlayer], matches: Sequence[MatchSummary]
) -> List[PlayerRecord]:
    """Tally closed-match records for every roster player, including idle ones."""

    records: Dict[str, PlayerRecord] = {
        p.id: PlayerRecord(player_id=p.id, name=p.name, team_id=p.team_id) for p in roster
    }
    for summary in matches:
        if not summary.closed or summary.state.result is None:
            continue
        result = summary.state.result
        share = summary.points_value
        for side, players in (("A", summary.players_a), ("B", summary.players_b)):
            for pid in players:
                record = records.get(pid)
                if record is None:
                    continue
                record.matches += 1
                if result == Winner.HALVED:
                    record.halves += 1
                    record.points += share / 2
                elif result.value == side:
                    record.wins += 1
                    record.points += share
                else:
                    record.losses += 1
    return list(records.values())


def rank_by_win_percentage(records: Iterable[PlayerRecord]) -> List[PlayerRecord]:
    """Rank players who have played; zero-match players are left out."""

    played = [r for r in records if not r.no_matches]
    return sorted(played, key=lambda r: (-(r.win_pct or 0.0), -r.points, -r.matches, r.name))


def roster_listing(records: Iterable[PlayerRecord]) -> List[PlayerRecord]:
    """Every player: ranked ones first, then zero-match players by name."""

    records = list(records)
    idle = sorted((r for r in records if r.no_matches), key=lambda r: r.name)
    return rank_by_win_percentage(records) + idle


async def trip_settings(session: AsyncSession, trip: Trip) -> TripSettings:
    rows = (
        await session.execute(
            select(Team).where(Team.trip_id == trip.id).order_by(Team.position)
        )
    ).scalars().all()
    return TripSettings(
        teams=[TeamRef(id=t.id, name=t.name) for t in rows],
        points_to_win=trip.points_to_win,
    )


async def load_match_summaries(
    session: AsyncSession, trip_id: str
) -> List[MatchSummary]:
    matches = (
        await session.execute(
            select(Match).where(Match.trip_id == trip_id).order_by(Match.match_order, Match.created_at)
        )
    ).scalars().all()
    if not matches:
        return []

    match_ids = [m.id for m in matches]
    parts = (
        await session.execute(
            select(MatchParticipant).where(MatchParticipant.match_id.in_(match_ids))
        )
    ).scalars().all()
    player_ids = {pid for p in parts for pid in (p.player_ids or [])}
    indexes: Dict[str, float] = {}
    if player_ids:
        rows = await session.execute(
            select(Player.id, Player.handicap_index).where(Player.id.in_(player_ids))
        )
        indexes = {pid: idx for pid, idx in rows.all() if idx is not None}

    sides: Dict[str, Dict[str, List[str]]] = {}
    for p in parts:
        sides.setdefault(p.match_id, {})[p.side] = list(p.player_ids or [])

    def _avg(ids: Sequence[str]) -> Optional[float]:
        values = [indexes[pid] for pid in ids if pid in indexes]
        return sum(values) / len(values) if values else None

    summaries: List[MatchSummary] = []
    for match in matches:
        state = await load_state(session, match)
        match_sides = sides.get(match.id, {})
        players_a = match_sides.get("A", [])
        players_b = match_sides.get("B", [])
        summaries.append(
            MatchSummary(
                match_id=match.id,
                team_a_id=match.team_a_id,
                team_b_id=match.team_b_id,
                state=state,
                points_value=match.points_value,
                players_a=players_a,
                players_b=players_b,
                index_a=_avg(players_a),
                index_b=_avg(players_b),
                match_format=match.format,
            )
        )
    return summaries


async def load_trip_standings(session: AsyncSession, trip: Trip) -> Standings:
    settings = await trip_settings(session, trip)
    summaries = await load_match_summaries(session, trip.id)
    return aggregate(summaries, settings)


async def load_player_stats(
    session: AsyncSession, trip: Trip
) -> List[PlayerRecord]:
    players = (
        await session.execute(select(Player).where(Player.trip_id == trip.id))
    ).scalars().all()
    roster = [RosterPlayer(id=p.id, name=p.name, team_id=p.team_id) for p in players]
    summaries = await load_match_summaries(session, trip.id)
    return player_records(roster, summaries)
