"""Match state machine.
Resolves holes from net strokes and derives match status, margin and points
from the current hole results."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Mapping, Optional, Sequence

from .events import HOLES, EventLog, HoleResult, MatchStatus, Winner


class MatchFormat(str, Enum):
    SINGLES = "singles"
    FOURBALL = "fourball"
    FOURSOMES = "foursomes"
    GREENSOMES = "greensomes"
    STROKE_PLAY = "stroke_play"


MATCH_PLAY_FORMATS = {
    MatchFormat.SINGLES,
    MatchFormat.FOURBALL,
    MatchFormat.FOURSOMES,
    MatchFormat.GREENSOMES,
}


class MatchIntegrityError(Exception):
    """Raised when the persisted match status disagrees with the derived state."""

    def __init__(self, match_id: str, persisted: str, derived: str) -> None:
        super().__init__(
            f"match {match_id} is stored as {persisted} but its scoring state is {derived}"
        )
        self.match_id = match_id
        self.persisted = persisted
        self.derived = derived


@dataclass
class MatchState:
    status: MatchStatus
    score: int  # positive means side A is ahead
    holes_played: int
    holes_remaining: int
    dormie: bool
    decided: bool
    margin: str
    status_text: str
    result: Optional[Winner] = None
    points: Dict[str, float] = field(default_factory=lambda: {"A": 0.0, "B": 0.0})
    totals: Dict[str, int] | None = None
    momentum: Dict[str, int] = field(default_factory=lambda: {"A": 0, "B": 0, "halved": 0})

    @property
    def leader(self) -> Optional[Winner]:
        if self.score > 0:
            return Winner.A
        if self.score < 0:
            return Winner.B
        return None

    @property
    def lead(self) -> int:
        return abs(self.score)

    def to_dict(self) -> Dict:
        return {
            "status": self.status.value,
            "score": self.score,
            "leader": self.leader.value if self.leader else None,
            "lead": self.lead,
            "holesPlayed": self.holes_played,
            "holesRemaining": self.holes_remaining,
            "dormie": self.dormie,
            "decided": self.decided,
            "margin": self.margin,
            "statusText": self.status_text,
            "result": self.result.value if self.result else None,
            "points": dict(self.points),
            "totals": dict(self.totals) if self.totals is not None else None,
            "momentum": dict(self.momentum),
        }


def net_score(gross: int, strokes_received: int) -> int:
    return gross - strokes_received


def determine_hole_winner(net_a: int, net_b: int) -> Winner:
    if net_a < net_b:
        return Winner.A
    if net_b < net_a:
        return Winner.B
    return Winner.HALVED


def score_hole(
    hole_number: int,
    gross: Mapping[str, int],
    sides: Mapping[str, Sequence[str]],
    tables: Mapping[str, Sequence[int]],
) -> HoleResult:
    """Build a hole result from gross strokes.

    Each side scores its best net among the players who entered a score, which
    covers singles, four-ball and one-ball team formats alike.
    """

    if not 1 <= hole_number <= HOLES:
        raise ValueError(f"hole number must be between 1 and {HOLES}")

    side_net: Dict[str, int] = {}
    for side in ("A", "B"):
        nets: List[int] = []
        for player_id in sides.get(side, ()):
            if player_id not in gross:
                continue
            strokes = int(gross[player_id])
            if strokes <= 0:
                raise ValueError("strokes must be positive")
            table = tables.get(player_id)
            received = table[hole_number - 1] if table else 0
            nets.append(net_score(strokes, received))
        if not nets:
            raise ValueError(f"side {side} has no strokes for hole {hole_number}")
        side_net[side] = min(nets)

    return HoleResult(
        hole_number=hole_number,
        winner=determine_hole_winner(side_net["A"], side_net["B"]),
        strokes={pid: int(v) for pid, v in gross.items()},
        net=side_net,
    )


def momentum(results: Sequence[HoleResult], last_n: int = 5) -> Dict[str, int]:
    """Hole wins per side and halves over the last ``last_n`` played holes."""

    played = sorted((r for r in results if r.played), key=lambda r: r.hole_number)
    recent = played[-last_n:] if last_n > 0 else []
    counts = {"A": 0, "B": 0, "halved": 0}
    for result in recent:
        counts[result.winner.value] += 1
    return counts


def _points(result: Optional[Winner], closed: bool, points_value: float) -> Dict[str, float]:
    if not closed or result is None:
        return {"A": 0.0, "B": 0.0}
    if result == Winner.A:
        return {"A": points_value, "B": 0.0}
    if result == Winner.B:
        return {"A": 0.0, "B": points_value}
    return {"A": points_value / 2, "B": points_value / 2}


def _match_play_state(results: Sequence[HoleResult]) -> tuple:
    played = [r for r in results if r.played]
    score = sum(1 if r.winner == Winner.A else -1 if r.winner == Winner.B else 0 for r in played)
    holes_played = len(played)
    remaining = HOLES - holes_played
    lead = abs(score)
    side = "A" if score > 0 else "B"

    closed_out = lead > remaining
    finished = remaining == 0
    dormie = lead == remaining and remaining > 0 and lead > 0
    decided = closed_out or finished

    if closed_out and remaining > 0:
        margin = f"{lead} and {remaining}"
        text = f"{side} wins {lead}&{remaining}"
    elif finished:
        margin = f"{lead} up" if lead else "Halved"
        text = f"{side} wins {lead} up" if lead else "Match halved"
    elif lead == 0:
        margin = "All square"
        text = f"All square through {holes_played}" if holes_played else "Not started"
    else:
        margin = f"{lead} up with {remaining} to play"
        text = f"{side} dormie ({margin})" if dormie else f"{side} {margin}"

    result = None
    if decided:
        result = Winner.A if score > 0 else Winner.B if score < 0 else Winner.HALVED
    return score, holes_played, remaining, dormie, decided, margin, text, result, None


def _stroke_play_state(results: Sequence[HoleResult]) -> tuple:
    played = [r for r in results if r.played]
    totals = {
        "A": sum(r.net.get("A", 0) for r in played),
        "B": sum(r.net.get("B", 0) for r in played),
    }
    holes_played = len(played)
    remaining = HOLES - holes_played
    # Lower total is better, so a positive score means A is ahead.
    score = totals["B"] - totals["A"]
    lead = abs(score)
    side = "A" if score > 0 else "B"
    decided = remaining == 0

    if lead == 0:
        margin = "Tied"
    else:
        margin = f"{lead} stroke{'s' if lead != 1 else ''}"
    if decided:
        text = f"{side} wins by {margin}" if lead else "Match halved"
        result = Winner.A if score > 0 else Winner.B if score < 0 else Winner.HALVED
    else:
        text = f"{side} leads by {margin} through {holes_played}" if lead else (
            f"Tied through {holes_played}" if holes_played else "Not started"
        )
        result = None
    return score, holes_played, remaining, False, decided, margin, text, result, totals


def calculate_match_state(
    results: Sequence[HoleResult],
    match_format: MatchFormat | str = MatchFormat.SINGLES,
    *,
    status: MatchStatus | None = None,
    conceded_to: Winner | None = None,
    points_value: float = 1.0,
) -> MatchState:
    """Derive the match state from hole results.

    ``status`` is the log's status. When omitted it is derived from the
    results alone. A closed match that is not decided on the course (a
    concession) takes its result from ``conceded_to`` or the current lead.
    """

    fmt = MatchFormat(match_format)
    if fmt in MATCH_PLAY_FORMATS:
        derived = _match_play_state(results)
    else:
        derived = _stroke_play_state(results)
    score, holes_played, remaining, dormie, decided, margin, text, result, totals = derived

    if status is None:
        if decided:
            status = MatchStatus.CLOSED
        elif holes_played:
            status = MatchStatus.IN_PROGRESS
        else:
            status = MatchStatus.NOT_STARTED
    status = MatchStatus(status)

    if status == MatchStatus.CLOSED and result is None:
        if conceded_to is not None:
            result = Winner(conceded_to)
        else:
            result = Winner.A if score > 0 else Winner.B if score < 0 else Winner.HALVED
        margin = "Conceded" if conceded_to is not None else margin
        text = f"{result.value} wins ({margin})" if result != Winner.HALVED else "Match halved"
    elif status != MatchStatus.CLOSED and decided:
        # Reopened after the result was reached; nothing is awarded until closed.
        result = None

    return MatchState(
        status=status,
        score=score,
        holes_played=holes_played,
        holes_remaining=remaining,
        dormie=dormie,
        decided=decided,
        margin=margin,
        status_text=text,
        result=result,
        points=_points(result, status == MatchStatus.CLOSED, points_value),
        totals=totals,
        momentum=momentum(results),
    )


def state_for_log(
    log: EventLog,
    match_format: MatchFormat | str,
    *,
    points_value: float = 1.0,
) -> MatchState:
    conceded_to = None
    closing = log.closing_event
    if closing is not None and closing.payload.get("concededTo"):
        conceded_to = Winner(closing.payload["concededTo"])
    return calculate_match_state(
        log.results,
        match_format,
        status=log.status,
        conceded_to=conceded_to,
        points_value=points_value,
    )


def assert_status_consistent(match_id: str, persisted: str, state: MatchState) -> None:
    if MatchStatus(persisted) != state.status:
        raise MatchIntegrityError(match_id, MatchStatus(persisted).value, state.status.value)
