from typing import Any, Dict, List, Literal, Optional
from collections.abc import Sequence
from datetime import datetime
from pydantic import BaseModel, Field, model_validator, field_validator, ConfigDict

from .time_utils import require_utc

MatchFormatName = Literal["singles", "fourball", "foursomes", "greensomes", "stroke_play"]
HoleWinner = Literal["A", "B", "halved"]


def _strip_name(value: Any) -> Any:
    if isinstance(value, str):
        value = value.strip()
        if not value:
            raise ValueError("name must not be blank")
    return value


class TeamIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)

    _strip = field_validator("name", mode="before")(_strip_name)


class TeamOut(BaseModel):
    id: str
    name: str


class TripCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    pointsToWin: Optional[float] = Field(default=None, ge=0)
    teams: List[TeamIn] = Field(
        default_factory=lambda: [TeamIn(name="USA"), TeamIn(name="Europe")]
    )

    model_config = ConfigDict(extra="forbid")

    _strip = field_validator("name", mode="before")(_strip_name)

    @field_validator("teams")
    def _two_teams(cls, v: List[TeamIn]) -> List[TeamIn]:
        if len(v) != 2:
            raise ValueError("a trip has exactly two teams")
        return v


class TripOut(BaseModel):
    id: str
    name: str
    pointsToWin: float
    teams: List[TeamOut]
    createdAt: Optional[datetime] = None


class PlayerCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    teamId: Optional[str] = None
    handicapIndex: float = Field(default=0.0, ge=-10, le=54)

    _strip = field_validator("name", mode="before")(_strip_name)


class PlayerUpdate(BaseModel):
    handicapIndex: float = Field(..., ge=-10, le=54)


class PlayerOut(BaseModel):
    id: str
    tripId: str
    teamId: Optional[str] = None
    name: str
    handicapIndex: float


class TeeSetIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    slopeRating: Optional[float] = None
    courseRating: float
    par: int = Field(..., ge=27, le=90)
    holeHandicaps: Optional[List[int]] = None
    holePars: Optional[List[int]] = None


class TeeSetOut(BaseModel):
    id: str
    courseId: str
    name: str
    slopeRating: Optional[float] = None
    courseRating: float
    par: int
    holeHandicaps: Optional[List[int]] = None
    holePars: Optional[List[int]] = None


class CourseCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    teeSets: List[TeeSetIn] = Field(..., min_length=1)

    _strip = field_validator("name", mode="before")(_strip_name)


class CourseOut(BaseModel):
    id: str
    name: str
    teeSets: List[TeeSetOut]


class StrokesOut(BaseModel):
    teeSetId: str
    handicapIndex: float
    courseHandicap: int
    slopeUsed: float
    slopeFallback: bool
    strokes: List[int]
    valid: bool
    error: Optional[str] = None


class Participant(BaseModel):
    side: Literal["A", "B"]
    playerIds: List[str]


def _normalize_participants_payload(data: Any) -> Any:
    if not isinstance(data, dict) or "participants" not in data:
        return data

    raw_parts = data["participants"]
    if raw_parts is None:
        return data

    if not isinstance(raw_parts, list):
        raw_parts = list(raw_parts)

    seen_sides: set[str] = set()
    normalized_parts: list[dict[str, Any]] = []

    for part in raw_parts:
        if isinstance(part, BaseModel):
            part_data = part.model_dump()
        elif isinstance(part, dict):
            part_data = dict(part)
        else:
            raise TypeError(
                "participants must be provided as mappings or Pydantic models"
            )

        side = part_data.get("side")
        normalized_side = side.upper() if isinstance(side, str) else side
        side_key = normalized_side if isinstance(normalized_side, str) else str(normalized_side)

        if side_key in seen_sides:
            raise ValueError("participants must have unique sides")
        seen_sides.add(side_key)

        players = part_data.get("playerIds")
        if isinstance(players, list):
            player_list = players
        elif isinstance(players, Sequence) and not isinstance(players, (str, bytes)):
            player_list = list(players)
        elif players is None:
            player_list = []
        else:
            player_list = players  # allow Pydantic to flag incorrect types

        if not player_list:
            raise ValueError("participants must include at least one player")

        part_data["side"] = normalized_side
        part_data["playerIds"] = player_list
        normalized_parts.append(part_data)

    return {**data, "participants": normalized_parts}


class MatchCreate(BaseModel):
    tripId: str
    format: MatchFormatName
    teamAId: str
    teamBId: str
    teeSetId: Optional[str] = None
    pointsValue: float = Field(default=1.0, gt=0)
    matchOrder: Optional[int] = None
    participants: List[Participant]

    @model_validator(mode="before")
    def _validate_participants(cls, data: Any) -> Any:
        return _normalize_participants_payload(data)


class ParticipantOut(BaseModel):
    side: str
    playerIds: List[str]
    courseHandicaps: Dict[str, int] = Field(default_factory=dict)


class HoleResultOut(BaseModel):
    holeNumber: int
    winner: str
    strokes: Dict[str, int] = Field(default_factory=dict)
    net: Dict[str, int] = Field(default_factory=dict)


class ScoringEventOut(BaseModel):
    id: str
    type: str
    holeNumber: Optional[int] = None
    payload: Dict[str, Any] = Field(default_factory=dict)
    previousState: Optional[HoleResultOut] = None
    timestamp: datetime
    syncStatus: str


class MatchStateOut(BaseModel):
    status: str
    score: int
    leader: Optional[str] = None
    lead: int
    holesPlayed: int
    holesRemaining: int
    dormie: bool
    decided: bool
    margin: str
    statusText: str
    result: Optional[str] = None
    points: Dict[str, float]
    totals: Optional[Dict[str, int]] = None
    momentum: Dict[str, int] = Field(default_factory=dict)


class MatchOut(BaseModel):
    id: str
    tripId: str
    format: str
    teamAId: str
    teamBId: str
    teeSetId: Optional[str] = None
    status: str
    pointsValue: float
    matchOrder: Optional[int] = None
    participants: List[ParticipantOut]
    holes: List[HoleResultOut]
    events: List[ScoringEventOut]
    state: MatchStateOut
    strokeTables: Dict[str, List[int]] = Field(default_factory=dict)
    strokeAllocationError: Optional[str] = None
    canUndo: bool = False
    canRedo: bool = False
    lastSyncedAt: Optional[datetime] = None


class HoleIn(BaseModel):
    holeNumber: int = Field(..., ge=1, le=18)
    winner: Optional[HoleWinner] = None
    strokes: Optional[Dict[str, int]] = None
    eventId: Optional[str] = Field(default=None, min_length=1, max_length=100)
    timestamp: Optional[datetime] = None

    @field_validator("timestamp")
    def _normalize_timestamp(cls, v: datetime | None) -> datetime | None:
        return require_utc(v, field_name="timestamp")

    @field_validator("strokes")
    def _positive_strokes(cls, v: Optional[Dict[str, int]]) -> Optional[Dict[str, int]]:
        if v is None:
            return v
        if not v:
            raise ValueError("strokes must include at least one player")
        for pid, value in v.items():
            if value < 1 or value > 20:
                raise ValueError(f"strokes for {pid} must be between 1 and 20")
        return v

    @model_validator(mode="after")
    def _winner_or_strokes(cls, values):
        if (values.winner is None) == (values.strokes is None):
            raise ValueError("provide either winner or strokes")
        return values


class CloseIn(BaseModel):
    concededTo: Optional[HoleWinner] = None


class TeamStandingOut(BaseModel):
    teamId: str
    name: str
    points: float
    projectedPoints: float
    maxPossiblePoints: float
    pointsNeeded: float
    matchesWon: int
    matchesLost: int
    matchesHalved: int
    matchesInProgress: int
    clinched: bool
    eliminated: bool


class StandingsOut(BaseModel):
    tripId: str
    teams: List[TeamStandingOut]
    pointsToWin: float
    matchesTotal: int
    matchesClosed: int
    matchesInProgress: int
    fairnessScore: float
    decided: bool
    winnerId: Optional[str] = None


class PlayerRecordOut(BaseModel):
    playerId: str
    name: str
    teamId: Optional[str] = None
    matches: int
    wins: int
    losses: int
    halves: int
    points: float
    winPct: Optional[float] = None
    noMatches: bool


class PlayerStatsListOut(BaseModel):
    """Ranked players plus the full roster (idle players last)."""

    ranking: List[PlayerRecordOut]
    roster: List[PlayerRecordOut]


class SyncHealthOut(BaseModel):
    status: str
    endpoint: str
    timestamp: datetime
    hasRemoteDb: bool


class PushSubscriptionKeys(BaseModel):
    p256dh: str = Field(..., min_length=1)
    auth: str = Field(..., min_length=1)


class PushSubscriptionInfo(BaseModel):
    endpoint: str = Field(..., min_length=1, max_length=2000)
    keys: PushSubscriptionKeys
    content_encoding: str | None = Field(default=None, alias="contentEncoding")

    model_config = ConfigDict(populate_by_name=True)

    @field_validator("endpoint")
    def _https_endpoint(cls, v: str) -> str:
        if not v.startswith("https://"):
            raise ValueError("endpoint must be an https URL")
        return v


class PushSubscribeIn(BaseModel):
    subscription: PushSubscriptionInfo
    trip_id: Optional[str] = Field(default=None, alias="tripId")
    player_id: Optional[str] = Field(default=None, alias="playerId")

    model_config = ConfigDict(populate_by_name=True)


class PushUnsubscribeIn(BaseModel):
    endpoint: str = Field(..., min_length=1)


class PushSubscriptionOut(BaseModel):
    id: str
    endpoint: str
    tripId: Optional[str] = None
    createdAt: datetime


class PairingIn(BaseModel):
    format: str
    sideA: List[str] = Field(default_factory=list)
    sideB: List[str] = Field(default_factory=list)


class PairingsValidateIn(BaseModel):
    pairings: List[PairingIn] = Field(..., min_length=1)


class PairingValidationOut(BaseModel):
    isValid: bool
    warnings: List[str]
    errors: List[str]
    fairnessScore: float
