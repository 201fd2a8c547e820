from typing import Any, Dict, List, Optional, Sequence, Tuple

from ..scoring.events import HOLES, EventType


class ValidationError(Exception):
    """Raised when submitted data is invalid."""

    def __init__(self, detail: str) -> None:
        super().__init__(detail)
        self.detail = detail


FORMAT_RULES: dict[str, dict[str, object]] = {
    "singles": {"team_sizes": {1}},
    "fourball": {"team_sizes": {2}},
    "foursomes": {"team_sizes": {2}},
    "greensomes": {"team_sizes": {2}},
    "stroke_play": {"team_sizes": {1, 2}},
}


def _format_label(match_format: str) -> str:
    return match_format.replace("_", " ").title() or "Match"


def validate_participants_for_format(
    match_format: str, side_players: Dict[str, List[str]]
) -> None:
    rules = FORMAT_RULES.get(match_format)
    if not rules:
        raise ValidationError(f"Unsupported match format: {match_format!r}.")

    if set(side_players) != {"A", "B"}:
        raise ValidationError("Matches require exactly two sides, A and B.")

    team_sizes = rules.get("team_sizes")
    if isinstance(team_sizes, set) and team_sizes:
        allowed_sizes = sorted(int(size) for size in team_sizes)
        for side, players in side_players.items():
            size = len(players)
            if size not in team_sizes:
                if len(allowed_sizes) == 1:
                    raise ValidationError(
                        f"{_format_label(match_format)} matches require exactly {allowed_sizes[0]}"
                        " player(s) per side."
                    )
                formatted = ", ".join(str(v) for v in allowed_sizes)
                raise ValidationError(
                    f"{_format_label(match_format)} matches must use {formatted} players per side."
                )

    seen: set[str] = set()
    for players in side_players.values():
        for pid in players:
            if pid in seen:
                raise ValidationError("A player cannot appear on both sides or twice on a side.")
            seen.add(pid)


def validate_hole_pars(pars: Optional[Sequence[Any]]) -> Optional[List[int]]:
    if pars is None:
        return None
    if isinstance(pars, (str, bytes)) or not isinstance(pars, Sequence):
        raise ValidationError("Hole pars must be a list of integers.")
    if len(pars) != HOLES:
        raise ValidationError(f"Hole pars must include exactly {HOLES} values.")

    normalized: List[int] = []
    for index, raw in enumerate(pars, start=1):
        if isinstance(raw, bool):
            raise ValidationError(f"Par for hole #{index} must be an integer (not a boolean).")
        try:
            value = int(raw)
        except (TypeError, ValueError):
            raise ValidationError(f"Par for hole #{index} must be an integer.")
        if not 3 <= value <= 6:
            raise ValidationError(f"Par for hole #{index} must be between 3 and 6.")
        normalized.append(value)
    return normalized


_EVENT_TYPES = {t.value for t in EventType}
_HOLE_LEVEL = {EventType.RECORD.value, EventType.EDIT.value}


def validate_sync_payload(body: Any) -> Tuple[str, List[Any]]:
    """Check the batch envelope. Individual events are validated one by one."""

    if not isinstance(body, dict):
        raise ValidationError("Invalid payload: matchId and events array required")
    match_id = body.get("matchId")
    events = body.get("events")
    if not isinstance(match_id, str) or not match_id.strip() or not isinstance(events, list):
        raise ValidationError("Invalid payload: matchId and events array required")
    return match_id.strip(), events


def validate_sync_event(raw: Any) -> Dict[str, Any]:
    if not isinstance(raw, dict):
        raise ValidationError("event must be an object")

    event_id = raw.get("id")
    if not isinstance(event_id, str) or not event_id.strip():
        raise ValidationError("event id is required")

    event_type = raw.get("type")
    if event_type not in _EVENT_TYPES:
        raise ValidationError(f"unknown event type {event_type!r}")

    hole = raw.get("holeNumber")
    if hole is not None:
        if isinstance(hole, bool) or not isinstance(hole, int) or not 1 <= hole <= HOLES:
            raise ValidationError(f"holeNumber must be an integer between 1 and {HOLES}")
    elif event_type in _HOLE_LEVEL:
        raise ValidationError(f"{event_type} events require a holeNumber")

    data = raw.get("data")
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ValidationError("event data must be an object")

    if raw.get("timestamp") is None:
        raise ValidationError("event timestamp is required")

    return {
        "id": event_id.strip(),
        "type": event_type,
        "holeNumber": hole,
        "data": data,
        "timestamp": raw["timestamp"],
    }
