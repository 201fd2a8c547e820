"""Event-sourced scoring log for a single match.

Every hole-level event stores the hole's value immediately before it was
applied (``previous_state``). Undo restores that snapshot directly, so it is
correct no matter how many times the hole was edited.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

logger = logging.getLogger(__name__)

HOLES = 18


class Winner(str, Enum):
    A = "A"
    B = "B"
    HALVED = "halved"
    UNPLAYED = "unplayed"


class EventType(str, Enum):
    RECORD = "record_result"
    EDIT = "edit_result"
    CLOSE = "close_match"
    UNDO = "undo"
    REDO = "redo"
    REOPEN = "reopen"


class MatchStatus(str, Enum):
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    CLOSED = "closed"


class SyncStatus(str, Enum):
    LOCAL = "local"
    SYNCED = "synced"


HOLE_EVENTS = {EventType.RECORD, EventType.EDIT}


class MatchClosedError(Exception):
    """Raised when a scoring change is attempted on a closed match."""

    def __init__(self, match_id: str, action: str) -> None:
        super().__init__(f"match {match_id} is closed; reopen it before {action}")
        self.match_id = match_id
        self.action = action


class InvalidTransition(ValueError):
    pass


class NothingToUndo(ValueError):
    pass


@dataclass(frozen=True)
class HoleResult:
    hole_number: int
    winner: Winner = Winner.UNPLAYED
    strokes: Dict[str, int] = field(default_factory=dict)
    net: Dict[str, int] = field(default_factory=dict)

    @property
    def played(self) -> bool:
        return self.winner != Winner.UNPLAYED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "holeNumber": self.hole_number,
            "winner": self.winner.value,
            "strokes": dict(self.strokes),
            "net": dict(self.net),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "HoleResult":
        return cls(
            hole_number=int(data["holeNumber"]),
            winner=Winner(data.get("winner", Winner.UNPLAYED.value)),
            strokes={str(k): int(v) for k, v in (data.get("strokes") or {}).items()},
            net={str(k): int(v) for k, v in (data.get("net") or {}).items()},
        )


@dataclass
class ScoringEvent:
    id: str
    match_id: str
    type: EventType
    hole_number: Optional[int] = None
    payload: Dict[str, Any] = field(default_factory=dict)
    previous_state: Optional[HoleResult] = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    sync_status: SyncStatus = SyncStatus.LOCAL

    @classmethod
    def create(
        cls,
        match_id: str,
        type: EventType,
        hole_number: int | None = None,
        payload: Dict[str, Any] | None = None,
    ) -> "ScoringEvent":
        return cls(
            id=uuid.uuid4().hex,
            match_id=match_id,
            type=EventType(type),
            hole_number=hole_number,
            payload=dict(payload or {}),
        )

    def result(self) -> HoleResult:
        """The hole value a record/edit event sets."""

        assert self.hole_number is not None
        return HoleResult(
            hole_number=self.hole_number,
            winner=Winner(self.payload.get("winner", Winner.UNPLAYED.value)),
            strokes={str(k): int(v) for k, v in (self.payload.get("strokes") or {}).items()},
            net={str(k): int(v) for k, v in (self.payload.get("net") or {}).items()},
        )


def empty_results() -> tuple[HoleResult, ...]:
    return tuple(HoleResult(hole_number=n) for n in range(1, HOLES + 1))


class EventLog:
    """Append-only event log and derived hole results for one match."""

    def __init__(self, match_id: str) -> None:
        self.match_id = match_id
        self.events: List[ScoringEvent] = []
        self.status = MatchStatus.NOT_STARTED
        self.rejected: List[str] = []
        self._results: List[HoleResult] = list(empty_results())
        self._by_id: Dict[str, ScoringEvent] = {}
        self._undo_stack: List[ScoringEvent] = []
        self._redo_stack: List[ScoringEvent] = []

    @property
    def results(self) -> tuple[HoleResult, ...]:
        return tuple(self._results)

    @property
    def can_undo(self) -> bool:
        return bool(self._undo_stack) and self.status != MatchStatus.CLOSED

    @property
    def can_redo(self) -> bool:
        return bool(self._redo_stack) and self.status != MatchStatus.CLOSED

    @property
    def closing_event(self) -> ScoringEvent | None:
        if self.status != MatchStatus.CLOSED:
            return None
        for event in reversed(self.events):
            if event.type == EventType.CLOSE:
                return event
        return None

    def hole(self, hole_number: int) -> HoleResult:
        _check_hole(hole_number)
        return self._results[hole_number - 1]

    def apply(self, event: ScoringEvent) -> tuple[HoleResult, ...]:
        if event.id in self._by_id:
            logger.debug("Event %s already applied to match %s", event.id, self.match_id)
            return self.results
        if event.match_id != self.match_id:
            raise ValueError(
                f"event {event.id} belongs to match {event.match_id}, not {self.match_id}"
            )

        etype = EventType(event.type)
        if etype in HOLE_EVENTS:
            self._apply_hole_event(event)
        elif etype == EventType.UNDO:
            self._apply_undo(event)
        elif etype == EventType.REDO:
            self._apply_redo(event)
        elif etype == EventType.CLOSE:
            self._transition(MatchStatus.CLOSED)
        elif etype == EventType.REOPEN:
            self._transition(MatchStatus.IN_PROGRESS, reopen=True)

        self.events.append(event)
        self._by_id[event.id] = event
        return self.results

    def undo(self) -> ScoringEvent:
        """Append an undo event for the most recent undoable event."""

        if self.status == MatchStatus.CLOSED:
            raise MatchClosedError(self.match_id, "undoing")
        if not self._undo_stack:
            raise NothingToUndo("nothing to undo")
        target = self._undo_stack[-1]
        event = ScoringEvent.create(
            self.match_id, EventType.UNDO, target.hole_number, {"targetId": target.id}
        )
        self.apply(event)
        return event

    def redo(self) -> ScoringEvent:
        if self.status == MatchStatus.CLOSED:
            raise MatchClosedError(self.match_id, "redoing")
        if not self._redo_stack:
            raise NothingToUndo("nothing to redo")
        target = self._redo_stack[-1]
        event = ScoringEvent.create(
            self.match_id, EventType.REDO, target.hole_number, {"targetId": target.id}
        )
        self.apply(event)
        return event

    def _apply_hole_event(self, event: ScoringEvent) -> None:
        if self.status == MatchStatus.CLOSED:
            raise MatchClosedError(self.match_id, "changing hole results")
        if event.hole_number is None:
            raise ValueError(f"event {event.id} requires a hole number")
        _check_hole(event.hole_number)
        result = event.result()
        if not result.played:
            raise ValueError(f"event {event.id} must record a winner for the hole")

        self._snapshot(event)
        self._results[event.hole_number - 1] = result
        self._undo_stack.append(event)
        self._redo_stack.clear()
        if self.status == MatchStatus.NOT_STARTED:
            self._transition(MatchStatus.IN_PROGRESS)

    def _apply_undo(self, event: ScoringEvent) -> None:
        if self.status == MatchStatus.CLOSED:
            raise MatchClosedError(self.match_id, "undoing")
        if not self._undo_stack:
            raise NothingToUndo("nothing to undo")
        target = self._undo_stack[-1]
        requested = event.payload.get("targetId")
        if requested is not None and requested != target.id:
            raise ValueError(
                f"undo targets {requested} but the last undoable event is {target.id}"
            )
        event.hole_number = target.hole_number
        event.payload = {**event.payload, "targetId": target.id}

        self._snapshot(event)
        assert target.previous_state is not None and target.hole_number is not None
        self._results[target.hole_number - 1] = target.previous_state
        self._undo_stack.pop()
        self._redo_stack.append(target)

    def _apply_redo(self, event: ScoringEvent) -> None:
        if self.status == MatchStatus.CLOSED:
            raise MatchClosedError(self.match_id, "redoing")
        if not self._redo_stack:
            raise NothingToUndo("nothing to redo")
        target = self._redo_stack[-1]
        requested = event.payload.get("targetId")
        if requested is not None and requested != target.id:
            raise ValueError(
                f"redo targets {requested} but the last undone event is {target.id}"
            )
        event.hole_number = target.hole_number
        event.payload = {**event.payload, "targetId": target.id}

        self._snapshot(event)
        assert target.hole_number is not None
        self._results[target.hole_number - 1] = target.result()
        self._redo_stack.pop()
        self._undo_stack.append(target)

    def _snapshot(self, event: ScoringEvent) -> None:
        assert event.hole_number is not None
        current = self._results[event.hole_number - 1]
        if event.previous_state is not None and event.previous_state != current:
            # Stored snapshot came from a different ordering (another device).
            logger.warning(
                "Event %s previous state differs from replayed value on hole %s",
                event.id,
                event.hole_number,
            )
        event.previous_state = replace(current)

    def _transition(self, target: MatchStatus, *, reopen: bool = False) -> None:
        self.status = transition(self.status, target, reopen=reopen)

    @classmethod
    def replay(
        cls, match_id: str, events: Iterable[ScoringEvent], *, strict: bool = True
    ) -> "EventLog":
        log = cls(match_id)
        for event in events:
            try:
                log.apply(event)
            except (ValueError, MatchClosedError) as exc:
                if strict:
                    raise
                logger.warning(
                    "Skipping event %s while replaying match %s: %s", event.id, match_id, exc
                )
                log.rejected.append(event.id)
        return log


_ALLOWED_TRANSITIONS = {
    (MatchStatus.NOT_STARTED, MatchStatus.IN_PROGRESS),
    (MatchStatus.IN_PROGRESS, MatchStatus.CLOSED),
}


def transition(
    current: MatchStatus, target: MatchStatus, *, reopen: bool = False
) -> MatchStatus:
    """Validate a status change. Closed -> InProgress needs an explicit reopen."""

    current, target = MatchStatus(current), MatchStatus(target)
    if reopen:
        if current != MatchStatus.CLOSED:
            raise InvalidTransition(f"cannot reopen a match that is {current.value}")
        return target
    if (current, target) not in _ALLOWED_TRANSITIONS:
        raise InvalidTransition(f"cannot move match from {current.value} to {target.value}")
    return target


def _check_hole(hole_number: int) -> None:
    if not 1 <= int(hole_number) <= HOLES:
        raise ValueError(f"hole number must be between 1 and {HOLES}")
