"""Persistence around the match event log.

The log is the source of truth; hole result rows, ``Match.status`` and
``Match.details`` are projections rewritten in the same commit as the events
that produced them.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional, Sequence

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models import (
    HoleResult as HoleResultRow,
    Match,
    MatchParticipant,
    ScoringEvent as ScoringEventRow,
    TeeSet,
)
from ..scoring import handicap
from ..scoring.events import (
    HOLE_EVENTS,
    EventLog,
    EventType,
    HoleResult,
    MatchStatus,
    ScoringEvent,
    SyncStatus,
    Winner,
)
from ..scoring.match_play import (
    MatchFormat,
    MatchState,
    assert_status_consistent,
    score_hole,
    state_for_log,
)
from ..time_utils import coerce_utc, to_naive_utc

logger = logging.getLogger(__name__)

_RESULT_CHANGING = HOLE_EVENTS | {EventType.UNDO, EventType.REDO}


class EventIdConflict(ValueError):
    """Raised when a client event id is already stored for a different match."""

    def __init__(self, event_id: str, owner_match_id: str) -> None:
        super().__init__(f"event id {event_id} is already used by match {owner_match_id}")
        self.event_id = event_id
        self.owner_match_id = owner_match_id


@dataclass
class ScoringOutcome:
    log: EventLog
    state: MatchState
    applied: List[ScoringEvent] = field(default_factory=list)
    closed_now: bool = False


@dataclass
class StrokeTables:
    tables: Dict[str, List[int]]
    error: Optional[str] = None


def event_from_row(row: ScoringEventRow) -> ScoringEvent:
    previous = HoleResult.from_dict(row.previous_state) if row.previous_state else None
    return ScoringEvent(
        id=row.id,
        match_id=row.match_id,
        type=EventType(row.type),
        hole_number=row.hole_number,
        payload=dict(row.payload or {}),
        previous_state=previous,
        timestamp=coerce_utc(row.created_at),
        sync_status=SyncStatus.SYNCED if row.synced_at else SyncStatus.LOCAL,
    )


def row_from_event(
    event: ScoringEvent, seq: int, *, device_id: str | None = None
) -> ScoringEventRow:
    return ScoringEventRow(
        id=event.id,
        match_id=event.match_id,
        seq=seq,
        type=EventType(event.type).value,
        hole_number=event.hole_number,
        payload=dict(event.payload),
        previous_state=event.previous_state.to_dict() if event.previous_state else None,
        created_at=to_naive_utc(event.timestamp),
        device_id=device_id,
    )


async def load_event_rows(
    session: AsyncSession, match_id: str
) -> Sequence[ScoringEventRow]:
    return (
        await session.execute(
            select(ScoringEventRow)
            .where(ScoringEventRow.match_id == match_id)
            .order_by(ScoringEventRow.created_at, ScoringEventRow.seq)
        )
    ).scalars().all()


async def load_log(
    session: AsyncSession, match_id: str, *, strict: bool = False
) -> EventLog:
    rows = await load_event_rows(session, match_id)
    return EventLog.replay(match_id, [event_from_row(r) for r in rows], strict=strict)


async def load_state(session: AsyncSession, match: Match) -> MatchState:
    log = await load_log(session, match.id)
    return state_for_log(log, match.format, points_value=match.points_value)


async def next_seq(session: AsyncSession, match_id: str) -> int:
    current = (
        await session.execute(
            select(func.max(ScoringEventRow.seq)).where(
                ScoringEventRow.match_id == match_id
            )
        )
    ).scalar_one_or_none()
    return 0 if current is None else int(current) + 1


async def load_sides(session: AsyncSession, match_id: str) -> Dict[str, MatchParticipant]:
    parts = (
        await session.execute(
            select(MatchParticipant).where(MatchParticipant.match_id == match_id)
        )
    ).scalars().all()
    return {p.side: p for p in parts}


async def stroke_tables(session: AsyncSession, match: Match) -> StrokeTables:
    """Per-player strokes received on each hole for the match format."""

    sides = await load_sides(session, match.id)

    def _handicaps(side: str) -> Dict[str, int]:
        part = sides.get(side)
        if part is None:
            return {}
        return {pid: int(ch) for pid, ch in (part.course_handicaps or {}).items()}

    side_a, side_b = _handicaps("A"), _handicaps("B")
    ranks = None
    if match.tee_set_id:
        tee_set = await session.get(TeeSet, match.tee_set_id)
        ranks = tee_set.hole_handicaps if tee_set else None

    received = handicap.playing_strokes(match.format, side_a, side_b)
    tables, error = handicap.stroke_table(received, ranks)
    return StrokeTables(tables=tables, error=error)


async def _write_projection(
    session: AsyncSession, match: Match, log: EventLog, state: MatchState
) -> None:
    rows = (
        await session.execute(
            select(HoleResultRow).where(HoleResultRow.match_id == match.id)
        )
    ).scalars().all()
    by_hole = {r.hole_number: r for r in rows}
    for result in log.results:
        row = by_hole.get(result.hole_number)
        if row is None:
            row = HoleResultRow(
                id=uuid.uuid4().hex,
                match_id=match.id,
                hole_number=result.hole_number,
            )
            session.add(row)
        row.winner = result.winner.value
        row.strokes = dict(result.strokes) or None
        row.net = dict(result.net) or None

    match.status = state.status.value
    match.details = state.to_dict()


def _closing_due(log: EventLog, state: MatchState, events: Sequence[ScoringEvent]) -> bool:
    """Whether a decided, still open match should be closed now.

    Only a result change made after the latest reopen closes the match, so a
    reopened match stays open until its next hole-level event.
    """

    if not state.decided or log.status != MatchStatus.IN_PROGRESS:
        return False
    for event in reversed(events):
        etype = EventType(event.type)
        if etype == EventType.REOPEN:
            return False
        if etype in _RESULT_CHANGING:
            return True
    return False


def _append_auto_close(match: Match, log: EventLog) -> ScoringEvent:
    closing = ScoringEvent.create(match.id, EventType.CLOSE, payload={"auto": True})
    # Keep the close after every event in canonical (timestamp) order.
    if log.events:
        closing.timestamp = max(closing.timestamp, max(e.timestamp for e in log.events))
    log.apply(closing)
    return closing


async def _commit(
    session: AsyncSession,
    match: Match,
    log: EventLog,
    applied: List[ScoringEvent],
    *,
    device_id: str | None = None,
) -> ScoringOutcome:
    state = state_for_log(log, match.format, points_value=match.points_value)
    closed_now = False

    if _closing_due(log, state, applied):
        applied.append(_append_auto_close(match, log))
        state = state_for_log(log, match.format, points_value=match.points_value)
        closed_now = True
        logger.info("Match %s closed: %s", match.id, state.status_text)
    elif any(EventType(e.type) == EventType.CLOSE for e in applied):
        closed_now = True

    seq = await next_seq(session, match.id)
    for offset, event in enumerate(applied):
        session.add(row_from_event(event, seq + offset, device_id=device_id))

    await _write_projection(session, match, log, state)
    await session.commit()

    assert_status_consistent(match.id, match.status, state)
    return ScoringOutcome(log=log, state=state, applied=applied, closed_now=closed_now)


async def record_hole(
    session: AsyncSession,
    match: Match,
    hole_number: int,
    *,
    winner: str | None = None,
    strokes: Dict[str, int] | None = None,
    event_id: str | None = None,
    timestamp: datetime | None = None,
) -> ScoringOutcome:
    """Record (or edit) a hole either by winner or by gross strokes."""

    log = await load_log(session, match.id)
    if event_id:
        stored = await session.get(ScoringEventRow, event_id)
        if stored is not None:
            if stored.match_id != match.id:
                raise EventIdConflict(event_id, stored.match_id)
            # Client retry of an event that already landed.
            state = state_for_log(log, match.format, points_value=match.points_value)
            return ScoringOutcome(log=log, state=state)
    current = log.hole(hole_number)
    event_type = EventType.EDIT if current.played else EventType.RECORD

    if strokes:
        sides = await load_sides(session, match.id)
        tables = await stroke_tables(session, match)
        side_players = {side: list(p.player_ids or []) for side, p in sides.items()}
        unknown = set(strokes) - {pid for ids in side_players.values() for pid in ids}
        if unknown:
            raise ValueError(f"strokes given for players not in this match: {sorted(unknown)}")
        result = score_hole(hole_number, strokes, side_players, tables.tables)
        payload = {
            "winner": result.winner.value,
            "strokes": dict(result.strokes),
            "net": dict(result.net),
        }
    else:
        if MatchFormat(match.format) == MatchFormat.STROKE_PLAY:
            raise ValueError("stroke play holes must be recorded with strokes")
        if winner is None:
            raise ValueError("either winner or strokes is required")
        resolved = Winner(winner)
        if resolved == Winner.UNPLAYED:
            raise ValueError("winner must be A, B or halved")
        payload = {"winner": resolved.value}

    event = ScoringEvent.create(match.id, event_type, hole_number, payload)
    if event_id:
        event.id = event_id
    if timestamp is not None:
        event.timestamp = timestamp

    log.apply(event)
    return await _commit(session, match, log, [event])


async def undo_last(session: AsyncSession, match: Match) -> ScoringOutcome:
    log = await load_log(session, match.id)
    event = log.undo()
    return await _commit(session, match, log, [event])


async def redo_last(session: AsyncSession, match: Match) -> ScoringOutcome:
    log = await load_log(session, match.id)
    event = log.redo()
    return await _commit(session, match, log, [event])


async def close_match(
    session: AsyncSession, match: Match, *, conceded_to: str | None = None
) -> ScoringOutcome:
    payload = {}
    if conceded_to is not None:
        side = Winner(conceded_to)
        if side not in (Winner.A, Winner.B, Winner.HALVED):
            raise ValueError("concededTo must be A, B or halved")
        payload["concededTo"] = side.value
    log = await load_log(session, match.id)
    event = ScoringEvent.create(match.id, EventType.CLOSE, payload=payload)
    log.apply(event)
    return await _commit(session, match, log, [event])


async def reopen_match(session: AsyncSession, match: Match) -> ScoringOutcome:
    log = await load_log(session, match.id)
    event = ScoringEvent.create(match.id, EventType.REOPEN)
    log.apply(event)
    return await _commit(session, match, log, [event])


async def rebuild_match(session: AsyncSession, match: Match) -> ScoringOutcome:
    """Replay the canonical log and rewrite every projection from it.

    Used after sync, when events from other devices may have been merged in
    timestamp order. Events that no longer apply are skipped and logged. A
    match the merged results have decided is closed in the same commit.
    """

    rows = await load_event_rows(session, match.id)
    events = [event_from_row(r) for r in rows]
    log = EventLog.replay(match.id, events, strict=False)

    by_id = {r.id: r for r in rows}
    for event in log.events:
        row = by_id[event.id]
        snapshot = event.previous_state.to_dict() if event.previous_state else None
        if row.previous_state != snapshot:
            row.previous_state = snapshot
        if row.payload != event.payload:
            row.payload = dict(event.payload)

    state = state_for_log(log, match.format, points_value=match.points_value)
    applied: List[ScoringEvent] = []
    if _closing_due(log, state, log.events):
        closing = _append_auto_close(match, log)
        session.add(row_from_event(closing, await next_seq(session, match.id)))
        applied.append(closing)
        state = state_for_log(log, match.format, points_value=match.points_value)
        logger.info("Match %s closed after sync: %s", match.id, state.status_text)

    await _write_projection(session, match, log, state)
    await session.commit()
    if log.rejected:
        logger.warning(
            "Rebuilt match %s skipping %d event(s): %s",
            match.id,
            len(log.rejected),
            ", ".join(log.rejected),
        )
    assert_status_consistent(match.id, match.status, state)
    return ScoringOutcome(log=log, state=state, applied=applied, closed_now=bool(applied))


async def delete_match(session: AsyncSession, match: Match) -> None:
    for model in (ScoringEventRow, HoleResultRow, MatchParticipant):
        await session.execute(delete(model).where(model.match_id == match.id))
    await session.delete(match)
    await session.commit()
