import os, sys

import pytest

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "..", "..")))
from app.scoring.events import (
    EventLog,
    EventType,
    HoleResult,
    InvalidTransition,
    MatchClosedError,
    MatchStatus,
    NothingToUndo,
    ScoringEvent,
    Winner,
    transition,
)

MID = "m1"


def _record(hole, winner, etype=EventType.RECORD):
    return ScoringEvent.create(MID, etype, hole, {"winner": winner})


def test_new_log_is_not_started_with_unplayed_holes():
    log = EventLog(MID)
    assert log.status == MatchStatus.NOT_STARTED
    assert len(log.results) == 18
    assert all(r.winner == Winner.UNPLAYED for r in log.results)
    assert not log.can_undo and not log.can_redo


def test_first_result_starts_the_match_and_snapshots_previous_state():
    log = EventLog(MID)
    event = _record(1, "A")
    log.apply(event)
    assert log.status == MatchStatus.IN_PROGRESS
    assert log.hole(1).winner == Winner.A
    assert event.previous_state == HoleResult(hole_number=1)


def test_undo_after_multiple_edits_restores_previous_value():
    log = EventLog(MID)
    log.apply(_record(3, "A"))
    log.apply(_record(3, "B", EventType.EDIT))
    log.apply(_record(3, "halved", EventType.EDIT))

    log.undo()
    assert log.hole(3).winner == Winner.B
    log.undo()
    assert log.hole(3).winner == Winner.A
    log.undo()
    assert log.hole(3).winner == Winner.UNPLAYED

    with pytest.raises(NothingToUndo):
        log.undo()


def test_redo_reapplies_and_new_result_clears_redo():
    log = EventLog(MID)
    log.apply(_record(1, "A"))
    log.apply(_record(2, "B"))
    log.undo()
    assert log.can_redo
    log.redo()
    assert log.hole(2).winner == Winner.B

    log.undo()
    log.apply(_record(5, "halved"))
    assert not log.can_redo
    with pytest.raises(NothingToUndo):
        log.redo()


def test_undo_event_records_its_target():
    log = EventLog(MID)
    target = _record(7, "A")
    log.apply(target)
    undo = log.undo()
    assert undo.type == EventType.UNDO
    assert undo.payload["targetId"] == target.id
    assert undo.hole_number == 7
    assert undo.previous_state.winner == Winner.A


def test_duplicate_event_ids_are_ignored():
    log = EventLog(MID)
    event = _record(1, "A")
    log.apply(event)
    log.apply(event)
    assert len(log.events) == 1


def test_closed_match_rejects_changes_until_reopened():
    log = EventLog(MID)
    log.apply(_record(1, "A"))
    log.apply(ScoringEvent.create(MID, EventType.CLOSE))
    assert log.status == MatchStatus.CLOSED
    assert not log.can_undo

    with pytest.raises(MatchClosedError):
        log.apply(_record(2, "B"))
    with pytest.raises(MatchClosedError):
        log.undo()

    log.apply(ScoringEvent.create(MID, EventType.REOPEN))
    assert log.status == MatchStatus.IN_PROGRESS
    log.apply(_record(2, "B"))
    assert log.hole(2).winner == Winner.B


def test_closing_event_is_the_latest_close():
    log = EventLog(MID)
    log.apply(_record(1, "A"))
    assert log.closing_event is None
    close = ScoringEvent.create(MID, EventType.CLOSE, payload={"concededTo": "A"})
    log.apply(close)
    assert log.closing_event is close


def test_hole_event_without_winner_is_rejected():
    log = EventLog(MID)
    with pytest.raises(ValueError):
        log.apply(ScoringEvent.create(MID, EventType.RECORD, 1, {}))
    with pytest.raises(ValueError):
        log.apply(_record(19, "A"))


def test_event_for_another_match_is_rejected():
    log = EventLog(MID)
    with pytest.raises(ValueError):
        log.apply(ScoringEvent.create("other", EventType.RECORD, 1, {"winner": "A"}))


def test_transitions():
    assert transition(MatchStatus.NOT_STARTED, MatchStatus.IN_PROGRESS) == MatchStatus.IN_PROGRESS
    assert transition(MatchStatus.IN_PROGRESS, MatchStatus.CLOSED) == MatchStatus.CLOSED
    assert (
        transition(MatchStatus.CLOSED, MatchStatus.IN_PROGRESS, reopen=True)
        == MatchStatus.IN_PROGRESS
    )
    with pytest.raises(InvalidTransition):
        transition(MatchStatus.CLOSED, MatchStatus.IN_PROGRESS)
    with pytest.raises(InvalidTransition):
        transition(MatchStatus.NOT_STARTED, MatchStatus.CLOSED)
    with pytest.raises(InvalidTransition):
        transition(MatchStatus.IN_PROGRESS, MatchStatus.IN_PROGRESS, reopen=True)


def test_replay_is_deterministic():
    events = [_record(1, "A"), _record(2, "B"), _record(1, "halved", EventType.EDIT)]
    first = EventLog.replay(MID, events)
    second = EventLog.replay(MID, events)
    assert first.results == second.results
    assert first.hole(1).winner == Winner.HALVED


def test_lenient_replay_skips_events_that_no_longer_apply():
    close = ScoringEvent.create(MID, EventType.CLOSE)
    late = _record(2, "B")
    events = [_record(1, "A"), close, late]

    with pytest.raises(MatchClosedError):
        EventLog.replay(MID, events)

    log = EventLog.replay(MID, events, strict=False)
    assert log.rejected == [late.id]
    assert log.hole(2).winner == Winner.UNPLAYED
    assert log.status == MatchStatus.CLOSED


def test_hole_result_round_trips_through_dict():
    result = HoleResult(hole_number=4, winner=Winner.A, strokes={"p1": 4}, net={"A": 3, "B": 4})
    assert HoleResult.from_dict(result.to_dict()) == result
