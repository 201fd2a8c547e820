import asyncio
import json
from datetime import datetime, timedelta, timezone

import httpx
import pytest

from app.routers import sync as sync_router
from app.scoring.events import EventLog, EventType, ScoringEvent, SyncStatus
from app.services.sync import LOCAL_ONLY, IncomingEvent, SyncResult, reconcile
from app.services.sync_client import event_to_wire, push_pending_events


def _make_match(client):
    trip = client.post("/trips", json={"name": "Sync Cup"}).json()
    usa, eur = trip["teams"]
    ids = []
    for name, team in (("Ann", usa), ("Bea", eur)):
        resp = client.post(
            f"/trips/{trip['id']}/players", json={"name": name, "teamId": team["id"]}
        )
        ids.append(resp.json()["id"])
    resp = client.post(
        "/matches",
        json={
            "tripId": trip["id"],
            "format": "singles",
            "teamAId": usa["id"],
            "teamBId": eur["id"],
            "participants": [
                {"side": "A", "playerIds": [ids[0]]},
                {"side": "B", "playerIds": [ids[1]]},
            ],
        },
    )
    assert resp.status_code == 201, resp.text
    return resp.json()["id"]


@pytest.fixture
def match_id(client):
    return _make_match(client)


def _event(eid, hole, winner, ts, etype="record_result"):
    return {
        "id": eid,
        "type": etype,
        "holeNumber": hole,
        "data": {"winner": winner},
        "timestamp": ts.isoformat(),
    }


def test_sync_health(client):
    body = client.get("/sync/scores").json()
    assert body["status"] == "ok"
    assert body["endpoint"] == "score-sync"
    assert body["hasRemoteDb"] is True


def test_sync_rejects_malformed_payload(client):
    resp = client.post("/sync/scores", json={"events": []})
    assert resp.status_code == 400
    assert resp.json()["detail"] == "Invalid payload: matchId and events array required"

    resp = client.post("/sync/scores", content=b"not json", headers={"content-type": "application/json"})
    assert resp.status_code == 400


def test_sync_unknown_match(client):
    resp = client.post("/sync/scores", json={"matchId": "ghost", "events": []})
    assert resp.status_code == 404


def test_sync_merges_events_and_is_idempotent(client, match_id):
    now = datetime.now(timezone.utc)
    events = [
        _event("dev-1", 1, "A", now - timedelta(minutes=5)),
        _event("dev-2", 2, "B", now - timedelta(minutes=4)),
    ]
    body = client.post(
        "/sync/scores", json={"matchId": match_id, "events": events},
        headers={"X-Device-Id": "phone-1"},
    ).json()
    assert body == {"success": True, "synced": 2, "failed": 0, "mode": "remote"}

    again = client.post("/sync/scores", json={"matchId": match_id, "events": events}).json()
    assert again["synced"] == 2

    match = client.get(f"/matches/{match_id}").json()
    assert [e["id"] for e in match["events"]] == ["dev-1", "dev-2"]
    assert all(e["syncStatus"] == "synced" for e in match["events"])
    assert match["holes"][0]["winner"] == "A"
    assert match["holes"][1]["winner"] == "B"
    assert match["status"] == "in_progress"
    assert match["lastSyncedAt"] is not None


def test_sync_reports_per_event_failures(client, match_id):
    now = datetime.now(timezone.utc)
    good = _event("ok-1", 1, "A", now)
    missing_hole = {"id": "bad-1", "type": "record_result", "timestamp": now.isoformat()}
    bad_time = _event("bad-2", 3, "A", now)
    bad_time["timestamp"] = "yesterday"

    body = client.post(
        "/sync/scores",
        json={"matchId": match_id, "events": [good, missing_hole, bad_time]},
    ).json()
    assert body["success"] is False
    assert body["synced"] == 1
    assert body["failed"] == 2
    assert body["failedEventIds"] == ["bad-1", "bad-2"]
    assert body["errors"][0].startswith("Event bad-1:")

    match = client.get(f"/matches/{match_id}").json()
    assert [e["id"] for e in match["events"]] == ["ok-1"]


def test_later_timestamp_wins_across_devices(client, match_id):
    now = datetime.now(timezone.utc)
    # Device 2 recorded hole 1 later than device 1, but syncs first.
    client.post(
        "/sync/scores",
        json={"matchId": match_id, "events": [_event("d2-1", 1, "B", now)]},
    )
    client.post(
        "/sync/scores",
        json={
            "matchId": match_id,
            "events": [_event("d1-1", 1, "A", now - timedelta(minutes=10))],
        },
    )
    match = client.get(f"/matches/{match_id}").json()
    assert [e["id"] for e in match["events"]] == ["d1-1", "d2-1"]
    assert match["holes"][0]["winner"] == "B"


def test_event_id_from_another_match_fails(client, match_id):
    now = datetime.now(timezone.utc)
    client.post(
        "/sync/scores", json={"matchId": match_id, "events": [_event("shared", 1, "A", now)]}
    )
    other_id = _make_match(client)
    body = client.post(
        "/sync/scores", json={"matchId": other_id, "events": [_event("shared", 1, "B", now)]}
    ).json()
    assert body["failed"] == 1
    assert "already used by match" in body["errors"][0]
    assert body["failedEventIds"] == ["shared"]


def test_local_only_mode_without_database(client, monkeypatch):
    monkeypatch.delenv("DATABASE_URL")
    body = client.post(
        "/sync/scores",
        json={"matchId": "anything", "events": [{"id": "e1"}, {"id": "e2"}]},
    ).json()
    assert body == {"success": True, "synced": 2, "failed": 0, "mode": LOCAL_ONLY}
    assert client.get("/sync/scores").json()["hasRemoteDb"] is False


class _SlowStore:
    def __init__(self):
        self.committed = False
        self.marked = False

    async def upsert_event(self, match_id: str, event: IncomingEvent) -> bool:
        if event.id == "slow":
            await asyncio.sleep(1)
        return True

    async def mark_synced(self, match_id, when):
        self.marked = True

    async def commit(self):
        self.committed = True


@pytest.mark.anyio
async def test_reconcile_times_out_single_events():
    store = _SlowStore()
    now = datetime.now(timezone.utc).isoformat()
    result = await reconcile(
        "m1",
        [
            {"id": "slow", "type": "close_match", "timestamp": now},
            {"id": "fast", "type": "close_match", "timestamp": now},
        ],
        store,
        timeout=0.01,
    )
    assert result.synced == 1
    assert result.failed_event_ids == ["slow"]
    assert "timed out" in result.errors[0]
    assert store.marked and store.committed


@pytest.mark.anyio
async def test_reconcile_without_store_is_local_only():
    result = await reconcile("m1", [{"id": "a"}], None)
    assert result == SyncResult(success=True, synced=1, mode=LOCAL_ONLY)


def test_event_to_wire_carries_previous_state():
    log = EventLog("m1")
    log.apply(ScoringEvent.create("m1", EventType.RECORD, 4, {"winner": "A"}))
    wire = event_to_wire(log.events[0])
    assert wire["holeNumber"] == 4
    assert wire["type"] == "record_result"
    assert wire["data"]["winner"] == "A"
    assert wire["data"]["previousState"]["winner"] == "unplayed"


@pytest.mark.anyio
async def test_push_pending_events_keeps_failed_events_local():
    log = EventLog("m1")
    first = ScoringEvent.create("m1", EventType.RECORD, 1, {"winner": "A"})
    second = ScoringEvent.create("m1", EventType.RECORD, 2, {"winner": "B"})
    log.apply(first)
    log.apply(second)
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["body"] = json.loads(request.content)
        seen["device"] = request.headers.get("x-device-id")
        return httpx.Response(
            200,
            json={
                "success": False,
                "synced": 1,
                "failed": 1,
                "mode": "remote",
                "errors": [f"Event {second.id}: boom"],
                "failedEventIds": [second.id],
            },
        )

    async with httpx.AsyncClient(
        transport=httpx.MockTransport(handler), base_url="http://test"
    ) as http:
        result = await push_pending_events(http, "m1", log, device_id="phone-1")

    assert seen["device"] == "phone-1"
    assert [e["id"] for e in seen["body"]["events"]] == [first.id, second.id]
    assert result.failed_event_ids == [second.id]
    assert first.sync_status == SyncStatus.SYNCED
    assert second.sync_status == SyncStatus.LOCAL


def _holes(winners, start):
    return [
        _event(f"h-{n}", n, winner, start + timedelta(minutes=n))
        for n, winner in enumerate(winners, start=1)
    ]


def test_synced_close_out_closes_the_match(client, match_id):
    start = datetime.now(timezone.utc) - timedelta(hours=3)
    body = client.post(
        "/sync/scores", json={"matchId": match_id, "events": _holes(["A"] * 10, start)}
    ).json()
    assert body["synced"] == 10

    match = client.get(f"/matches/{match_id}").json()
    assert match["status"] == "closed"
    assert match["state"]["margin"] == "10 and 8"
    assert match["state"]["points"] == {"A": 1.0, "B": 0.0}
    assert match["events"][-1]["type"] == "close_match"

    standings = client.get(f"/trips/{match['tripId']}/standings").json()
    by_id = {t["teamId"]: t["points"] for t in standings["teams"]}
    assert by_id[match["teamAId"]] == 1.0

    # Syncing the same batch again does not add a second close.
    client.post("/sync/scores", json={"matchId": match_id, "events": _holes(["A"] * 10, start)})
    events = client.get(f"/matches/{match_id}").json()["events"]
    assert [e["type"] for e in events].count("close_match") == 1


def test_synced_eighteen_holes_close_halved(client, match_id):
    start = datetime.now(timezone.utc) - timedelta(hours=5)
    client.post(
        "/sync/scores", json={"matchId": match_id, "events": _holes(["A", "B"] * 9, start)}
    )
    match = client.get(f"/matches/{match_id}").json()
    assert match["status"] == "closed"
    assert match["state"]["result"] == "halved"
    assert match["state"]["margin"] == "Halved"
    assert match["state"]["points"] == {"A": 0.5, "B": 0.5}


def test_reopened_match_stays_open_across_sync(client, match_id):
    start = datetime.now(timezone.utc) - timedelta(hours=3)
    client.post("/sync/scores", json={"matchId": match_id, "events": _holes(["A"] * 10, start)})
    assert client.post(f"/matches/{match_id}/reopen").json()["status"] == "in_progress"

    # A later pass with nothing new does not close it again.
    client.post("/sync/scores", json={"matchId": match_id, "events": _holes(["A"] * 10, start)})
    assert client.get(f"/matches/{match_id}").json()["status"] == "in_progress"


def test_sync_broadcasts_the_synced_event_ids(client, match_id, monkeypatch):
    sent = []

    async def record(mid, message):
        sent.append((mid, message))

    monkeypatch.setattr(sync_router, "broadcast", record)
    now = datetime.now(timezone.utc)
    client.post(
        "/sync/scores",
        json={"matchId": match_id, "events": [_event("live-1", 1, "A", now)]},
    )
    assert len(sent) == 1
    mid, message = sent[0]
    assert mid == match_id
    assert message["events"] == ["live-1"]
    assert message["state"]["holesPlayed"] == 1
