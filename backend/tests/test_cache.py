import pytest

from app.cache import PLAYER_STATS, STANDINGS, TripViewCache


@pytest.mark.anyio
async def test_invalidate_trip_drops_every_view_of_that_trip_only():
    cache = TripViewCache(ttl_seconds=60)
    await cache.put("t1", STANDINGS, "s1")
    await cache.put("t1", PLAYER_STATS, "p1")
    await cache.put("t2", STANDINGS, "s2")

    await cache.invalidate_trip("t1")

    assert await cache.get("t1", STANDINGS) is None
    assert await cache.get("t1", PLAYER_STATS) is None
    assert await cache.get("t2", STANDINGS) == "s2"


@pytest.mark.anyio
async def test_non_positive_ttl_disables_caching():
    cache = TripViewCache(ttl_seconds=0)
    await cache.put("t1", STANDINGS, "s1")
    assert await cache.get("t1", STANDINGS) is None


def test_standings_reflect_new_results(client):
    trip = client.post("/trips", json={"name": "Cache Cup", "pointsToWin": 1}).json()
    first = client.get(f"/trips/{trip['id']}/standings").json()
    assert first["decided"] is False

    usa, eur = trip["teams"]
    ids = [
        client.post(
            f"/trips/{trip['id']}/players", json={"name": name, "teamId": team["id"]}
        ).json()["id"]
        for name, team in (("Ann", usa), ("Bea", eur))
    ]
    mid = client.post(
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
    ).json()["id"]
    client.post(f"/matches/{mid}/holes", json={"holeNumber": 1, "winner": "A"})
    client.post(f"/matches/{mid}/close")

    after = client.get(f"/trips/{trip['id']}/standings").json()
    assert after["decided"] is True
    assert after["winnerId"] == usa["id"]
