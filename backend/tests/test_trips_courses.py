HOLE_ORDER = list(range(1, 19))


def _create_trip(client, **extra):
    resp = client.post("/trips", json={"name": "Test Cup", **extra})
    assert resp.status_code == 201, resp.text
    return resp.json()


def _tee(**overrides):
    tee = {
        "name": "Blue",
        "slopeRating": 125,
        "courseRating": 72.5,
        "par": 72,
        "holeHandicaps": HOLE_ORDER,
        "holePars": [4] * 18,
    }
    tee.update(overrides)
    return tee


def test_trip_defaults_to_two_teams_and_default_target(client):
    trip = _create_trip(client)
    assert [t["name"] for t in trip["teams"]] == ["USA", "Europe"]
    assert trip["pointsToWin"] == 14.5

    fetched = client.get(f"/trips/{trip['id']}")
    assert fetched.status_code == 200
    assert fetched.json()["teams"] == trip["teams"]


def test_trip_requires_exactly_two_teams(client):
    resp = client.post("/trips", json={"name": "Odd", "teams": [{"name": "Solo"}]})
    assert resp.status_code == 422


def test_missing_trip_returns_problem(client):
    resp = client.get("/trips/nope")
    assert resp.status_code == 404
    body = resp.json()
    assert body["code"] == "trip_not_found"
    assert body["status"] == 404


def test_player_roster_and_index_update(client):
    trip = _create_trip(client, pointsToWin=3)
    team = trip["teams"][0]
    resp = client.post(
        f"/trips/{trip['id']}/players",
        json={"name": " Ann ", "teamId": team["id"], "handicapIndex": 8.4},
    )
    assert resp.status_code == 201
    player = resp.json()
    assert player["name"] == "Ann"
    assert player["teamId"] == team["id"]

    resp = client.patch(
        f"/trips/{trip['id']}/players/{player['id']}", json={"handicapIndex": 6.1}
    )
    assert resp.status_code == 200
    assert resp.json()["handicapIndex"] == 6.1

    resp = client.patch(f"/trips/{trip['id']}/players/ghost", json={"handicapIndex": 6.1})
    assert resp.status_code == 404
    assert resp.json()["code"] == "player_not_found"


def test_player_on_foreign_team_is_rejected(client):
    trip = _create_trip(client)
    other = _create_trip(client)
    resp = client.post(
        f"/trips/{trip['id']}/players",
        json={"name": "Bob", "teamId": other["teams"][0]["id"]},
    )
    assert resp.status_code == 409
    assert resp.json()["code"] == "unknown_team"


def test_empty_trip_standings_and_stats(client):
    trip = _create_trip(client, pointsToWin=2.5)
    client.post(
        f"/trips/{trip['id']}/players",
        json={"name": "Idle", "teamId": trip["teams"][1]["id"]},
    )

    standings = client.get(f"/trips/{trip['id']}/standings").json()
    assert standings["pointsToWin"] == 2.5
    assert standings["matchesTotal"] == 0
    assert standings["decided"] is False
    assert {t["points"] for t in standings["teams"]} == {0.0}

    stats = client.get(f"/trips/{trip['id']}/players/stats").json()
    assert stats["ranking"] == []
    assert [r["name"] for r in stats["roster"]] == ["Idle"]
    assert stats["roster"][0]["noMatches"] is True
    assert stats["roster"][0]["winPct"] is None


def test_course_create_and_fetch(client):
    resp = client.post("/courses", json={"name": "Valderrama", "teeSets": [_tee()]})
    assert resp.status_code == 201, resp.text
    course = resp.json()
    tee = course["teeSets"][0]
    assert tee["holeHandicaps"] == HOLE_ORDER

    fetched = client.get(f"/courses/{course['id']}").json()
    assert fetched["teeSets"][0]["id"] == tee["id"]


def test_course_rejects_bad_hole_handicaps(client):
    resp = client.post(
        "/courses", json={"name": "Bad", "teeSets": [_tee(holeHandicaps=[1] * 18)]}
    )
    assert resp.status_code == 422
    body = resp.json()
    assert body["code"] == "invalid_hole_handicaps"
    assert "permutation" in body["detail"]


def test_course_rejects_pars_not_matching_total(client):
    resp = client.post(
        "/courses", json={"name": "Bad", "teeSets": [_tee(holePars=[3] * 18)]}
    )
    assert resp.status_code == 422
    assert resp.json()["code"] == "invalid_course_data"


def test_stroke_allocation_for_index(client):
    course = client.post("/courses", json={"name": "C", "teeSets": [_tee()]}).json()
    tee_id = course["teeSets"][0]["id"]

    resp = client.get(f"/tee-sets/{tee_id}/strokes", params={"index": 10})
    assert resp.status_code == 200
    body = resp.json()
    assert body["courseHandicap"] == 12
    assert body["slopeFallback"] is False
    assert body["strokes"] == [1] * 12 + [0] * 6
    assert body["valid"] is True


def test_stroke_allocation_reports_slope_fallback(client):
    course = client.post(
        "/courses", json={"name": "C", "teeSets": [_tee(slopeRating=None, holeHandicaps=None)]}
    ).json()
    tee_id = course["teeSets"][0]["id"]

    body = client.get(f"/tee-sets/{tee_id}/strokes", params={"index": 10}).json()
    # 10 + 0.5 rounds half away from zero
    assert body["courseHandicap"] == 11
    assert body["slopeFallback"] is True
    assert body["slopeUsed"] == 113
    assert body["valid"] is False
    assert body["error"] == "hole handicap ranks are missing"


def test_zero_points_to_win_is_kept(client):
    trip = _create_trip(client, pointsToWin=0)
    assert trip["pointsToWin"] == 0
    standings = client.get(f"/trips/{trip['id']}/standings").json()
    assert standings["pointsToWin"] == 0


def test_validate_pairings_endpoint(client):
    trip = _create_trip(client)
    usa, eur = trip["teams"]
    ids = {}
    for name, team, index in (("Ann", usa, 4.0), ("Amy", usa, 6.0), ("Bea", eur, 5.0)):
        ids[name] = client.post(
            f"/trips/{trip['id']}/players",
            json={"name": name, "teamId": team["id"], "handicapIndex": index},
        ).json()["id"]

    resp = client.post(
        f"/trips/{trip['id']}/pairings/validate",
        json={
            "pairings": [
                {"format": "singles", "sideA": [ids["Ann"]], "sideB": [ids["Bea"]]},
                {"format": "fourball", "sideA": [ids["Ann"], ids["Amy"]], "sideB": [ids["Bea"]]},
            ]
        },
    )
    assert resp.status_code == 200, resp.text
    body = resp.json()
    assert body["isValid"] is False
    assert body["errors"] == ["Match 2 needs 2 side B player(s)"]
    assert "Ann appears in multiple side A pairings" in body["warnings"]
    assert "Bea appears in multiple side B pairings" in body["warnings"]
    # spreads 1.0 and 0.0
    assert body["fairnessScore"] == 95.0

    resp = client.post("/trips/ghost/pairings/validate", json={"pairings": [{"format": "singles"}]})
    assert resp.status_code == 404
