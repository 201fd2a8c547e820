import pytest
from pywebpush import WebPushException
from sqlalchemy import select

from app import config, db
from app.models import PushSubscription, Trip
from app.services import notifications

ENDPOINT = "https://push.example.com/sub/1"


def _subscribe(client, trip_id=None, endpoint=ENDPOINT, auth="auth-1"):
    return client.post(
        "/push/subscribe",
        json={
            "subscription": {
                "endpoint": endpoint,
                "keys": {"p256dh": "key-1", "auth": auth},
            },
            "tripId": trip_id,
        },
    )


def test_subscribe_upserts_by_endpoint(client):
    trip = client.post("/trips", json={"name": "Push Cup"}).json()
    first = _subscribe(client, trip["id"])
    assert first.status_code == 201, first.text
    assert first.json()["tripId"] == trip["id"]

    second = _subscribe(client, trip["id"], auth="auth-2")
    assert second.status_code == 201
    assert second.json()["id"] == first.json()["id"]


def test_subscribe_rejects_plain_http_and_unknown_trip(client):
    resp = _subscribe(client, endpoint="http://push.example.com/sub/1")
    assert resp.status_code == 422

    resp = _subscribe(client, trip_id="ghost")
    assert resp.status_code == 404
    assert resp.json()["code"] == "trip_not_found"


def test_unsubscribe(client):
    _subscribe(client)
    resp = client.request("DELETE", "/push/subscribe", json={"endpoint": ENDPOINT})
    assert resp.status_code == 204
    resp = client.request("DELETE", "/push/subscribe", json={"endpoint": ENDPOINT})
    assert resp.status_code == 404


class _Response:
    def __init__(self, status_code):
        self.status_code = status_code


@pytest.mark.anyio
async def test_notify_trip_prunes_expired_subscriptions(monkeypatch):
    monkeypatch.setattr(config, "VAPID_PUBLIC_KEY", "public")
    monkeypatch.setattr(config, "VAPID_PRIVATE_KEY", "private")
    sent = []

    def fake_webpush(subscription_info, **kwargs):
        sent.append(subscription_info["endpoint"])
        if subscription_info["endpoint"].endswith("gone"):
            raise WebPushException("gone", response=_Response(410))

    monkeypatch.setattr(notifications, "webpush", fake_webpush)

    async with db.AsyncSessionLocal() as session:
        session.add(Trip(id="t1", name="Push Cup"))
        await session.commit()
        for endpoint in ("https://push.example.com/live", "https://push.example.com/gone"):
            await notifications.register_push_subscription(
                session, endpoint=endpoint, p256dh="k", auth="a", trip_id="t1"
            )
        count = await notifications.notify_trip(session, "t1", {"title": "Match final"})
        remaining = (await session.execute(select(PushSubscription.endpoint))).scalars().all()

    assert count == 2
    assert sorted(sent) == ["https://push.example.com/gone", "https://push.example.com/live"]
    assert remaining == ["https://push.example.com/live"]


@pytest.mark.anyio
async def test_notify_trip_is_a_no_op_without_vapid_keys(monkeypatch):
    monkeypatch.setattr(config, "VAPID_PRIVATE_KEY", None)
    async with db.AsyncSessionLocal() as session:
        assert await notifications.notify_trip(session, "t1", {"title": "x"}) == 0
