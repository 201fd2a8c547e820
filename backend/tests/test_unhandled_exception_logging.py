import logging

from fastapi import FastAPI
from fastapi.testclient import TestClient

from app.exceptions import MatchClosed, install_problem_handlers


def _app() -> FastAPI:
    app = FastAPI()
    install_problem_handlers(app)

    @app.get("/boom")
    def boom():
        raise ValueError("boom")

    @app.get("/closed")
    def closed():
        raise MatchClosed("match m1 is closed; reopen it before changing hole results")

    return app


def test_unhandled_exception_logs_traceback(caplog):
    client = TestClient(_app(), raise_server_exceptions=False)
    with caplog.at_level(logging.ERROR):
        response = client.get("/boom")

    assert response.status_code == 500
    assert response.json()["code"] == "internal_server_error"
    record = next(
        (r for r in caplog.records if r.message.startswith("Unhandled exception")), None
    )
    assert record is not None
    assert record.exc_info[0] is ValueError
    assert "ValueError: boom" in caplog.text


def test_domain_exception_renders_problem_json():
    client = TestClient(_app())
    response = client.get("/closed")

    assert response.status_code == 409
    assert response.headers["content-type"] == "application/problem+json"
    body = response.json()
    assert body["code"] == "match_closed"
    assert body["title"] == "Match closed"
    assert body["instance"] == "/closed"
