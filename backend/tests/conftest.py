import os
import sys
import asyncio

import fakeredis.aioredis
import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

# Importing app.main requires explicit CORS origins.
os.environ.setdefault("ALLOWED_ORIGINS", "http://localhost:3000")
# Honour any externally provided DATABASE_URL (e.g. CI may set a file-backed DB)
# but fall back to an in-memory SQLite database so local runs remain isolated.
DEFAULT_DB_URL = os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

# Register every model with the declarative Base before create_all runs.
from app import db, models  # noqa: E402,F401
from app.cache import standings_cache  # noqa: E402
from app.exceptions import install_problem_handlers  # noqa: E402
from app.routers import courses, matches, notifications, streams, sync, trips  # noqa: E402


@pytest.fixture(scope="session")
def session_loop():
    """Single event loop for all sync fixtures that need to run async DB code."""

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    yield loop
    loop.close()


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture(autouse=True, scope="session")
def ensure_database(session_loop):
    """Ensure the test database starts clean and honours DATABASE_URL."""

    mp = pytest.MonkeyPatch()
    desired_url = os.getenv("DATABASE_URL") or DEFAULT_DB_URL
    mp.setenv("DATABASE_URL", desired_url)

    if desired_url.startswith("sqlite") and ":memory:" not in desired_url:
        path = desired_url.split("///")[-1]
        if os.path.exists(path):
            os.remove(path)

    db.engine = None
    db.AsyncSessionLocal = None
    yield
    if db.engine is not None:
        session_loop.run_until_complete(db.engine.dispose())
        db.engine = None

    if db.AsyncSessionLocal is not None:
        db.AsyncSessionLocal = None
    mp.undo()


async def _reset_schema(engine) -> None:
    async with engine.begin() as conn:
        await conn.run_sync(db.Base.metadata.drop_all)
        await conn.run_sync(db.Base.metadata.create_all)


@pytest.fixture(autouse=True)
def reset_schema(session_loop):
    """Start every test from empty tables and an empty standings cache."""

    engine = db.engine or db.get_engine()
    session_loop.run_until_complete(_reset_schema(engine))
    standings_cache.reset()
    yield


@pytest.fixture(autouse=True)
def fake_redis(monkeypatch):
    """Route live-update publishing to an in-process Redis."""

    client = fakeredis.aioredis.FakeRedis(decode_responses=True)
    monkeypatch.setattr(streams, "redis_client", client)
    yield client


def build_app() -> FastAPI:
    app = FastAPI()
    install_problem_handlers(app)
    for module in (trips, courses, matches, sync, notifications, streams):
        app.include_router(module.router)
    return app


@pytest.fixture
def client():
    with TestClient(build_app()) as test_client:
        yield test_client
