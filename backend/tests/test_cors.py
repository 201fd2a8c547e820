import importlib
import os
import sys

import pytest
from fastapi.testclient import TestClient


def _cleanup_app_modules():
    for module in [name for name in sys.modules if name == "app" or name.startswith("app.")]:
        sys.modules.pop(module, None)


@pytest.fixture(autouse=True)
def app_import_isolation(monkeypatch):
    app_path = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
    saved = {
        name: module
        for name, module in sys.modules.items()
        if name == "app" or name.startswith("app.")
    }
    _cleanup_app_modules()
    monkeypatch.syspath_prepend(app_path)
    try:
        yield
    finally:
        _cleanup_app_modules()
        sys.modules.update(saved)


def test_rejects_wildcard_with_credentials(monkeypatch):
    monkeypatch.setenv("ALLOWED_ORIGINS", "*")
    monkeypatch.setenv("ALLOW_CREDENTIALS", "true")
    with pytest.raises(ValueError):
        importlib.import_module("app.main")


def test_requires_allowed_origins(monkeypatch):
    monkeypatch.delenv("ALLOWED_ORIGINS", raising=False)
    monkeypatch.delenv("ALLOW_CREDENTIALS", raising=False)
    with pytest.raises(ValueError):
        importlib.import_module("app.main")


def test_app_serves_health_with_explicit_origins(monkeypatch):
    monkeypatch.setenv("ALLOWED_ORIGINS", "https://cup.example.com")
    main = importlib.import_module("app.main")
    with TestClient(main.app) as client:
        assert client.get("/healthz").json() == {"status": "ok"}
        resp = client.get("/api/healthz", headers={"Origin": "https://cup.example.com"})
        assert resp.status_code == 200
        assert resp.headers["access-control-allow-origin"] == "https://cup.example.com"
