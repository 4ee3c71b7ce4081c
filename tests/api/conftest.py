from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from app.api.routes import internal_helpers
from app.main import app
from tests.api.internal_api_fixtures import internal_settings


@pytest.fixture
def internal_client(monkeypatch: pytest.MonkeyPatch) -> TestClient:
    monkeypatch.setattr(internal_helpers, "get_settings", lambda: internal_settings())
    return TestClient(app, client=("127.0.0.1", 5100))
