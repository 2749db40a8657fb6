from __future__ import annotations

from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient

from myrad import main as app_main
from myrad.api.routes import internal_helpers
from myrad.services.admission import AdmissionGate

INTERNAL_TOKEN = "internal-secret"


def _settings(**overrides) -> SimpleNamespace:
    values = {
        "log_level": "INFO",
        "app_env": "test",
        "enable_openapi_docs": False,
        "internal_api_token": INTERNAL_TOKEN,
        "internal_api_allowlist": "127.0.0.1/32",
        "internal_api_trusted_proxies": "",
    }
    values.update(overrides)
    return SimpleNamespace(**values)


@pytest.fixture
def admission_gate() -> AdmissionGate:
    return AdmissionGate(2, max_queue=0)


@pytest.fixture
def internal_client(monkeypatch, fake_store, admission_gate) -> TestClient:
    """Client whose requests come from an allowlisted peer and carry the internal token."""
    settings = _settings()
    monkeypatch.setattr(app_main, "get_settings", lambda: settings)
    monkeypatch.setattr(internal_helpers, "get_settings", lambda: settings)
    monkeypatch.setattr(internal_helpers, "extract_client_ip", lambda request, **kwargs: "127.0.0.1")
    client = TestClient(app_main.create_app(store=fake_store, admission_gate=admission_gate))
    client.headers.update({"X-Internal-Token": INTERNAL_TOKEN})
    return client
