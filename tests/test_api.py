from fastapi.testclient import TestClient

from api.app import create_app
from conftest import T0, FakeProvider, candle, make_signal
from engine.models import SignalStatus


def _client(store, settings, provider=None):
    app = create_app(settings, store=store, provider=provider or FakeProvider())
    return TestClient(app)


def test_health(store, settings):
    with _client(store, settings) as client:
        assert client.get("/health").json() == {"status": "ok"}


def test_trigger_requires_credentials(store, settings):
    with _client(store, settings) as client:
        assert client.post("/internal/evaluate-trades").status_code == 401
        resp = client.post("/internal/evaluate-trades", headers={"Authorization": "Basic c2VjcmV0"})
        assert resp.status_code == 401


def test_trigger_rejects_unknown_token(store, settings):
    with _client(store, settings) as client:
        resp = client.post("/internal/evaluate-trades", headers={"Authorization": "Bearer nope"})
        assert resp.status_code == 403


def test_trigger_runs_a_pass(store, settings):
    signal = store.add_signal(make_signal(id=None, declared_entry_ts=T0 - 600))
    provider = FakeProvider([candle(T0 - 540, 1.0995, 1.1005)])
    with _client(store, settings, provider) as client:
        resp = client.post("/internal/evaluate-trades", headers={"Authorization": "Bearer secret-2"})

    assert resp.status_code == 200
    body = resp.json()
    assert body["evaluated"] == 1
    assert body["entered"] == 1
    assert body["errors"] == 0
    assert store.get_signal(signal.id).status == SignalStatus.ENTERED
    assert provider.closed


def test_trigger_failure_returns_generic_error(store, settings):
    app = create_app(settings, store=store, provider=FakeProvider())

    async def broken():
        raise RuntimeError("database is locked")

    app.state.orchestrator.run_once = broken
    with TestClient(app) as client:
        resp = client.post("/internal/evaluate-trades", headers={"Authorization": "Bearer secret-1"})
    assert resp.status_code == 500
    assert resp.json() == {"error": "Internal Server Error"}
