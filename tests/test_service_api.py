import asyncio
import json

import pytest
from fastapi.testclient import TestClient

from fakes import ScriptedBackend
from seo_llm_core import GenerationClient
from seo_llm_core.errors import AuthorizationFailure, InvalidRequest, RateLimited, ServerFault
from seo_llm_service.main import app, get_generation_client

SERVICE_KEYS = ["svc-key-aaaaaa", "svc-key-bbbbbb"]


@pytest.fixture
def service(monkeypatch, fast_settings):
    """Returns a factory wiring a scripted GenerationClient into the app."""
    monkeypatch.setenv("GEMINI_API_KEYS", ",".join(SERVICE_KEYS))
    monkeypatch.delenv("SERVICE_API_KEY", raising=False)
    monkeypatch.delenv("FAILURE_LOG_DIR", raising=False)

    def _wire(script):
        backend = ScriptedBackend(script)
        generation_client = GenerationClient(SERVICE_KEYS, settings=fast_settings, backend=backend)
        app.dependency_overrides[get_generation_client] = lambda: generation_client
        return generation_client, backend

    yield _wire
    app.dependency_overrides.clear()


def sse_events(body: str) -> list:
    return [line[len("data: "):] for line in body.splitlines() if line.startswith("data: ")]


def test_root_healthcheck(service) -> None:
    service([])
    with TestClient(app) as client:
        resp = client.get("/")
        assert resp.status_code == 200
        assert resp.json().get("Status")


def test_lifespan_builds_client_from_env(monkeypatch) -> None:
    monkeypatch.setenv("GEMINI_API_KEYS", "env-key-111111,env-key-222222,env-key-333333")
    monkeypatch.delenv("SERVICE_API_KEY", raising=False)
    with TestClient(app) as client:
        resp = client.get("/v1/key-pool-stats")
        assert resp.status_code == 200
        assert resp.json()["pool_size"] == 3


def test_generate_returns_repaired_json(service) -> None:
    service(['```json\n{"keywords": ["trail shoes"]}\n```'])
    with TestClient(app) as client:
        resp = client.post(
            "/v1/generate",
            json={"system_instruction": "sys", "user_prompt": "keywords please"},
        )
        assert resp.status_code == 200
        assert json.loads(resp.json()["text"]) == {"keywords": ["trail shoes"]}


def test_generate_plain_text(service) -> None:
    _, backend = service(["A plain answer."])
    with TestClient(app) as client:
        resp = client.post(
            "/v1/generate",
            json={
                "system_instruction": "sys",
                "user_prompt": "hi",
                "json_mode": False,
                "temperature": 0.5,
            },
        )
        assert resp.status_code == 200
        assert resp.json()["text"] == "A plain answer."
    assert backend.calls[0][1].temperature == 0.5


def test_generate_rejects_empty_prompt(service) -> None:
    service([])
    with TestClient(app) as client:
        resp = client.post("/v1/generate", json={"system_instruction": "sys", "user_prompt": ""})
        assert resp.status_code == 422


def test_terminal_condition_maps_to_503(service) -> None:
    service([AuthorizationFailure("403"), AuthorizationFailure("403")])
    with TestClient(app) as client:
        resp = client.post("/v1/generate", json={"system_instruction": "s", "user_prompt": "p"})
        assert resp.status_code == 503
        body = resp.json()
        assert body["condition"] == "all_credentials_dead"
        assert body["retryable"] is True


def test_invalid_request_maps_to_400(service) -> None:
    service([InvalidRequest("400 unsupported")])
    with TestClient(app) as client:
        resp = client.post("/v1/generate", json={"system_instruction": "s", "user_prompt": "p"})
        assert resp.status_code == 400
        assert resp.json()["condition"] == "invalid_request"


def test_stream_sends_chunks_then_done(service) -> None:
    service([RateLimited("429"), ["Hello", " world"]])
    with TestClient(app) as client:
        resp = client.post(
            "/v1/generate/stream", json={"system_instruction": "s", "user_prompt": "p"}
        )
        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("text/event-stream")
        events = sse_events(resp.text)
    assert [json.loads(e)["text"] for e in events[:-1]] == ["Hello", " world"]
    assert events[-1] == "[DONE]"


def test_stream_interruption_is_reported_in_band(service) -> None:
    service([["Hello", ServerFault("500")]])
    with TestClient(app) as client:
        resp = client.post(
            "/v1/generate/stream", json={"system_instruction": "s", "user_prompt": "p"}
        )
        assert resp.status_code == 200
        events = sse_events(resp.text)
    assert json.loads(events[0]) == {"text": "Hello"}
    assert json.loads(events[1])["error"]["condition"] == "stream_interrupted"
    assert events[-1] == "[DONE]"


def test_stream_failure_before_output_is_503(service) -> None:
    service([AuthorizationFailure("403"), AuthorizationFailure("403")])
    with TestClient(app) as client:
        resp = client.post(
            "/v1/generate/stream", json={"system_instruction": "s", "user_prompt": "p"}
        )
        assert resp.status_code == 503
        assert resp.json()["condition"] == "all_credentials_dead"


def test_reset_daily_clears_exhaustion(service) -> None:
    generation_client, _ = service([])
    asyncio.run(generation_client.pool.mark_cooldown(0, is_daily_quota=True))
    with TestClient(app) as client:
        stats = client.get("/v1/key-pool-stats").json()
        assert stats["daily_exhausted"] == 1
        assert stats["keys"][0]["daily_exhausted"] is True

        resp = client.post("/v1/key-pool/reset-daily")
        assert resp.status_code == 200
        assert resp.json()["daily_exhausted"] == 0


def test_service_api_key_is_enforced(service, monkeypatch) -> None:
    service([])
    monkeypatch.setenv("SERVICE_API_KEY", "service-secret")
    with TestClient(app) as client:
        assert client.get("/v1/key-pool-stats").status_code == 401
        resp = client.get(
            "/v1/key-pool-stats", headers={"Authorization": "Bearer service-secret"}
        )
        assert resp.status_code == 200
        assert resp.json()["pool_size"] == 2
