"""
HTTP surface tests (FastAPI TestClient, fake LLM injected via dependency override).
"""
import pytest
from fastapi.testclient import TestClient

import api_server
from api_server import app, get_pipeline
from conftest import FakeLLM, RecordingSleep, story_world_payload
from pipeline import StoryboardPipeline
from utils.errors import ConfigurationError

FOX_STORY = "A young fox must find her way home through an enchanted forest before winter."


@pytest.fixture
def client():
    api_server.run_event_history.clear()
    api_server.active_runs.clear()
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def _use_llm(config, llm):
    app.dependency_overrides[get_pipeline] = lambda: StoryboardPipeline(
        llm=llm, config=config, sleep=RecordingSleep()
    )


# ==========================================================================
# Test 1: Generation endpoints
# ==========================================================================

class TestStoryboardEndpoints:

    def test_generate(self, client, config):
        _use_llm(config, FakeLLM())
        response = client.post(
            "/api/storyboard/generate",
            params={"run_id": "fox1"},
            json={"story": FOX_STORY, "frameCount": 4, "aspectRatio": "16:9"},
        )

        assert response.status_code == 200
        body = response.json()
        assert body["runId"] == "fox1"
        scenes = body["storyboard"]["scenes"]
        assert [s["id"] for s in scenes] == [1, 2]
        assert scenes[0]["frames"][0]["imageUrl"].startswith("data:image/png")
        assert body["storyboard"]["storyWorld"]["premise"] == story_world_payload()["premise"]

        history = api_server.run_event_history["fox1"]
        assert history[-1]["type"] == "complete"
        progress = [e for e in history if e["type"] == "progress"]
        assert progress[-1]["progress"] == 100
        assert progress[-1]["phase"] == "complete"

    def test_continue(self, client, config):
        _use_llm(config, FakeLLM())
        generated = client.post("/api/storyboard/generate", json={"story": FOX_STORY, "frameCount": 2}).json()

        response = client.post(
            "/api/storyboard/continue",
            json={"storyboard": generated["storyboard"], "customInstruction": "The owl appears"},
        )
        assert response.status_code == 200
        scene = response.json()["scene"]
        assert scene["id"] == 2
        assert len(scene["frames"]) == 2

    @pytest.mark.parametrize("payload", [
        {"story": "", "frameCount": 4},
        {"story": FOX_STORY, "frameCount": 3},
        {"story": FOX_STORY, "frameCount": 4, "aspectRatio": "4:3"},
        {"story": FOX_STORY, "assets": {"logo": {"mimeType": "text/plain", "data": "AAAA"}}},
    ])
    def test_invalid_requests(self, client, config, payload):
        _use_llm(config, FakeLLM())
        response = client.post("/api/storyboard/generate", json=payload)
        assert response.status_code == 422

    def test_empty_storyboard_continuation(self, client, config):
        _use_llm(config, FakeLLM())
        response = client.post("/api/storyboard/continue", json={"storyboard": {"scenes": []}})
        assert response.status_code == 500
        assert "at least one scene" in response.json()["error"]


# ==========================================================================
# Test 2: Error mapping
# ==========================================================================

class TestErrorMapping:
    """Error categories map to HTTP status codes."""

    def test_malformed_output_is_502(self, client, config):
        _use_llm(config, FakeLLM(story_world=story_world_payload(attractors=3)))
        response = client.post("/api/storyboard/generate", json={"story": FOX_STORY, "frameCount": 2})

        assert response.status_code == 502
        body = response.json()
        assert body["code"] == "malformed_output"
        assert body["error"].startswith("Malformed model output")

    def test_missing_api_key_is_configuration_error(self, client):
        def missing_key():
            raise ConfigurationError("GEMINI_API_KEY is required. Set it in the environment or a .env file.")

        app.dependency_overrides[get_pipeline] = missing_key
        response = client.post("/api/storyboard/generate", json={"story": FOX_STORY, "frameCount": 2})

        assert response.status_code == 500
        assert response.json()["code"] == "configuration"
        assert "GEMINI_API_KEY" in response.json()["error"]

    def test_failed_run_records_error_event(self, client, config):
        _use_llm(config, FakeLLM(story_world=story_world_payload(attractors=3)))
        client.post("/api/storyboard/generate", params={"run_id": "bad"}, json={"story": FOX_STORY})
        assert api_server.run_event_history["bad"][-1]["type"] == "error"
        assert "bad" not in api_server.active_runs


# ==========================================================================
# Test 3: Auxiliary endpoints
# ==========================================================================

class TestAuxiliaryEndpoints:

    def test_health(self, client):
        response = client.get("/api/health")
        assert response.status_code == 200
        assert response.json()["status"] == "ok"

    def test_recent_errors(self, client, config):
        _use_llm(config, FakeLLM(story_world=story_world_payload(attractors=3)))
        client.post("/api/storyboard/generate", json={"story": FOX_STORY})

        errors = client.get("/api/errors", params={"service": "GenerationOrchestrator"}).json()["errors"]
        assert errors and errors[0]["severity"] == "critical"

    def test_cancel_unknown_run(self, client):
        assert client.post("/api/runs/nope/cancel").status_code == 404

    def test_websocket_replays_history(self, client, config):
        _use_llm(config, FakeLLM())
        client.post("/api/storyboard/generate", params={"run_id": "replay"}, json={"story": FOX_STORY, "frameCount": 2})

        with client.websocket_connect("/ws/replay") as websocket:
            first = websocket.receive_json()
            assert first["type"] == "progress"
            assert first["progress"] == 5
            websocket.send_text("ping")
            while True:
                message = websocket.receive_json()
                if message["type"] == "pong":
                    break

    def test_history_keeps_most_recent_runs(self, client, config, monkeypatch):
        monkeypatch.setattr(api_server, "MAX_HISTORY_RUNS", 2)
        _use_llm(config, FakeLLM())
        for run_id in ("a", "b", "c"):
            client.post("/api/storyboard/generate", params={"run_id": run_id}, json={"story": FOX_STORY, "frameCount": 2})

        assert list(api_server.run_event_history) == ["b", "c"]
        assert api_server.run_event_history["c"][-1]["type"] == "complete"
