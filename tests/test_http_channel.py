"""
Unit Tests for the HTTP Channel

Test coverage for:
- Service info and health endpoints
- POST /messages round trip through the router
- POST /audio upload validation
"""

from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from commeta import __version__
from commeta.ai_client import AudioIntent
from commeta.main import MAX_AUDIO_BYTES, create_app
from tests.conftest import TEST_IDENTITY


@pytest.fixture
def client(settings, router):
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    return TestClient(create_app(settings=settings, router=router))


class TestServiceEndpoints:
    """Tests for / and /health."""

    def test_root(self, client):
        response = client.get("/")
        assert response.status_code == 200
        data = response.json()
        assert data["service"] == "Commeta"
        assert data["version"] == __version__

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        components = response.json()["components"]
        assert components["ai_enabled"] is False
        assert components["data_dir_writable"] is True
        assert set(components) >= {"git", "code_agent", "deploy_cli"}


class TestMessages:
    """Tests for POST /messages."""

    def test_help(self, client):
        response = client.post("/messages", json={"identity": TEST_IDENTITY, "text": "/help"})
        assert response.status_code == 200
        data = response.json()
        assert data["identity"] == TEST_IDENTITY
        assert len(data["replies"]) == 1
        assert "/vibe" in data["replies"][0]
        assert data["phase"] == "idle"

    def test_phase_is_reported(self, client, router, registry, settings):
        record = registry.add(TEST_IDENTITY, "https://github.com/dev/alpha.git")
        Path(record.local_path).mkdir(parents=True)

        response = client.post("/messages", json={"identity": TEST_IDENTITY, "text": "/vibe add a footer"})

        data = response.json()
        assert data["replies"][-1].endswith("(yes/no)")
        assert data["phase"] == "awaiting_commit_confirmation"

    def test_blank_identity_rejected(self, client):
        response = client.post("/messages", json={"identity": "   ", "text": "/help"})
        assert response.status_code == 422

    def test_missing_text_rejected(self, client):
        response = client.post("/messages", json={"identity": TEST_IDENTITY})
        assert response.status_code == 422


class TestAudio:
    """Tests for POST /audio."""

    def test_voice_note(self, client, ai):
        ai.transcribe.return_value = "what do I have locally"
        ai.analyze_intent.return_value = AudioIntent(
            intent="command", transcription="what do I have locally", command="/local"
        )

        response = client.post(
            "/audio",
            data={"identity": TEST_IDENTITY},
            files={"file": ("voice.ogg", b"OggS-audio", "audio/ogg")},
        )

        assert response.status_code == 200
        replies = response.json()["replies"]
        assert replies[0] == '🎤 Got it: "what do I have locally"'
        ai.transcribe.assert_awaited_once_with(b"OggS-audio", "voice.ogg")

    def test_empty_upload(self, client):
        response = client.post(
            "/audio",
            data={"identity": TEST_IDENTITY},
            files={"file": ("voice.ogg", b"", "audio/ogg")},
        )
        assert response.status_code == 400

    def test_too_large_upload(self, client):
        response = client.post(
            "/audio",
            data={"identity": TEST_IDENTITY},
            files={"file": ("voice.ogg", b"0" * (MAX_AUDIO_BYTES + 1), "audio/ogg")},
        )
        assert response.status_code == 413
