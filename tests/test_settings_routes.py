import sys
from pathlib import Path

import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from bookstudio import create_app
from bookstudio.config import TestConfig
from bookstudio.extensions import db
from bookstudio.models import GlobalSettings
from bookstudio.services import generation


@pytest.fixture
def app_instance():
    app = create_app(TestConfig)
    ctx = app.app_context()
    ctx.push()
    yield app
    db.session.remove()
    ctx.pop()


@pytest.fixture
def client(app_instance):
    return app_instance.test_client()


def test_settings_defaults(client):
    response = client.get("/api/settings")

    assert response.status_code == 200
    data = response.get_json()
    assert data["api_key"] is None
    assert data["has_api_key"] is False
    assert data["api_endpoint"] == "https://api.openai.com/v1"
    assert data["model"] == "gpt-4o-mini"
    assert data["temperature"] == 0.8
    assert data["max_tokens"] == 4096


def test_api_key_is_masked(client):
    response = client.patch("/api/settings", json={"api_key": "sk-test-1234abcd", "model": "gpt-4o"})

    assert response.status_code == 200
    data = response.get_json()
    assert data["api_key"] == "****abcd"
    assert data["has_api_key"] is True
    assert data["model"] == "gpt-4o"
    assert db.session.get(GlobalSettings, "default").api_key == "sk-test-1234abcd"


def test_masked_key_round_trip_keeps_secret(client):
    client.patch("/api/settings", json={"api_key": "sk-test-1234abcd"})

    response = client.patch("/api/settings", json={"api_key": "****abcd", "temperature": 0.2})

    assert response.get_json()["temperature"] == 0.2
    assert db.session.get(GlobalSettings, "default").api_key == "sk-test-1234abcd"


def test_api_key_can_be_cleared(client):
    client.patch("/api/settings", json={"api_key": "sk-test-1234abcd"})

    response = client.patch("/api/settings", json={"api_key": ""})

    assert response.get_json()["has_api_key"] is False


def test_invalid_settings_are_rejected(client):
    response = client.patch("/api/settings", json={"temperature": 7})

    assert response.status_code == 400
    assert "error" in response.get_json()
    assert client.patch("/api/settings", json={"max_tokens": "many"}).status_code == 400


def test_stored_settings_configure_the_generator(client, app_instance):
    client.patch(
        "/api/settings",
        json={
            "api_key": "sk-stored-9999",
            "api_endpoint": "http://localhost:11434/v1",
            "model": "llama3",
            "max_tokens": 1024,
            "system_prompt": "Write in British English.",
        },
    )

    generator = generation._get_text_generator()

    assert generator.signature() == ("llama3", "sk-s…9999")
    assert generator.default_max_tokens == 1024
    assert generator.system_prompt == "Write in British English."
    assert generation._get_text_generator() is generator
