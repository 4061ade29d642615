import json
import sys
from pathlib import Path

import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from bookstudio import create_app
from bookstudio.config import TestConfig
from bookstudio.extensions import db
from bookstudio.models import Book, Character
from bookstudio.services import characters, generation


@pytest.fixture
def app_ctx():
    app = create_app(TestConfig)
    ctx = app.app_context()
    ctx.push()
    yield app
    db.session.remove()
    ctx.pop()


@pytest.fixture
def book(app_ctx):
    book = Book(title="The Salt Road", genre="Fantasy", description="Smugglers cross a dead sea.")
    db.session.add(book)
    db.session.add(
        Character(
            book=book,
            name="Ilse Marr",
            role="protagonist",
            description="A smuggler with a debt.",
            motivation="Buy back her ship.",
        )
    )
    db.session.commit()
    return book


class RecordingGenerator:
    def __init__(self, reply: str) -> None:
        self.reply = reply
        self.calls = []

    def generate_response(self, prompt: str, **kwargs: object) -> str:
        self.calls.append((prompt, kwargs))
        return self.reply


def test_generate_character_builds_context_and_returns_all_fields(monkeypatch, book):
    reply = json.dumps(
        {
            "name": "Tobin Reed",
            "role": "antagonist|minor",
            "description": "A customs officer who never sleeps.",
            "personality": ["meticulous", "patient"],
            "motivation": "Catch Ilse in the act.",
        }
    )
    generator = RecordingGenerator(f"```json\n{reply}\n```")
    monkeypatch.setattr(generation, "_get_text_generator", lambda: generator)

    suggestion = characters.generate_character(book, "  a rival who hunts smugglers  ")

    assert suggestion.character == {
        "name": "Tobin Reed",
        "role": "antagonist",
        "description": "A customs officer who never sleeps.",
        "personality": "meticulous, patient",
        "backstory": "",
        "appearance": "",
        "motivation": "Catch Ilse in the act.",
        "arc": "",
        "notes": "",
    }
    assert suggestion.stage == "parsed"
    assert 'User instruction: "a rival who hunts smugglers"' in suggestion.prompt

    assert len(generator.calls) == 1
    prompt, kwargs = generator.calls[0]
    assert prompt == suggestion.prompt
    assert "The Salt Road" in kwargs["system_prompt"]
    assert "Ilse Marr (protagonist)" in kwargs["system_prompt"]
    assert "{existing_characters}" not in kwargs["system_prompt"]
    assert kwargs["max_new_tokens"] == 4096


def test_enhance_character_includes_current_values(monkeypatch, book):
    character = book.characters[0]
    generator = RecordingGenerator('{"name": "Ilse Marr", "role": "protagonist", "arc": "Learns to trust"}')
    monkeypatch.setattr(generation, "_get_text_generator", lambda: generator)

    suggestion = characters.enhance_character(book, character, "Give her an arc")

    assert suggestion.character["arc"] == "Learns to trust"
    assert suggestion.character["description"] == ""
    system_prompt = generator.calls[0][1]["system_prompt"]
    assert "Motivation: Buy back her ship." in system_prompt
    assert "No other characters" in system_prompt


def test_missing_role_defaults_to_supporting(monkeypatch, book):
    monkeypatch.setattr(
        generation,
        "_get_text_generator",
        lambda: RecordingGenerator('Here is the character: "name": "Wren", "description": "A deckhand"'),
    )

    suggestion = characters.generate_character(book, "a deckhand")

    assert suggestion.character["name"] == "Wren"
    assert suggestion.character["role"] == "supporting"
    assert suggestion.stage == "scraped"


def test_unparsable_reply_raises_response_error(monkeypatch, book):
    monkeypatch.setattr(
        generation,
        "_get_text_generator",
        lambda: RecordingGenerator("I would rather not invent anyone today."),
    )

    with pytest.raises(generation.AssistantResponseError) as excinfo:
        characters.generate_character(book, "anyone")

    assert str(excinfo.value).startswith("Could not parse a valid JSON response from the AI.")
    assert "rather not invent" in str(excinfo.value)


def test_blank_prompt_is_rejected_before_calling_the_model(monkeypatch, book):
    def fail():
        raise AssertionError("generator should not be requested")

    monkeypatch.setattr(generation, "_get_text_generator", fail)

    with pytest.raises(generation.AssistantError, match="A prompt is required."):
        characters.generate_character(book, "   ")


def test_generator_failures_are_wrapped(monkeypatch, book):
    class BrokenGenerator:
        def generate_response(self, prompt: str, **_: object) -> str:
            raise RuntimeError("connection reset")

    monkeypatch.setattr(generation, "_get_text_generator", lambda: BrokenGenerator())

    with pytest.raises(generation.AssistantGenerationError, match="connection reset"):
        characters.generate_character(book, "someone")


def test_empty_reply_is_a_generation_error(monkeypatch, book):
    monkeypatch.setattr(generation, "_get_text_generator", lambda: RecordingGenerator("   "))

    with pytest.raises(generation.AssistantGenerationError):
        characters.generate_character(book, "someone")


def test_missing_api_key_is_a_configuration_error(book):
    with pytest.raises(generation.AssistantConfigurationError):
        characters.generate_character(book, "someone")
