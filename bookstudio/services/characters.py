from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional

from flask import current_app

from ..models import CHARACTER_ROLES, Book, Character
from .generation import (
    AssistantResponseError,
    bullet_list,
    clean_field,
    clean_prompt,
    describe_book,
    request_completion,
)
from .json_extraction import EnumField, FieldSpec, run_extraction

CHARACTER_FIELDS = (
    "name",
    "role",
    "description",
    "personality",
    "backstory",
    "appearance",
    "motivation",
    "arc",
    "notes",
)

CHARACTER_FIELD_SPEC = FieldSpec(
    required_field="name",
    known_fields=CHARACTER_FIELDS,
    enum_fields=(EnumField(field="role", accepted=CHARACTER_ROLES, default="supporting"),),
)

_GENERATE_PROMPT_KEY = "character_generate"
_ENHANCE_PROMPT_KEY = "character_enhance"


@dataclass
class CharacterSuggestion:
    character: Dict[str, str]
    prompt: str
    stage: Optional[str]


def generate_character(book: Book, user_prompt: str) -> CharacterSuggestion:
    """Ask the model for a new character that fits ``book``'s existing cast."""

    prompt_text = clean_prompt(user_prompt)
    existing = bullet_list(
        (
            f"{c.name} ({c.role}): {c.description or 'No description'}, "
            f"motivation: {c.motivation or 'Unknown'}"
            for c in book.characters
        ),
        empty="No characters yet",
    )
    response_text, final_prompt = request_completion(
        _GENERATE_PROMPT_KEY,
        user_prompt=prompt_text,
        existing_characters=existing,
        **describe_book(book),
    )
    return _build_suggestion(response_text, final_prompt)


def enhance_character(book: Book, character: Character, user_prompt: str) -> CharacterSuggestion:
    """Ask the model to rework ``character`` according to ``user_prompt``."""

    prompt_text = clean_prompt(user_prompt)
    others = bullet_list(
        (
            f"{c.name} ({c.role}): {c.description or 'No description'}"
            for c in book.characters
            if c.id != character.id
        ),
        empty="No other characters",
    )
    current = {f"current_{field}": getattr(character, field) or "" for field in CHARACTER_FIELDS}
    response_text, final_prompt = request_completion(
        _ENHANCE_PROMPT_KEY,
        user_prompt=prompt_text,
        other_characters=others,
        **current,
        **describe_book(book),
    )
    return _build_suggestion(response_text, final_prompt)


def _build_suggestion(response_text: str, final_prompt: str) -> CharacterSuggestion:
    result = run_extraction(response_text, CHARACTER_FIELD_SPEC)
    if result.record is None:
        current_app.logger.warning(
            "Unable to extract a character from the AI response (%s): %s",
            ", ".join(result.failures),
            response_text[:500],
        )
        raise AssistantResponseError(response_text)

    if result.failures:
        current_app.logger.info(
            "Character response recovered at stage '%s' after: %s",
            result.stage,
            ", ".join(result.failures),
        )

    return CharacterSuggestion(
        character=_to_character_data(result.record),
        prompt=final_prompt,
        stage=result.stage,
    )


def _to_character_data(record: Dict[str, Any]) -> Dict[str, str]:
    character = {field: clean_field(record.get(field)) for field in CHARACTER_FIELDS}
    if not character["role"]:
        character["role"] = "supporting"
    return character

