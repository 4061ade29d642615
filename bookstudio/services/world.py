from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional

from flask import current_app

from ..models import WORLD_ELEMENT_TYPES, Book, WorldElement
from .generation import (
    AssistantResponseError,
    bullet_list,
    clean_field,
    clean_prompt,
    describe_book,
    request_completion,
)
from .json_extraction import EnumField, FieldSpec, run_extraction

WORLD_ELEMENT_FIELDS = ("name", "type", "description", "usage", "history")

WORLD_ELEMENT_FIELD_SPEC = FieldSpec(
    required_field="name",
    known_fields=WORLD_ELEMENT_FIELDS,
    enum_fields=(EnumField(field="type", accepted=WORLD_ELEMENT_TYPES, default="location"),),
)

_GENERATE_PROMPT_KEY = "world_generate"
_ENHANCE_PROMPT_KEY = "world_enhance"


@dataclass
class WorldElementSuggestion:
    world_element: Dict[str, str]
    prompt: str
    stage: Optional[str]


def generate_world_element(book: Book, user_prompt: str) -> WorldElementSuggestion:
    prompt_text = clean_prompt(user_prompt)
    existing = bullet_list(
        (f"{element.name} ({element.type})" for element in book.world_elements),
        empty="None",
    )
    response_text, final_prompt = request_completion(
        _GENERATE_PROMPT_KEY,
        user_prompt=prompt_text,
        existing_elements=existing,
        **describe_book(book),
    )
    return _build_suggestion(response_text, final_prompt)


def enhance_world_element(book: Book, element: WorldElement, user_prompt: str) -> WorldElementSuggestion:
    prompt_text = clean_prompt(user_prompt)
    current = {f"current_{field}": getattr(element, field) or "" for field in WORLD_ELEMENT_FIELDS}
    response_text, final_prompt = request_completion(
        _ENHANCE_PROMPT_KEY,
        user_prompt=prompt_text,
        **current,
        **describe_book(book),
    )
    return _build_suggestion(response_text, final_prompt)


def _build_suggestion(response_text: str, final_prompt: str) -> WorldElementSuggestion:
    result = run_extraction(response_text, WORLD_ELEMENT_FIELD_SPEC)
    if result.record is None:
        current_app.logger.warning(
            "Unable to extract a world element from the AI response (%s): %s",
            ", ".join(result.failures),
            response_text[:500],
        )
        raise AssistantResponseError(response_text)

    return WorldElementSuggestion(
        world_element=_to_world_element_data(result.record),
        prompt=final_prompt,
        stage=result.stage,
    )


def _to_world_element_data(record: Dict[str, Any]) -> Dict[str, str]:
    element = {field: clean_field(record.get(field)) for field in WORLD_ELEMENT_FIELDS}
    if not element["type"]:
        element["type"] = "location"
    return element
