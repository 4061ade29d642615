from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional

from flask import current_app

from ..models import PLOT_POINT_TYPES, Book
from .generation import (
    AssistantResponseError,
    bullet_list,
    clean_field,
    clean_prompt,
    describe_book,
    request_completion,
)
from .json_extraction import EnumField, FieldSpec, run_extraction

PLOT_POINT_FIELDS = ("title", "type", "description")

# Plot points are keyed by title rather than name.
PLOT_POINT_FIELD_SPEC = FieldSpec(
    required_field="title",
    known_fields=PLOT_POINT_FIELDS,
    enum_fields=(EnumField(field="type", accepted=PLOT_POINT_TYPES, default="event"),),
)

_GENERATE_PROMPT_KEY = "plot_generate"


@dataclass
class PlotPointSuggestion:
    plot_point: Dict[str, str]
    prompt: str
    stage: Optional[str]


def generate_plot_point(book: Book, user_prompt: str) -> PlotPointSuggestion:
    """Suggest the next plot point given the cast and the plot so far."""

    prompt_text = clean_prompt(user_prompt)
    existing_plot = bullet_list(
        (f"[{point.type}] {point.title}: {point.description or ''}" for point in book.plot_points),
        empty="No plot points yet",
    )
    characters = ", ".join(f"{c.name} ({c.role})" for c in book.characters) or "None"

    response_text, final_prompt = request_completion(
        _GENERATE_PROMPT_KEY,
        user_prompt=prompt_text,
        existing_plot=existing_plot,
        characters=characters,
        **describe_book(book),
    )

    result = run_extraction(response_text, PLOT_POINT_FIELD_SPEC)
    if result.record is None:
        current_app.logger.warning(
            "Unable to extract a plot point from the AI response (%s): %s",
            ", ".join(result.failures),
            response_text[:500],
        )
        raise AssistantResponseError(response_text)

    return PlotPointSuggestion(
        plot_point=_to_plot_point_data(result.record),
        prompt=final_prompt,
        stage=result.stage,
    )


def _to_plot_point_data(record: Dict[str, Any]) -> Dict[str, str]:
    plot_point = {field: clean_field(record.get(field)) for field in PLOT_POINT_FIELDS}
    if not plot_point["type"]:
        plot_point["type"] = "event"
    return plot_point
