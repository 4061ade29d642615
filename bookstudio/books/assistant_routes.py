"""AI assistant endpoints.

Suggestions are returned to the editor for review and never persisted here;
the client saves accepted suggestions through the regular CRUD endpoints.
"""
from __future__ import annotations

from typing import Any, Callable, Dict, List, Optional, Tuple

from flask import current_app, jsonify, request

from ..forms import AssistantRequestForm, ChapterGenerationForm, first_error, form_from_payload
from ..models import Book, Chapter, Character, WorldElement
from ..services.chapters import DEFAULT_TARGET_LENGTH, generate_chapter_content, preview_chapter_context
from ..services.characters import enhance_character, generate_character
from ..services.consistency import check_consistency
from ..services.generation import AssistantError, AssistantGenerationError
from ..services.plot import generate_plot_point
from ..services.world import enhance_world_element, generate_world_element
from . import bp


def _assistant_form(target_key: Optional[str] = None) -> AssistantRequestForm:
    payload = request.get_json(silent=True)
    payload = dict(payload) if isinstance(payload, dict) else {}
    if target_key:
        payload["target_id"] = payload.pop(target_key, None)
    return form_from_payload(AssistantRequestForm, payload)


def _run_assistant(label: str, call: Callable[[], Any]):
    try:
        return call(), None
    except AssistantGenerationError as exc:
        return None, (jsonify({"error": str(exc)}), 500)
    except AssistantError as exc:
        # Missing configuration, blank prompts and unparsable replies.
        return None, (jsonify({"error": str(exc)}), 400)
    except Exception:  # pragma: no cover - defensive logging
        current_app.logger.exception("Unexpected error while running the %s assistant", label)
        return None, (jsonify({"error": f"Failed to process the {label} request. Please try again."}), 500)


def _suggestion_payload(key: str, data: Dict[str, str], suggestion: Any) -> Dict[str, Any]:
    return {key: data, "prompt": suggestion.prompt, "stage": suggestion.stage}


@bp.route("/<int:book_id>/characters/ai", methods=["POST"])
def character_assistant(book_id: int):
    book = Book.query.get_or_404(book_id, description="Book not found")
    form = _assistant_form("character_id")
    if not form.validate():
        return jsonify({"error": first_error(form)}), 400

    action = form.action.data.strip()
    if action == "generate":
        suggestion, error = _run_assistant("character", lambda: generate_character(book, form.prompt.data))
    elif action == "enhance":
        if form.target_id.data is None:
            return jsonify({"error": "character_id is required to enhance a character"}), 400
        character = Character.query.filter_by(id=form.target_id.data, book_id=book.id).first_or_404(
            description="Character not found"
        )
        suggestion, error = _run_assistant(
            "character", lambda: enhance_character(book, character, form.prompt.data)
        )
    else:
        return jsonify({"error": "Unknown action"}), 400

    if error:
        return error
    return jsonify(_suggestion_payload("character", suggestion.character, suggestion))


@bp.route("/<int:book_id>/world/ai", methods=["POST"])
def world_assistant(book_id: int):
    book = Book.query.get_or_404(book_id, description="Book not found")
    form = _assistant_form("world_element_id")
    if not form.validate():
        return jsonify({"error": first_error(form)}), 400

    action = form.action.data.strip()
    if action == "generate":
        suggestion, error = _run_assistant(
            "world element", lambda: generate_world_element(book, form.prompt.data)
        )
    elif action == "enhance":
        if form.target_id.data is None:
            return jsonify({"error": "world_element_id is required to enhance a world element"}), 400
        element = WorldElement.query.filter_by(id=form.target_id.data, book_id=book.id).first_or_404(
            description="World element not found"
        )
        suggestion, error = _run_assistant(
            "world element", lambda: enhance_world_element(book, element, form.prompt.data)
        )
    else:
        return jsonify({"error": "Unknown action"}), 400

    if error:
        return error
    return jsonify(_suggestion_payload("world_element", suggestion.world_element, suggestion))


@bp.route("/<int:book_id>/plot/ai", methods=["POST"])
def plot_assistant(book_id: int):
    book = Book.query.get_or_404(book_id, description="Book not found")
    form = _assistant_form()
    if not form.validate():
        return jsonify({"error": first_error(form)}), 400

    if form.action.data.strip() != "generate":
        return jsonify({"error": "Unknown action"}), 400

    suggestion, error = _run_assistant("plot point", lambda: generate_plot_point(book, form.prompt.data))
    if error:
        return error
    return jsonify(_suggestion_payload("plot_point", suggestion.plot_point, suggestion))


def _id_list(payload: Dict[str, Any], key: str) -> Tuple[Optional[List[int]], Optional[str]]:
    raw = payload.get(key)
    if raw is None:
        return [], None
    if not isinstance(raw, list):
        return None, f"{key} must be a list"
    try:
        return [int(value) for value in raw], None
    except (TypeError, ValueError):
        return None, f"{key} must contain ids"


@bp.route("/<int:book_id>/ai/generate", methods=["POST"])
def chapter_assistant(book_id: int):
    book = Book.query.get_or_404(book_id, description="Book not found")
    payload = request.get_json(silent=True)
    payload = payload if isinstance(payload, dict) else {}
    form = form_from_payload(ChapterGenerationForm, payload)
    if not form.validate():
        return jsonify({"error": first_error(form)}), 400

    selections = {}
    for key in ("character_ids", "plot_point_ids", "world_element_ids"):
        ids, error = _id_list(payload, key)
        if error:
            return jsonify({"error": error}), 400
        selections[key] = ids

    chapter = None
    if form.chapter_id.data is not None:
        chapter = Chapter.query.filter_by(id=form.chapter_id.data, book_id=book.id).first_or_404(
            description="Chapter not found"
        )

    draft, error = _run_assistant(
        "chapter",
        lambda: generate_chapter_content(
            book,
            chapter,
            form.prompt.data,
            target_length=form.target_length.data or DEFAULT_TARGET_LENGTH,
            use_summary_as_prompt=payload.get("use_summary_as_prompt") is True,
            max_tokens=form.max_tokens.data,
            temperature=form.temperature.data,
            **selections,
        ),
    )
    if error:
        return error
    return jsonify({"text": draft.text, "prompt": draft.prompt})


@bp.route("/<int:book_id>/ai/generate", methods=["GET"])
def chapter_context(book_id: int):
    book = Book.query.get_or_404(book_id, description="Book not found")
    chapter = None
    chapter_id = request.args.get("chapter_id", type=int)
    if chapter_id is not None:
        chapter = Chapter.query.filter_by(id=chapter_id, book_id=book.id).first_or_404(
            description="Chapter not found"
        )

    preview, error = _run_assistant("chapter", lambda: preview_chapter_context(book, chapter))
    if error:
        return error
    return jsonify(preview)


@bp.route("/<int:book_id>/ai/consistency-check", methods=["POST"])
def consistency_check(book_id: int):
    book = Book.query.get_or_404(book_id, description="Book not found")
    report, error = _run_assistant("consistency check", lambda: check_consistency(book))
    if error:
        return error
    return jsonify(report.to_dict())
