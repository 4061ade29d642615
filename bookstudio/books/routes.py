from __future__ import annotations

from typing import Any, Dict, Iterable, List, Optional, Tuple

from flask import jsonify, request
from werkzeug.exceptions import NotFound

from ..extensions import db
from ..forms import (
    BookForm,
    ChapterForm,
    CharacterForm,
    CharacterRelationForm,
    PlotPointForm,
    WorldElementForm,
    first_error,
    form_from_payload,
)
from ..models import (
    WORLD_ELEMENT_TYPES,
    Book,
    Chapter,
    Character,
    CharacterRelation,
    PlotPoint,
    WorldElement,
    count_words,
)
from ..search import search_book
from ..services import characters, plot, world
from . import bp


BOOK_FIELDS = ("title", "description", "genre", "target_audience", "writing_style", "language")
CHAPTER_FIELDS = ("title", "content", "summary", "notes", "status")
# Editable columns: whatever the assistants suggest, plus the uploaded image.
CHARACTER_FIELDS = characters.CHARACTER_FIELDS + ("image_url",)
WORLD_ELEMENT_FIELDS = world.WORLD_ELEMENT_FIELDS + ("image_url",)
PLOT_POINT_FIELDS = plot.PLOT_POINT_FIELDS


@bp.errorhandler(404)
def not_found(error: NotFound):
    return jsonify({"error": error.description or "Not found"}), 404


def _payload() -> Dict[str, Any]:
    payload = request.get_json(silent=True)
    return payload if isinstance(payload, dict) else {}


def _current_values(entity: Any, fields: Iterable[str]) -> Dict[str, Any]:
    return {field: getattr(entity, field) for field in fields}


def _apply_form(entity: Any, form: Any, fields: Iterable[str]) -> None:
    for field in fields:
        value = form[field].data
        if isinstance(value, str):
            value = value.strip()
        setattr(entity, field, value if value != "" else None)


def _get_book(book_id: int) -> Book:
    return Book.query.get_or_404(book_id, description="Book not found")


# Books


@bp.route("/", methods=["GET"])
def list_books():
    books = Book.query.order_by(Book.updated_at.desc()).all()
    return jsonify([book.to_dict(include_counts=True) for book in books])


@bp.route("/", methods=["POST"])
def create_book():
    form = form_from_payload(BookForm, _payload())
    if not form.validate():
        return jsonify({"error": first_error(form)}), 400

    book = Book()
    _apply_form(book, form, BOOK_FIELDS)
    book.language = book.language or "en"
    db.session.add(book)
    db.session.commit()
    return jsonify(book.to_dict(include_counts=True)), 201


@bp.route("/<int:book_id>", methods=["GET"])
def get_book(book_id: int):
    book = _get_book(book_id)
    data = book.to_dict(include_counts=True)
    data["chapters"] = [chapter.to_dict() for chapter in book.chapters]
    return jsonify(data)


@bp.route("/<int:book_id>", methods=["PATCH"])
def update_book(book_id: int):
    book = _get_book(book_id)
    form = form_from_payload(BookForm, _payload(), defaults=_current_values(book, BOOK_FIELDS))
    if not form.validate():
        return jsonify({"error": first_error(form)}), 400

    _apply_form(book, form, BOOK_FIELDS)
    book.language = book.language or "en"
    db.session.commit()
    return jsonify(book.to_dict(include_counts=True))


@bp.route("/<int:book_id>", methods=["DELETE"])
def delete_book(book_id: int):
    book = _get_book(book_id)
    db.session.delete(book)
    db.session.commit()
    return jsonify({"success": True})


# Chapters


def _get_chapter(book_id: int, chapter_id: int) -> Chapter:
    return Chapter.query.filter_by(id=chapter_id, book_id=book_id).first_or_404(
        description="Chapter not found"
    )


@bp.route("/<int:book_id>/chapters", methods=["GET"])
def list_chapters(book_id: int):
    book = _get_book(book_id)
    return jsonify([chapter.to_dict() for chapter in book.chapters])


@bp.route("/<int:book_id>/chapters", methods=["POST"])
def create_chapter(book_id: int):
    book = _get_book(book_id)
    form = form_from_payload(ChapterForm, _payload())
    if not form.validate():
        return jsonify({"error": first_error(form)}), 400

    last = (
        Chapter.query.filter_by(book_id=book.id)
        .order_by(Chapter.order_index.desc())
        .first()
    )
    order_index = last.order_index + 1 if last else 0

    chapter = Chapter(book_id=book.id, order_index=order_index)
    _apply_form(chapter, form, CHAPTER_FIELDS)
    chapter.title = chapter.title or f"Chapter {order_index + 1}"
    chapter.status = chapter.status or "draft"
    chapter.word_count = count_words(chapter.content)
    db.session.add(chapter)
    db.session.commit()
    return jsonify(chapter.to_dict()), 201


@bp.route("/<int:book_id>/chapters/<int:chapter_id>", methods=["GET"])
def get_chapter(book_id: int, chapter_id: int):
    return jsonify(_get_chapter(book_id, chapter_id).to_dict())


@bp.route("/<int:book_id>/chapters/<int:chapter_id>", methods=["PATCH"])
def update_chapter(book_id: int, chapter_id: int):
    chapter = _get_chapter(book_id, chapter_id)
    form = form_from_payload(ChapterForm, _payload(), defaults=_current_values(chapter, CHAPTER_FIELDS))
    if not form.validate():
        return jsonify({"error": first_error(form)}), 400

    _apply_form(chapter, form, CHAPTER_FIELDS)
    chapter.title = chapter.title or f"Chapter {chapter.order_index + 1}"
    chapter.status = chapter.status or "draft"
    chapter.word_count = count_words(chapter.content)
    db.session.commit()
    return jsonify(chapter.to_dict())


@bp.route("/<int:book_id>/chapters/<int:chapter_id>", methods=["DELETE"])
def delete_chapter(book_id: int, chapter_id: int):
    chapter = _get_chapter(book_id, chapter_id)
    db.session.delete(chapter)
    db.session.commit()
    return jsonify({"success": True})


# Characters


def _get_character(book_id: int, character_id: int) -> Character:
    return Character.query.filter_by(id=character_id, book_id=book_id).first_or_404(
        description="Character not found"
    )


@bp.route("/<int:book_id>/characters", methods=["GET"])
def list_characters(book_id: int):
    book = _get_book(book_id)
    return jsonify([character.to_dict() for character in book.characters])


@bp.route("/<int:book_id>/characters", methods=["POST"])
def create_character(book_id: int):
    book = _get_book(book_id)
    form = form_from_payload(CharacterForm, _payload())
    if not form.validate():
        return jsonify({"error": first_error(form)}), 400

    character = Character(book_id=book.id)
    _apply_form(character, form, CHARACTER_FIELDS)
    character.role = character.role or "supporting"
    db.session.add(character)
    db.session.commit()
    return jsonify(character.to_dict()), 201


def _character_detail(character: Character) -> Dict[str, Any]:
    data = character.to_dict()
    data["related_by"] = [
        {**relation.to_dict(), "character_name": relation.character.name}
        for relation in character.related_by
    ]
    return data


def _parse_relations(
    character: Character, raw_relations: Any
) -> Tuple[Optional[List[CharacterRelation]], Optional[str]]:
    """Validate a ``relations`` list from a PATCH body; it replaces all outgoing relations."""

    if not isinstance(raw_relations, list):
        return None, "relations must be a list"

    relations: List[CharacterRelation] = []
    for raw in raw_relations:
        if not isinstance(raw, dict):
            return None, "relations must contain objects"
        form = form_from_payload(CharacterRelationForm, raw)
        if not form.validate():
            return None, first_error(form)

        related_id = form.related_character_id.data
        if related_id == character.id:
            return None, "A character cannot be related to itself"
        related = Character.query.filter_by(id=related_id, book_id=character.book_id).first()
        if related is None:
            return None, f"Unknown character id: {related_id}"

        description = (form.description.data or "").strip()
        relations.append(
            CharacterRelation(
                related_character_id=related.id,
                relation_type=form.relation_type.data or "colleague",
                description=description or None,
            )
        )
    return relations, None


@bp.route("/<int:book_id>/characters/<int:character_id>", methods=["GET"])
def get_character(book_id: int, character_id: int):
    return jsonify(_character_detail(_get_character(book_id, character_id)))


@bp.route("/<int:book_id>/characters/<int:character_id>", methods=["PATCH"])
def update_character(book_id: int, character_id: int):
    character = _get_character(book_id, character_id)
    payload = _payload()
    form = form_from_payload(
        CharacterForm, payload, defaults=_current_values(character, CHARACTER_FIELDS)
    )
    if not form.validate():
        return jsonify({"error": first_error(form)}), 400

    relations = None
    if "relations" in payload:
        relations, error = _parse_relations(character, payload["relations"])
        if error:
            return jsonify({"error": error}), 400

    _apply_form(character, form, CHARACTER_FIELDS)
    character.role = character.role or "supporting"
    if relations is not None:
        character.relations = relations
    db.session.commit()
    return jsonify(_character_detail(character))


@bp.route("/<int:book_id>/characters/<int:character_id>", methods=["DELETE"])
def delete_character(book_id: int, character_id: int):
    character = _get_character(book_id, character_id)
    db.session.delete(character)
    db.session.commit()
    return jsonify({"success": True})


# World building


def _get_world_element(book_id: int, element_id: int) -> WorldElement:
    return WorldElement.query.filter_by(id=element_id, book_id=book_id).first_or_404(
        description="World element not found"
    )


@bp.route("/<int:book_id>/world", methods=["GET"])
def list_world_elements(book_id: int):
    book = _get_book(book_id)
    query = WorldElement.query.filter_by(book_id=book.id)
    element_type = (request.args.get("type") or "").strip()
    if element_type:
        if element_type not in WORLD_ELEMENT_TYPES:
            return jsonify({"error": "Unknown world element type"}), 400
        query = query.filter_by(type=element_type)
    elements = query.order_by(WorldElement.name).all()
    return jsonify([element.to_dict() for element in elements])


@bp.route("/<int:book_id>/world", methods=["POST"])
def create_world_element(book_id: int):
    book = _get_book(book_id)
    form = form_from_payload(WorldElementForm, _payload())
    if not form.validate():
        return jsonify({"error": first_error(form)}), 400

    element = WorldElement(book_id=book.id)
    _apply_form(element, form, WORLD_ELEMENT_FIELDS)
    element.type = element.type or "location"
    db.session.add(element)
    db.session.commit()
    return jsonify(element.to_dict()), 201


@bp.route("/<int:book_id>/world/<int:element_id>", methods=["GET"])
def get_world_element(book_id: int, element_id: int):
    return jsonify(_get_world_element(book_id, element_id).to_dict())


@bp.route("/<int:book_id>/world/<int:element_id>", methods=["PATCH"])
def update_world_element(book_id: int, element_id: int):
    element = _get_world_element(book_id, element_id)
    form = form_from_payload(
        WorldElementForm, _payload(), defaults=_current_values(element, WORLD_ELEMENT_FIELDS)
    )
    if not form.validate():
        return jsonify({"error": first_error(form)}), 400

    _apply_form(element, form, WORLD_ELEMENT_FIELDS)
    element.type = element.type or "location"
    db.session.commit()
    return jsonify(element.to_dict())


@bp.route("/<int:book_id>/world/<int:element_id>", methods=["DELETE"])
def delete_world_element(book_id: int, element_id: int):
    element = _get_world_element(book_id, element_id)
    db.session.delete(element)
    db.session.commit()
    return jsonify({"success": True})


# Plot


def _get_plot_point(book_id: int, plot_point_id: int) -> PlotPoint:
    return PlotPoint.query.filter_by(id=plot_point_id, book_id=book_id).first_or_404(
        description="Plot point not found"
    )


@bp.route("/<int:book_id>/plot", methods=["GET"])
def list_plot_points(book_id: int):
    book = _get_book(book_id)
    return jsonify([point.to_dict() for point in book.plot_points])


@bp.route("/<int:book_id>/plot", methods=["POST"])
def create_plot_point(book_id: int):
    book = _get_book(book_id)
    form = form_from_payload(PlotPointForm, _payload())
    if not form.validate():
        return jsonify({"error": first_error(form)}), 400

    last = (
        PlotPoint.query.filter_by(book_id=book.id)
        .order_by(PlotPoint.order_index.desc())
        .first()
    )
    point = PlotPoint(book_id=book.id, order_index=last.order_index + 1 if last else 0)
    _apply_form(point, form, PLOT_POINT_FIELDS)
    point.type = point.type or "event"
    db.session.add(point)
    db.session.commit()
    return jsonify(point.to_dict()), 201


@bp.route("/<int:book_id>/plot", methods=["PUT"])
def reorder_plot_points(book_id: int):
    book = _get_book(book_id)
    raw_ids = _payload().get("plot_point_ids")
    if not isinstance(raw_ids, list):
        return jsonify({"error": "plot_point_ids must be a list"}), 400

    try:
        ordered_ids = [int(value) for value in raw_ids]
    except (TypeError, ValueError):
        return jsonify({"error": "plot_point_ids must contain plot point ids"}), 400

    points = {point.id: point for point in book.plot_points}
    unknown = [point_id for point_id in ordered_ids if point_id not in points]
    if unknown:
        return jsonify({"error": f"Unknown plot point id: {unknown[0]}"}), 400

    for index, point_id in enumerate(ordered_ids):
        points[point_id].order_index = index
    db.session.commit()

    refreshed = (
        PlotPoint.query.filter_by(book_id=book.id).order_by(PlotPoint.order_index).all()
    )
    return jsonify([point.to_dict() for point in refreshed])


@bp.route("/<int:book_id>/plot/<int:plot_point_id>", methods=["GET"])
def get_plot_point(book_id: int, plot_point_id: int):
    return jsonify(_get_plot_point(book_id, plot_point_id).to_dict())


@bp.route("/<int:book_id>/plot/<int:plot_point_id>", methods=["PATCH"])
def update_plot_point(book_id: int, plot_point_id: int):
    point = _get_plot_point(book_id, plot_point_id)
    form = form_from_payload(
        PlotPointForm, _payload(), defaults=_current_values(point, PLOT_POINT_FIELDS)
    )
    if not form.validate():
        return jsonify({"error": first_error(form)}), 400

    _apply_form(point, form, PLOT_POINT_FIELDS)
    point.type = point.type or "event"
    db.session.commit()
    return jsonify(point.to_dict())


@bp.route("/<int:book_id>/plot/<int:plot_point_id>", methods=["DELETE"])
def delete_plot_point(book_id: int, plot_point_id: int):
    point = _get_plot_point(book_id, plot_point_id)
    db.session.delete(point)
    db.session.commit()
    return jsonify({"success": True})


# Search


@bp.route("/<int:book_id>/search", methods=["GET"])
def search(book_id: int):
    book = _get_book(book_id)
    return jsonify(search_book(book, request.args.get("q")))
