"""Case-insensitive text search across everything a book contains."""
from __future__ import annotations

import re
from typing import Any, Dict, Iterable, List, Optional, Tuple

from .models import Book

MIN_QUERY_LENGTH = 2
RESULT_LIMIT = 50

_TYPE_ORDER = {"chapter": 0, "character": 1, "plot_point": 2, "world_element": 3}
_TAG_RE = re.compile(r"<[^>]*>")
_WHITESPACE_RE = re.compile(r"\s+")


def plain_text(value: Optional[str]) -> str:
    return _WHITESPACE_RE.sub(" ", _TAG_RE.sub(" ", value or "")).strip()


def extract_context(text: Optional[str], term: str, max_length: int = 100) -> str:
    """Return the part of ``text`` around the first match of ``term``."""

    plain = plain_text(text)
    index = plain.lower().find(term.lower())
    if index == -1:
        return plain[:max_length] + ("..." if len(plain) > max_length else "")

    start = max(0, index - 40)
    end = min(len(plain), index + len(term) + 60)
    prefix = "..." if start > 0 else ""
    suffix = "..." if end < len(plain) else ""
    return f"{prefix}{plain[start:end]}{suffix}"


def search_book(book: Book, query: Optional[str]) -> Dict[str, Any]:
    """Search chapters, characters, plot points and world elements of ``book``.

    Each entity is reported once, for the first of its fields that matches.
    Queries shorter than two characters return no results.
    """

    term = (query or "").strip().lower()
    if len(term) < MIN_QUERY_LENGTH:
        return {"results": [], "total": 0, "query": term}

    results: List[Dict[str, Any]] = []
    for chapter in book.chapters:
        _add_match(
            results,
            "chapter",
            chapter,
            chapter.title,
            term,
            (
                ("title", chapter.title, chapter.title),
                ("content", chapter.content, None),
                ("summary", chapter.summary, None),
                ("notes", chapter.notes, None),
            ),
            order_index=chapter.order_index,
        )
    for character in book.characters:
        _add_match(
            results,
            "character",
            character,
            character.name,
            term,
            (
                ("name", character.name, f"{character.role} - {(character.description or '')[:80]}"),
                ("description", character.description, None),
                ("backstory", character.backstory, None),
                ("personality", character.personality, None),
            ),
        )
    for point in book.plot_points:
        _add_match(
            results,
            "plot_point",
            point,
            point.title,
            term,
            (
                ("title", point.title, (point.description or "")[:100]),
                ("description", point.description, None),
            ),
            order_index=point.order_index,
        )
    for element in book.world_elements:
        _add_match(
            results,
            "world_element",
            element,
            element.name,
            term,
            (
                ("name", element.name, f"{element.type} - {(element.description or '')[:80]}"),
                ("description", element.description, None),
                ("history", element.history, None),
            ),
        )

    results.sort(key=lambda item: (_TYPE_ORDER[item["type"]], item.get("order_index") or 0))
    return {"results": results[:RESULT_LIMIT], "total": len(results), "query": term}


def _add_match(
    results: List[Dict[str, Any]],
    result_type: str,
    entity: Any,
    title: str,
    term: str,
    fields: Iterable[Tuple[str, Optional[str], Optional[str]]],
    order_index: Optional[int] = None,
) -> None:
    for field_name, value, context in fields:
        if term not in plain_text(value).lower():
            continue
        entry: Dict[str, Any] = {
            "type": result_type,
            "id": entity.id,
            "title": title,
            "match_field": field_name,
            "context": context if context is not None else extract_context(value, term),
        }
        if order_index is not None:
            entry["order_index"] = order_index
        results.append(entry)
        return
