"""Chapter drafting: the one assistant that answers with prose instead of JSON."""
from __future__ import annotations

import html
import re
from dataclasses import dataclass
from typing import Any, Collection, Dict, Optional, Tuple

from flask import current_app

from ..models import Book, Chapter, GlobalSettings
from .generation import AssistantError, bullet_list, render_prompt, request_completion

_GENERATE_PROMPT_KEY = "chapter_generate"

DEFAULT_TARGET_LENGTH = "medium"

# Length instruction and the smallest token allowance that fits it.
TARGET_LENGTHS: Dict[str, Tuple[str, int]] = {
    "short": ("Short chapter of about 400-600 words.", 4000),
    "medium": ("Medium-length chapter of about 800-1200 words.", 8000),
    "long": (
        "Long, detailed chapter of 1500 words or more with dialogue, description and inner monologue.",
        12000,
    ),
}

_THINKING_RE = re.compile(r"<thinking>.*?</thinking>", re.DOTALL | re.IGNORECASE)
_HTML_FENCE_OPEN_RE = re.compile(r"^```(?:html)?\s*", re.IGNORECASE)
_HTML_FENCE_CLOSE_RE = re.compile(r"\s*```$")
_HTML_TAG_RE = re.compile(r"<[a-zA-Z][^>]*>")
_PARAGRAPH_BREAK_RE = re.compile(r"\n\s*\n+")


@dataclass
class ChapterDraft:
    text: str
    prompt: str


def generate_chapter_content(
    book: Book,
    chapter: Optional[Chapter],
    prompt: Optional[str],
    *,
    target_length: str = DEFAULT_TARGET_LENGTH,
    use_summary_as_prompt: bool = False,
    character_ids: Optional[Collection[int]] = None,
    plot_point_ids: Optional[Collection[int]] = None,
    world_element_ids: Optional[Collection[int]] = None,
    max_tokens: Optional[int] = None,
    temperature: Optional[float] = None,
) -> ChapterDraft:
    """Draft chapter text for ``chapter`` as editor-ready HTML.

    ``chapter`` may be ``None`` for a free-standing draft; otherwise the
    summaries of the chapters before it are sent along. Empty id collections
    mean "use everything the book has".
    """

    if target_length not in TARGET_LENGTHS:
        raise AssistantError(f"Unknown target length '{target_length}'.")
    length_instruction, minimum_tokens = TARGET_LENGTHS[target_length]

    prompt_text = _compose_prompt(prompt, chapter, use_summary_as_prompt)
    context = build_chapter_context(
        book,
        chapter,
        character_ids=character_ids,
        plot_point_ids=plot_point_ids,
        world_element_ids=world_element_ids,
    )

    requested_tokens = max_tokens or GlobalSettings.get_or_create().max_tokens or minimum_tokens
    overrides: Dict[str, Any] = {"max_new_tokens": max(requested_tokens, minimum_tokens)}
    if temperature is not None:
        overrides["temperature"] = temperature

    response_text, final_prompt = request_completion(
        _GENERATE_PROMPT_KEY,
        overrides=overrides,
        user_prompt=prompt_text,
        length_instruction=length_instruction,
        **context,
    )
    text = clean_chapter_html(response_text)
    if not text:
        raise AssistantError("The AI reply contained no chapter text.")

    current_app.logger.info(
        "Drafted %s chapter text for book %s (%d chars)", target_length, book.id, len(text)
    )
    return ChapterDraft(text=text, prompt=final_prompt)


def preview_chapter_context(book: Book, chapter: Optional[Chapter]) -> Dict[str, Any]:
    """Return the context and system prompt a draft of ``chapter`` would use."""

    context = build_chapter_context(book, chapter)
    _, system_prompt = render_prompt(_GENERATE_PROMPT_KEY, user_prompt="", length_instruction="", **context)
    return {"context": context, "system_prompt": system_prompt}


def build_chapter_context(
    book: Book,
    chapter: Optional[Chapter],
    *,
    character_ids: Optional[Collection[int]] = None,
    plot_point_ids: Optional[Collection[int]] = None,
    world_element_ids: Optional[Collection[int]] = None,
) -> Dict[str, str]:
    characters = _selected(book.characters, character_ids)
    plot_points = _selected(book.plot_points, plot_point_ids)
    world_elements = _selected(book.world_elements, world_element_ids)
    previous = (
        [c for c in book.chapters if c.order_index < chapter.order_index] if chapter is not None else []
    )

    return {
        "book_title": book.title,
        "book_genre": book.genre or "Not specified",
        "book_description": book.description or "No description",
        "writing_style": book.writing_style or "Not specified",
        "target_audience": book.target_audience or "Not specified",
        "book_language": book.language or "en",
        "characters": bullet_list(
            (
                f"{c.name} ({c.role}): {c.description or 'No description'}"
                + (f" Personality: {c.personality}" if c.personality else "")
                for c in characters
            ),
            empty="No characters selected",
        ),
        "plot_points": bullet_list(
            (f"[{p.type}] {p.title}: {p.description or 'No description'}" for p in plot_points),
            empty="No plot points selected",
        ),
        "world_elements": bullet_list(
            (f"{w.name} ({w.type}): {w.description or 'No description'}" for w in world_elements),
            empty="No world elements selected",
        ),
        "previous_chapters": bullet_list(
            (
                f"Chapter {c.order_index + 1}: {c.title}. {c.summary or 'No summary'}"
                for c in previous
            ),
            empty="This is the first chapter",
        ),
    }


def clean_chapter_html(response_text: str) -> str:
    """Strip reasoning blocks and code fences; wrap plain prose in ``<p>`` tags."""

    text = _THINKING_RE.sub("", response_text or "").strip()
    text = _HTML_FENCE_OPEN_RE.sub("", text)
    text = _HTML_FENCE_CLOSE_RE.sub("", text).strip()
    if not text or _HTML_TAG_RE.search(text):
        return text

    paragraphs = [part.strip() for part in _PARAGRAPH_BREAK_RE.split(text) if part.strip()]
    return "".join(
        "<p>" + html.escape(paragraph, quote=False).replace("\n", "<br>") + "</p>"
        for paragraph in paragraphs
    )


def _compose_prompt(prompt: Optional[str], chapter: Optional[Chapter], use_summary: bool) -> str:
    prompt_text = (prompt or "").strip()
    summary = (chapter.summary or "").strip() if chapter is not None else ""

    if use_summary and summary:
        if prompt_text:
            return f"{prompt_text}\n\nIncluded summary: {summary}"
        return f"Write the chapter based on this summary: {summary}"
    if not prompt_text:
        raise AssistantError("Please enter a prompt or add a chapter summary.")
    return prompt_text


def _selected(items, ids: Optional[Collection[int]]):
    if not ids:
        return list(items)
    wanted = set(ids)
    return [item for item in items if item.id in wanted]
