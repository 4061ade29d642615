from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from flask import current_app

from ..models import Book
from .generation import AssistantResponseError, bullet_list, request_completion
from .json_extraction import FieldSpec, run_extraction

ISSUE_TYPES = ("character", "timeline", "object", "location", "plot", "other")
ISSUE_SEVERITIES = ("warning", "error")

# The report's issues are a list, so a reply only counts when it parses structurally.
CONSISTENCY_REPORT_SPEC = FieldSpec(required_field="issues", known_fields=("issues", "summary"))

CHAPTER_EXCERPT_LIMIT = 3000

_PROMPT_KEY = "consistency_check"
_TAG_RE = re.compile(r"<[^>]*>")
_WHITESPACE_RE = re.compile(r"\s+")


@dataclass
class ConsistencyReport:
    summary: str
    checked_at: str
    issues: List[Dict[str, Any]] = field(default_factory=list)
    stage: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "issues": self.issues,
            "summary": self.summary,
            "checked_at": self.checked_at,
            "stage": self.stage,
        }


def check_consistency(book: Book) -> ConsistencyReport:
    """Ask the model to list continuity errors across all chapters of ``book``."""

    checked_at = datetime.utcnow().isoformat()
    if not book.chapters:
        return ConsistencyReport(summary="No chapters to check.", checked_at=checked_at)

    response_text, _ = request_completion(
        _PROMPT_KEY,
        book_title=book.title,
        characters=bullet_list(
            (f"{c.name} ({c.role}): {c.description or 'No description'}" for c in book.characters),
            empty="None",
        ),
        plot_points=bullet_list(
            (f"{p.title} ({p.type}): {p.description or 'No description'}" for p in book.plot_points),
            empty="None",
        ),
        world_elements=bullet_list(
            (f"{w.name} ({w.type}): {w.description or 'No description'}" for w in book.world_elements),
            empty="None",
        ),
        chapters="\n\n".join(_describe_chapter(chapter) for chapter in book.chapters),
    )

    result = run_extraction(response_text, CONSISTENCY_REPORT_SPEC)
    if result.record is None:
        current_app.logger.warning(
            "Unable to extract a consistency report (%s): %s",
            ", ".join(result.failures),
            response_text[:500],
        )
        raise AssistantResponseError(response_text)

    issues = normalize_issues(result.record.get("issues"))
    summary = str(result.record.get("summary") or "").strip() or f"{len(issues)} issue(s) found."
    return ConsistencyReport(summary=summary, checked_at=checked_at, issues=issues, stage=result.stage)


def normalize_issues(raw_issues: Any) -> List[Dict[str, Any]]:
    """Coerce the model's issue list into the shape the editor renders."""

    if not isinstance(raw_issues, list):
        return []

    issues: List[Dict[str, Any]] = []
    for raw in raw_issues:
        if not isinstance(raw, dict):
            continue
        issue_type = str(raw.get("type") or "").strip().lower()
        chapters = raw.get("chapters") if isinstance(raw.get("chapters"), list) else []
        issues.append(
            {
                "id": str(raw.get("id") or f"issue-{len(issues) + 1}"),
                "type": issue_type if issue_type in ISSUE_TYPES else "other",
                "severity": "error" if raw.get("severity") == "error" else "warning",
                "title": str(raw.get("title") or "Unknown problem"),
                "description": str(raw.get("description") or ""),
                "chapters": [int(number) for number in chapters if _is_number(number)],
                "suggestion": str(raw.get("suggestion") or ""),
            }
        )
    return issues


def _describe_chapter(chapter) -> str:
    lines = [f"Chapter {chapter.order_index + 1}: {chapter.title}"]
    if chapter.summary:
        lines.append(f"Summary: {chapter.summary}")
    content = _WHITESPACE_RE.sub(" ", _TAG_RE.sub(" ", chapter.content or "")).strip()
    if content:
        if len(content) > CHAPTER_EXCERPT_LIMIT:
            content = content[:CHAPTER_EXCERPT_LIMIT] + "..."
        lines.append(f"Content: {content}")
    return "\n".join(lines)


def _is_number(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    try:
        int(value)
    except (TypeError, ValueError):
        return False
    return True
