"""Tolerant extraction of flat JSON records from chat-completion text.

Models asked to "respond only with a JSON object" routinely wrap the object in
markdown fences, emphasise values with ``**``, run out of tokens before the
closing brace, or leave trailing commas behind. :func:`extract_record` walks a
fixed pipeline and returns the best record it can recover:

1. strip code fences and emphasis markers (:func:`normalize_response`);
2. isolate the first balanced ``{...}`` (:func:`find_balanced_object`);
3. sanitise and parse it, or repair it first when it was never closed
   (:func:`repair_truncated_object`);
4. scrape ``"field": "value"`` pairs out of the raw text as a last resort
   (:func:`scrape_fields`);
5. coerce constrained fields into their accepted values
   (:func:`normalize_enum_fields`).

Nothing here raises for malformed input; failure is reported as ``None``.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

LOGGER = logging.getLogger(__name__)

STAGE_PARSED = "parsed"
STAGE_CLEANED = "cleaned"
STAGE_REPAIRED = "repaired"
STAGE_SCRAPED = "scraped"

NO_OBJECT_FOUND = "no_object_found"
UNPARSABLE_SYNTAX = "unparsable_syntax"
UNRECOVERABLE_TRUNCATION = "unrecoverable_truncation"
INCOMPLETE_MANUAL_SCRAPE = "incomplete_manual_scrape"

_FENCE_OPEN_RE = re.compile(r"```(?:json)?\s*", re.IGNORECASE)
_FENCE_CLOSE_RE = re.compile(r"```\s*")
_BOLD_RE = re.compile(r"\*\*([^*]+)\*\*")
_ITALIC_RE = re.compile(r"\*([^*]+)\*")

_TRAILING_COMMA_RE = re.compile(r",\s*([}\]])")
_TRAILING_COMMA_AT_END_RE = re.compile(r",\s*$")
_INCOMPLETE_KEY_AT_END_RE = re.compile(r',\s*"[^"]*$')

_CONTROL_ESCAPES = {"\n": "\\n", "\r": "\\r", "\t": "\\t"}


@dataclass(frozen=True)
class EnumField:
    """A field whose value must be one of ``accepted``."""

    field: str
    accepted: Tuple[str, ...]
    default: str


@dataclass(frozen=True)
class FieldSpec:
    """Describes the record a call site expects back from the model."""

    required_field: str
    known_fields: Tuple[str, ...]
    enum_fields: Tuple[EnumField, ...] = ()


@dataclass(frozen=True)
class ObjectCandidate:
    text: str
    complete: bool


@dataclass
class ExtractionResult:
    record: Optional[Dict[str, Any]]
    stage: Optional[str] = None
    failures: List[str] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.record is not None


def extract_record(raw_text: str, spec: FieldSpec) -> Optional[Dict[str, Any]]:
    """Return the record recovered from ``raw_text`` or ``None``."""

    return run_extraction(raw_text, spec).record


def run_extraction(raw_text: str, spec: FieldSpec) -> ExtractionResult:
    """Run the full pipeline and report which stage produced the record."""

    raw = raw_text if isinstance(raw_text, str) else ""
    result = ExtractionResult(record=None)

    candidate = find_balanced_object(normalize_response(raw))
    if candidate is None:
        LOGGER.debug("No opening brace in %d chars of model output", len(raw))
        result.failures.append(NO_OBJECT_FOUND)
    elif candidate.complete:
        sanitized = escape_control_characters(strip_trailing_commas(candidate.text))
        record = _parse_object(sanitized)
        if record is not None:
            return _succeed(result, record, STAGE_PARSED, spec)

        LOGGER.debug("Balanced object failed to parse; stripping incomplete trailing key")
        # A balanced candidate ends outside any string, so this strip can only cut into a string
        # literal; the retry never parses and the reply falls through to the scraper.
        record = _parse_object(_INCOMPLETE_KEY_AT_END_RE.sub("", sanitized))
        if record is not None:
            return _succeed(result, record, STAGE_CLEANED, spec)
        result.failures.append(UNPARSABLE_SYNTAX)
    else:
        LOGGER.debug("Object never closed; attempting truncation repair")
        record = _parse_object(repair_truncated_object(candidate.text))
        if record is not None:
            return _succeed(result, record, STAGE_REPAIRED, spec)
        result.failures.append(UNRECOVERABLE_TRUNCATION)

    record = scrape_fields(raw, spec)
    if record is None:
        result.failures.append(INCOMPLETE_MANUAL_SCRAPE)
        return result
    result.record = record
    result.stage = STAGE_SCRAPED
    return result


def normalize_response(raw_text: str) -> str:
    """Remove code fences and markdown emphasis, leaving everything else intact."""

    text = _FENCE_OPEN_RE.sub("", raw_text)
    text = _FENCE_CLOSE_RE.sub("", text)
    # Bold first so ``**x**`` is not read as two italic markers.
    text = _BOLD_RE.sub(r"\1", text)
    return _ITALIC_RE.sub(r"\1", text)


def find_balanced_object(text: str) -> Optional[ObjectCandidate]:
    """Locate the first ``{`` and the ``}`` that closes it.

    Braces inside string literals do not count towards the depth, and a
    backslash inside a string escapes exactly one following character.
    """

    start = text.find("{")
    if start == -1:
        return None

    depth = 1
    in_string = False
    escape_next = False
    for index in range(start + 1, len(text)):
        char = text[index]
        if escape_next:
            escape_next = False
            continue
        if in_string:
            if char == "\\":
                escape_next = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                return ObjectCandidate(text=text[start:index + 1], complete=True)

    return ObjectCandidate(text=text[start:], complete=False)


def repair_truncated_object(candidate: str) -> str:
    """Close an object that was cut off before its final brace.

    The trailing partial key or value is discarded: the text is cut back to the
    last comma-terminated string value, or failing that to the last quote that
    closes a value, and a single ``}`` is appended.
    """

    text = candidate
    last_complete = text.rfind('",')
    if last_complete > 0:
        text = text[:last_complete + 1]
    else:
        last_quote = text.rfind('"')
        if last_quote > 0:
            before = text[:last_quote]
            if before.rfind(":") > before.rfind(","):
                text = text[:last_quote + 1]

    text = _TRAILING_COMMA_AT_END_RE.sub("", text)
    text = _INCOMPLETE_KEY_AT_END_RE.sub("", text)
    text += "}"
    text = strip_trailing_commas(text)
    return escape_control_characters(text)


def strip_trailing_commas(text: str) -> str:
    return _TRAILING_COMMA_RE.sub(r"\1", text)


def escape_control_characters(text: str) -> str:
    """Make raw control characters legal JSON.

    Inside string literals newline, carriage return and tab become their
    escape sequences and any other control character is dropped. Between
    tokens the same three characters are plain whitespace and are kept.
    """

    pieces: List[str] = []
    in_string = False
    escape_next = False
    for char in text:
        if char < " ":
            if in_string:
                escape_next = False
                pieces.append(_CONTROL_ESCAPES.get(char, ""))
            elif char in _CONTROL_ESCAPES:
                pieces.append(char)
            continue
        if escape_next:
            escape_next = False
        elif char == "\\" and in_string:
            escape_next = True
        elif char == '"':
            in_string = not in_string
        pieces.append(char)
    return "".join(pieces)


def scrape_fields(raw_text: str, spec: FieldSpec) -> Optional[Dict[str, Any]]:
    """Pull flat ``"field": "value"`` pairs for the known fields out of ``raw_text``.

    Only simple string values are recognised. The scrape fails unless the
    required field was found with a non-empty value.
    """

    record: Dict[str, Any] = {}
    for name in spec.known_fields:
        pattern = re.compile(
            r'"' + re.escape(name) + r'"\s*:\s*"((?:[^"\\]|\\.)*)"',
            re.IGNORECASE | re.DOTALL,
        )
        match = pattern.search(raw_text)
        if match:
            record[name] = match.group(1).replace("\\n", "\n").replace("\\r", "\r")

    if not record.get(spec.required_field):
        LOGGER.debug("Manual scrape missed required field '%s'", spec.required_field)
        return None

    LOGGER.debug("Manual scrape recovered fields: %s", sorted(record))
    return normalize_enum_fields(record, spec)


def normalize_enum_fields(record: Dict[str, Any], spec: FieldSpec) -> Dict[str, Any]:
    """Coerce every constrained field present in ``record`` to an accepted value.

    Compound answers such as ``"protagonist|supporting"`` keep their first
    alternative; anything unrecognised becomes the field's default. Absent
    fields are left absent.
    """

    for enum in spec.enum_fields:
        if enum.field not in record:
            continue
        value = record[enum.field]
        if isinstance(value, str):
            candidate = value.split("|")[0].strip().lower()
            record[enum.field] = candidate if candidate in enum.accepted else enum.default
        else:
            record[enum.field] = enum.default
    return record


def _parse_object(text: str) -> Optional[Dict[str, Any]]:
    try:
        parsed = json.loads(text)
    except (ValueError, RecursionError) as exc:
        LOGGER.debug("Structural parse failed: %s", exc)
        return None
    if not isinstance(parsed, dict) or not parsed:
        return None
    return parsed


def _succeed(
    result: ExtractionResult,
    record: Dict[str, Any],
    stage: str,
    spec: FieldSpec,
) -> ExtractionResult:
    result.record = normalize_enum_fields(record, spec)
    result.stage = stage
    return result

