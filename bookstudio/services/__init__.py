"""Service layer helpers for AI-assisted workflows."""

from __future__ import annotations

from .generation import (  # noqa: F401
    AssistantConfigurationError,
    AssistantError,
    AssistantGenerationError,
    AssistantResponseError,
)
from .json_extraction import EnumField, FieldSpec, extract_record, run_extraction  # noqa: F401

__all__ = [
    "AssistantConfigurationError",
    "AssistantError",
    "AssistantGenerationError",
    "AssistantResponseError",
    "EnumField",
    "FieldSpec",
    "extract_record",
    "run_extraction",
]
