"""Shared plumbing for the AI assistant workflows."""
from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, Iterable, Optional, Tuple

from flask import current_app

from ..models import Book, GlobalSettings

PROMPT_CACHE_KEY = "_PROMPT_CONFIG_CACHE"
GENERATOR_CACHE_KEY = "_TEXT_GENERATOR_CACHE"


class AssistantError(RuntimeError):
    """Raised when an assistant request cannot be completed."""


class AssistantConfigurationError(AssistantError):
    """Raised when the API settings or prompt templates are unusable."""


class AssistantGenerationError(AssistantError):
    """Raised when the completion API call fails or returns nothing."""


class AssistantResponseError(AssistantError):
    """Raised when no record could be recovered from the model's reply."""

    def __init__(self, response_text: str) -> None:
        excerpt = (response_text or "")[:300]
        super().__init__(f"Could not parse a valid JSON response from the AI. Response: {excerpt}")
        self.response_text = response_text


def request_completion(
    prompt_key: str,
    *,
    overrides: Optional[Dict[str, Any]] = None,
    **values: str,
) -> Tuple[str, str]:
    """Fill the ``prompt_key`` template with ``values`` and run it.

    ``overrides`` replaces entries of the prompt's configured ``parameters``.
    Returns ``(response_text, final_prompt)``.
    """

    config_entry = _load_prompt_entry(prompt_key)
    final_prompt, system_prompt = render_prompt(prompt_key, **values)

    generator = _get_text_generator()
    if generator is None:
        raise AssistantConfigurationError("No AI configuration. Add an API key in the settings first.")

    parameters = dict(config_entry.get("parameters") or {})
    parameters.update(overrides or {})
    generation_kwargs = _extract_generation_parameters(parameters)
    try:
        response_text = generator.generate_response(
            final_prompt,
            system_prompt=system_prompt or None,
            **generation_kwargs,
        )
    except Exception as exc:  # pragma: no cover - defensive logging for integrations
        current_app.logger.warning("LLM request '%s' failed. Error: %s", prompt_key, exc)
        raise AssistantGenerationError(f"AI generation failed: {exc}") from exc

    if not response_text or not response_text.strip():
        raise AssistantGenerationError("The AI returned an empty response.")
    return response_text, final_prompt


def render_prompt(prompt_key: str, **values: str) -> Tuple[str, str]:
    """Return ``(final_prompt, system_prompt)`` for ``prompt_key`` without calling the model."""

    config_entry = _load_prompt_entry(prompt_key)
    prompt_template = config_entry.get("prompt_template")
    if not prompt_template:
        raise AssistantConfigurationError(f"Prompt template for '{prompt_key}' is missing.")

    final_prompt = _apply_template(prompt_template, **values)
    system_prompt = _apply_template(config_entry.get("system_prompt") or "", **values)
    return final_prompt, system_prompt


def clean_prompt(user_prompt: Optional[str]) -> str:
    prompt_text = (user_prompt or "").strip()
    if not prompt_text:
        raise AssistantError("A prompt is required.")
    return prompt_text


def describe_book(book: Book) -> Dict[str, str]:
    return {
        "book_title": book.title,
        "book_genre": book.genre or "Not specified",
        "book_description": book.description or "No description",
    }


def bullet_list(lines: Iterable[str], empty: str) -> str:
    items = [f"- {line}" for line in lines if line]
    return "\n".join(items) if items else empty


def _apply_template(template: str, **values: str) -> str:
    result = template
    for key, raw in values.items():
        replacement = raw if isinstance(raw, str) else str(raw)
        result = result.replace(f"{{{key}}}", replacement)
    return result


def _load_prompt_entry(key: str) -> Dict[str, Any]:
    config = _load_prompt_config()
    try:
        entry = config[key]
    except KeyError as exc:  # pragma: no cover - configuration issues are caught at runtime
        raise AssistantConfigurationError(f"Prompt configuration is missing the '{key}' entry.") from exc
    if not isinstance(entry, dict):
        raise AssistantConfigurationError(f"Prompt configuration entry '{key}' must be a dictionary.")
    return entry


def _load_prompt_config() -> Dict[str, Any]:
    app = current_app
    cached = app.config.get(PROMPT_CACHE_KEY)
    if isinstance(cached, dict):
        return cached

    config_path = app.config.get("PROMPT_CONFIG_PATH")
    if not config_path:
        raise AssistantConfigurationError("PROMPT_CONFIG_PATH is not configured.")

    path = Path(config_path)
    if not path.exists():
        raise AssistantConfigurationError(f"Prompt configuration file not found at: {path}")

    with path.open("r", encoding="utf-8") as fh:
        try:
            data = json.load(fh)
        except json.JSONDecodeError as exc:  # pragma: no cover - malformed file should be obvious at runtime
            raise AssistantConfigurationError(f"Unable to parse prompt configuration: {exc.msg}") from exc

    if not isinstance(data, dict):
        raise AssistantConfigurationError("Prompt configuration must be a JSON object.")

    app.config[PROMPT_CACHE_KEY] = data
    return data


_GENERATION_PARAMETER_KEYS = {
    "max_new_tokens",
    "temperature",
    "top_p",
}


def _extract_generation_parameters(parameters: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Filter a raw parameters dictionary to generation kwargs supported by the client."""

    if not isinstance(parameters, dict):
        return {}

    kwargs: Dict[str, Any] = {}
    for key in _GENERATION_PARAMETER_KEYS:
        if key in parameters and parameters[key] is not None:
            kwargs[key] = parameters[key]
    return kwargs


def _get_text_generator() -> Optional[Any]:  # pragma: no cover - integration point
    app = current_app
    settings = GlobalSettings.get_or_create()

    api_key = settings.api_key or app.config.get("OPENAI_API_KEY")
    if not api_key:
        app.logger.info("No API key configured; AI assistant requests are disabled.")
        return None

    api_endpoint = settings.api_endpoint or app.config.get("OPENAI_API_BASE")
    model = settings.model or app.config.get("OPENAI_MODEL")
    cache_key = (api_endpoint, model, api_key, settings.temperature, settings.max_tokens, settings.system_prompt)

    cache = app.config.setdefault(GENERATOR_CACHE_KEY, {})
    if cache_key in cache:
        return cache[cache_key]

    from api_handler import OpenAIChatGenerator

    app.logger.info("Initialising chat generator for model %s at %s", model, api_endpoint)
    generator = OpenAIChatGenerator(
        model_name=model,
        api_key=api_key,
        base_url=api_endpoint,
        default_max_tokens=settings.max_tokens,
        default_temperature=settings.temperature,
        system_prompt=settings.system_prompt,
    )
    cache.clear()
    cache[cache_key] = generator
    return generator


def clean_field(value: object) -> str:
    """Flatten an extracted value into the plain text stored on the models."""

    if value is None:
        return ""
    if isinstance(value, list):
        return ", ".join(clean_field(item) for item in value if clean_field(item))
    if not isinstance(value, str):
        value = str(value)
    return value.strip()
