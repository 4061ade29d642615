# api_handler.py
from __future__ import annotations
from typing import Any, Dict, List, Optional, Tuple

import openai


class OpenAIChatGenerator:
    """
    Thin wrapper around an OpenAI-compatible chat completions endpoint.

    - Sends an optional system message followed by the user prompt.
    - Works against any server that speaks the ``/chat/completions`` protocol
      (OpenAI, Azure proxies, local gateways) through ``base_url``.

    Compatible with OpenAI Python SDK >= 1.0.
    """

    def __init__(
        self,
        model_name: str,
        api_key: str,
        *,
        base_url: Optional[str] = None,
        default_max_tokens: int = 4096,
        default_temperature: float = 0.8,
        system_prompt: Optional[str] = None,
    ) -> None:
        self.model_name = (model_name or "").strip()
        self.api_key = (api_key or "").strip()
        self.base_url = (base_url or "").strip().rstrip("/") or None
        self.default_max_tokens = int(default_max_tokens or 4096)
        self.default_temperature = float(default_temperature) if default_temperature is not None else None
        self.system_prompt = (system_prompt or "").strip() or None

        if not self.model_name:
            raise ValueError("model_name must be a non-empty string.")
        if not self.api_key:
            raise ValueError("api_key must be a non-empty string.")

        self._client = openai.OpenAI(api_key=self.api_key, base_url=self.base_url)

    # ---------------- public API ----------------
    def generate_response(
        self,
        prompt: str,
        *,
        system_prompt: Optional[str] = None,
        max_new_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
        top_p: Optional[float] = None,
    ) -> str:
        if not isinstance(prompt, str) or not prompt.strip():
            raise ValueError("prompt must be a non-empty string.")
        max_tokens = int(max_new_tokens if max_new_tokens is not None else self.default_max_tokens)
        if max_tokens <= 0:
            raise ValueError("max_new_tokens must be positive.")

        messages = self._build_messages(prompt, system_prompt)
        kwargs: Dict[str, Any] = {
            "model": self.model_name,
            "messages": messages,
            "max_tokens": max_tokens,
            "n": 1,
        }
        effective_temperature = temperature if temperature is not None else self.default_temperature
        if effective_temperature is not None:
            kwargs["temperature"] = float(effective_temperature)
        if top_p is not None:
            kwargs["top_p"] = float(top_p)

        resp = self._client.chat.completions.create(**kwargs)
        text = self._extract_text_from_chat(resp).strip()
        if text:
            return text
        snippet = self._shorten_debug(str(resp))
        raise RuntimeError(f"Chat completion returned no text. Raw response (truncated): {snippet}")

    def signature(self) -> Tuple[str, str]:
        # Never return raw secrets
        redacted = (self.api_key[:4] + "…" + self.api_key[-4:]) if self.api_key else ""
        return (self.model_name, redacted)

    # ---------------- helpers ----------------
    def _build_messages(self, prompt: str, system_prompt: Optional[str]) -> List[Dict[str, str]]:
        system_parts = [
            part.strip()
            for part in (self.system_prompt, system_prompt)
            if isinstance(part, str) and part.strip()
        ]
        messages: List[Dict[str, str]] = []
        if system_parts:
            messages.append({"role": "system", "content": "\n\n".join(system_parts)})
        messages.append({"role": "user", "content": prompt})
        return messages

    def _extract_text_from_chat(self, resp: Any) -> str:
        choices = getattr(resp, "choices", []) or []
        if not choices:
            return ""
        first = choices[0]
        msg = getattr(first, "message", None)
        if isinstance(msg, dict):
            content = msg.get("content")
        else:
            content = getattr(msg, "content", None)
        if isinstance(content, list):
            parts: List[str] = []
            for p in content:
                if isinstance(p, dict) and p.get("type") == "text":
                    parts.append(str(p.get("text") or ""))
            return "\n".join([p for p in parts if p])
        return str(content or getattr(first, "text", "") or "")

    @staticmethod
    def _shorten_debug(s: str, limit: int = 1200) -> str:
        s = s.replace("\n", " ")
        return (s[:limit] + "…") if len(s) > limit else s
