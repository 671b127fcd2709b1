from __future__ import annotations

from typing import Optional

from openai import OpenAI

from app.config import get_settings
from app.services.llm.types import LLMProviderError, provider_error


class OpenAIProvider:
    name = "openai"

    def __init__(self) -> None:
        api_key = get_settings().openai_api_key
        if not api_key:
            raise LLMProviderError("OPENAI_API_KEY not configured")
        self._client = OpenAI(api_key=api_key)

    def generate(
        self,
        *,
        model: str,
        prompt: str,
        timeout_seconds: int,
        system_prompt: Optional[str] = None,
        temperature: Optional[float] = None,
        expect_json: bool = False,
        max_output_tokens: int = 4000,
    ) -> str:
        messages = [{"role": "user", "content": prompt}]
        if system_prompt:
            messages.insert(0, {"role": "system", "content": system_prompt})
        options = {"max_tokens": max_output_tokens}
        if temperature is not None:
            options["temperature"] = temperature
        if expect_json:
            options["response_format"] = {"type": "json_object"}
        try:
            completion = self._client.chat.completions.create(
                model=model, messages=messages, timeout=timeout_seconds, **options
            )
        except Exception as exc:
            raise provider_error(self.name, exc) from exc
        if not completion.choices:
            return ""
        return (completion.choices[0].message.content or "").strip()
