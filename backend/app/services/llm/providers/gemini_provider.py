from __future__ import annotations

from typing import Optional

from google import genai
from google.genai import types as genai_types

from app.config import get_settings
from app.services.llm.types import LLMProviderError, provider_error


class GeminiProvider:
    name = "gemini"

    def __init__(self) -> None:
        api_key = get_settings().gemini_api_key
        if not api_key:
            raise LLMProviderError("GEMINI_API_KEY not configured")
        self._client = genai.Client(api_key=api_key)

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
        config = genai_types.GenerateContentConfig(
            system_instruction=system_prompt or None,
            temperature=temperature,
            max_output_tokens=max_output_tokens,
            response_mime_type="application/json" if expect_json else None,
            http_options=genai_types.HttpOptions(timeout=timeout_seconds * 1000),
        )
        try:
            result = self._client.models.generate_content(model=model, contents=prompt, config=config)
        except Exception as exc:
            raise provider_error(self.name, exc) from exc
        return (result.text or "").strip()
