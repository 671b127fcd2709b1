from __future__ import annotations

from typing import Optional

from anthropic import Anthropic

from app.config import get_settings
from app.services.llm.types import LLMProviderError, provider_error


class AnthropicProvider:
    """Messages API client. JSON output is requested through the prompt only."""

    name = "anthropic"

    def __init__(self) -> None:
        api_key = get_settings().anthropic_api_key
        if not api_key:
            raise LLMProviderError("ANTHROPIC_API_KEY not configured")
        self._client = Anthropic(api_key=api_key)

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
        options = {}
        if system_prompt:
            options["system"] = system_prompt
        if temperature is not None:
            options["temperature"] = temperature
        try:
            message = self._client.messages.create(
                model=model,
                max_tokens=max_output_tokens,
                messages=[{"role": "user", "content": prompt}],
                timeout=timeout_seconds,
                **options,
            )
        except Exception as exc:
            raise provider_error(self.name, exc) from exc
        blocks = getattr(message, "content", None) or []
        return "\n".join(str(block.text) for block in blocks if getattr(block, "text", None)).strip()
