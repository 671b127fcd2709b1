from __future__ import annotations

import logging
import time
from typing import Callable, Dict, List, Optional, Tuple

from app.config import get_settings
from app.services.llm.providers.anthropic_provider import AnthropicProvider
from app.services.llm.providers.gemini_provider import GeminiProvider
from app.services.llm.providers.openai_provider import OpenAIProvider
from app.services.llm.types import (
    LLMOrchestrationError,
    LLMProviderError,
    LLMRequest,
    LLMResponse,
    ModelAttemptTrace,
    classify_retryable_error,
    now_iso,
)

logger = logging.getLogger(__name__)

DEFAULT_ROUTE = ("openai", "gpt-4o-mini")

PROVIDER_FACTORIES: Dict[str, Callable[[], object]] = {
    "openai": OpenAIProvider,
    "anthropic": AnthropicProvider,
    "gemini": GeminiProvider,
}


class LLMOrchestrator:
    """Runs a stage request across its configured provider:model routes.

    Each route gets up to ``stage_retry_max_attempts`` tries while its errors
    stay retryable; a terminal error moves straight on to the next route.
    """

    def __init__(self) -> None:
        self._settings = get_settings()
        self._providers: Dict[str, object] = {}

    def _provider(self, name: str):
        key = (name or "").strip().lower()
        if key not in self._providers:
            factory = PROVIDER_FACTORIES.get(key)
            if factory is None:
                raise LLMProviderError(f"Unsupported LLM provider: {name}")
            self._providers[key] = factory()
        return self._providers[key]

    def _routes_for_stage(self, stage_name: str) -> List[Tuple[str, str]]:
        return self._settings.stage_model_routes(stage_name) or [DEFAULT_ROUTE]

    def _attempt(
        self, request: LLMRequest, provider_name: str, model: str, retry_count: int
    ) -> Tuple[Optional[str], ModelAttemptTrace, bool]:
        started_at = now_iso()
        clock = time.perf_counter()
        text: Optional[str] = None
        error: Optional[Exception] = None
        try:
            text = self._provider(provider_name).generate(
                model=model,
                prompt=request.prompt,
                system_prompt=request.system_prompt,
                timeout_seconds=max(1, int(request.timeout_seconds)),
                temperature=request.temperature,
                expect_json=bool(request.expect_json),
                max_output_tokens=request.max_output_tokens,
            )
            if request.expect_json and not (text or "").strip():
                raise LLMProviderError(f"{provider_name}: empty response", retryable=True)
        except Exception as exc:
            error = exc
            text = None

        retryable = False
        if error is not None:
            retryable = getattr(error, "retryable", False) or classify_retryable_error(error)
        if error is None:
            status = "success"
        elif retryable:
            status = "retryable_error"
        else:
            status = "terminal_error"

        trace = ModelAttemptTrace(
            stage=request.stage.value,
            provider=provider_name,
            model=model,
            latency_ms=int((time.perf_counter() - clock) * 1000),
            status=status,
            retry_count=retry_count,
            error_class=type(error).__name__ if error else None,
            error_message=str(error)[:500] if error else None,
            started_at=started_at,
            ended_at=now_iso(),
        )
        return text, trace, retryable

    def run_stage(self, request: LLMRequest) -> LLMResponse:
        stage = request.stage.value
        max_attempts = max(1, int(self._settings.stage_retry_max_attempts))
        backoff = max(0.0, float(self._settings.stage_retry_backoff_seconds))
        attempts: List[ModelAttemptTrace] = []

        for provider_name, model in self._routes_for_stage(stage):
            for retry_count in range(max_attempts):
                text, trace, retryable = self._attempt(request, provider_name, model, retry_count)
                attempts.append(trace)
                if trace.status == "success":
                    if len(attempts) > 1:
                        logger.info("[LLM] stage=%s served by %s:%s after %d attempts", stage, provider_name, model, len(attempts))
                    return LLMResponse(text=text or "", provider=provider_name, model=model, attempts=attempts)

                logger.warning(
                    "[LLM] stage=%s route=%s:%s attempt=%d %s: %s",
                    stage,
                    provider_name,
                    model,
                    retry_count + 1,
                    trace.status,
                    (trace.error_message or "")[:200],
                )
                if not retryable:
                    break
                if backoff and retry_count < max_attempts - 1:
                    time.sleep(backoff * (retry_count + 1))

        raise LLMOrchestrationError(f"All model routes failed for stage={stage}", stage=stage, attempts=attempts)
