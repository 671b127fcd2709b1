from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

RETRYABLE_STATUS_CODES = {408, 409, 429, 500, 502, 503, 504, 529}
RETRYABLE_MARKERS = (
    "rate limit",
    "429",
    "timeout",
    "timed out",
    "overloaded",
    "connection reset",
    "connection aborted",
    "502",
    "503",
    "504",
)


class LLMStage(str, Enum):
    entity_extraction = "entity_extraction"


@dataclass
class LLMRequest:
    stage: LLMStage
    prompt: str
    system_prompt: Optional[str] = None
    timeout_seconds: int = 60
    temperature: Optional[float] = None
    expect_json: bool = False
    max_output_tokens: int = 4000
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ModelAttemptTrace:
    stage: str
    provider: str
    model: str
    latency_ms: int
    status: str  # success|retryable_error|terminal_error
    retry_count: int
    error_class: Optional[str] = None
    error_message: Optional[str] = None
    started_at: Optional[str] = None
    ended_at: Optional[str] = None

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class LLMResponse:
    text: str
    provider: str
    model: str
    attempts: List[ModelAttemptTrace] = field(default_factory=list)

    @property
    def route(self) -> str:
        return f"{self.provider}:{self.model}"


class LLMOrchestrationError(RuntimeError):
    """Every configured route for a stage failed."""

    def __init__(
        self,
        message: str,
        *,
        stage: Optional[str] = None,
        attempts: Optional[List[ModelAttemptTrace]] = None,
    ) -> None:
        super().__init__(message)
        self.stage = stage
        self.attempts = attempts or []

    @property
    def last_error(self) -> Optional[str]:
        return self.attempts[-1].error_message if self.attempts else None


class LLMProviderError(RuntimeError):
    def __init__(self, message: str, *, retryable: bool = False, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.retryable = retryable
        self.status_code = status_code


def classify_retryable_error(exc: Exception) -> bool:
    status_code = getattr(exc, "status_code", None)
    if isinstance(status_code, int):
        return status_code in RETRYABLE_STATUS_CODES
    text = str(exc).lower()
    return any(marker in text for marker in RETRYABLE_MARKERS)


def provider_error(provider: str, exc: Exception) -> LLMProviderError:
    """Wrap an SDK exception, keeping its HTTP status when the SDK exposes one."""
    if isinstance(exc, LLMProviderError):
        return exc
    status_code = getattr(exc, "status_code", None)
    return LLMProviderError(
        f"{provider}: {exc}",
        retryable=classify_retryable_error(exc),
        status_code=status_code if isinstance(status_code, int) else None,
    )


def now_iso() -> str:
    return datetime.utcnow().isoformat()
