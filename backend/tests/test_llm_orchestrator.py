from app.services.llm.json_payload import parse_json_object
from app.services.llm.orchestrator import LLMOrchestrator
from app.services.llm.types import (
    LLMOrchestrationError,
    LLMProviderError,
    LLMRequest,
    LLMStage,
    classify_retryable_error,
    provider_error,
)


class _FakeProvider:
    def __init__(self, responses):
        self._responses = list(responses)
        self.calls = []

    def generate(self, *, model: str, prompt: str, timeout_seconds: int, **kwargs):
        self.calls.append({"model": model, "prompt": prompt, **kwargs})
        if not self._responses:
            return ""
        nxt = self._responses.pop(0)
        if isinstance(nxt, Exception):
            raise nxt
        return str(nxt)


def test_orchestrator_falls_back_to_next_provider(monkeypatch):
    orchestrator = LLMOrchestrator()
    monkeypatch.setattr(orchestrator._settings, "stage_retry_backoff_seconds", 0)
    routes = [("openai", "gpt-4o-mini"), ("anthropic", "claude-3-5-haiku-latest")]
    monkeypatch.setattr(orchestrator, "_routes_for_stage", lambda _stage: routes)
    providers = {
        "openai": _FakeProvider([LLMProviderError("schema invalid", retryable=False)]),
        "anthropic": _FakeProvider(['{"businesses": [{"name": "Acme", "confidence": 0.9}]}']),
    }
    monkeypatch.setattr(orchestrator, "_provider", lambda name: providers[name])

    response = orchestrator.run_stage(
        LLMRequest(
            stage=LLMStage.entity_extraction,
            prompt="Return JSON.",
            system_prompt="You extract entities.",
            timeout_seconds=30,
            temperature=0.1,
            expect_json=True,
        )
    )
    assert response.provider == "anthropic"
    assert response.model == "claude-3-5-haiku-latest"
    assert len(response.attempts) == 2
    assert response.attempts[0].provider == "openai"
    assert response.attempts[1].provider == "anthropic"
    assert providers["anthropic"].calls[0]["system_prompt"] == "You extract entities."
    assert providers["anthropic"].calls[0]["expect_json"] is True


def test_orchestrator_retries_retryable_provider_errors(monkeypatch):
    orchestrator = LLMOrchestrator()
    monkeypatch.setattr(orchestrator._settings, "stage_retry_backoff_seconds", 0)
    monkeypatch.setattr(orchestrator._settings, "stage_retry_max_attempts", 2)
    monkeypatch.setattr(orchestrator, "_routes_for_stage", lambda _stage: [("gemini", "gemini-2.0-flash")])
    provider = _FakeProvider(
        [
            LLMProviderError("timeout", retryable=True),
            '{"contacts": []}',
        ]
    )
    monkeypatch.setattr(
        orchestrator,
        "_provider",
        lambda _name: provider,
    )

    response = orchestrator.run_stage(
        LLMRequest(
            stage=LLMStage.entity_extraction,
            prompt="Return JSON.",
            timeout_seconds=20,
            expect_json=True,
        )
    )
    assert response.provider == "gemini"
    assert len(response.attempts) == 2
    assert response.attempts[0].status == "retryable_error"
    assert response.attempts[1].status == "success"


def test_orchestrator_raises_when_all_routes_fail(monkeypatch):
    orchestrator = LLMOrchestrator()
    monkeypatch.setattr(orchestrator._settings, "stage_retry_backoff_seconds", 0)
    monkeypatch.setattr(orchestrator, "_routes_for_stage", lambda _stage: [("gemini", "gemini-2.0-flash")])
    monkeypatch.setattr(
        orchestrator,
        "_provider",
        lambda _name: _FakeProvider([LLMProviderError("schema invalid", retryable=False)]),
    )

    try:
        orchestrator.run_stage(
            LLMRequest(
                stage=LLMStage.entity_extraction,
                prompt="Return JSON.",
                timeout_seconds=20,
            )
        )
    except LLMOrchestrationError as exc:
        assert exc.stage == "entity_extraction"
        assert exc.attempts
        assert exc.attempts[0].status in {"terminal_error", "retryable_error"}
    else:  # pragma: no cover
        raise AssertionError("Expected LLMOrchestrationError")


def test_stage_routes_parse_provider_model_lists(monkeypatch):
    orchestrator = LLMOrchestrator()
    monkeypatch.setattr(
        orchestrator._settings,
        "llm_stage_entity_extraction_models",
        "openai:gpt-4o-mini, bogus, gemini:gemini-2.0-flash",
    )
    assert orchestrator._routes_for_stage("entity_extraction") == [
        ("openai", "gpt-4o-mini"),
        ("gemini", "gemini-2.0-flash"),
    ]


def test_classify_retryable_error_flags_rate_limits():
    assert classify_retryable_error(RuntimeError("429 Too Many Requests")) is True
    assert classify_retryable_error(LLMProviderError("bad schema", retryable=False)) is False


def test_parse_json_object_tolerates_fences_and_prose():
    assert parse_json_object('```json\n{"businesses": []}\n```') == {"businesses": []}
    assert parse_json_object('Here you go: {"contacts": [{"full_name": "Ann"}]} thanks') == {
        "contacts": [{"full_name": "Ann"}]
    }
    assert parse_json_object("no json here") == {}
    assert parse_json_object("[1, 2]") == {}


class _StatusError(Exception):
    def __init__(self, message, status_code):
        super().__init__(message)
        self.status_code = status_code


def test_provider_error_keeps_sdk_status_code():
    wrapped = provider_error("openai", _StatusError("server overloaded", 503))
    assert wrapped.retryable is True
    assert wrapped.status_code == 503
    assert str(wrapped).startswith("openai: ")
    assert provider_error("openai", _StatusError("bad request", 400)).retryable is False


def test_orchestrator_retries_empty_json_reply(monkeypatch):
    orchestrator = LLMOrchestrator()
    monkeypatch.setattr(orchestrator._settings, "stage_retry_backoff_seconds", 0)
    monkeypatch.setattr(orchestrator._settings, "stage_retry_max_attempts", 2)
    monkeypatch.setattr(orchestrator, "_routes_for_stage", lambda _stage: [("openai", "gpt-4o-mini")])
    provider = _FakeProvider(["", '{"companies": []}'])
    monkeypatch.setattr(orchestrator, "_provider", lambda _name: provider)

    response = orchestrator.run_stage(
        LLMRequest(stage=LLMStage.entity_extraction, prompt="Return JSON.", expect_json=True, max_output_tokens=512)
    )
    assert response.text == '{"companies": []}'
    assert [a.status for a in response.attempts] == ["retryable_error", "success"]
    assert provider.calls[0]["max_output_tokens"] == 512
    assert response.route == "openai:gpt-4o-mini"
