import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import app.models  # noqa: F401
from app.models.base import Base


@pytest.fixture
def db_session():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    session = sessionmaker(bind=engine)()
    try:
        yield session
    finally:
        session.close()
        engine.dispose()


class FakeOrchestrator:
    """Stands in for LLMOrchestrator; replays canned responses per call."""

    def __init__(self, responses):
        self._responses = list(responses)
        self.requests = []

    def run_stage(self, request):
        from app.services.llm.types import LLMResponse

        self.requests.append(request)
        nxt = self._responses.pop(0) if self._responses else "{}"
        if isinstance(nxt, Exception):
            raise nxt
        return LLMResponse(text=nxt, provider="fake", model="fake-model")


@pytest.fixture
def fake_orchestrator_factory():
    return FakeOrchestrator
