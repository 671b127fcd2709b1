import asyncio

import pytest
from fastapi import HTTPException
from fastapi.testclient import TestClient

from app.api.deal_rooms import _adjustment_response
from app.api.deps import get_current_user_id, run_service
from app.main import app
from app.models.deal_room import AdjustmentType
from app.services.deal_room_approvals import add_participant, create_deal_room, propose_adjustment
from app.services.errors import NotFoundError


class _FakeAsyncSession:
    def __init__(self):
        self.rolled_back = False

    async def run_sync(self, fn):
        return fn("sync-session")

    async def rollback(self):
        self.rolled_back = True


def test_run_service_passes_session_first():
    db = _FakeAsyncSession()
    result = asyncio.run(run_service(db, lambda session, a, b=None: (session, a, b), 1, b=2))
    assert result == ("sync-session", 1, 2)
    assert db.rolled_back is False


def test_run_service_maps_service_errors_to_http():
    db = _FakeAsyncSession()

    def _missing(session):
        raise NotFoundError("Deal room not found")

    with pytest.raises(HTTPException) as excinfo:
        asyncio.run(run_service(db, _missing))
    assert excinfo.value.status_code == 404
    assert excinfo.value.detail == "Deal room not found"
    assert db.rolled_back is True


def test_current_user_id_requires_header():
    with pytest.raises(HTTPException) as excinfo:
        asyncio.run(get_current_user_id(None))
    assert excinfo.value.status_code == 401
    assert asyncio.run(get_current_user_id("  user-1 ")) == "user-1"


def test_adjustment_response_includes_progress(db_session):
    room = create_deal_room(db_session, "alice", "Acme JV")
    add_participant(db_session, room.id, "alice", name="Bob", user_id="bob")
    adjustment = propose_adjustment(
        db_session, room.id, "alice", adjustment_type=AdjustmentType.bonus_payment, amount=100, description="Bonus"
    )
    response = _adjustment_response(adjustment, [p for p in adjustment.approvals])
    assert response.progress == {"total": 2, "approved": 1, "rejected": 0, "pending": 1}
    assert response.status.value == "pending"


def test_health_and_missing_identity():
    client = TestClient(app)
    assert client.get("/health").json() == {"status": "healthy"}
    assert client.get("/").json()["message"] == "Biz Dev Platform API"
    assert client.post("/deal-rooms", json={"name": "No header"}).status_code == 401
    assert client.get("/deal-rooms/voting/templates").json()[0]["id"] == "terms_fair"
