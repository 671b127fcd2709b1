import json

import pytest

from app.models.archive import (
    ArchiveAuditEvent,
    ArchiveBusiness,
    ArchiveBusinessMention,
    ArchiveCompany,
    ArchiveContact,
    ArchiveImport,
    ArchiveImportStatus,
    ArchiveReviewItem,
    ArchiveStrategy,
)
from app.services.archive_extraction import (
    ROUTE_AUTO,
    ROUTE_DISCARD,
    ROUTE_REVIEW,
    ExtractionThresholds,
    build_extraction_prompt,
    create_import,
    normalize_extraction,
    normalize_name,
    route_confidence,
    run_import_extraction,
)
from app.services.errors import NotFoundError, ValidationFailedError
from app.services.llm.types import LLMOrchestrationError, LLMStage


def _payload(**categories):
    return json.dumps({key: categories.get(key, []) for key in ("businesses", "contacts", "companies", "strategies")})


def test_normalize_name_strips_everything_but_alphanumerics():
    assert normalize_name("Acme, Inc.") == "acmeinc"
    assert normalize_name("  Blue-Sky  Labs 2 ") == "blueskylabs2"
    assert normalize_name(None) == ""


def test_route_confidence_bands():
    assert route_confidence(0.85, 0.85, 0.65) == ROUTE_AUTO
    assert route_confidence(0.7, 0.85, 0.65) == ROUTE_REVIEW
    assert route_confidence(0.65, 0.85, 0.65) == ROUTE_REVIEW
    assert route_confidence(0.64, 0.85, 0.65) == ROUTE_DISCARD
    assert route_confidence("not-a-number", 0.85, 0.65) == ROUTE_DISCARD


def test_thresholds_default_from_settings():
    thresholds = ExtractionThresholds.from_settings()
    assert (thresholds.business.auto, thresholds.business.review) == (0.85, 0.65)
    assert (thresholds.crm.auto, thresholds.crm.review) == (0.80, 0.60)
    assert (thresholds.strategy.auto, thresholds.strategy.review) == (0.75, 0.55)


def test_prompt_embeds_chunk_and_categories():
    prompt = build_extraction_prompt("Alice from Acme pitched a pricing plan.")
    assert "Alice from Acme pitched a pricing plan." in prompt
    for category in ("BUSINESSES", "CONTACTS", "COMPANIES", "STRATEGIES"):
        assert category in prompt
    assert '"businesses": [...]' in prompt


def test_normalize_extraction_drops_junk_entries():
    result = normalize_extraction({"businesses": [{"name": "A"}, "oops"], "contacts": "nope"})
    assert result == {"businesses": [{"name": "A"}], "contacts": [], "companies": [], "strategies": []}


def test_create_import_requires_chunks(db_session):
    with pytest.raises(ValidationFailedError):
        create_import(db_session, "user-1", ["   ", ""])


def test_run_import_extraction_routes_entities_by_confidence(db_session, fake_orchestrator_factory):
    archive_import = create_import(db_session, "user-1", ["chunk one", "chunk two"], source_name="chat.zip")
    orchestrator = fake_orchestrator_factory(
        [
            _payload(
                businesses=[
                    {"name": "Acme Corp", "status": "active", "confidence": 0.9},
                    {"name": "Maybe Co", "confidence": 0.7},
                    {"name": "Noise Ltd", "confidence": 0.2},
                ],
                contacts=[
                    {"full_name": "Ann Lee", "company": "Globex", "confidence": 0.95},
                    {"full_name": "Bob Ray", "confidence": 0.61},
                ],
                companies=[{"name": "Initech", "industry": "Software", "confidence": 0.85}],
                strategies=[
                    {"title": "Cold outbound", "playbook_steps": ["list", "email"], "confidence": 0.8},
                    {"title": "Vague idea", "confidence": 0.9},
                ],
            ),
            # Same business seen again at auto confidence resolves to the existing row
            _payload(businesses=[{"name": "ACME corp!", "confidence": 0.95}]),
        ]
    )

    stats = run_import_extraction(db_session, archive_import.id, orchestrator)

    assert stats["chunks_processed"] == 2
    assert stats["chunks_failed"] == 0
    assert stats["business_mentions"] == 4
    assert stats["contacts_extracted"] == 1
    assert stats["companies_extracted"] == 2  # Globex via contact, Initech direct
    assert stats["strategies_extracted"] == 1
    # Maybe Co, Bob Ray, Vague idea
    assert stats["review_queue_items"] == 3

    businesses = db_session.query(ArchiveBusiness).all()
    assert [b.name for b in businesses] == ["Acme Corp"]
    mentions = db_session.query(ArchiveBusinessMention).all()
    resolved = [m for m in mentions if m.resolved_business_id == businesses[0].id]
    assert len(resolved) == 2
    assert {m.resolution_method for m in resolved} == {"exact"}

    contact = db_session.query(ArchiveContact).one()
    assert contact.company.name == "Globex"
    assert contact.relationship_type == "unknown"
    assert {c.name for c in db_session.query(ArchiveCompany).all()} == {"Globex", "Initech"}
    assert db_session.query(ArchiveStrategy).one().title == "Cold outbound"

    item_types = sorted(i.item_type for i in db_session.query(ArchiveReviewItem).all())
    assert item_types == ["business_create", "contact_create", "strategy_create"]

    refreshed = db_session.get(ArchiveImport, archive_import.id)
    assert refreshed.status == ArchiveImportStatus.extracted
    assert refreshed.stats_json == stats
    assert refreshed.finished_at is not None
    audit = db_session.query(ArchiveAuditEvent).one()
    assert audit.action == "extract_entities_completed"

    request = orchestrator.requests[0]
    assert request.stage == LLMStage.entity_extraction
    assert request.expect_json is True


def test_review_band_business_with_existing_row_becomes_update(db_session, fake_orchestrator_factory):
    archive_import = create_import(db_session, "user-1", ["a", "b"])
    orchestrator = fake_orchestrator_factory(
        [
            _payload(businesses=[{"name": "Acme", "confidence": 0.9}]),
            _payload(businesses=[{"name": "acme", "description": "pivoted", "confidence": 0.7}]),
        ]
    )
    run_import_extraction(db_session, archive_import.id, orchestrator)

    item = db_session.query(ArchiveReviewItem).one()
    business = db_session.query(ArchiveBusiness).one()
    assert item.item_type == "business_update"
    assert item.payload_json["existing_id"] == business.id


def test_review_band_company_is_queued_even_when_known(db_session, fake_orchestrator_factory):
    archive_import = create_import(db_session, "user-1", ["a"])
    orchestrator = fake_orchestrator_factory(
        [
            _payload(
                companies=[
                    {"name": "Initech", "confidence": 0.9},
                    {"name": "initech", "confidence": 0.7},
                    {"name": "Umbrella", "confidence": 0.7},
                ]
            )
        ]
    )
    stats = run_import_extraction(db_session, archive_import.id, orchestrator)

    assert stats["companies_extracted"] == 1
    assert stats["review_queue_items"] == 2
    items = db_session.query(ArchiveReviewItem).all()
    assert {i.item_type for i in items} == {"company_create"}
    assert sorted(i.payload_json["name"] for i in items) == ["Umbrella", "initech"]


def test_malformed_entity_fields_do_not_abort_import(db_session, fake_orchestrator_factory):
    archive_import = create_import(db_session, "user-1", ["odd", "fine"])
    orchestrator = fake_orchestrator_factory(
        [
            _payload(
                strategies=[{"title": "T", "playbook_steps": 5, "confidence": 0.9}],
                companies=[{"name": "Hooli", "domain": {"url": "hooli.com"}, "confidence": 0.95}],
                contacts=[{"full_name": "Gil", "email": ["a@b.c"], "confidence": 0.95}],
            ),
            _payload(businesses=[{"name": "Pied Piper", "confidence": 0.9}]),
        ]
    )
    stats = run_import_extraction(db_session, archive_import.id, orchestrator)

    assert stats["chunks_processed"] == 2
    assert stats["chunks_failed"] == 0
    # Non-list steps are not an artifact, so the strategy waits for review
    assert stats["strategies_extracted"] == 0
    assert db_session.query(ArchiveReviewItem).one().item_type == "strategy_create"
    assert db_session.query(ArchiveCompany).one().domain is None
    assert db_session.query(ArchiveContact).one().email is None
    assert db_session.query(ArchiveBusiness).one().name == "Pied Piper"


def test_chunk_that_fails_to_persist_is_rolled_back_and_skipped(db_session, fake_orchestrator_factory, monkeypatch):
    from app.services import archive_extraction

    real_apply = archive_extraction.apply_chunk_entities
    calls = []

    def _flaky_apply(db, archive_import, chunk, extracted, thresholds, counters):
        calls.append(chunk.id)
        real_apply(db, archive_import, chunk, extracted, thresholds, counters)
        if len(calls) == 1:
            raise RuntimeError("constraint violated")
        return counters

    monkeypatch.setattr(archive_extraction, "apply_chunk_entities", _flaky_apply)
    archive_import = create_import(db_session, "user-1", ["first", "second"])
    orchestrator = fake_orchestrator_factory(
        [
            _payload(businesses=[{"name": "Lost Co", "confidence": 0.9}]),
            _payload(businesses=[{"name": "Kept Co", "confidence": 0.9}]),
        ]
    )
    stats = run_import_extraction(db_session, archive_import.id, orchestrator)

    assert stats["chunks_failed"] == 1
    assert stats["chunks_processed"] == 1
    assert stats["business_mentions"] == 1
    assert [b.name for b in db_session.query(ArchiveBusiness).all()] == ["Kept Co"]
    assert db_session.query(ArchiveBusinessMention).count() == 1
    assert db_session.get(ArchiveImport, archive_import.id).status == ArchiveImportStatus.extracted



def test_failed_chunk_is_counted_and_skipped(db_session, fake_orchestrator_factory):
    archive_import = create_import(db_session, "user-1", ["bad", "good"])
    orchestrator = fake_orchestrator_factory(
        [
            LLMOrchestrationError("all routes failed"),
            _payload(strategies=[{"title": "Referral loop", "templates": ["intro email"], "confidence": 0.76}]),
        ]
    )
    stats = run_import_extraction(db_session, archive_import.id, orchestrator)

    assert stats["chunks_failed"] == 1
    assert stats["chunks_processed"] == 1
    assert stats["strategies_extracted"] == 1
    assert db_session.get(ArchiveImport, archive_import.id).status == ArchiveImportStatus.extracted


def test_missing_import_raises_not_found(db_session, fake_orchestrator_factory):
    with pytest.raises(NotFoundError):
        run_import_extraction(db_session, 999, fake_orchestrator_factory([]))
