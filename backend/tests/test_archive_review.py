import pytest

from app.models.archive import (
    ArchiveAuditEvent,
    ArchiveBusiness,
    ArchiveCompany,
    ArchiveContact,
    ArchiveReviewItem,
    ArchiveStrategy,
    ArchiveWorkspacePermission,
    ReviewItemStatus,
    SpawnedBusiness,
)
from app.services.archive_extraction import create_import
from app.services.archive_review import (
    apply_review_action,
    final_status_for_action,
    list_review_queue,
    spawn_status,
)
from app.services.errors import ConflictError, NotFoundError, PermissionDeniedError, ValidationFailedError


def _queue_item(db, owner="owner-1", item_type="business_create", payload=None, confidence=0.7):
    archive_import = create_import(db, owner, ["some chunk"])
    item = ArchiveReviewItem(
        import_id=archive_import.id,
        item_type=item_type,
        payload_json=payload or {"name": "Acme"},
        confidence=confidence,
        evidence_chunk_ids=[1],
        status=ReviewItemStatus.pending,
    )
    db.add(item)
    db.commit()
    return item


def test_final_status_for_action_mapping():
    assert final_status_for_action("approve") == ReviewItemStatus.approved
    assert final_status_for_action("reject") == ReviewItemStatus.rejected
    assert final_status_for_action("merge") == ReviewItemStatus.merged
    assert final_status_for_action("spawn_my_business") == ReviewItemStatus.spawned
    assert final_status_for_action("add_as_external") == ReviewItemStatus.added_to_crm


def test_spawn_status_mapping():
    assert spawn_status("launched") == "active"
    assert spawn_status("building") == "building"
    assert spawn_status(None) == "concept"
    assert spawn_status("mystery") == "concept"


def test_approve_business_create_inserts_business(db_session):
    item = _queue_item(db_session, payload={"name": "Acme Labs", "domain": "acme.test"})

    result = apply_review_action(db_session, item.id, "owner-1", "approve", notes="looks right")

    business = db_session.query(ArchiveBusiness).one()
    assert result == {
        "success": True,
        "action": "approve",
        "status": "approved",
        "created_entity_id": business.id,
        "entity_type": "archive_business",
    }
    assert business.normalized_name == "acmelabs"
    assert business.primary_domain == "acme.test"
    refreshed = db_session.get(ArchiveReviewItem, item.id)
    assert refreshed.status == ReviewItemStatus.approved
    assert refreshed.decision_notes == "looks right"
    assert refreshed.decided_at is not None
    audit = db_session.query(ArchiveAuditEvent).filter(ArchiveAuditEvent.action == "review_approve").one()
    assert audit.object_id == str(item.id)


def test_approve_contact_links_company_and_relationship(db_session):
    item = _queue_item(
        db_session,
        item_type="contact_create",
        payload={"full_name": "Ann Lee", "company": "Globex", "relationship_type": "lead"},
    )

    apply_review_action(db_session, item.id, "owner-1", "approve", selected_relationship_type="investor")

    contact = db_session.query(ArchiveContact).one()
    assert contact.relationship_type == "investor"
    assert contact.company.name == "Globex"


def test_add_as_external_reuses_existing_company(db_session):
    first = _queue_item(db_session, item_type="company_create", payload={"name": "Initech"})
    apply_review_action(db_session, first.id, "owner-1", "add_as_external")
    second = _queue_item(db_session, item_type="company_create", payload={"name": "initech"})
    result = apply_review_action(db_session, second.id, "owner-1", "add_as_external")

    assert db_session.query(ArchiveCompany).count() == 1
    assert result["status"] == "added_to_crm"
    assert result["entity_type"] == "archive_company"


def test_spawn_my_business_creates_spawned_business(db_session):
    item = _queue_item(db_session, item_type="my_business_spawn", payload={"name": "Side Hustle", "status": "launched"})

    result = apply_review_action(db_session, item.id, "owner-1", "spawn_my_business")

    spawned = db_session.query(SpawnedBusiness).one()
    assert spawned.status == "active"
    assert spawned.user_id == "owner-1"
    assert result["status"] == "spawned"
    assert result["entity_type"] == "spawned_business"


def test_approve_strategy_and_reject(db_session):
    strategy_item = _queue_item(
        db_session, item_type="strategy_create", payload={"title": "Referral loop", "templates": ["intro"]}
    )
    apply_review_action(db_session, strategy_item.id, "owner-1", "approve")
    assert db_session.query(ArchiveStrategy).one().stage == "idea"

    rejected = _queue_item(db_session)
    result = apply_review_action(db_session, rejected.id, "owner-1", "reject")
    assert result["status"] == "rejected"
    assert result["created_entity_id"] is None


def test_business_update_changes_existing_row(db_session):
    business = ArchiveBusiness(owner_user_id="owner-1", name="Acme", normalized_name="acme", status="concept")
    db_session.add(business)
    db_session.commit()
    item = _queue_item(
        db_session,
        item_type="business_update",
        payload={"name": "Acme", "existing_id": business.id, "description": "now a client", "status": "client"},
    )

    apply_review_action(db_session, item.id, "owner-1", "approve")

    db_session.refresh(business)
    assert business.description == "now a client"
    assert business.status == "client"


def test_merge_requires_target(db_session):
    item = _queue_item(db_session)
    with pytest.raises(ValidationFailedError):
        apply_review_action(db_session, item.id, "owner-1", "merge")
    result = apply_review_action(db_session, item.id, "owner-1", "merge", merge_target_id=42)
    assert result["created_entity_id"] == 42
    assert result["status"] == "merged"


def test_unknown_action_and_missing_item(db_session):
    item = _queue_item(db_session)
    with pytest.raises(ValidationFailedError):
        apply_review_action(db_session, item.id, "owner-1", "explode")
    with pytest.raises(NotFoundError):
        apply_review_action(db_session, 9999, "owner-1", "approve")


def test_reviewer_permissions(db_session):
    item = _queue_item(db_session)
    with pytest.raises(PermissionDeniedError):
        apply_review_action(db_session, item.id, "stranger", "reject")

    db_session.add(ArchiveWorkspacePermission(user_id="reviewer-1", permission="review"))
    db_session.commit()
    assert apply_review_action(db_session, item.id, "reviewer-1", "reject")["status"] == "rejected"


def test_assigned_reviewer_can_decide(db_session):
    item = _queue_item(db_session)
    item.assigned_to_user_id = "assignee"
    db_session.commit()
    assert apply_review_action(db_session, item.id, "assignee", "approve")["status"] == "approved"


def test_decided_item_cannot_be_decided_again(db_session):
    item = _queue_item(db_session)
    apply_review_action(db_session, item.id, "owner-1", "reject")
    with pytest.raises(ConflictError):
        apply_review_action(db_session, item.id, "owner-1", "approve")


def test_missing_payload_name_is_rejected(db_session):
    item = _queue_item(db_session, payload={"description": "no name"})
    with pytest.raises(ValidationFailedError):
        apply_review_action(db_session, item.id, "owner-1", "approve")


def test_list_review_queue_filters_by_status(db_session):
    item = _queue_item(db_session, confidence=0.6)
    other = ArchiveReviewItem(
        import_id=item.import_id,
        item_type="contact_create",
        payload_json={"full_name": "Bob"},
        confidence=0.75,
        status=ReviewItemStatus.pending,
    )
    db_session.add(other)
    db_session.commit()

    pending = list_review_queue(db_session, item.import_id)
    assert [i.id for i in pending] == [other.id, item.id]

    apply_review_action(db_session, other.id, "owner-1", "reject")
    assert [i.id for i in list_review_queue(db_session, item.import_id)] == [item.id]
    assert len(list_review_queue(db_session, item.import_id, status=None)) == 2
