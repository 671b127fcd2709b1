"""Human decisions on archive review-queue items."""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

from app.models.archive import (
    ArchiveAuditEvent,
    ArchiveBusiness,
    ArchiveContact,
    ArchiveImport,
    ArchiveReviewItem,
    ArchiveStrategy,
    ArchiveWorkspacePermission,
    ReviewItemStatus,
    SpawnedBusiness,
)
from app.services.archive_extraction import find_or_create_company, normalize_name
from app.services.errors import ConflictError, NotFoundError, PermissionDeniedError, ValidationFailedError

logger = logging.getLogger(__name__)

REVIEW_ACTIONS = {"approve", "reject", "merge", "spawn_my_business", "add_as_external"}

ACTION_FINAL_STATUS = {
    "reject": ReviewItemStatus.rejected,
    "merge": ReviewItemStatus.merged,
    "spawn_my_business": ReviewItemStatus.spawned,
    "add_as_external": ReviewItemStatus.added_to_crm,
}

SPAWN_STATUS_MAP = {
    "concept": "concept",
    "building": "building",
    "launched": "active",
}

COMPANY_ITEM_TYPES = {"external_company_create", "company_create"}
CONTACT_ITEM_TYPES = {"contact_create", "crm_contact_create"}


def final_status_for_action(action: str) -> ReviewItemStatus:
    return ACTION_FINAL_STATUS.get(action, ReviewItemStatus.approved)


def spawn_status(payload_status: Optional[str]) -> str:
    return SPAWN_STATUS_MAP.get(str(payload_status or ""), "concept")


def can_review(db: Session, item: ArchiveReviewItem, archive_import: ArchiveImport, user_id: str) -> bool:
    if archive_import.owner_user_id == user_id:
        return True
    if item.assigned_to_user_id and item.assigned_to_user_id == user_id:
        return True
    permission = (
        db.query(ArchiveWorkspacePermission)
        .filter(
            ArchiveWorkspacePermission.user_id == user_id,
            ArchiveWorkspacePermission.permission == "review",
        )
        .first()
    )
    return permission is not None


def _resolve_relationship(selected: Optional[str], payload: Dict[str, Any]) -> str:
    return selected or payload.get("relationship_type") or "unknown"


def _require(payload: Dict[str, Any], key: str) -> str:
    value = str(payload.get(key) or "").strip()
    if not value:
        raise ValidationFailedError(f"Review payload is missing {key}")
    return value


def _spawn_business(db, item, payload, user_id) -> Tuple[int, str]:
    spawned = SpawnedBusiness(
        user_id=user_id,
        business_name=_require(payload, "name"),
        business_type=payload.get("business_type") or "other",
        industry=payload.get("industry") or "General",
        description=payload.get("description"),
        status=spawn_status(payload.get("status")),
        brand_identity={
            "domain": payload.get("domain"),
            "created_from_import": item.import_id,
            "ownership_signals": payload.get("ownership_signals"),
        },
    )
    db.add(spawned)
    db.flush()
    logger.info("[Review] Spawned business %s with ID %s", spawned.business_name, spawned.id)
    return spawned.id, "spawned_business"


def _add_external_company(db, item, archive_import, payload, user_id, selected_relationship_type) -> Tuple[int, str]:
    company, _ = find_or_create_company(
        db,
        owner_user_id=user_id,
        organization_id=archive_import.organization_id,
        name=_require(payload, "name"),
        import_id=item.import_id,
        confidence=item.confidence,
        provenance={
            "evidence_chunk_ids": item.evidence_chunk_ids or [],
            "approved_by": user_id,
            "approved_at": datetime.utcnow().isoformat(),
        },
        domain=payload.get("domain"),
        industry=payload.get("industry"),
        relationship_type=_resolve_relationship(selected_relationship_type, payload),
    )
    return company.id, "archive_company"


def _create_contact(db, item, archive_import, payload, user_id, selected_relationship_type) -> Tuple[int, str]:
    company_id = None
    company_name = str(payload.get("company") or "").strip()
    if company_name:
        company, _ = find_or_create_company(
            db,
            owner_user_id=user_id,
            organization_id=archive_import.organization_id,
            name=company_name,
            import_id=item.import_id,
            confidence=item.confidence,
            provenance={"evidence_chunk_ids": item.evidence_chunk_ids or []},
        )
        company_id = company.id
    contact = ArchiveContact(
        owner_user_id=user_id,
        organization_id=archive_import.organization_id,
        full_name=_require(payload, "full_name"),
        email=payload.get("email"),
        phone=payload.get("phone"),
        company_id=company_id,
        role_title=payload.get("role_title"),
        relationship_type=_resolve_relationship(selected_relationship_type, payload),
        created_from_import_id=item.import_id,
        confidence=item.confidence,
        provenance_json={"evidence_chunk_ids": item.evidence_chunk_ids or [], "approved_by": user_id},
    )
    db.add(contact)
    db.flush()
    return contact.id, "archive_contact"


def _create_business(db, item, archive_import, payload, user_id) -> Tuple[int, str]:
    business = ArchiveBusiness(
        owner_user_id=user_id,
        organization_id=archive_import.organization_id,
        name=_require(payload, "name"),
        normalized_name=normalize_name(payload.get("name")),
        status=payload.get("status") or "concept",
        description=payload.get("description"),
        primary_domain=payload.get("domain"),
        created_from_import_id=item.import_id,
        confidence=item.confidence,
        provenance_json={
            "evidence_chunk_ids": item.evidence_chunk_ids or [],
            "confidence": item.confidence,
            "approved_by": user_id,
            "approved_at": datetime.utcnow().isoformat(),
        },
    )
    db.add(business)
    db.flush()
    return business.id, "archive_business"


def _create_strategy(db, item, archive_import, payload, user_id) -> Tuple[int, str]:
    strategy = ArchiveStrategy(
        owner_user_id=user_id,
        organization_id=archive_import.organization_id,
        title=_require(payload, "title"),
        strategy_type=payload.get("strategy_type"),
        summary=payload.get("summary"),
        playbook_steps=list(payload.get("playbook_steps") or []),
        templates=list(payload.get("templates") or []),
        stage="idea",
        created_from_import_id=item.import_id,
        confidence=item.confidence,
        provenance_json={"evidence_chunk_ids": item.evidence_chunk_ids or [], "approved_by": user_id},
    )
    db.add(strategy)
    db.flush()
    return strategy.id, "archive_strategy"


def _update_business(db, payload) -> Tuple[Optional[int], Optional[str]]:
    existing_id = payload.get("existing_id")
    if not existing_id:
        return None, None
    business = db.query(ArchiveBusiness).filter(ArchiveBusiness.id == existing_id).first()
    if not business:
        return None, None
    if payload.get("description"):
        business.description = payload["description"]
    if payload.get("status"):
        business.status = payload["status"]
    business.updated_at = datetime.utcnow()
    return business.id, "archive_business"


def apply_review_action(
    db: Session,
    review_item_id: int,
    user_id: str,
    action: str,
    *,
    merge_target_id: Optional[int] = None,
    notes: Optional[str] = None,
    selected_relationship_type: Optional[str] = None,
) -> Dict[str, Any]:
    if action not in REVIEW_ACTIONS:
        raise ValidationFailedError(f"Unknown review action: {action}")
    if action == "merge" and not merge_target_id:
        raise ValidationFailedError("merge requires merge_target_id")

    item = db.query(ArchiveReviewItem).filter(ArchiveReviewItem.id == review_item_id).first()
    if not item:
        raise NotFoundError("Review item not found")
    archive_import = db.query(ArchiveImport).filter(ArchiveImport.id == item.import_id).first()
    if not archive_import:
        raise NotFoundError("Archive import not found")
    if not can_review(db, item, archive_import, user_id):
        raise PermissionDeniedError("Access denied")
    if item.status != ReviewItemStatus.pending:
        raise ConflictError(f"Review item already {item.status.value}")

    logger.info("[Review] Processing %s for item %s", action, review_item_id)

    payload = dict(item.payload_json or {})
    item_type = item.item_type
    created_entity_id: Optional[int] = None
    entity_type: Optional[str] = None

    if action == "spawn_my_business" or (action == "approve" and item_type == "my_business_spawn"):
        created_entity_id, entity_type = _spawn_business(db, item, payload, user_id)
    elif action == "add_as_external" or (action == "approve" and item_type in COMPANY_ITEM_TYPES):
        created_entity_id, entity_type = _add_external_company(
            db, item, archive_import, payload, user_id, selected_relationship_type
        )
    elif action == "approve" and item_type in CONTACT_ITEM_TYPES:
        created_entity_id, entity_type = _create_contact(
            db, item, archive_import, payload, user_id, selected_relationship_type
        )
    elif action == "approve" and item_type == "business_create":
        created_entity_id, entity_type = _create_business(db, item, archive_import, payload, user_id)
    elif action == "approve" and item_type == "strategy_create":
        created_entity_id, entity_type = _create_strategy(db, item, archive_import, payload, user_id)
    elif action == "approve" and item_type == "business_update":
        created_entity_id, entity_type = _update_business(db, payload)
    elif action == "merge":
        created_entity_id, entity_type = merge_target_id, "merged"

    item.status = final_status_for_action(action)
    item.decision_notes = notes
    item.decided_at = datetime.utcnow()

    db.add(
        ArchiveAuditEvent(
            actor_user_id=user_id,
            action=f"review_{action}",
            object_type="review_queue",
            object_id=str(review_item_id),
            import_id=item.import_id,
            organization_id=archive_import.organization_id,
            metadata_json={
                "item_type": item_type,
                "created_entity_id": created_entity_id,
                "entity_type": entity_type,
                "selected_relationship_type": selected_relationship_type,
                "notes": notes,
            },
        )
    )
    db.commit()

    logger.info(
        "[Review] Completed %s for item %s, created: %s %s",
        action,
        review_item_id,
        entity_type,
        created_entity_id,
    )
    return {
        "success": True,
        "action": action,
        "status": item.status.value,
        "created_entity_id": created_entity_id,
        "entity_type": entity_type,
    }


def list_review_queue(
    db: Session,
    import_id: int,
    status: Optional[ReviewItemStatus] = ReviewItemStatus.pending,
) -> List[ArchiveReviewItem]:
    query = db.query(ArchiveReviewItem).filter(ArchiveReviewItem.import_id == import_id)
    if status is not None:
        query = query.filter(ArchiveReviewItem.status == status)
    return query.order_by(ArchiveReviewItem.confidence.desc(), ArchiveReviewItem.id.asc()).all()
