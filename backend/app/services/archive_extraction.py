"""Archive entity extraction: LLM pass per chunk, confidence-gated persistence.

Each chunk of an archive import is sent to the ``entity_extraction`` LLM stage.
Returned businesses, contacts, companies and strategies are routed by
confidence: above the auto threshold they are written straight into the CRM
tables, inside the review band they land in ``archive_review_queue``, below it
they are dropped.
"""
from __future__ import annotations

import logging
import re
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from app.config import get_settings
from app.models.archive import (
    ArchiveAuditEvent,
    ArchiveBusiness,
    ArchiveBusinessMention,
    ArchiveChunk,
    ArchiveCompany,
    ArchiveContact,
    ArchiveImport,
    ArchiveImportStatus,
    ArchiveReviewItem,
    ArchiveStrategy,
    ReviewItemStatus,
)
from app.services.errors import NotFoundError, PermissionDeniedError, ValidationFailedError
from app.services.llm.json_payload import parse_json_object
from app.services.llm.types import LLMOrchestrationError, LLMRequest, LLMStage

logger = logging.getLogger(__name__)

ROUTE_AUTO = "auto"
ROUTE_REVIEW = "review"
ROUTE_DISCARD = "discard"

ENTITY_CATEGORIES = ("businesses", "contacts", "companies", "strategies")

EXTRACTION_SYSTEM_PROMPT = (
    "You are an entity extraction expert. Extract business entities, contacts, companies, "
    "and strategies from conversations. Return valid JSON only."
)


@dataclass
class ConfidenceBand:
    auto: float
    review: float


@dataclass
class ExtractionThresholds:
    business: ConfidenceBand
    crm: ConfidenceBand
    strategy: ConfidenceBand

    @classmethod
    def from_settings(cls) -> "ExtractionThresholds":
        settings = get_settings()
        return cls(
            business=ConfidenceBand(settings.business_auto_threshold, settings.business_review_threshold),
            crm=ConfidenceBand(settings.crm_auto_threshold, settings.crm_review_threshold),
            strategy=ConfidenceBand(settings.strategy_auto_threshold, settings.strategy_review_threshold),
        )


@dataclass
class ExtractionCounters:
    business_mentions: int = 0
    contacts_extracted: int = 0
    companies_extracted: int = 0
    strategies_extracted: int = 0
    review_queue_items: int = 0
    chunks_processed: int = 0
    chunks_failed: int = 0

    def as_dict(self) -> Dict[str, int]:
        return asdict(self)

    def add(self, other: "ExtractionCounters") -> None:
        for name, value in asdict(other).items():
            setattr(self, name, getattr(self, name) + value)


def normalize_name(name: Optional[str]) -> str:
    return re.sub(r"[^a-z0-9]", "", str(name or "").lower())


def coerce_confidence(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def route_confidence(confidence: Any, auto_threshold: float, review_threshold: float) -> str:
    score = coerce_confidence(confidence)
    if score >= auto_threshold:
        return ROUTE_AUTO
    if score >= review_threshold:
        return ROUTE_REVIEW
    return ROUTE_DISCARD


def text_field(value: Any) -> Optional[str]:
    """Scalar model output as stripped text; anything else is dropped."""
    if isinstance(value, bool) or not isinstance(value, (str, int, float)):
        return None
    text = str(value).strip()
    return text or None


def list_field(value: Any) -> List[Any]:
    return list(value) if isinstance(value, list) else []


def strategy_has_artifact(strategy: Dict[str, Any]) -> bool:
    return bool(list_field(strategy.get("playbook_steps"))) or bool(list_field(strategy.get("templates")))


def build_extraction_prompt(chunk_text: str) -> str:
    return f"""Analyze the following conversation excerpt and extract entities:

CONVERSATION:
{chunk_text}

Extract and return JSON with these categories:

1. BUSINESSES: Companies, startups, or business ventures mentioned
   - name: string
   - status: "concept" | "active" | "client" | "partner" | "target" | "vendor"
   - domain: string (if mentioned)
   - description: string (brief)
   - confidence: number (0-1)

2. CONTACTS: People mentioned with contact details
   - full_name: string
   - email: string (if mentioned)
   - phone: string (if mentioned)
   - company: string (if mentioned)
   - role_title: string (if mentioned)
   - relationship_type: "client" | "partner" | "investor" | "advisor" | "vendor" | "lead" | "friend" | "unknown"
   - confidence: number (0-1)

3. COMPANIES: Organizations mentioned (separate from business ventures)
   - name: string
   - domain: string (if mentioned)
   - industry: string (if identifiable)
   - confidence: number (0-1)

4. STRATEGIES: Actionable business strategies, playbooks, or frameworks discussed
   - title: string
   - strategy_type: "gtm" | "pricing" | "positioning" | "operations" | "product" | "legal" | "compliance" | "fundraising" | "deal_structure" | "marketing" | "sales" | "automation" | "technical_architecture"
   - summary: string
   - playbook_steps: string[] (if applicable)
   - templates: string[] (if applicable - email scripts, prompts, checklists)
   - confidence: number (0-1)

Return ONLY valid JSON with this structure:
{{
  "businesses": [...],
  "contacts": [...],
  "companies": [...],
  "strategies": [...]
}}"""


def normalize_extraction(payload: Dict[str, Any]) -> Dict[str, List[Dict[str, Any]]]:
    """Keep only dict entries under the four known categories."""
    result: Dict[str, List[Dict[str, Any]]] = {}
    for category in ENTITY_CATEGORIES:
        raw = payload.get(category) if isinstance(payload, dict) else None
        result[category] = [item for item in (raw or []) if isinstance(item, dict)] if isinstance(raw, list) else []
    return result


def extract_chunk_entities(chunk_text: str, orchestrator) -> Dict[str, List[Dict[str, Any]]]:
    settings = get_settings()
    response = orchestrator.run_stage(
        LLMRequest(
            stage=LLMStage.entity_extraction,
            prompt=build_extraction_prompt(chunk_text),
            system_prompt=EXTRACTION_SYSTEM_PROMPT,
            timeout_seconds=settings.entity_extraction_timeout_seconds,
            temperature=0.3,
            expect_json=True,
        )
    )
    return normalize_extraction(parse_json_object(response.text))


def find_company_by_name(db: Session, owner_user_id: str, name: str) -> Optional[ArchiveCompany]:
    return (
        db.query(ArchiveCompany)
        .filter(
            ArchiveCompany.owner_user_id == owner_user_id,
            func.lower(ArchiveCompany.name) == name.strip().lower(),
        )
        .first()
    )


def find_or_create_company(
    db: Session,
    *,
    owner_user_id: str,
    organization_id: Optional[str],
    name: str,
    import_id: int,
    confidence: Optional[float],
    provenance: Dict[str, Any],
    domain: Optional[str] = None,
    industry: Optional[str] = None,
    relationship_type: Optional[str] = None,
) -> tuple[ArchiveCompany, bool]:
    existing = find_company_by_name(db, owner_user_id, name)
    if existing:
        return existing, False
    company = ArchiveCompany(
        owner_user_id=owner_user_id,
        organization_id=organization_id,
        name=name,
        normalized_name=normalize_name(name),
        domain=domain,
        industry=industry,
        relationship_type=relationship_type,
        created_from_import_id=import_id,
        confidence=confidence,
        provenance_json=provenance,
    )
    db.add(company)
    db.flush()
    return company, True


def _enqueue_review(
    db: Session,
    archive_import: ArchiveImport,
    chunk: ArchiveChunk,
    item_type: str,
    payload: Dict[str, Any],
    confidence: float,
) -> ArchiveReviewItem:
    item = ArchiveReviewItem(
        import_id=archive_import.id,
        item_type=item_type,
        payload_json=payload,
        confidence=confidence,
        evidence_chunk_ids=[chunk.id],
        status=ReviewItemStatus.pending,
    )
    db.add(item)
    return item


def _apply_business(db, archive_import, chunk, biz, band, counters) -> None:
    name = text_field(biz.get("name")) or ""
    if not name:
        return
    confidence = coerce_confidence(biz.get("confidence"))
    normalized = normalize_name(name)
    counters.business_mentions += 1

    mention = ArchiveBusinessMention(
        import_id=archive_import.id,
        chunk_id=chunk.id,
        detected_name=name,
        detected_domain=text_field(biz.get("domain")),
        confidence=confidence,
        resolution_method="unresolved",
    )
    db.add(mention)

    existing = (
        db.query(ArchiveBusiness)
        .filter(
            ArchiveBusiness.owner_user_id == archive_import.owner_user_id,
            ArchiveBusiness.normalized_name == normalized,
        )
        .first()
    )

    route = route_confidence(confidence, band.auto, band.review)
    if route == ROUTE_AUTO:
        if existing is None:
            first_seen = chunk.occurred_start_at.isoformat() if chunk.occurred_start_at else None
            existing = ArchiveBusiness(
                owner_user_id=archive_import.owner_user_id,
                organization_id=archive_import.organization_id,
                name=name,
                normalized_name=normalized,
                status=text_field(biz.get("status")) or "concept",
                description=text_field(biz.get("description")),
                primary_domain=text_field(biz.get("domain")),
                first_seen_at=chunk.occurred_start_at,
                created_from_import_id=archive_import.id,
                confidence=confidence,
                provenance_json={
                    "evidence_chunk_ids": [chunk.id],
                    "first_seen_at": first_seen,
                    "confidence": confidence,
                },
            )
            db.add(existing)
            db.flush()
        mention.resolved_business_id = existing.id
        mention.resolution_method = "exact"
    elif route == ROUTE_REVIEW:
        payload = dict(biz)
        payload["existing_id"] = existing.id if existing else None
        _enqueue_review(
            db,
            archive_import,
            chunk,
            "business_update" if existing else "business_create",
            payload,
            confidence,
        )
        counters.review_queue_items += 1


def _apply_contact(db, archive_import, chunk, contact, band, counters) -> None:
    full_name = text_field(contact.get("full_name")) or ""
    if not full_name:
        return
    confidence = coerce_confidence(contact.get("confidence"))
    route = route_confidence(confidence, band.auto, band.review)

    if route == ROUTE_AUTO:
        existing = (
            db.query(ArchiveContact)
            .filter(
                ArchiveContact.owner_user_id == archive_import.owner_user_id,
                ArchiveContact.full_name == full_name,
            )
            .first()
        )
        if existing:
            return
        company_id = None
        company_name = text_field(contact.get("company")) or ""
        if company_name:
            company, created = find_or_create_company(
                db,
                owner_user_id=archive_import.owner_user_id,
                organization_id=archive_import.organization_id,
                name=company_name,
                import_id=archive_import.id,
                confidence=confidence,
                provenance={"evidence_chunk_ids": [chunk.id]},
            )
            company_id = company.id
            if created:
                counters.companies_extracted += 1
        db.add(
            ArchiveContact(
                owner_user_id=archive_import.owner_user_id,
                organization_id=archive_import.organization_id,
                full_name=full_name,
                email=text_field(contact.get("email")),
                phone=text_field(contact.get("phone")),
                company_id=company_id,
                role_title=text_field(contact.get("role_title")),
                relationship_type=text_field(contact.get("relationship_type")) or "unknown",
                created_from_import_id=archive_import.id,
                confidence=confidence,
                provenance_json={"evidence_chunk_ids": [chunk.id]},
            )
        )
        db.flush()
        counters.contacts_extracted += 1
    elif route == ROUTE_REVIEW:
        _enqueue_review(db, archive_import, chunk, "contact_create", contact, confidence)
        counters.review_queue_items += 1


def _apply_company(db, archive_import, chunk, company, band, counters) -> None:
    name = text_field(company.get("name")) or ""
    if not name:
        return
    confidence = coerce_confidence(company.get("confidence"))
    route = route_confidence(confidence, band.auto, band.review)

    if route == ROUTE_AUTO:
        _, created = find_or_create_company(
            db,
            owner_user_id=archive_import.owner_user_id,
            organization_id=archive_import.organization_id,
            name=name,
            import_id=archive_import.id,
            confidence=confidence,
            provenance={"evidence_chunk_ids": [chunk.id]},
            domain=text_field(company.get("domain")),
            industry=text_field(company.get("industry")),
        )
        if created:
            counters.companies_extracted += 1
    elif route == ROUTE_REVIEW:
        _enqueue_review(db, archive_import, chunk, "company_create", company, confidence)
        counters.review_queue_items += 1


def _apply_strategy(db, archive_import, chunk, strategy, band, counters) -> None:
    title = text_field(strategy.get("title")) or ""
    if not title:
        return
    confidence = coerce_confidence(strategy.get("confidence"))

    # Auto-accept needs something reusable (steps or templates) on top of confidence.
    if confidence >= band.auto and strategy_has_artifact(strategy):
        db.add(
            ArchiveStrategy(
                owner_user_id=archive_import.owner_user_id,
                organization_id=archive_import.organization_id,
                title=title,
                strategy_type=text_field(strategy.get("strategy_type")),
                summary=text_field(strategy.get("summary")),
                playbook_steps=list_field(strategy.get("playbook_steps")),
                templates=list_field(strategy.get("templates")),
                stage="idea",
                created_from_import_id=archive_import.id,
                confidence=confidence,
                provenance_json={"evidence_chunk_ids": [chunk.id]},
            )
        )
        counters.strategies_extracted += 1
    elif confidence >= band.review:
        _enqueue_review(db, archive_import, chunk, "strategy_create", strategy, confidence)
        counters.review_queue_items += 1


def apply_chunk_entities(
    db: Session,
    archive_import: ArchiveImport,
    chunk: ArchiveChunk,
    extracted: Dict[str, List[Dict[str, Any]]],
    thresholds: ExtractionThresholds,
    counters: ExtractionCounters,
) -> ExtractionCounters:
    for biz in extracted.get("businesses", []):
        _apply_business(db, archive_import, chunk, biz, thresholds.business, counters)
    for contact in extracted.get("contacts", []):
        _apply_contact(db, archive_import, chunk, contact, thresholds.crm, counters)
    for company in extracted.get("companies", []):
        _apply_company(db, archive_import, chunk, company, thresholds.crm, counters)
    for strategy in extracted.get("strategies", []):
        _apply_strategy(db, archive_import, chunk, strategy, thresholds.strategy, counters)
    db.flush()
    return counters


def run_import_extraction(
    db: Session,
    import_id: int,
    orchestrator,
    thresholds: Optional[ExtractionThresholds] = None,
) -> Dict[str, int]:
    archive_import = db.query(ArchiveImport).filter(ArchiveImport.id == import_id).first()
    if not archive_import:
        raise NotFoundError("Archive import not found")

    thresholds = thresholds or ExtractionThresholds.from_settings()
    counters = ExtractionCounters()

    archive_import.status = ArchiveImportStatus.extracting
    archive_import.started_at = datetime.utcnow()
    archive_import.error_message = None
    db.commit()

    chunks = (
        db.query(ArchiveChunk)
        .filter(ArchiveChunk.import_id == import_id)
        .order_by(ArchiveChunk.sequence.asc(), ArchiveChunk.id.asc())
        .all()
    )
    logger.info("[ExtractEntities] Processing %d chunks for import %s", len(chunks), import_id)

    for chunk in chunks:
        chunk_id = chunk.id
        try:
            extracted = extract_chunk_entities(chunk.chunk_text, orchestrator)
        except LLMOrchestrationError as exc:
            counters.chunks_failed += 1
            logger.error("[ExtractEntities] LLM failed for chunk %s: %s", chunk_id, exc)
            continue

        # Chunk totals merge only once the chunk has committed.
        chunk_counters = ExtractionCounters()
        try:
            apply_chunk_entities(db, archive_import, chunk, extracted, thresholds, chunk_counters)
            db.commit()
        except Exception as exc:
            db.rollback()
            counters.chunks_failed += 1
            logger.error("[ExtractEntities] Could not apply entities from chunk %s: %s", chunk_id, exc)
            continue
        counters.add(chunk_counters)
        counters.chunks_processed += 1

    stats = counters.as_dict()
    db.add(
        ArchiveAuditEvent(
            actor_user_id=archive_import.owner_user_id,
            action="extract_entities_completed",
            object_type="import",
            object_id=str(import_id),
            import_id=import_id,
            organization_id=archive_import.organization_id,
            metadata_json=stats,
        )
    )
    archive_import.status = ArchiveImportStatus.extracted
    archive_import.stats_json = stats
    archive_import.finished_at = datetime.utcnow()
    db.commit()

    logger.info(
        "[ExtractEntities] Completed import %s: %d biz mentions, %d contacts, %d strategies, %d queued for review",
        import_id,
        counters.business_mentions,
        counters.contacts_extracted,
        counters.strategies_extracted,
        counters.review_queue_items,
    )
    return stats


def create_import(
    db: Session,
    owner_user_id: str,
    chunks: List[str],
    source_name: Optional[str] = None,
    organization_id: Optional[str] = None,
) -> ArchiveImport:
    texts = [str(text).strip() for text in chunks or [] if str(text or "").strip()]
    if not texts:
        raise ValidationFailedError("An import needs at least one non-empty chunk")
    archive_import = ArchiveImport(
        owner_user_id=owner_user_id,
        organization_id=organization_id,
        source_name=source_name,
        status=ArchiveImportStatus.uploaded,
        stats_json={},
    )
    db.add(archive_import)
    db.flush()
    for sequence, text in enumerate(texts):
        db.add(ArchiveChunk(import_id=archive_import.id, sequence=sequence, chunk_text=text))
    db.commit()
    db.refresh(archive_import)
    logger.info("[ExtractEntities] Created import %s with %d chunks", archive_import.id, len(texts))
    return archive_import


def get_import_for_owner(db: Session, import_id: int, user_id: str) -> ArchiveImport:
    archive_import = db.query(ArchiveImport).filter(ArchiveImport.id == import_id).first()
    if not archive_import:
        raise NotFoundError("Archive import not found")
    if archive_import.owner_user_id != user_id:
        raise PermissionDeniedError("Access denied")
    return archive_import


def mark_import_failed(db: Session, import_id: int, error: str) -> None:
    archive_import = db.query(ArchiveImport).filter(ArchiveImport.id == import_id).first()
    if not archive_import:
        return
    archive_import.status = ArchiveImportStatus.failed
    archive_import.error_message = error[:2000]
    archive_import.finished_at = datetime.utcnow()
    db.commit()
