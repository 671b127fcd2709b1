"""Archive import models - conversation exports mined for CRM entities."""
from sqlalchemy import Column, Integer, String, DateTime, JSON, Text, ForeignKey, Enum, Float
from sqlalchemy.orm import relationship
from datetime import datetime
import enum

from app.models.base import Base


class ArchiveImportStatus(enum.Enum):
    uploaded = "uploaded"
    extracting = "extracting"
    extracted = "extracted"
    failed = "failed"


class ReviewItemStatus(enum.Enum):
    pending = "pending"
    approved = "approved"
    rejected = "rejected"
    merged = "merged"
    spawned = "spawned"
    added_to_crm = "added_to_crm"


class ArchiveImport(Base):
    """One uploaded archive (e.g. a chat export) split into chunks."""
    __tablename__ = "archive_imports"

    id = Column(Integer, primary_key=True, index=True)
    owner_user_id = Column(String(64), nullable=False, index=True)
    organization_id = Column(String(64), nullable=True)

    source_name = Column(String(255), nullable=True)
    status = Column(Enum(ArchiveImportStatus), default=ArchiveImportStatus.uploaded)

    # Counters written by the extraction worker
    stats_json = Column(JSON, default=dict)
    error_message = Column(Text, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    started_at = Column(DateTime, nullable=True)
    finished_at = Column(DateTime, nullable=True)

    # Relationships
    chunks = relationship("ArchiveChunk", back_populates="archive_import", cascade="all, delete-orphan")
    review_items = relationship("ArchiveReviewItem", back_populates="archive_import", cascade="all, delete-orphan")


class ArchiveChunk(Base):
    __tablename__ = "archive_chunks"

    id = Column(Integer, primary_key=True, index=True)
    import_id = Column(Integer, ForeignKey("archive_imports.id"), nullable=False, index=True)
    sequence = Column(Integer, default=0)
    chunk_text = Column(Text, nullable=False)
    occurred_start_at = Column(DateTime, nullable=True)
    occurred_end_at = Column(DateTime, nullable=True)

    archive_import = relationship("ArchiveImport", back_populates="chunks")


class ArchiveBusiness(Base):
    """A business venture surfaced from archive conversations."""
    __tablename__ = "archive_businesses"

    id = Column(Integer, primary_key=True, index=True)
    owner_user_id = Column(String(64), nullable=False, index=True)
    organization_id = Column(String(64), nullable=True)

    name = Column(String(255), nullable=False)
    normalized_name = Column(String(255), nullable=False, index=True)
    status = Column(String(32), default="concept")  # concept|active|client|partner|target|vendor
    description = Column(Text, nullable=True)
    primary_domain = Column(String(255), nullable=True)

    first_seen_at = Column(DateTime, nullable=True)
    created_from_import_id = Column(Integer, ForeignKey("archive_imports.id"), nullable=True)
    confidence = Column(Float, nullable=True)
    # {"evidence_chunk_ids": [...], "first_seen_at": "...", "confidence": 0.9, "approved_by": "..."}
    provenance_json = Column(JSON, default=dict)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class ArchiveBusinessMention(Base):
    __tablename__ = "archive_business_mentions"

    id = Column(Integer, primary_key=True, index=True)
    import_id = Column(Integer, ForeignKey("archive_imports.id"), nullable=False, index=True)
    chunk_id = Column(Integer, ForeignKey("archive_chunks.id"), nullable=False)
    detected_name = Column(String(255), nullable=False)
    detected_domain = Column(String(255), nullable=True)
    confidence = Column(Float, nullable=True)
    resolved_business_id = Column(Integer, ForeignKey("archive_businesses.id"), nullable=True)
    resolution_method = Column(String(32), default="unresolved")  # unresolved|exact


class ArchiveCompany(Base):
    """External organization tracked in the CRM."""
    __tablename__ = "archive_companies"

    id = Column(Integer, primary_key=True, index=True)
    owner_user_id = Column(String(64), nullable=False, index=True)
    organization_id = Column(String(64), nullable=True)

    name = Column(String(255), nullable=False)
    normalized_name = Column(String(255), nullable=False, index=True)
    domain = Column(String(255), nullable=True)
    industry = Column(String(255), nullable=True)
    relationship_type = Column(String(32), nullable=True)

    created_from_import_id = Column(Integer, ForeignKey("archive_imports.id"), nullable=True)
    confidence = Column(Float, nullable=True)
    provenance_json = Column(JSON, default=dict)
    created_at = Column(DateTime, default=datetime.utcnow)


class ArchiveContact(Base):
    __tablename__ = "archive_contacts"

    id = Column(Integer, primary_key=True, index=True)
    owner_user_id = Column(String(64), nullable=False, index=True)
    organization_id = Column(String(64), nullable=True)

    full_name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=True)
    phone = Column(String(64), nullable=True)
    company_id = Column(Integer, ForeignKey("archive_companies.id"), nullable=True)
    role_title = Column(String(255), nullable=True)
    # client|partner|investor|advisor|vendor|lead|friend|unknown
    relationship_type = Column(String(32), default="unknown")

    created_from_import_id = Column(Integer, ForeignKey("archive_imports.id"), nullable=True)
    confidence = Column(Float, nullable=True)
    provenance_json = Column(JSON, default=dict)
    created_at = Column(DateTime, default=datetime.utcnow)

    company = relationship("ArchiveCompany")


class ArchiveStrategy(Base):
    """Actionable playbook distilled from archive conversations."""
    __tablename__ = "archive_strategies"

    id = Column(Integer, primary_key=True, index=True)
    owner_user_id = Column(String(64), nullable=False, index=True)
    organization_id = Column(String(64), nullable=True)

    title = Column(String(500), nullable=False)
    strategy_type = Column(String(64), nullable=True)  # gtm|pricing|positioning|operations|...
    summary = Column(Text, nullable=True)
    playbook_steps = Column(JSON, default=list)
    templates = Column(JSON, default=list)
    stage = Column(String(32), default="idea")

    created_from_import_id = Column(Integer, ForeignKey("archive_imports.id"), nullable=True)
    confidence = Column(Float, nullable=True)
    provenance_json = Column(JSON, default=dict)
    created_at = Column(DateTime, default=datetime.utcnow)


class ArchiveReviewItem(Base):
    """Low-confidence extraction waiting for a human decision."""
    __tablename__ = "archive_review_queue"

    id = Column(Integer, primary_key=True, index=True)
    import_id = Column(Integer, ForeignKey("archive_imports.id"), nullable=False, index=True)

    # business_create|business_update|contact_create|company_create|strategy_create|
    # my_business_spawn|external_company_create|crm_contact_create
    item_type = Column(String(64), nullable=False)
    payload_json = Column(JSON, nullable=False)
    confidence = Column(Float, nullable=True)
    evidence_chunk_ids = Column(JSON, default=list)

    status = Column(Enum(ReviewItemStatus), default=ReviewItemStatus.pending, index=True)
    assigned_to_user_id = Column(String(64), nullable=True)
    decision_notes = Column(Text, nullable=True)
    decided_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    archive_import = relationship("ArchiveImport", back_populates="review_items")


class ArchiveWorkspacePermission(Base):
    __tablename__ = "archive_workspace_permissions"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(64), nullable=False, index=True)
    permission = Column(String(32), nullable=False)  # review|admin
    created_at = Column(DateTime, default=datetime.utcnow)


class SpawnedBusiness(Base):
    """A user's own venture promoted out of the review queue."""
    __tablename__ = "spawned_businesses"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(64), nullable=False, index=True)
    business_name = Column(String(255), nullable=False)
    business_type = Column(String(64), default="other")
    industry = Column(String(255), default="General")
    description = Column(Text, nullable=True)
    status = Column(String(32), default="concept")  # concept|building|active
    brand_identity = Column(JSON, default=dict)
    created_at = Column(DateTime, default=datetime.utcnow)


class ArchiveAuditEvent(Base):
    __tablename__ = "archive_audit_events"

    id = Column(Integer, primary_key=True, index=True)
    actor_user_id = Column(String(64), nullable=True)
    action = Column(String(64), nullable=False)
    object_type = Column(String(64), nullable=False)
    object_id = Column(String(64), nullable=True)
    import_id = Column(Integer, ForeignKey("archive_imports.id"), nullable=True)
    organization_id = Column(String(64), nullable=True)
    metadata_json = Column(JSON, default=dict)
    created_at = Column(DateTime, default=datetime.utcnow)
