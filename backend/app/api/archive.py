"""Archive API routes - imports, extraction jobs and the review queue."""
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession
from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Any
from datetime import datetime

from app.api.deps import get_current_user_id, run_service
from app.models.base import get_db
from app.models.archive import ArchiveImportStatus, ReviewItemStatus
from app.services.archive_extraction import create_import, get_import_for_owner
from app.services.archive_review import apply_review_action, list_review_queue

router = APIRouter()


# ============================================================================
# Pydantic Schemas
# ============================================================================

class ArchiveImportCreate(BaseModel):
    source_name: Optional[str] = None
    organization_id: Optional[str] = None
    chunks: List[str] = Field(default_factory=list)


class ArchiveImportResponse(BaseModel):
    id: int
    owner_user_id: str
    organization_id: Optional[str]
    source_name: Optional[str]
    status: ArchiveImportStatus
    stats_json: Optional[Dict[str, Any]] = None
    error_message: Optional[str]
    created_at: datetime
    started_at: Optional[datetime]
    finished_at: Optional[datetime]

    class Config:
        from_attributes = True


class ReviewItemResponse(BaseModel):
    id: int
    import_id: int
    item_type: str
    payload_json: Dict[str, Any]
    confidence: Optional[float] = None
    evidence_chunk_ids: Optional[List[int]] = None
    status: ReviewItemStatus
    assigned_to_user_id: Optional[str]
    decision_notes: Optional[str]
    decided_at: Optional[datetime]

    class Config:
        from_attributes = True


class ReviewActionRequest(BaseModel):
    action: str
    merge_target_id: Optional[int] = None
    notes: Optional[str] = None
    selected_relationship_type: Optional[str] = None


class ReviewActionResponse(BaseModel):
    success: bool
    action: str
    status: str
    created_entity_id: Optional[int] = None
    entity_type: Optional[str] = None


# ============================================================================
# Imports
# ============================================================================

@router.post("/imports", response_model=ArchiveImportResponse)
async def create_archive_import(
    data: ArchiveImportCreate,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """Store an uploaded archive as ordered chunks."""
    archive_import = await run_service(
        db,
        create_import,
        user_id,
        data.chunks,
        source_name=data.source_name,
        organization_id=data.organization_id,
    )
    return ArchiveImportResponse.model_validate(archive_import)


@router.get("/imports/{import_id}", response_model=ArchiveImportResponse)
async def get_archive_import(
    import_id: int,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    archive_import = await run_service(db, get_import_for_owner, import_id, user_id)
    return ArchiveImportResponse.model_validate(archive_import)


@router.post("/imports/{import_id}/extract", response_model=ArchiveImportResponse)
async def extract_archive_import(
    import_id: int,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """Queue entity extraction for an import."""
    archive_import = await run_service(db, get_import_for_owner, import_id, user_id)
    if archive_import.status == ArchiveImportStatus.extracting:
        raise HTTPException(status_code=409, detail="Extraction already running")

    from app.workers.archive_tasks import extract_archive_entities
    extract_archive_entities.delay(archive_import.id)

    return ArchiveImportResponse.model_validate(archive_import)


# ============================================================================
# Review queue
# ============================================================================

@router.get("/imports/{import_id}/review-queue", response_model=List[ReviewItemResponse])
async def get_review_queue(
    import_id: int,
    status: Optional[ReviewItemStatus] = Query(default=ReviewItemStatus.pending),
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    await run_service(db, get_import_for_owner, import_id, user_id)
    items = await run_service(db, list_review_queue, import_id, status)
    return [ReviewItemResponse.model_validate(item) for item in items]


@router.post("/review-queue/{item_id}/actions", response_model=ReviewActionResponse)
async def review_item_action(
    item_id: int,
    data: ReviewActionRequest,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """Approve, reject, merge, spawn or add a review-queue item to the CRM."""
    result = await run_service(
        db,
        apply_review_action,
        item_id,
        user_id,
        data.action,
        merge_target_id=data.merge_target_id,
        notes=data.notes,
        selected_relationship_type=data.selected_relationship_type,
    )
    return ReviewActionResponse(**result)
