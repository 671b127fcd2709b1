"""Deal room API routes - participants, settlement adjustments, voting and treasury."""
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Any
from datetime import datetime

from app.api.deps import get_current_user_id, run_service
from app.models.base import get_db
from app.models.deal_room import (
    AdjustmentStatus,
    AdjustmentType,
    ParticipantRole,
    VoteValue,
    VotingResponse,
)
from app.services import deal_room_approvals as approvals
from app.services.xdk_ledger import ensure_deal_room_treasury, internal_treasury_transfer

router = APIRouter()


# ============================================================================
# Pydantic Schemas
# ============================================================================

class DealRoomCreate(BaseModel):
    name: str
    description: Optional[str] = None
    creator_name: Optional[str] = None


class DealRoomResponse(BaseModel):
    id: int
    name: str
    description: Optional[str]
    created_by: str
    voting_enabled: bool
    created_at: datetime

    class Config:
        from_attributes = True


class ParticipantCreate(BaseModel):
    name: str
    user_id: Optional[str] = None
    email: Optional[str] = None
    role_type: ParticipantRole = ParticipantRole.member


class ParticipantResponse(BaseModel):
    id: int
    deal_room_id: int
    user_id: Optional[str]
    name: str
    email: Optional[str]
    role_type: ParticipantRole

    class Config:
        from_attributes = True


class AdjustmentCreate(BaseModel):
    adjustment_type: AdjustmentType
    amount: float = Field(gt=0)
    description: str
    justification: Optional[str] = None


class AdjustmentVote(BaseModel):
    approve: bool


class AdjustmentResponse(BaseModel):
    id: int
    deal_room_id: int
    proposed_by: str
    adjustment_type: AdjustmentType
    amount: float
    description: str
    justification: Optional[str]
    status: AdjustmentStatus
    approvals: Dict[str, Optional[bool]] = Field(default_factory=dict)
    progress: Dict[str, int] = Field(default_factory=dict)
    created_at: datetime
    resolved_at: Optional[datetime]

    class Config:
        from_attributes = True


class QuestionCreate(BaseModel):
    template_id: Optional[str] = None
    question_text: Optional[str] = None


class VoteCreate(BaseModel):
    vote_value: VoteValue
    reasoning: Optional[str] = None


class QuestionResponse(BaseModel):
    id: int
    deal_room_id: int
    question_text: str
    question_type: str
    template_id: Optional[str]
    is_active: bool
    created_at: datetime
    summary: Dict[str, int] = Field(default_factory=dict)
    my_vote: Optional[VoteValue] = None


class VotingResponseOut(BaseModel):
    id: int
    question_id: int
    participant_id: int
    vote_value: VoteValue
    reasoning: Optional[str]
    updated_at: Optional[datetime]

    class Config:
        from_attributes = True


class TreasuryResponse(BaseModel):
    deal_room_id: int
    xdk_address: str
    balance: float

    class Config:
        from_attributes = True


class TreasuryTransferRequest(BaseModel):
    amount: float = Field(gt=0)
    destination_type: Optional[str] = None
    destination_wallet_address: Optional[str] = None
    destination_user_id: Optional[str] = None
    purpose: Optional[str] = None
    category_id: Optional[str] = None


class TreasuryTransferResponse(BaseModel):
    success: bool
    tx_hash: str
    amount: float
    from_address: str
    to_address: str


# ============================================================================
# Helpers
# ============================================================================

def _adjustment_response(adjustment, participant_ids: List[int]) -> AdjustmentResponse:
    response = AdjustmentResponse.model_validate(adjustment)
    response.progress = approvals.approval_progress(adjustment.approvals or {}, participant_ids).as_dict()
    return response


def _adjustment_views(db, deal_room_id: int, user_id: str) -> List[AdjustmentResponse]:
    approvals.require_participant(db, deal_room_id, user_id, "view adjustments")
    roster = [p.id for p in approvals.list_participants(db, deal_room_id)]
    return [_adjustment_response(a, roster) for a in approvals.list_adjustments(db, deal_room_id)]


def _question_views(db, deal_room_id: int, user_id: str) -> List[QuestionResponse]:
    participant = approvals.require_participant(db, deal_room_id, user_id, "view questions")
    participant_count = len(approvals.list_participants(db, deal_room_id))
    views = []
    for question in approvals.list_questions(db, deal_room_id):
        responses = db.query(VotingResponse).filter(VotingResponse.question_id == question.id).all()
        mine = next((r.vote_value for r in responses if r.participant_id == participant.id), None)
        views.append(
            QuestionResponse(
                id=question.id,
                deal_room_id=question.deal_room_id,
                question_text=question.question_text,
                question_type=question.question_type,
                template_id=question.template_id,
                is_active=question.is_active,
                created_at=question.created_at,
                summary=approvals.vote_summary(responses, participant_count),
                my_vote=mine,
            )
        )
    return views


def _treasury_view(db, deal_room_id: int, user_id: str):
    approvals.get_deal_room(db, deal_room_id)
    approvals.require_participant(db, deal_room_id, user_id, "view the treasury")
    treasury = ensure_deal_room_treasury(db, deal_room_id)
    db.commit()
    return treasury


# ============================================================================
# Deal rooms and participants
# ============================================================================

@router.post("", response_model=DealRoomResponse)
async def create_deal_room(
    data: DealRoomCreate,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    deal_room = await run_service(
        db, approvals.create_deal_room, user_id, data.name, data.description, data.creator_name
    )
    return DealRoomResponse.model_validate(deal_room)


@router.get("/{deal_room_id}", response_model=DealRoomResponse)
async def get_deal_room(deal_room_id: int, db: AsyncSession = Depends(get_db)):
    deal_room = await run_service(db, approvals.get_deal_room, deal_room_id)
    return DealRoomResponse.model_validate(deal_room)


@router.get("/{deal_room_id}/participants", response_model=List[ParticipantResponse])
async def list_participants(deal_room_id: int, db: AsyncSession = Depends(get_db)):
    await run_service(db, approvals.get_deal_room, deal_room_id)
    participants = await run_service(db, approvals.list_participants, deal_room_id)
    return [ParticipantResponse.model_validate(p) for p in participants]


@router.post("/{deal_room_id}/participants", response_model=ParticipantResponse)
async def add_participant(
    deal_room_id: int,
    data: ParticipantCreate,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    participant = await run_service(
        db,
        approvals.add_participant,
        deal_room_id,
        user_id,
        name=data.name,
        user_id=data.user_id,
        email=data.email,
        role_type=data.role_type,
    )
    return ParticipantResponse.model_validate(participant)


# ============================================================================
# Settlement adjustments
# ============================================================================

@router.get("/{deal_room_id}/adjustments", response_model=List[AdjustmentResponse])
async def list_adjustments(
    deal_room_id: int,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    return await run_service(db, _adjustment_views, deal_room_id, user_id)


@router.post("/{deal_room_id}/adjustments", response_model=AdjustmentResponse)
async def propose_adjustment(
    deal_room_id: int,
    data: AdjustmentCreate,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """Propose a settlement adjustment; the proposer's approval is recorded immediately."""
    adjustment = await run_service(
        db,
        approvals.propose_adjustment,
        deal_room_id,
        user_id,
        adjustment_type=data.adjustment_type,
        amount=data.amount,
        description=data.description,
        justification=data.justification,
    )
    roster = await run_service(db, lambda s: [p.id for p in approvals.list_participants(s, deal_room_id)])
    return _adjustment_response(adjustment, roster)


@router.post("/adjustments/{adjustment_id}/votes", response_model=AdjustmentResponse)
async def vote_on_adjustment(
    adjustment_id: int,
    data: AdjustmentVote,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    adjustment = await run_service(db, approvals.vote_on_adjustment, adjustment_id, user_id, data.approve)
    roster = await run_service(
        db, lambda s: [p.id for p in approvals.list_participants(s, adjustment.deal_room_id)]
    )
    return _adjustment_response(adjustment, roster)


# ============================================================================
# Voting questions
# ============================================================================

@router.get("/{deal_room_id}/questions", response_model=List[QuestionResponse])
async def list_questions(
    deal_room_id: int,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    return await run_service(db, _question_views, deal_room_id, user_id)


@router.get("/voting/templates")
async def list_question_templates() -> List[Dict[str, Any]]:
    return [{"id": key, "text": text} for key, text in approvals.TEMPLATE_QUESTIONS.items()]


@router.post("/{deal_room_id}/questions", response_model=QuestionResponse)
async def add_question(
    deal_room_id: int,
    data: QuestionCreate,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    question = await run_service(
        db,
        approvals.add_question,
        deal_room_id,
        user_id,
        template_id=data.template_id,
        question_text=data.question_text,
    )
    return QuestionResponse(
        id=question.id,
        deal_room_id=question.deal_room_id,
        question_text=question.question_text,
        question_type=question.question_type,
        template_id=question.template_id,
        is_active=question.is_active,
        created_at=question.created_at,
    )


@router.post("/questions/{question_id}/votes", response_model=VotingResponseOut)
async def cast_vote(
    question_id: int,
    data: VoteCreate,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    response = await run_service(db, approvals.cast_vote, question_id, user_id, data.vote_value, data.reasoning)
    return VotingResponseOut.model_validate(response)


@router.delete("/questions/{question_id}")
async def remove_question(
    question_id: int,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    await run_service(db, approvals.remove_question, question_id, user_id)
    return {"deleted": True}


# ============================================================================
# Treasury
# ============================================================================

@router.get("/{deal_room_id}/treasury", response_model=TreasuryResponse)
async def get_treasury(
    deal_room_id: int,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    treasury = await run_service(db, _treasury_view, deal_room_id, user_id)
    return TreasuryResponse.model_validate(treasury)


@router.post("/{deal_room_id}/treasury/transfers", response_model=TreasuryTransferResponse)
async def transfer_from_treasury(
    deal_room_id: int,
    data: TreasuryTransferRequest,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """Move XDK out of a deal room treasury (admins only)."""
    result = await run_service(
        db,
        internal_treasury_transfer,
        user_id,
        deal_room_id,
        data.amount,
        destination_type=data.destination_type,
        destination_wallet_address=data.destination_wallet_address,
        destination_user_id=data.destination_user_id,
        purpose=data.purpose,
        category_id=data.category_id,
    )
    return TreasuryTransferResponse(**result)
