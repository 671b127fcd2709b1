"""Deal-room settlement adjustments (unanimous approval) and voting questions."""
from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional

from sqlalchemy.orm import Session

from app.models.deal_room import (
    AdjustmentStatus,
    AdjustmentType,
    DealRoom,
    DealRoomParticipant,
    ParticipantRole,
    SettlementAdjustment,
    VoteValue,
    VotingQuestion,
    VotingResponse,
)
from app.services.errors import ConflictError, NotFoundError, PermissionDeniedError, ValidationFailedError

logger = logging.getLogger(__name__)

TEMPLATE_QUESTIONS = {
    "terms_fair": "Do you agree that the proposed terms are fair to all parties?",
    "timeline_acceptable": "Is the proposed timeline acceptable for your deliverables?",
    "compensation_fair": "Do you agree that the compensation structure is equitable?",
    "ready_proceed": "Are you ready to proceed with this deal structure?",
    "ip_terms_clear": "Are the IP ownership terms clearly defined and acceptable?",
    "exit_terms_fair": "Are the exit terms and conditions fair to all parties?",
}


@dataclass
class ApprovalProgress:
    total: int
    approved: int
    rejected: int
    pending: int

    def as_dict(self) -> Dict[str, int]:
        return asdict(self)


def _key(participant_id: Any) -> str:
    # JSON object keys are always strings once stored
    return str(participant_id)


def tally_approvals(approvals: Mapping[str, Optional[bool]], participant_ids: Iterable[Any]) -> AdjustmentStatus:
    """Status of an adjustment given the approval map and the current roster.

    Any rejection wins. Unanimous approval from the roster approves. Everyone
    having voted without unanimity is ``partial``. Otherwise still ``pending``.
    """
    keys = [_key(pid) for pid in participant_ids]
    if any(value is False for value in approvals.values()):
        return AdjustmentStatus.rejected
    all_voted = all(approvals.get(k) is not None for k in keys)
    if all_voted and all(approvals.get(k) is True for k in keys):
        return AdjustmentStatus.approved
    if all_voted:
        return AdjustmentStatus.partial
    return AdjustmentStatus.pending


def approval_progress(approvals: Mapping[str, Optional[bool]], participant_ids: Iterable[Any]) -> ApprovalProgress:
    total = len(list(participant_ids))
    approved = sum(1 for v in approvals.values() if v is True)
    rejected = sum(1 for v in approvals.values() if v is False)
    return ApprovalProgress(total=total, approved=approved, rejected=rejected, pending=max(0, total - approved - rejected))


def has_voted(approvals: Mapping[str, Optional[bool]], participant_id: Any) -> bool:
    return approvals.get(_key(participant_id)) is not None


def get_deal_room(db: Session, deal_room_id: int) -> DealRoom:
    deal_room = db.query(DealRoom).filter(DealRoom.id == deal_room_id).first()
    if not deal_room:
        raise NotFoundError("Deal room not found")
    return deal_room


def list_participants(db: Session, deal_room_id: int) -> List[DealRoomParticipant]:
    return (
        db.query(DealRoomParticipant)
        .filter(DealRoomParticipant.deal_room_id == deal_room_id)
        .order_by(DealRoomParticipant.id.asc())
        .all()
    )


def find_participant(db: Session, deal_room_id: int, user_id: str) -> Optional[DealRoomParticipant]:
    return (
        db.query(DealRoomParticipant)
        .filter(
            DealRoomParticipant.deal_room_id == deal_room_id,
            DealRoomParticipant.user_id == user_id,
        )
        .first()
    )


def require_participant(db: Session, deal_room_id: int, user_id: str, action: str) -> DealRoomParticipant:
    participant = find_participant(db, deal_room_id, user_id)
    if not participant:
        raise PermissionDeniedError(f"You must be a participant to {action}")
    return participant


def is_deal_room_admin(deal_room: DealRoom, participant: Optional[DealRoomParticipant], user_id: str) -> bool:
    if deal_room.created_by == user_id:
        return True
    return participant is not None and participant.role_type in (ParticipantRole.owner, ParticipantRole.admin)


def create_deal_room(db: Session, user_id: str, name: str, description: Optional[str] = None, creator_name: Optional[str] = None) -> DealRoom:
    deal_room = DealRoom(name=name, description=description, created_by=user_id)
    db.add(deal_room)
    db.flush()
    db.add(
        DealRoomParticipant(
            deal_room_id=deal_room.id,
            user_id=user_id,
            name=creator_name or "Owner",
            role_type=ParticipantRole.owner,
        )
    )
    db.commit()
    db.refresh(deal_room)
    return deal_room


def add_participant(
    db: Session,
    deal_room_id: int,
    actor_user_id: str,
    *,
    name: str,
    user_id: Optional[str] = None,
    email: Optional[str] = None,
    role_type: ParticipantRole = ParticipantRole.member,
) -> DealRoomParticipant:
    deal_room = get_deal_room(db, deal_room_id)
    if not is_deal_room_admin(deal_room, find_participant(db, deal_room_id, actor_user_id), actor_user_id):
        raise PermissionDeniedError("Only deal room admins can add participants")
    if user_id and find_participant(db, deal_room_id, user_id):
        raise ConflictError("User is already a participant")
    participant = DealRoomParticipant(
        deal_room_id=deal_room_id,
        user_id=user_id,
        name=name,
        email=email,
        role_type=role_type,
    )
    db.add(participant)
    db.commit()
    db.refresh(participant)
    return participant


# ============================================================================
# Settlement adjustments
# ============================================================================

def propose_adjustment(
    db: Session,
    deal_room_id: int,
    user_id: str,
    *,
    adjustment_type: AdjustmentType,
    amount: float,
    description: str,
    justification: Optional[str] = None,
) -> SettlementAdjustment:
    get_deal_room(db, deal_room_id)
    if amount is None or float(amount) <= 0:
        raise ValidationFailedError("Adjustment amount must be positive")
    if not str(description or "").strip():
        raise ValidationFailedError("Adjustment description is required")
    proposer = require_participant(db, deal_room_id, user_id, "propose adjustments")

    # Proposer auto-approves; everyone else starts pending.
    approvals: Dict[str, Optional[bool]] = {
        _key(p.id): (True if p.id == proposer.id else None) for p in list_participants(db, deal_room_id)
    }
    adjustment = SettlementAdjustment(
        deal_room_id=deal_room_id,
        proposed_by=user_id,
        adjustment_type=adjustment_type,
        amount=float(amount),
        description=description,
        justification=justification,
        status=AdjustmentStatus.pending,
        approvals=approvals,
    )
    db.add(adjustment)
    db.commit()
    db.refresh(adjustment)
    logger.info("[Settlement] Adjustment %s proposed in deal room %s", adjustment.id, deal_room_id)
    return adjustment


def vote_on_adjustment(db: Session, adjustment_id: int, user_id: str, approve: bool) -> SettlementAdjustment:
    adjustment = db.query(SettlementAdjustment).filter(SettlementAdjustment.id == adjustment_id).first()
    if not adjustment:
        raise NotFoundError("Adjustment not found")
    voter = require_participant(db, adjustment.deal_room_id, user_id, "vote")
    if adjustment.status != AdjustmentStatus.pending:
        raise ConflictError(f"Adjustment already {adjustment.status.value}")

    approvals = dict(adjustment.approvals or {})
    if has_voted(approvals, voter.id):
        raise ConflictError("You have already voted on this adjustment")
    approvals[_key(voter.id)] = bool(approve)

    roster = [p.id for p in list_participants(db, adjustment.deal_room_id)]
    new_status = tally_approvals(approvals, roster)

    # Reassign so the JSON column is flagged dirty
    adjustment.approvals = approvals
    adjustment.status = new_status
    adjustment.resolved_at = datetime.utcnow() if new_status != AdjustmentStatus.pending else None
    db.commit()
    db.refresh(adjustment)
    logger.info("[Settlement] Vote on adjustment %s -> %s", adjustment_id, new_status.value)
    return adjustment


def list_adjustments(db: Session, deal_room_id: int) -> List[SettlementAdjustment]:
    return (
        db.query(SettlementAdjustment)
        .filter(SettlementAdjustment.deal_room_id == deal_room_id)
        .order_by(SettlementAdjustment.created_at.desc(), SettlementAdjustment.id.desc())
        .all()
    )


# ============================================================================
# Voting questions
# ============================================================================

def add_question(
    db: Session,
    deal_room_id: int,
    user_id: str,
    *,
    template_id: Optional[str] = None,
    question_text: Optional[str] = None,
) -> VotingQuestion:
    deal_room = get_deal_room(db, deal_room_id)
    if not deal_room.voting_enabled:
        raise ValidationFailedError("Voting is disabled for this deal room")
    if template_id:
        text = TEMPLATE_QUESTIONS.get(template_id)
        if text is None:
            raise ValidationFailedError(f"Unknown template question: {template_id}")
    else:
        text = str(question_text or "").strip()
    if not text:
        raise ValidationFailedError("Please enter a question")

    question = VotingQuestion(
        deal_room_id=deal_room_id,
        question_text=text,
        question_type="template" if template_id else "custom",
        template_id=template_id,
        created_by=user_id,
    )
    db.add(question)
    db.commit()
    db.refresh(question)
    return question


def cast_vote(
    db: Session,
    question_id: int,
    user_id: str,
    vote_value: VoteValue,
    reasoning: Optional[str] = None,
) -> VotingResponse:
    question = db.query(VotingQuestion).filter(VotingQuestion.id == question_id).first()
    if not question or not question.is_active:
        raise NotFoundError("Question not found")
    participant = require_participant(db, question.deal_room_id, user_id, "vote")

    response = (
        db.query(VotingResponse)
        .filter(
            VotingResponse.question_id == question_id,
            VotingResponse.participant_id == participant.id,
        )
        .first()
    )
    if response:
        response.vote_value = vote_value
        response.reasoning = reasoning or None
        response.updated_at = datetime.utcnow()
    else:
        response = VotingResponse(
            question_id=question_id,
            participant_id=participant.id,
            vote_value=vote_value,
            reasoning=reasoning or None,
        )
        db.add(response)
    db.commit()
    db.refresh(response)
    return response


def remove_question(db: Session, question_id: int, user_id: str) -> VotingQuestion:
    question = db.query(VotingQuestion).filter(VotingQuestion.id == question_id).first()
    if not question:
        raise NotFoundError("Question not found")
    deal_room = get_deal_room(db, question.deal_room_id)
    if not is_deal_room_admin(deal_room, find_participant(db, deal_room.id, user_id), user_id):
        raise PermissionDeniedError("Only deal room admins can remove questions")
    question.is_active = False
    db.commit()
    return question


def vote_summary(responses: Iterable[Any], participant_count: int) -> Dict[str, int]:
    counts = {"yes": 0, "no": 0, "abstain": 0}
    for response in responses:
        value = getattr(response, "vote_value", None)
        value = value.value if isinstance(value, VoteValue) else str(value or "")
        if value in counts:
            counts[value] += 1
    counts["total"] = counts["yes"] + counts["no"] + counts["abstain"]
    counts["not_voted"] = max(0, participant_count - counts["total"])
    return counts


def list_questions(db: Session, deal_room_id: int) -> List[VotingQuestion]:
    return (
        db.query(VotingQuestion)
        .filter(VotingQuestion.deal_room_id == deal_room_id, VotingQuestion.is_active.is_(True))
        .order_by(VotingQuestion.created_at.asc(), VotingQuestion.id.asc())
        .all()
    )
