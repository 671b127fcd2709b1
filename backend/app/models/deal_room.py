"""Deal room models - multi-party workspaces with approvals and votes."""
from sqlalchemy import Column, Integer, String, DateTime, JSON, Text, ForeignKey, Enum, Float, Boolean, UniqueConstraint
from sqlalchemy.orm import relationship
from datetime import datetime
import enum

from app.models.base import Base


class ParticipantRole(enum.Enum):
    owner = "owner"
    admin = "admin"
    member = "member"


class AdjustmentType(enum.Enum):
    expense_reimbursement = "expense_reimbursement"
    bonus_payment = "bonus_payment"
    credit_adjustment = "credit_adjustment"
    penalty_deduction = "penalty_deduction"


class AdjustmentStatus(enum.Enum):
    pending = "pending"
    approved = "approved"
    rejected = "rejected"
    partial = "partial"  # Everyone voted but not unanimously in favour


class VoteValue(enum.Enum):
    yes = "yes"
    no = "no"
    abstain = "abstain"


class DealRoom(Base):
    __tablename__ = "deal_rooms"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    created_by = Column(String(64), nullable=False)
    voting_enabled = Column(Boolean, default=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    participants = relationship("DealRoomParticipant", back_populates="deal_room", cascade="all, delete-orphan")
    adjustments = relationship("SettlementAdjustment", back_populates="deal_room", cascade="all, delete-orphan")
    questions = relationship("VotingQuestion", back_populates="deal_room", cascade="all, delete-orphan")


class DealRoomParticipant(Base):
    __tablename__ = "deal_room_participants"
    __table_args__ = (UniqueConstraint("deal_room_id", "user_id", name="uq_participant_room_user"),)

    id = Column(Integer, primary_key=True, index=True)
    deal_room_id = Column(Integer, ForeignKey("deal_rooms.id"), nullable=False, index=True)
    user_id = Column(String(64), nullable=True)  # Invited participants may not have an account yet
    name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=True)
    role_type = Column(Enum(ParticipantRole), default=ParticipantRole.member)
    created_at = Column(DateTime, default=datetime.utcnow)

    deal_room = relationship("DealRoom", back_populates="participants")


class SettlementAdjustment(Base):
    """Expense or payout change that every participant must approve."""
    __tablename__ = "settlement_adjustments"

    id = Column(Integer, primary_key=True, index=True)
    deal_room_id = Column(Integer, ForeignKey("deal_rooms.id"), nullable=False, index=True)
    proposed_by = Column(String(64), nullable=False)
    adjustment_type = Column(Enum(AdjustmentType), nullable=False)
    amount = Column(Float, nullable=False)
    description = Column(Text, nullable=False)
    justification = Column(Text, nullable=True)

    status = Column(Enum(AdjustmentStatus), default=AdjustmentStatus.pending)
    # {"<participant_id>": true | false | null}
    approvals = Column(JSON, default=dict)

    created_at = Column(DateTime, default=datetime.utcnow)
    resolved_at = Column(DateTime, nullable=True)

    deal_room = relationship("DealRoom", back_populates="adjustments")


class VotingQuestion(Base):
    __tablename__ = "deal_room_voting_questions"

    id = Column(Integer, primary_key=True, index=True)
    deal_room_id = Column(Integer, ForeignKey("deal_rooms.id"), nullable=False, index=True)
    question_text = Column(Text, nullable=False)
    question_type = Column(String(16), default="custom")  # template|custom
    template_id = Column(String(64), nullable=True)
    is_active = Column(Boolean, default=True)
    created_by = Column(String(64), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    deal_room = relationship("DealRoom", back_populates="questions")
    responses = relationship("VotingResponse", back_populates="question", cascade="all, delete-orphan")


class VotingResponse(Base):
    __tablename__ = "deal_room_voting_responses"
    __table_args__ = (UniqueConstraint("question_id", "participant_id", name="uq_vote_question_participant"),)

    id = Column(Integer, primary_key=True, index=True)
    question_id = Column(Integer, ForeignKey("deal_room_voting_questions.id"), nullable=False, index=True)
    participant_id = Column(Integer, ForeignKey("deal_room_participants.id"), nullable=False)
    vote_value = Column(Enum(VoteValue), nullable=False)
    reasoning = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    question = relationship("VotingQuestion", back_populates="responses")


class DealRoomTreasury(Base):
    """XDK treasury balance held on behalf of a deal room."""
    __tablename__ = "deal_room_xdk_treasury"

    id = Column(Integer, primary_key=True, index=True)
    deal_room_id = Column(Integer, ForeignKey("deal_rooms.id"), nullable=False, unique=True)
    xdk_address = Column(String(64), nullable=False, unique=True)
    balance = Column(Float, default=0.0)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class ValueLedgerEntry(Base):
    """Human-readable record of value moving between parties."""
    __tablename__ = "value_ledger_entries"

    id = Column(Integer, primary_key=True, index=True)
    deal_room_id = Column(Integer, ForeignKey("deal_rooms.id"), nullable=True, index=True)

    source_user_id = Column(String(64), nullable=True)
    source_entity_type = Column(String(32), nullable=True)
    source_entity_name = Column(String(255), nullable=True)
    destination_user_id = Column(String(64), nullable=True)
    destination_entity_type = Column(String(32), nullable=True)
    destination_entity_name = Column(String(255), nullable=True)

    entry_type = Column(String(64), nullable=False)  # internal_transfer|invoice_payment
    amount = Column(Float, default=0.0)  # USD
    currency = Column(String(8), default="USD")
    xdk_amount = Column(Float, nullable=True)
    purpose = Column(Text, nullable=True)

    reference_type = Column(String(64), nullable=True)
    reference_id = Column(String(128), nullable=True)
    contribution_credits = Column(Integer, default=0)
    credit_category = Column(String(32), nullable=True)  # funding|transfer

    verification_source = Column(String(64), nullable=True)
    verification_id = Column(String(128), nullable=True)
    verified_at = Column(DateTime, nullable=True)
    xdk_tx_hash = Column(String(80), nullable=True)
    narrative = Column(Text, nullable=True)
    category_id = Column(String(64), nullable=True)
    metadata_json = Column(JSON, default=dict)
    created_at = Column(DateTime, default=datetime.utcnow)
