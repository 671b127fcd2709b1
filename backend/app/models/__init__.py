from app.models.base import Base
from app.models.profile import Profile

# Archive import pipeline
from app.models.archive import (
    ArchiveImport,
    ArchiveImportStatus,
    ArchiveChunk,
    ArchiveBusiness,
    ArchiveBusinessMention,
    ArchiveCompany,
    ArchiveContact,
    ArchiveStrategy,
    ArchiveReviewItem,
    ReviewItemStatus,
    ArchiveWorkspacePermission,
    SpawnedBusiness,
    ArchiveAuditEvent,
)

# Deal rooms
from app.models.deal_room import (
    DealRoom,
    DealRoomParticipant,
    ParticipantRole,
    SettlementAdjustment,
    AdjustmentType,
    AdjustmentStatus,
    VotingQuestion,
    VotingResponse,
    VoteValue,
    DealRoomTreasury,
    ValueLedgerEntry,
)

# XDK ledger
from app.models.ledger import (
    XdkChainState,
    XdkAccount,
    AccountType,
    XdkBlock,
    XdkTransaction,
    TxStatus,
    XdkValidator,
    XdkTokenizedAsset,
    TREASURY_ADDRESS,
)

# Billing
from app.models.billing import PlatformInvoice, InvoiceStatus, XdkExchangeRate, Notification

__all__ = [
    "Base", "Profile",
    # Archive
    "ArchiveImport", "ArchiveImportStatus", "ArchiveChunk", "ArchiveBusiness", "ArchiveBusinessMention",
    "ArchiveCompany", "ArchiveContact", "ArchiveStrategy", "ArchiveReviewItem", "ReviewItemStatus",
    "ArchiveWorkspacePermission", "SpawnedBusiness", "ArchiveAuditEvent",
    # Deal rooms
    "DealRoom", "DealRoomParticipant", "ParticipantRole", "SettlementAdjustment", "AdjustmentType",
    "AdjustmentStatus", "VotingQuestion", "VotingResponse", "VoteValue", "DealRoomTreasury", "ValueLedgerEntry",
    # Ledger
    "XdkChainState", "XdkAccount", "AccountType", "XdkBlock", "XdkTransaction", "TxStatus",
    "XdkValidator", "XdkTokenizedAsset", "TREASURY_ADDRESS",
    # Billing
    "PlatformInvoice", "InvoiceStatus", "XdkExchangeRate", "Notification",
]
