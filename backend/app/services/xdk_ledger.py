"""XDK ledger: a single-node toy chain over relational tables.

Accounts hold balances; transactions are submitted as ``pending`` and folded
into blocks by ``create_block``. Each block commits to a merkle root over its
confirmed transaction hashes and a state root over all account balances.
System flows (faucet, treasury transfers, invoice mints) write ``confirmed``
transactions directly.
"""
from __future__ import annotations

import hashlib
import logging
import secrets
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from app.config import get_settings
from app.models.deal_room import DealRoomTreasury, ValueLedgerEntry
from app.models.ledger import (
    TREASURY_ADDRESS,
    ZERO_HASH,
    AccountType,
    TxStatus,
    XdkAccount,
    XdkBlock,
    XdkChainState,
    XdkTokenizedAsset,
    XdkTransaction,
    XdkValidator,
)
from app.models.profile import Profile
from app.services.deal_room_approvals import find_participant, get_deal_room, is_deal_room_admin
from app.services.errors import ConflictError, NotFoundError, PermissionDeniedError, ValidationFailedError

logger = logging.getLogger(__name__)

TRANSFER_GAS_LIMIT = 21000
CONTRACT_GAS_LIMIT = 100000


# ============================================================================
# Hashing helpers
# ============================================================================

def sha256_hex(message: str) -> str:
    return "0x" + hashlib.sha256(message.encode("utf-8")).hexdigest()


def merkle_root(tx_hashes: List[str]) -> str:
    if not tx_hashes:
        return sha256_hex("empty")
    level = list(tx_hashes)
    while len(level) > 1:
        next_level = []
        for i in range(0, len(level), 2):
            left = level[i]
            right = level[i + 1] if i + 1 < len(level) else left
            next_level.append(sha256_hex(left + right))
        level = next_level
    return level[0]


def state_root(accounts: Iterable[Any]) -> str:
    """Hash of ``address:balance:nonce`` rows, sorted by address."""
    rows = sorted(accounts, key=lambda a: a.address)
    return sha256_hex("|".join(f"{a.address}:{a.balance}:{a.nonce}" for a in rows))


def demo_signature(private_key: str, data: str) -> str:
    # Placeholder signature; not ECDSA.
    return "0x" + (private_key + data).encode("utf-8").hex()[:130]


def system_signature(signer_type: str, tx_hash: str) -> str:
    timestamp_ms = int(time.time() * 1000)
    digest = hashlib.sha256(f"{signer_type}:{tx_hash}:{timestamp_ms}".encode("utf-8")).hexdigest()
    return f"0x{digest[:16]}{timestamp_ms:x}"


def new_tx_hash() -> str:
    return "0x" + uuid.uuid4().hex


def generate_address(prefix: str = "xdk1") -> str:
    return prefix + secrets.token_hex(19)


def _now_ms() -> int:
    return int(time.time() * 1000)


# ============================================================================
# Accounts
# ============================================================================

def get_chain_state(db: Session) -> Optional[XdkChainState]:
    return db.query(XdkChainState).order_by(XdkChainState.id.asc()).first()


def get_account(db: Session, address: str) -> Optional[XdkAccount]:
    return db.query(XdkAccount).filter(XdkAccount.address == address).first()


def create_account(db: Session, user_id: Optional[str], initial_balance: float = 0.0) -> XdkAccount:
    if initial_balance < 0:
        raise ValidationFailedError("Initial balance cannot be negative")
    account = XdkAccount(
        address=generate_address(),
        user_id=user_id,
        balance=float(initial_balance),
        account_type=AccountType.user,
        metadata_json={"created_via": "api"},
    )
    db.add(account)
    db.commit()
    db.refresh(account)
    logger.info("[XDK] Created account %s", account.address)
    return account


def ensure_user_account(db: Session, user_id: str) -> XdkAccount:
    account = (
        db.query(XdkAccount)
        .filter(XdkAccount.user_id == user_id, XdkAccount.account_type == AccountType.user)
        .first()
    )
    if account:
        return account
    account = XdkAccount(address=generate_address(), user_id=user_id, balance=0.0, account_type=AccountType.user)
    db.add(account)
    db.flush()
    return account


def credit_address(db: Session, address: str, amount: float) -> XdkAccount:
    """Add ``amount`` to an account, opening a user account if it does not exist.

    A deal-room treasury address is credited on its ``DealRoomTreasury`` row and
    the mirror account is re-synced from it.
    """
    treasury = db.query(DealRoomTreasury).filter(DealRoomTreasury.xdk_address == address).first()
    if treasury is not None:
        treasury.balance = float(treasury.balance or 0.0) + float(amount)
        treasury.updated_at = datetime.utcnow()
        return sync_treasury_account(db, treasury)
    account = get_account(db, address)
    if account is None:
        account = XdkAccount(address=address, balance=0.0, account_type=AccountType.user)
        db.add(account)
    account.balance = float(account.balance or 0.0) + float(amount)
    db.flush()
    return account


def ensure_deal_room_treasury(db: Session, deal_room_id: int) -> DealRoomTreasury:
    treasury = db.query(DealRoomTreasury).filter(DealRoomTreasury.deal_room_id == deal_room_id).first()
    if treasury is None:
        treasury = DealRoomTreasury(
            deal_room_id=deal_room_id,
            xdk_address=generate_address("xdk1treasury"),
            balance=0.0,
        )
        db.add(treasury)
        db.flush()
    sync_treasury_account(db, treasury)
    return treasury


def sync_treasury_account(db: Session, treasury: DealRoomTreasury) -> XdkAccount:
    account = get_account(db, treasury.xdk_address)
    if account is None:
        account = XdkAccount(
            address=treasury.xdk_address,
            deal_room_id=treasury.deal_room_id,
            account_type=AccountType.deal_room_treasury,
            metadata_json={"deal_room_id": treasury.deal_room_id},
        )
        db.add(account)
    account.balance = float(treasury.balance or 0.0)
    db.flush()
    return account


def record_mint(
    db: Session,
    to_address: str,
    amount: float,
    tx_type: str,
    data: Dict[str, Any],
) -> XdkTransaction:
    """Write a confirmed mint from the genesis treasury address and credit the recipient."""
    tx = XdkTransaction(
        tx_hash=new_tx_hash(),
        from_address=TREASURY_ADDRESS,
        to_address=to_address,
        amount=float(amount),
        tx_type=tx_type,
        status=TxStatus.confirmed,
        signature=None,
        data=data,
        confirmed_at=datetime.utcnow(),
    )
    tx.signature = system_signature("system", tx.tx_hash)
    db.add(tx)
    credit_address(db, to_address, amount)
    return tx


# ============================================================================
# Chain lifecycle
# ============================================================================

def initialize_chain(db: Session) -> Dict[str, Any]:
    if get_chain_state(db):
        raise ConflictError("Chain already initialized")
    settings = get_settings()
    config = settings.chain_config()
    now = datetime.utcnow()

    chain_state = XdkChainState(
        chain_id=settings.chain_id,
        chain_name=settings.chain_name,
        current_block_number=0,
        total_supply=settings.chain_genesis_supply,
        circulating_supply=0.0,
        total_staked=0.0,
        total_validators=0,
        active_validators=0,
        total_transactions=0,
        block_time_ms=settings.chain_block_time_ms,
        min_stake_amount=settings.chain_min_stake_amount,
        genesis_timestamp=now,
        parameters=config,
    )
    db.add(chain_state)

    treasury = get_account(db, TREASURY_ADDRESS)
    if treasury is None:
        treasury = XdkAccount(address=TREASURY_ADDRESS, account_type=AccountType.treasury)
        db.add(treasury)
    treasury.balance = settings.chain_genesis_supply
    treasury.metadata_json = {"name": "XDK Treasury", "description": "Genesis treasury account"}

    genesis_block = XdkBlock(
        block_number=0,
        previous_hash=ZERO_HASH,
        block_hash=sha256_hex(f"genesis{_now_ms()}"),
        merkle_root=sha256_hex("genesis"),
        state_root=sha256_hex(f"{TREASURY_ADDRESS}:{settings.chain_genesis_supply}:0"),
        transaction_count=0,
        gas_limit=settings.chain_gas_limit,
        extra_data={"type": "genesis", "timestamp": now.isoformat()},
        timestamp=now,
    )
    db.add(genesis_block)
    db.commit()
    db.refresh(chain_state)
    db.refresh(genesis_block)
    logger.info("[XDK] Chain initialized with genesis block %s", genesis_block.block_hash)
    return {
        "chain_state": chain_state,
        "genesis_block": genesis_block,
        "treasury": {"address": TREASURY_ADDRESS, "balance": settings.chain_genesis_supply},
    }


def chain_status(db: Session) -> Dict[str, Any]:
    settings = get_settings()
    latest_block = db.query(XdkBlock).order_by(XdkBlock.block_number.desc()).first()
    pending = (
        db.query(func.count(XdkTransaction.id))
        .filter(XdkTransaction.status == TxStatus.pending)
        .scalar()
    )
    return {
        "chain": get_chain_state(db),
        "latest_block": latest_block,
        "pending_transactions": int(pending or 0),
        "config": settings.chain_config(),
    }


def submit_transaction(
    db: Session,
    from_address: str,
    to_address: Optional[str],
    amount: float,
    tx_type: str = "transfer",
    data: Optional[Dict[str, Any]] = None,
    signature: Optional[str] = None,
) -> XdkTransaction:
    sender = get_account(db, from_address)
    if not sender:
        raise ValidationFailedError("Sender account not found")
    if sender.account_type == AccountType.deal_room_treasury:
        raise ValidationFailedError("Deal room treasuries pay out through internal transfers")
    amount = float(amount or 0.0)
    if amount < 0:
        raise ValidationFailedError("Amount cannot be negative")
    if tx_type == "transfer":
        if not to_address:
            raise ValidationFailedError("Transfers require a recipient")
        if amount <= 0:
            raise ValidationFailedError("Transfer amount must be positive")
        if float(sender.balance or 0.0) < amount:
            raise ValidationFailedError("Insufficient balance")

    tx_hash = sha256_hex(f"{from_address}{to_address or ''}{amount}{sender.nonce}{_now_ms()}")
    settings = get_settings()
    tx = XdkTransaction(
        tx_hash=tx_hash,
        from_address=from_address,
        to_address=to_address,
        amount=amount,
        tx_type=tx_type,
        data=data or {},
        signature=signature or demo_signature("demo", tx_hash),
        status=TxStatus.pending,
        gas_price=int(settings.chain_base_fee_per_gas),
        gas_limit=TRANSFER_GAS_LIMIT if tx_type == "transfer" else CONTRACT_GAS_LIMIT,
    )
    db.add(tx)
    sender.nonce = int(sender.nonce or 0) + 1
    db.commit()
    db.refresh(tx)
    logger.info("[XDK] Submitted transaction %s", tx_hash)
    return tx


@dataclass
class BlockResult:
    block: Optional[XdkBlock] = None
    transactions_processed: int = 0
    transactions_failed: int = 0
    message: Optional[str] = None
    failed_hashes: List[str] = field(default_factory=list)


def _apply_transfer(db: Session, tx: XdkTransaction) -> Optional[str]:
    """Move funds for a pending transfer. Returns an error message instead of raising."""
    sender = get_account(db, tx.from_address)
    if sender is None:
        return "Sender account not found"
    amount = float(tx.amount or 0.0)
    if float(sender.balance or 0.0) < amount:
        return "Insufficient balance at execution"
    sender.balance = float(sender.balance or 0.0) - amount
    credit_address(db, tx.to_address, amount)
    return None


def create_block(db: Session) -> BlockResult:
    chain_state = get_chain_state(db)
    if not chain_state:
        raise ValidationFailedError("Chain not initialized")
    settings = get_settings()

    pending_txs = (
        db.query(XdkTransaction)
        .filter(XdkTransaction.status == TxStatus.pending)
        .order_by(XdkTransaction.created_at.asc(), XdkTransaction.id.asc())
        .limit(max(1, settings.chain_max_transactions_per_block))
        .all()
    )
    if not pending_txs:
        return BlockResult(message="No pending transactions")

    prev_block = db.query(XdkBlock).filter(XdkBlock.block_number == chain_state.current_block_number).first()
    previous_hash = prev_block.block_hash if prev_block else "0x0"
    new_block_number = int(chain_state.current_block_number or 0) + 1

    confirmed: List[XdkTransaction] = []
    result = BlockResult()
    for tx in pending_txs:
        error = None
        if tx.tx_type == "transfer" and tx.to_address:
            error = _apply_transfer(db, tx)
        if error:
            tx.status = TxStatus.failed
            tx.error_message = error
            result.transactions_failed += 1
            result.failed_hashes.append(tx.tx_hash)
            logger.warning("[XDK] Transaction %s failed: %s", tx.tx_hash, error)
            continue
        tx.gas_used = TRANSFER_GAS_LIMIT if tx.tx_type == "transfer" else int(tx.gas_limit or TRANSFER_GAS_LIMIT)
        confirmed.append(tx)
    db.flush()

    root = merkle_root([tx.tx_hash for tx in confirmed])
    accounts = db.query(XdkAccount).order_by(XdkAccount.address.asc()).limit(1000).all()
    s_root = state_root(accounts)
    timestamp = datetime.utcnow()
    block_hash = sha256_hex(f"{new_block_number}{previous_hash}{root}{s_root}{timestamp.isoformat()}")

    block = XdkBlock(
        block_number=new_block_number,
        previous_hash=previous_hash,
        block_hash=block_hash,
        merkle_root=root,
        state_root=s_root,
        transaction_count=len(confirmed),
        gas_used=sum(int(tx.gas_used or 0) for tx in confirmed),
        gas_limit=settings.chain_gas_limit,
        timestamp=timestamp,
    )
    db.add(block)
    db.flush()

    for index, tx in enumerate(confirmed):
        tx.block_id = block.id
        tx.block_number = new_block_number
        tx.tx_index = index
        tx.status = TxStatus.confirmed
        tx.confirmed_at = timestamp

    chain_state.current_block_number = new_block_number
    chain_state.total_transactions = int(chain_state.total_transactions or 0) + len(confirmed)
    chain_state.last_block_timestamp = timestamp
    db.commit()
    db.refresh(block)

    logger.info("[XDK] Created block %s with %d transactions", new_block_number, len(confirmed))
    result.block = block
    result.transactions_processed = len(confirmed)
    return result


def register_validator(
    db: Session,
    address: str,
    stake_amount: float,
    name: Optional[str] = None,
    user_id: Optional[str] = None,
) -> XdkValidator:
    settings = get_settings()
    stake_amount = float(stake_amount or 0.0)
    if stake_amount < settings.chain_min_stake_amount:
        raise ValidationFailedError(f"Minimum stake is {settings.chain_min_stake_amount:g} XDK")
    account = get_account(db, address)
    if not account or float(account.balance or 0.0) < stake_amount:
        raise ValidationFailedError("Insufficient balance for stake")
    if db.query(XdkValidator).filter(XdkValidator.address == address).first():
        raise ConflictError("Address is already a validator")

    validator = XdkValidator(
        address=address,
        name=name or f"Validator {address[:8]}",
        stake_amount=stake_amount,
        status="active",
        user_id=user_id,
    )
    db.add(validator)
    account.balance = float(account.balance or 0.0) - stake_amount
    account.staked_amount = float(account.staked_amount or 0.0) + stake_amount

    chain_state = get_chain_state(db)
    if chain_state:
        chain_state.total_validators = int(chain_state.total_validators or 0) + 1
        chain_state.active_validators = int(chain_state.active_validators or 0) + 1
        chain_state.total_staked = float(chain_state.total_staked or 0.0) + stake_amount
    db.commit()
    db.refresh(validator)
    logger.info("[XDK] Registered validator %s with stake %s", address, stake_amount)
    return validator


def tokenize_asset(
    db: Session,
    *,
    name: str,
    symbol: str,
    total_supply: float,
    asset_type: Optional[str] = None,
    issuer_address: Optional[str] = None,
    underlying_asset_id: Optional[str] = None,
    compliance_metadata: Optional[Dict[str, Any]] = None,
) -> XdkTokenizedAsset:
    if not str(name or "").strip() or not str(symbol or "").strip():
        raise ValidationFailedError("Asset name and symbol are required")
    if float(total_supply or 0.0) <= 0:
        raise ValidationFailedError("Total supply must be positive")
    asset = XdkTokenizedAsset(
        token_address="xdk1token" + uuid.uuid4().hex,
        name=name,
        symbol=symbol.upper(),
        asset_type=asset_type,
        total_supply=float(total_supply),
        circulating_supply=0.0,
        issuer_address=issuer_address,
        underlying_asset_id=underlying_asset_id,
        compliance_metadata=compliance_metadata or {},
    )
    db.add(asset)
    db.commit()
    db.refresh(asset)
    logger.info("[XDK] Tokenized asset %s (%s)", asset.token_address, asset.symbol)
    return asset


def faucet(db: Session, address: str, amount: Optional[float] = None) -> Dict[str, Any]:
    settings = get_settings()
    amount = float(settings.chain_faucet_default_amount if amount is None else amount)
    if amount <= 0:
        raise ValidationFailedError("Faucet amount must be positive")
    treasury = get_account(db, TREASURY_ADDRESS)
    if not treasury:
        raise ValidationFailedError("Treasury not found. Initialize chain first.")
    if float(treasury.balance or 0.0) < amount:
        raise ValidationFailedError("Treasury balance too low")

    tx_hash = sha256_hex(f"faucet{address}{amount}{_now_ms()}")
    treasury.balance = float(treasury.balance or 0.0) - amount
    credit_address(db, address, amount)
    db.add(
        XdkTransaction(
            tx_hash=tx_hash,
            from_address=TREASURY_ADDRESS,
            to_address=address,
            amount=amount,
            tx_type="transfer",
            data={"source": "faucet"},
            signature=demo_signature("faucet", tx_hash),
            status=TxStatus.confirmed,
            confirmed_at=datetime.utcnow(),
        )
    )
    chain_state = get_chain_state(db)
    if chain_state:
        chain_state.circulating_supply = float(chain_state.circulating_supply or 0.0) + amount
        chain_state.total_transactions = int(chain_state.total_transactions or 0) + 1
    db.commit()
    logger.info("[XDK] Faucet sent %s XDK to %s", amount, address)
    return {"success": True, "tx_hash": tx_hash, "amount": amount, "recipient": address}


# ============================================================================
# Read views
# ============================================================================

def list_blocks(db: Session, limit: int = 20, offset: int = 0) -> Tuple[List[XdkBlock], int]:
    total = db.query(func.count(XdkBlock.id)).scalar() or 0
    blocks = (
        db.query(XdkBlock)
        .order_by(XdkBlock.block_number.desc())
        .offset(max(0, offset))
        .limit(max(1, limit))
        .all()
    )
    return blocks, int(total)


def get_block(db: Session, identifier: str) -> Tuple[XdkBlock, List[XdkTransaction]]:
    identifier = str(identifier).strip()
    query = db.query(XdkBlock)
    if identifier.isdigit():
        block = query.filter(XdkBlock.block_number == int(identifier)).first()
    else:
        block = query.filter(XdkBlock.block_hash == identifier).first()
    if not block:
        raise NotFoundError("Block not found")
    transactions = (
        db.query(XdkTransaction)
        .filter(XdkTransaction.block_id == block.id)
        .order_by(XdkTransaction.tx_index.asc())
        .all()
    )
    return block, transactions


def list_transactions(db: Session, limit: int = 20, status: Optional[TxStatus] = None) -> List[XdkTransaction]:
    query = db.query(XdkTransaction)
    if status is not None:
        query = query.filter(XdkTransaction.status == status)
    return query.order_by(XdkTransaction.created_at.desc(), XdkTransaction.id.desc()).limit(max(1, limit)).all()


def get_transaction(db: Session, tx_hash: str) -> XdkTransaction:
    tx = db.query(XdkTransaction).filter(XdkTransaction.tx_hash == tx_hash).first()
    if not tx:
        raise NotFoundError("Transaction not found")
    return tx


def list_validators(db: Session) -> List[XdkValidator]:
    return db.query(XdkValidator).order_by(XdkValidator.stake_amount.desc()).all()


def list_accounts(db: Session, limit: int = 50) -> List[XdkAccount]:
    return db.query(XdkAccount).order_by(XdkAccount.balance.desc()).limit(max(1, limit)).all()


def account_detail(db: Session, address: str) -> Tuple[XdkAccount, List[XdkTransaction]]:
    account = get_account(db, address)
    if not account:
        raise NotFoundError("Account not found")
    transactions = (
        db.query(XdkTransaction)
        .filter(or_(XdkTransaction.from_address == address, XdkTransaction.to_address == address))
        .order_by(XdkTransaction.created_at.desc(), XdkTransaction.id.desc())
        .limit(50)
        .all()
    )
    return account, transactions


def list_assets(db: Session) -> List[XdkTokenizedAsset]:
    return db.query(XdkTokenizedAsset).order_by(XdkTokenizedAsset.created_at.desc()).all()


# ============================================================================
# Deal-room treasury transfers
# ============================================================================

def _profile_name(db: Session, user_id: Optional[str], default: str) -> str:
    if not user_id:
        return default
    profile = db.query(Profile).filter(Profile.id == user_id).first()
    return (profile.full_name if profile and profile.full_name else default)


def format_ledger_timestamp(value: datetime) -> str:
    return value.strftime("%b %d, %Y, %I:%M %p").replace(" 0", " ")


def internal_treasury_transfer(
    db: Session,
    user_id: str,
    deal_room_id: int,
    amount: float,
    *,
    destination_type: Optional[str] = None,
    destination_wallet_address: Optional[str] = None,
    destination_user_id: Optional[str] = None,
    purpose: Optional[str] = None,
    category_id: Optional[str] = None,
) -> Dict[str, Any]:
    amount = float(amount or 0.0)
    if not deal_room_id or amount <= 0:
        raise ValidationFailedError("deal_room_id and positive amount required")

    deal_room = get_deal_room(db, deal_room_id)
    participant = find_participant(db, deal_room_id, user_id)
    if not is_deal_room_admin(deal_room, participant, user_id):
        logger.info("[XDK-INTERNAL-TRANSFER] Permission denied for %s", user_id)
        raise PermissionDeniedError("Only deal room admins can transfer from treasury")

    treasury = db.query(DealRoomTreasury).filter(DealRoomTreasury.deal_room_id == deal_room_id).first()
    if not treasury:
        raise NotFoundError("Deal room treasury not found")
    balance = float(treasury.balance or 0.0)
    if balance < amount:
        raise ValidationFailedError(
            f"Insufficient treasury balance. Available: {balance:.2f} XDK, Requested: {amount:.2f} XDK"
        )

    to_address = destination_wallet_address
    destination_entity_name = ""
    if not to_address and destination_user_id:
        to_address = ensure_user_account(db, destination_user_id).address
        destination_entity_name = _profile_name(db, destination_user_id, "User")
    elif not to_address and destination_type == "personal":
        to_address = ensure_user_account(db, user_id).address
        destination_user_id = user_id
        destination_entity_name = _profile_name(db, user_id, "User")
    if not to_address:
        raise ValidationFailedError("Could not determine destination wallet address")
    if to_address == treasury.xdk_address:
        raise ValidationFailedError("Cannot transfer a treasury to itself")
    if not destination_entity_name:
        destination_entity_name = to_address
    destination_entity_type = "individual" if destination_type == "personal" else "entity"
    destination_treasury = db.query(DealRoomTreasury).filter(DealRoomTreasury.xdk_address == to_address).first()
    if destination_treasury is not None:
        destination_room = get_deal_room(db, destination_treasury.deal_room_id)
        destination_entity_name = f"{destination_room.name} treasury"
        destination_entity_type = "deal_room"


    logger.info(
        "[XDK-INTERNAL-TRANSFER] Executing transfer from %s to %s amount=%s",
        treasury.xdk_address,
        to_address,
        amount,
    )
    purpose_text = purpose or "Treasury distribution"
    tx_hash = new_tx_hash()
    db.add(
        XdkTransaction(
            tx_hash=tx_hash,
            from_address=treasury.xdk_address,
            to_address=to_address,
            amount=amount,
            tx_type="transfer",
            status=TxStatus.confirmed,
            signature=system_signature("system", tx_hash),
            data={
                "deal_room_id": deal_room_id,
                "initiated_by": user_id,
                "purpose": purpose_text,
                "destination_type": destination_type,
                "category_id": category_id,
            },
            confirmed_at=datetime.utcnow(),
        )
    )

    treasury.balance = balance - amount
    treasury.updated_at = datetime.utcnow()
    sync_treasury_account(db, treasury)
    credit_address(db, to_address, amount)

    now = datetime.utcnow()
    initiator_name = _profile_name(db, user_id, "Admin")
    narrative = (
        f"{initiator_name} transferred {amount:.2f} XDK from {deal_room.name} treasury to "
        f"{destination_entity_name} on {format_ledger_timestamp(now)}. Purpose: {purpose_text}"
    )
    db.add(
        ValueLedgerEntry(
            deal_room_id=deal_room_id,
            source_user_id=user_id,
            source_entity_type="deal_room",
            source_entity_name=deal_room.name,
            destination_user_id=destination_user_id,
            destination_entity_type=destination_entity_type,
            destination_entity_name=destination_entity_name,
            entry_type="internal_transfer",
            amount=0.0,
            currency="XDK",
            xdk_amount=amount,
            purpose=purpose_text,
            reference_type="xodiak_transaction",
            reference_id=tx_hash,
            contribution_credits=0,
            credit_category="transfer",
            verification_source="xodiak_chain",
            verification_id=tx_hash,
            verified_at=now,
            xdk_tx_hash=tx_hash,
            narrative=narrative,
            category_id=category_id,
            metadata_json={"initiated_by": user_id, "destination_type": destination_type},
        )
    )
    db.commit()
    logger.info("[XDK-INTERNAL-TRANSFER] Completed %s amount=%s", tx_hash, amount)
    return {
        "success": True,
        "tx_hash": tx_hash,
        "amount": amount,
        "from_address": treasury.xdk_address,
        "to_address": to_address,
    }
