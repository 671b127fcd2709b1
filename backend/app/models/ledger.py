"""XDK ledger models - accounts, transactions and blocks of the toy chain."""
from sqlalchemy import Column, Integer, String, DateTime, JSON, Text, ForeignKey, Enum, Float
from sqlalchemy.orm import relationship
from datetime import datetime
import enum

from app.models.base import Base

TREASURY_ADDRESS = "xdk1treasury000000000000000000000000000000"
ZERO_HASH = "0x" + "0" * 64


class AccountType(enum.Enum):
    user = "user"
    treasury = "treasury"
    deal_room_treasury = "deal_room_treasury"


class TxStatus(enum.Enum):
    pending = "pending"
    confirmed = "confirmed"
    failed = "failed"


class XdkChainState(Base):
    """Singleton row describing chain height and supply."""
    __tablename__ = "xodiak_chain_state"

    id = Column(Integer, primary_key=True, index=True)
    chain_id = Column(String(64), nullable=False)
    chain_name = Column(String(128), nullable=False)
    current_block_number = Column(Integer, default=0)
    total_supply = Column(Float, default=0.0)
    circulating_supply = Column(Float, default=0.0)
    total_staked = Column(Float, default=0.0)
    total_validators = Column(Integer, default=0)
    active_validators = Column(Integer, default=0)
    total_transactions = Column(Integer, default=0)
    block_time_ms = Column(Integer, nullable=True)
    min_stake_amount = Column(Float, nullable=True)
    genesis_timestamp = Column(DateTime, nullable=True)
    last_block_timestamp = Column(DateTime, nullable=True)
    parameters = Column(JSON, default=dict)


class XdkAccount(Base):
    __tablename__ = "xodiak_accounts"

    id = Column(Integer, primary_key=True, index=True)
    address = Column(String(64), nullable=False, unique=True, index=True)
    user_id = Column(String(64), nullable=True, index=True)
    deal_room_id = Column(Integer, ForeignKey("deal_rooms.id"), nullable=True)
    account_type = Column(Enum(AccountType), default=AccountType.user)
    balance = Column(Float, default=0.0)
    staked_amount = Column(Float, default=0.0)
    nonce = Column(Integer, default=0)
    metadata_json = Column(JSON, default=dict)
    created_at = Column(DateTime, default=datetime.utcnow)


class XdkBlock(Base):
    __tablename__ = "xodiak_blocks"

    id = Column(Integer, primary_key=True, index=True)
    block_number = Column(Integer, nullable=False, unique=True, index=True)
    previous_hash = Column(String(80), nullable=False)
    block_hash = Column(String(80), nullable=False, unique=True, index=True)
    merkle_root = Column(String(80), nullable=False)
    state_root = Column(String(80), nullable=False)
    transaction_count = Column(Integer, default=0)
    gas_used = Column(Integer, default=0)
    gas_limit = Column(Integer, nullable=True)
    validator_id = Column(Integer, ForeignKey("xodiak_validators.id"), nullable=True)
    extra_data = Column(JSON, default=dict)
    timestamp = Column(DateTime, default=datetime.utcnow)

    validator = relationship("XdkValidator")
    transactions = relationship("XdkTransaction", back_populates="block")


class XdkTransaction(Base):
    __tablename__ = "xodiak_transactions"

    id = Column(Integer, primary_key=True, index=True)
    tx_hash = Column(String(80), nullable=False, unique=True, index=True)
    from_address = Column(String(64), nullable=False, index=True)
    to_address = Column(String(64), nullable=True, index=True)
    amount = Column(Float, nullable=False, default=0.0)
    # transfer|stake|mint_invoice_payment|mint_treasury_routing|...
    tx_type = Column(String(64), default="transfer")
    status = Column(Enum(TxStatus), default=TxStatus.pending, index=True)
    signature = Column(String(200), nullable=True)
    data = Column(JSON, default=dict)

    gas_price = Column(Integer, nullable=True)
    gas_limit = Column(Integer, nullable=True)
    gas_used = Column(Integer, nullable=True)

    block_id = Column(Integer, ForeignKey("xodiak_blocks.id"), nullable=True)
    block_number = Column(Integer, nullable=True)
    tx_index = Column(Integer, nullable=True)
    error_message = Column(Text, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    confirmed_at = Column(DateTime, nullable=True)

    block = relationship("XdkBlock", back_populates="transactions")


class XdkValidator(Base):
    __tablename__ = "xodiak_validators"

    id = Column(Integer, primary_key=True, index=True)
    address = Column(String(64), nullable=False, unique=True)
    name = Column(String(255), nullable=False)
    stake_amount = Column(Float, nullable=False)
    status = Column(String(16), default="active")
    user_id = Column(String(64), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)


class XdkTokenizedAsset(Base):
    __tablename__ = "xodiak_tokenized_assets"

    id = Column(Integer, primary_key=True, index=True)
    token_address = Column(String(64), nullable=False, unique=True)
    name = Column(String(255), nullable=False)
    symbol = Column(String(16), nullable=False)
    asset_type = Column(String(64), nullable=True)
    total_supply = Column(Float, nullable=False)
    circulating_supply = Column(Float, default=0.0)
    issuer_address = Column(String(64), nullable=True)
    underlying_asset_id = Column(String(128), nullable=True)
    compliance_metadata = Column(JSON, default=dict)
    created_at = Column(DateTime, default=datetime.utcnow)
