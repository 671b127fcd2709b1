"""XDK chain API routes - status, accounts, transactions, blocks, validators and assets."""
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession
from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Any
from datetime import datetime

from app.api.deps import get_current_user_id, run_service
from app.models.base import get_db
from app.models.ledger import AccountType, TxStatus
from app.services import xdk_ledger as ledger

router = APIRouter()


# ============================================================================
# Pydantic Schemas
# ============================================================================

class ChainStateResponse(BaseModel):
    chain_id: str
    chain_name: str
    current_block_number: int
    total_supply: float
    circulating_supply: float
    total_staked: float
    total_validators: int
    active_validators: int
    total_transactions: int
    genesis_timestamp: Optional[datetime]
    last_block_timestamp: Optional[datetime]

    class Config:
        from_attributes = True


class BlockResponse(BaseModel):
    id: int
    block_number: int
    previous_hash: str
    block_hash: str
    merkle_root: str
    state_root: str
    transaction_count: int
    gas_used: Optional[int]
    gas_limit: Optional[int]
    timestamp: datetime

    class Config:
        from_attributes = True


class TransactionResponse(BaseModel):
    id: int
    tx_hash: str
    from_address: str
    to_address: Optional[str]
    amount: float
    tx_type: str
    status: TxStatus
    signature: Optional[str]
    data: Optional[Dict[str, Any]] = None
    gas_price: Optional[int]
    gas_limit: Optional[int]
    gas_used: Optional[int]
    block_number: Optional[int]
    tx_index: Optional[int]
    error_message: Optional[str]
    created_at: datetime
    confirmed_at: Optional[datetime]

    class Config:
        from_attributes = True


class AccountResponse(BaseModel):
    id: int
    address: str
    user_id: Optional[str]
    account_type: AccountType
    balance: float
    staked_amount: float
    nonce: int
    created_at: datetime

    class Config:
        from_attributes = True


class ValidatorResponse(BaseModel):
    id: int
    address: str
    name: str
    stake_amount: float
    status: str
    user_id: Optional[str]

    class Config:
        from_attributes = True


class AssetResponse(BaseModel):
    id: int
    token_address: str
    name: str
    symbol: str
    asset_type: Optional[str]
    total_supply: float
    circulating_supply: float
    issuer_address: Optional[str]
    underlying_asset_id: Optional[str]
    compliance_metadata: Optional[Dict[str, Any]] = None

    class Config:
        from_attributes = True


class ChainStatusResponse(BaseModel):
    chain: Optional[ChainStateResponse] = None
    latest_block: Optional[BlockResponse] = None
    pending_transactions: int = 0
    config: Dict[str, Any] = Field(default_factory=dict)


class InitializeResponse(BaseModel):
    chain_state: ChainStateResponse
    genesis_block: BlockResponse
    treasury: Dict[str, Any]


class AccountCreate(BaseModel):
    initial_balance: float = Field(default=0.0, ge=0)


class TransactionCreate(BaseModel):
    from_address: str
    to_address: Optional[str] = None
    amount: float = Field(ge=0)
    tx_type: str = "transfer"
    data: Optional[Dict[str, Any]] = None
    signature: Optional[str] = None


class BlockCreateResponse(BaseModel):
    block: Optional[BlockResponse] = None
    transactions_processed: int = 0
    transactions_failed: int = 0
    message: Optional[str] = None


class BlockListResponse(BaseModel):
    blocks: List[BlockResponse]
    total: int


class BlockDetailResponse(BaseModel):
    block: BlockResponse
    transactions: List[TransactionResponse]


class AccountDetailResponse(BaseModel):
    account: AccountResponse
    transactions: List[TransactionResponse]


class ValidatorCreate(BaseModel):
    address: str
    stake_amount: float
    name: Optional[str] = None


class AssetCreate(BaseModel):
    name: str
    symbol: str
    total_supply: float
    asset_type: Optional[str] = None
    issuer_address: Optional[str] = None
    underlying_asset_id: Optional[str] = None
    compliance_metadata: Optional[Dict[str, Any]] = None


class FaucetRequest(BaseModel):
    address: str
    amount: Optional[float] = None


class FaucetResponse(BaseModel):
    success: bool
    tx_hash: str
    amount: float
    recipient: str


# ============================================================================
# Chain lifecycle
# ============================================================================

@router.get("/status", response_model=ChainStatusResponse)
async def chain_status(db: AsyncSession = Depends(get_db)):
    status = await run_service(db, ledger.chain_status)
    return ChainStatusResponse(
        chain=ChainStateResponse.model_validate(status["chain"]) if status["chain"] else None,
        latest_block=BlockResponse.model_validate(status["latest_block"]) if status["latest_block"] else None,
        pending_transactions=status["pending_transactions"],
        config=status["config"],
    )


@router.post("/initialize", response_model=InitializeResponse)
async def initialize_chain(
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """Create chain state, the genesis block and the funded treasury."""
    result = await run_service(db, ledger.initialize_chain)
    return InitializeResponse(
        chain_state=ChainStateResponse.model_validate(result["chain_state"]),
        genesis_block=BlockResponse.model_validate(result["genesis_block"]),
        treasury=result["treasury"],
    )


@router.post("/blocks", response_model=BlockCreateResponse)
async def create_block(
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    result = await run_service(db, ledger.create_block)
    return BlockCreateResponse(
        block=BlockResponse.model_validate(result.block) if result.block else None,
        transactions_processed=result.transactions_processed,
        transactions_failed=result.transactions_failed,
        message=result.message,
    )


@router.get("/blocks", response_model=BlockListResponse)
async def list_blocks(
    limit: int = Query(default=20, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: AsyncSession = Depends(get_db),
):
    blocks, total = await run_service(db, ledger.list_blocks, limit, offset)
    return BlockListResponse(blocks=[BlockResponse.model_validate(b) for b in blocks], total=total)


@router.get("/blocks/{identifier}", response_model=BlockDetailResponse)
async def get_block(identifier: str, db: AsyncSession = Depends(get_db)):
    """Look up a block by number or by hash."""
    block, transactions = await run_service(db, ledger.get_block, identifier)
    return BlockDetailResponse(
        block=BlockResponse.model_validate(block),
        transactions=[TransactionResponse.model_validate(tx) for tx in transactions],
    )


# ============================================================================
# Accounts and transactions
# ============================================================================

@router.post("/accounts", response_model=AccountResponse)
async def create_account(
    data: AccountCreate,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    account = await run_service(db, ledger.create_account, user_id, data.initial_balance)
    return AccountResponse.model_validate(account)


@router.get("/accounts", response_model=List[AccountResponse])
async def list_accounts(
    limit: int = Query(default=50, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
):
    accounts = await run_service(db, ledger.list_accounts, limit)
    return [AccountResponse.model_validate(a) for a in accounts]


@router.get("/accounts/{address}", response_model=AccountDetailResponse)
async def get_account(address: str, db: AsyncSession = Depends(get_db)):
    account, transactions = await run_service(db, ledger.account_detail, address)
    return AccountDetailResponse(
        account=AccountResponse.model_validate(account),
        transactions=[TransactionResponse.model_validate(tx) for tx in transactions],
    )


@router.get("/wallet", response_model=AccountResponse)
async def my_wallet(
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """Return the caller's wallet, creating it on first use."""
    def _ensure(session):
        account = ledger.ensure_user_account(session, user_id)
        session.commit()
        return account

    account = await run_service(db, _ensure)
    return AccountResponse.model_validate(account)


@router.post("/transactions", response_model=TransactionResponse)
async def submit_transaction(
    data: TransactionCreate,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    tx = await run_service(
        db,
        ledger.submit_transaction,
        data.from_address,
        data.to_address,
        data.amount,
        data.tx_type,
        data.data,
        data.signature,
    )
    return TransactionResponse.model_validate(tx)


@router.get("/transactions", response_model=List[TransactionResponse])
async def list_transactions(
    limit: int = Query(default=20, ge=1, le=200),
    status: Optional[TxStatus] = None,
    db: AsyncSession = Depends(get_db),
):
    transactions = await run_service(db, ledger.list_transactions, limit, status)
    return [TransactionResponse.model_validate(tx) for tx in transactions]


@router.get("/transactions/{tx_hash}", response_model=TransactionResponse)
async def get_transaction(tx_hash: str, db: AsyncSession = Depends(get_db)):
    tx = await run_service(db, ledger.get_transaction, tx_hash)
    return TransactionResponse.model_validate(tx)


# ============================================================================
# Validators, assets, faucet
# ============================================================================

@router.get("/validators", response_model=List[ValidatorResponse])
async def list_validators(db: AsyncSession = Depends(get_db)):
    validators = await run_service(db, ledger.list_validators)
    return [ValidatorResponse.model_validate(v) for v in validators]


@router.post("/validators", response_model=ValidatorResponse)
async def register_validator(
    data: ValidatorCreate,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    validator = await run_service(
        db, ledger.register_validator, data.address, data.stake_amount, data.name, user_id
    )
    return ValidatorResponse.model_validate(validator)


@router.get("/assets", response_model=List[AssetResponse])
async def list_assets(db: AsyncSession = Depends(get_db)):
    assets = await run_service(db, ledger.list_assets)
    return [AssetResponse.model_validate(a) for a in assets]


@router.post("/assets", response_model=AssetResponse)
async def tokenize_asset(
    data: AssetCreate,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    asset = await run_service(
        db,
        ledger.tokenize_asset,
        name=data.name,
        symbol=data.symbol,
        total_supply=data.total_supply,
        asset_type=data.asset_type,
        issuer_address=data.issuer_address,
        underlying_asset_id=data.underlying_asset_id,
        compliance_metadata=data.compliance_metadata,
    )
    return AssetResponse.model_validate(asset)


@router.post("/faucet", response_model=FaucetResponse)
async def faucet(
    data: FaucetRequest,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    result = await run_service(db, ledger.faucet, data.address, data.amount)
    return FaucetResponse(**result)
