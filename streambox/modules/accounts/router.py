import logging
from typing import Any, List
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from fastapi.security import OAuth2PasswordRequestForm

from streambox.core import deps, security
from streambox.core.errors import AccountNotFound
from streambox.core.gateway import PersistenceGateway
from streambox.modules.accounts import schemas
from streambox.modules.accounts.models import Account
from streambox.modules.sales.schemas import PurchaseRead
from streambox.modules.subscriptions.schemas import SubscriptionRead

logger = logging.getLogger(__name__)

router = APIRouter()

@router.post("", response_model=schemas.AccountRead, status_code=201)
async def register_account(
    account_in: schemas.AccountCreate,
    gateway: PersistenceGateway = Depends(deps.get_gateway),
) -> Any:
    if await gateway.get_account_by_email(account_in.email):
        raise HTTPException(status_code=400, detail="An account with this email already exists")
    if await gateway.get_account_by_handle(account_in.handle):
        raise HTTPException(status_code=400, detail="This handle is taken")
    if account_in.wallet_address and await gateway.get_account_by_wallet(account_in.wallet_address):
        raise HTTPException(status_code=400, detail="This wallet is linked to another account")

    account = await gateway.create_account(
        handle=account_in.handle,
        email=account_in.email,
        hashed_password=security.get_password_hash(account_in.password),
        wallet_address=account_in.wallet_address,
    )
    logger.info("Account %s registered (%s)", account.id, account.handle)
    return account

@router.post("/login", response_model=schemas.Token)
async def login_access_token(
    form_data: OAuth2PasswordRequestForm = Depends(),
    gateway: PersistenceGateway = Depends(deps.get_gateway),
) -> Any:
    account = await gateway.get_account_by_email(form_data.username)
    if not account or not security.verify_password(form_data.password, account.hashed_password):
        raise HTTPException(status_code=400, detail="Incorrect email or password")

    return {
        "access_token": security.create_access_token(subject=account.id),
        "token_type": "bearer",
    }

@router.get("/me", response_model=schemas.AccountRead)
async def read_account_me(
    current_account: Account = Depends(deps.get_current_account),
) -> Any:
    return current_account

@router.put("/me", response_model=schemas.AccountRead)
async def update_account_me(
    account_in: schemas.AccountUpdate,
    current_account: Account = Depends(deps.get_current_account),
    gateway: PersistenceGateway = Depends(deps.get_gateway),
) -> Any:
    fields = account_in.model_dump(exclude_unset=True)
    if not fields:
        return current_account
    wallet = fields.get("wallet_address")
    if wallet:
        owner = await gateway.get_account_by_wallet(wallet)
        if owner and owner.id != current_account.id:
            raise HTTPException(status_code=400, detail="This wallet is linked to another account")
    return await gateway.update_account(current_account.id, **fields)

@router.get("/me/purchases", response_model=List[PurchaseRead])
async def list_my_purchases(
    current_account: Account = Depends(deps.get_current_account),
    gateway: PersistenceGateway = Depends(deps.get_gateway),
) -> Any:
    return await gateway.list_purchases_for_buyer(current_account.buyer_key)

@router.get("/me/subscriptions", response_model=List[SubscriptionRead])
async def list_my_subscriptions(
    current_account: Account = Depends(deps.get_current_account),
    gateway: PersistenceGateway = Depends(deps.get_gateway),
) -> Any:
    return await gateway.list_subscriptions_for_subscriber(current_account.buyer_key)

@router.get("/{account_id}", response_model=schemas.CreatorProfile)
async def get_account_profile(
    account_id: UUID,
    gateway: PersistenceGateway = Depends(deps.get_gateway),
) -> Any:
    account = await gateway.get_account(account_id)
    if not account:
        raise AccountNotFound(account_id)

    video_count, total_views = await gateway.get_creator_stats(account.id)
    profile = schemas.CreatorProfile.model_validate(account)
    profile.video_count = video_count
    profile.total_views = total_views
    return profile
