from typing import Any
from uuid import UUID

from fastapi import APIRouter, Depends

from streambox.core import deps
from streambox.core.gateway import PersistenceGateway
from streambox.modules.accounts.models import Account
from streambox.modules.subscriptions import schemas, service

router = APIRouter()

@router.post("/{creator_id}/subscription", response_model=schemas.SubscriptionRead)
async def subscribe(
    creator_id: UUID,
    current_account: Account = Depends(deps.get_current_account),
    gateway: PersistenceGateway = Depends(deps.get_gateway),
) -> Any:
    return await service.subscribe_to_creator(gateway, current_account.buyer_key, creator_id)

@router.delete("/{creator_id}/subscription", response_model=schemas.SubscriptionRead)
async def cancel_subscription(
    creator_id: UUID,
    current_account: Account = Depends(deps.get_current_account),
    gateway: PersistenceGateway = Depends(deps.get_gateway),
) -> Any:
    return await service.cancel_subscription(gateway, current_account.buyer_key, creator_id)
