import logging
from typing import Any, List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query

from streambox.core import deps
from streambox.core.errors import AssetNotFound
from streambox.core.gateway import PersistenceGateway
from streambox.modules.accounts.models import Account
from streambox.modules.accounts.schemas import CreatorSummary
from streambox.modules.assets import schemas
from streambox.modules.assets.models import Asset

logger = logging.getLogger(__name__)

router = APIRouter()


def _with_creator(asset: Asset, creator: Optional[Account]) -> schemas.AssetRead:
    read = schemas.AssetRead.model_validate(asset)
    if creator is not None:
        read.creator = CreatorSummary.model_validate(creator)
    return read


@router.get("", response_model=List[schemas.AssetRead])
async def list_assets(
    category: Optional[str] = None,
    search: Optional[str] = None,
    trending: Optional[int] = Query(None, ge=1, le=100),
    creator: Optional[UUID] = None,
    gateway: PersistenceGateway = Depends(deps.get_gateway),
) -> Any:
    assets = await gateway.list_assets(category=category, search=search, trending=trending, creator_id=creator)
    creators = await gateway.get_accounts([a.creator_id for a in assets])
    return [_with_creator(asset, creators.get(asset.creator_id)) for asset in assets]

@router.get("/{asset_id}", response_model=schemas.AssetRead)
async def get_asset(
    asset_id: UUID,
    gateway: PersistenceGateway = Depends(deps.get_gateway),
) -> Any:
    asset = await gateway.get_asset(asset_id)
    if not asset:
        raise AssetNotFound(asset_id)
    return _with_creator(asset, await gateway.get_account(asset.creator_id))

@router.post("", response_model=schemas.AssetRead, status_code=201)
async def create_asset(
    asset_in: schemas.AssetCreate,
    current_account: Account = Depends(deps.get_current_account),
    gateway: PersistenceGateway = Depends(deps.get_gateway),
) -> Any:
    asset = await gateway.create_asset(creator_id=current_account.id, **asset_in.model_dump())
    logger.info("Asset %s created by %s (%s, %s)", asset.id, current_account.id, asset.mode.value, asset.price)
    return _with_creator(asset, current_account)

@router.patch("/{asset_id}/views", response_model=schemas.ViewsResponse)
async def increment_views(
    asset_id: UUID,
    gateway: PersistenceGateway = Depends(deps.get_gateway),
) -> Any:
    # Every call counts; playback debouncing only applies to the stream endpoint
    if not await gateway.increment_views(asset_id):
        raise AssetNotFound(asset_id)
    asset = await gateway.get_asset(asset_id)
    return {"views": asset.views}
