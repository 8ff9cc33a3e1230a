from typing import Any, List

from fastapi import APIRouter, Depends

from streambox.core import deps
from streambox.core.gateway import PersistenceGateway
from streambox.modules.accounts import schemas

router = APIRouter()

@router.get("/featured", response_model=List[schemas.CreatorProfile])
async def list_featured_creators(
    gateway: PersistenceGateway = Depends(deps.get_gateway),
) -> Any:
    """Top creators by total views across their assets."""
    response = []
    for account, video_count, total_views in await gateway.list_featured_creators(limit=6):
        profile = schemas.CreatorProfile.model_validate(account)
        profile.video_count = video_count
        profile.total_views = total_views
        response.append(profile)
    return response
