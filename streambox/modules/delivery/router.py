from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Header
from fastapi.responses import Response, StreamingResponse

from streambox.core import deps
from streambox.modules.accounts.models import Account
from streambox.modules.delivery.service import StreamingGate

router = APIRouter()

@router.get("/{asset_id}/stream")
async def stream_asset(
    asset_id: UUID,
    range_header: Optional[str] = Header(None, alias="Range"),
    current_account: Optional[Account] = Depends(deps.get_current_account_optional),
    gate: StreamingGate = Depends(deps.get_streaming_gate),
):
    """
    Stream asset bytes, honouring single byte ranges.

    Players that cannot set an Authorization header may pass ?token=.
    """
    requester_id = current_account.buyer_key if current_account else None
    result = await gate.serve(asset_id, requester_id, range_header)
    if result.body is None:
        return Response(status_code=result.status_code, headers=result.headers, media_type=result.media_type)
    return StreamingResponse(
        result.body,
        status_code=result.status_code,
        headers=result.headers,
        media_type=result.media_type,
    )
