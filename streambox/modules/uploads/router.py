from typing import Any, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Header, Request
from pydantic import ValidationError

from streambox.core import deps
from streambox.core.config import settings
from streambox.core.errors import ValidationFailed
from streambox.modules.accounts.models import Account
from streambox.modules.assets.schemas import ContentReference, UploadResponse
from streambox.modules.uploads.service import UploadRegistrar, UploadResult

router = APIRouter()


async def _read_body(request: Request, limit: int) -> bytes:
    declared = request.headers.get("content-length")
    if declared and declared.isdigit() and int(declared) > limit:
        raise ValidationFailed(f"Upload exceeds the {limit} byte limit")
    chunks = []
    received = 0
    async for chunk in request.stream():
        received += len(chunk)
        if received > limit:
            raise ValidationFailed(f"Upload exceeds the {limit} byte limit")
        chunks.append(chunk)
    return b"".join(chunks)


def _to_response(result: UploadResult) -> UploadResponse:
    return UploadResponse(
        asset_id=result.asset_id,
        content_id=result.content_id,
        locator=result.locator,
        storage_proof=result.storage_proof.to_dict() if result.storage_proof else None,
        verified=result.verified,
    )


@router.put("/{asset_id}/content", response_model=UploadResponse)
async def upload_content(
    asset_id: UUID,
    request: Request,
    backend: Optional[str] = None,
    content_type: Optional[str] = Header(None),
    x_filename: Optional[str] = Header(None),
    current_account: Account = Depends(deps.get_current_account),
    registrar: UploadRegistrar = Depends(deps.get_registrar),
) -> Any:
    """
    Attach content to an asset.

    A JSON body `{"content_url": ...}` links externally hosted content; any
    other body is treated as the raw video bytes and committed to storage.
    """
    media_type = (content_type or "").split(";")[0].strip().lower()

    if media_type == "application/json":
        try:
            reference = ContentReference.model_validate_json(await request.body())
        except ValidationError as e:
            raise ValidationFailed(f"Body must be {{\"content_url\": ...}}: {e.error_count()} error(s)") from e
        result = await registrar.register_reference(
            asset_id, current_account.id, reference.content_url, reference.mime_type
        )
        return _to_response(result)

    data = await _read_body(request, settings.MAX_UPLOAD_BYTES)
    result = await registrar.register_upload(
        asset_id,
        current_account.id,
        data,
        filename=x_filename or f"{asset_id}.mp4",
        mime_type=media_type,
        backend=backend,
    )
    return _to_response(result)
