"""
Streaming gate.

Entitlement is decided before any byte is fetched, so a denied request never
costs a retrieval. Both storage backends are addressed the same way, through
the locator on the asset row, and only the requested window is ever read:
the body is pulled from the store chunk by chunk while it is being sent.
"""
import logging
from dataclasses import dataclass, field
from typing import AsyncIterator, Dict, Optional
from uuid import UUID

from streambox.core.errors import AccessDenied, AssetNotFound, ContentUnavailable
from streambox.core.gateway import PersistenceGateway
from streambox.modules.delivery.ranges import ByteRange, RangeNotSatisfiable, parse_range
from streambox.modules.sales.service import PurchaseVerifier
from streambox.modules.storage.base import ContentStore, ContentStoreError
from streambox.modules.storage.registry import StoreRegistry

logger = logging.getLogger(__name__)

DEFAULT_MIME_TYPE = "video/mp4"
DEFAULT_CHUNK_BYTES = 4 * 1024 * 1024


@dataclass
class StreamResult:
    status_code: int
    body: Optional[AsyncIterator[bytes]]
    headers: Dict[str, str] = field(default_factory=dict)
    media_type: str = DEFAULT_MIME_TYPE


class StreamingGate:
    def __init__(
        self,
        gateway: PersistenceGateway,
        verifier: PurchaseVerifier,
        stores: StoreRegistry,
        chunk_size: int = DEFAULT_CHUNK_BYTES,
    ):
        self.gateway = gateway
        self.verifier = verifier
        self.stores = stores
        self.chunk_size = chunk_size

    async def serve(self, asset_id: UUID, requester_id: Optional[str], range_header: Optional[str] = None) -> StreamResult:
        asset = await self.gateway.get_asset(asset_id)
        if not asset:
            raise AssetNotFound(asset_id)

        if not await self.verifier.has_access_to(asset, requester_id):
            if requester_id:
                raise AccessDenied("Purchase required to stream this asset", asset_id=str(asset_id))
            raise AccessDenied(
                "Sign in and purchase this asset to stream it",
                status_code=401,
                asset_id=str(asset_id),
            )

        if not asset.content_locator:
            raise ContentUnavailable("Asset has no content yet", status_code=404, asset_id=str(asset_id))

        try:
            store, content_id = self.stores.resolve(asset.content_locator)
            total = asset.size_bytes if asset.size_bytes is not None else await store.size(content_id)
        except ContentStoreError as e:
            raise self._unavailable(asset_id, e) from e

        media_type = asset.mime_type or DEFAULT_MIME_TYPE
        try:
            byte_range = parse_range(range_header, total)
        except RangeNotSatisfiable:
            return StreamResult(
                status_code=416,
                body=None,
                headers={"Content-Range": f"bytes */{total}", "Accept-Ranges": "bytes"},
                media_type=media_type,
            )

        start, end = (0, total - 1) if byte_range is None else (byte_range.start, byte_range.end)
        first = b""
        if total:
            # Read before the response starts, so a failure here is still ContentUnavailable
            try:
                first = await store.read(content_id, start, min(end, start + self.chunk_size - 1))
            except ContentStoreError as e:
                raise self._unavailable(asset_id, e) from e

        if self._starts_playback(byte_range):
            await self.gateway.increment_views(asset.id)

        body = self._chunks(asset.id, store, content_id, first, start + len(first), end)
        if byte_range is None:
            return StreamResult(
                status_code=200,
                body=body,
                headers={"Accept-Ranges": "bytes", "Content-Length": str(total)},
                media_type=media_type,
            )

        return StreamResult(
            status_code=206,
            body=body,
            headers={
                "Accept-Ranges": "bytes",
                "Content-Range": byte_range.content_range(total),
                "Content-Length": str(byte_range.length),
            },
            media_type=media_type,
        )

    async def _chunks(
        self, asset_id: UUID, store: ContentStore, content_id: str, first: bytes, position: int, end: int
    ) -> AsyncIterator[bytes]:
        if first:
            yield first
        while position <= end:
            stop = min(position + self.chunk_size - 1, end)
            try:
                chunk = await store.read(content_id, position, stop)
            except ContentStoreError as e:
                # Headers are already sent; the client sees a short body and resumes with a Range
                logger.warning("Stream of asset %s cut at byte %d: %s", asset_id, position, e)
                return
            if not chunk:
                logger.warning("Store returned no bytes for asset %s at byte %d", asset_id, position)
                return
            yield chunk
            position += len(chunk)

    @staticmethod
    def _unavailable(asset_id: UUID, error: ContentStoreError) -> ContentUnavailable:
        logger.warning("Content for asset %s unavailable: %s", asset_id, error)
        return ContentUnavailable(
            "Content is temporarily unavailable",
            asset_id=str(asset_id),
            timed_out=error.timed_out or None,
        )

    @staticmethod
    def _starts_playback(byte_range: Optional[ByteRange]) -> bool:
        # Continuation ranges of the same playback are not counted
        return byte_range is None or byte_range.start == 0
