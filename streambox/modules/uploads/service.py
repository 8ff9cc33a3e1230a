import logging
from dataclasses import dataclass
from typing import Iterable, Optional
from uuid import UUID

from streambox.core.errors import (
    AssetNotFound,
    NotAssetOwner,
    PersistenceUnavailable,
    RegistrationFailed,
    StorageUploadFailed,
    ValidationFailed,
)
from streambox.core.gateway import PersistenceGateway
from streambox.modules.assets.models import Asset
from streambox.modules.storage.base import ContentIntegrityError, ContentStoreError, StorageProof
from streambox.modules.storage.content_store import reference_host_allowed
from streambox.modules.storage.registry import StoreRegistry

logger = logging.getLogger(__name__)

URL_SCHEMES = ("https://", "http://")
REFERENCE_SCHEMES = URL_SCHEMES + ("b2://", "ipfs://")


@dataclass
class UploadResult:
    asset_id: UUID
    content_id: Optional[str]
    locator: str
    storage_proof: Optional[StorageProof]
    verified: bool


class UploadRegistrar:
    """
    Commits asset bytes to a store, then links the result to the asset.

    The asset row is only touched after the store accepted the bytes, and the
    locator and proof are written together, so an asset never points at
    content that is missing or half written.
    """

    def __init__(
        self,
        gateway: PersistenceGateway,
        stores: StoreRegistry,
        max_upload_bytes: Optional[int] = None,
        reference_hosts: Iterable[str] = (),
    ):
        self.gateway = gateway
        self.stores = stores
        self.max_upload_bytes = max_upload_bytes
        self.reference_hosts = tuple(reference_hosts)

    async def _get_owned_asset(self, asset_id: UUID, owner_id: UUID) -> Asset:
        asset = await self.gateway.get_asset(asset_id)
        if not asset:
            raise AssetNotFound(asset_id)
        if asset.creator_id != owner_id:
            raise NotAssetOwner("Only the creator can upload content for this asset", asset_id=str(asset_id))
        return asset

    async def register_upload(
        self,
        asset_id: UUID,
        owner_id: UUID,
        data: bytes,
        filename: str,
        mime_type: str,
        backend: Optional[str] = None,
    ) -> UploadResult:
        if not data:
            raise ValidationFailed("Upload body is empty")
        if self.max_upload_bytes and len(data) > self.max_upload_bytes:
            raise ValidationFailed(f"Upload exceeds the {self.max_upload_bytes} byte limit")
        if not (mime_type or "").startswith("video/"):
            raise ValidationFailed("Invalid file type. Expected video.")

        asset = await self._get_owned_asset(asset_id, owner_id)

        try:
            store = self.stores.for_upload(backend)
        except ContentStoreError as e:
            raise ValidationFailed(str(e)) from e

        try:
            stored = await store.put(data, filename or f"video-{asset.id}.mp4", mime_type)
        except ContentIntegrityError as e:
            self._log_orphan(asset.id, e.locator, e)
            raise StorageUploadFailed(
                "Stored content failed the integrity check",
                requires_followup=True,
                backend=store.scheme,
                orphaned_locator=e.locator,
            ) from e
        except ContentStoreError as e:
            raise StorageUploadFailed(
                f"Could not store content: {e}",
                backend=store.scheme,
                timed_out=e.timed_out or None,
            ) from e

        try:
            updated = await self.gateway.update_asset_content(
                asset.id,
                content_locator=stored.locator,
                storage_proof=stored.proof.to_dict(),
                is_verified=stored.proof.verified,
                mime_type=mime_type,
                size_bytes=len(data),
            )
        except PersistenceUnavailable as e:
            self._log_orphan(asset.id, stored.locator, e)
            raise RegistrationFailed(
                "Content was stored but could not be linked to the asset",
                orphaned_locator=stored.locator,
            ) from e
        if updated is None:
            # Asset vanished between lookup and update
            self._log_orphan(asset.id, stored.locator, "asset row missing")
            raise RegistrationFailed(
                "Content was stored but the asset no longer exists",
                orphaned_locator=stored.locator,
            )

        logger.info("Asset %s content registered at %s (verified=%s)", asset.id, stored.locator, stored.proof.verified)
        return UploadResult(
            asset_id=asset.id,
            content_id=stored.content_id,
            locator=stored.locator,
            storage_proof=stored.proof,
            verified=stored.proof.verified,
        )

    async def register_reference(self, asset_id: UUID, owner_id: UUID, url: str, mime_type: Optional[str] = None) -> UploadResult:
        """Point an asset at content hosted elsewhere. No proof is recorded."""
        url = (url or "").strip()
        if not url.startswith(REFERENCE_SCHEMES):
            raise ValidationFailed("content_url must be an http(s), b2:// or ipfs:// locator")
        if url.startswith(URL_SCHEMES) and not reference_host_allowed(url, self.reference_hosts):
            raise ValidationFailed("content_url host is not an allowed content host")

        asset = await self._get_owned_asset(asset_id, owner_id)
        updated = await self.gateway.update_asset_content(
            asset.id,
            content_locator=url,
            storage_proof=None,
            is_verified=False,
            mime_type=mime_type,
            size_bytes=None,
        )
        if updated is None:
            raise AssetNotFound(asset_id)
        return UploadResult(asset_id=asset.id, content_id=None, locator=url, storage_proof=None, verified=False)

    def _log_orphan(self, asset_id: UUID, locator: str, cause) -> None:
        logger.error(
            "ORPHANED UPLOAD: asset=%s locator=%s needs reconciliation (%s)",
            asset_id, locator, cause,
        )
