import asyncio
import hashlib
import io
import logging
import re
import uuid
from typing import Optional

from b2sdk.v2 import InMemoryAccountInfo, B2Api
from b2sdk.v2.exception import B2Error

from streambox.modules.storage.base import (
    ContentIntegrityError,
    ContentStore,
    ContentStoreError,
    StorageProof,
    StoredContent,
    sha256_hex,
)

logger = logging.getLogger(__name__)

SHA1_RE = re.compile(r"^[0-9a-f]{40}$")


def safe_object_name(filename: str) -> str:
    # Sanitize filename to avoid B2 encoding issues (e.g. commas)
    safe = re.sub(r'[^a-zA-Z0-9_\-\.]', '', filename.replace(' ', '_'))
    return safe or "unnamed_file"


class B2ObjectStore(ContentStore):
    """
    Conventional object storage on Backblaze B2.

    b2sdk is synchronous, so every call runs in a worker thread bounded by
    the configured timeout. Missing credentials are a configuration error,
    never a silent fallback.
    """
    scheme = "b2"

    def __init__(self, application_key_id: Optional[str], application_key: Optional[str], bucket_name: str, timeout: float = 60.0):
        self.application_key_id = application_key_id
        self.application_key = application_key
        self.bucket_name = bucket_name
        self.timeout = timeout
        self.b2_api = B2Api(InMemoryAccountInfo())
        self._bucket = None

    @classmethod
    def from_settings(cls, settings) -> "B2ObjectStore":
        return cls(
            application_key_id=settings.B2_APPLICATION_KEY_ID,
            application_key=settings.B2_APPLICATION_KEY,
            bucket_name=settings.B2_BUCKET_NAME,
            timeout=settings.CONTENT_STORE_TIMEOUT_SECONDS,
        )

    def _get_bucket(self):
        if self._bucket is None:
            if not (self.application_key_id and self.application_key):
                raise ContentStoreError("B2 credentials are not configured")
            self.b2_api.authorize_account("production", self.application_key_id, self.application_key)
            self._bucket = self.b2_api.get_bucket_by_name(self.bucket_name)
        return self._bucket

    async def _run(self, description: str, fn, *args):
        try:
            return await asyncio.wait_for(asyncio.to_thread(fn, *args), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            logger.warning("B2 %s timed out", description)
            raise ContentStoreError(f"B2 {description} timed out", timed_out=True) from e
        except B2Error as e:
            logger.warning("B2 %s failed: %s", description, e)
            raise ContentStoreError(f"B2 {description} failed: {e}") from e

    def _upload(self, data: bytes, key: str, mime_type: str):
        return self._get_bucket().upload_bytes(data, key, content_type=mime_type)

    def _size(self, key: str) -> int:
        return self._get_bucket().get_file_info_by_name(key).size

    def _download_range(self, key: str, start: int, end: int) -> bytes:
        buffer = io.BytesIO()
        self._get_bucket().download_file_by_name(key, range_=(start, end)).save(buffer)
        return buffer.getvalue()

    async def put(self, data: bytes, filename: str, mime_type: str) -> StoredContent:
        key = f"assets/{uuid.uuid4()}/{safe_object_name(filename)}"
        file_version = await self._run("upload", self._upload, data, key, mime_type)
        locator = self.locator_for(key)

        # B2 reports the size and sha1 it computed server-side
        reported_size = getattr(file_version, "size", None)
        if reported_size is not None and reported_size != len(data):
            raise ContentIntegrityError(f"B2 stored {reported_size} of {len(data)} bytes for {key}", locator=locator)
        reported_sha1 = getattr(file_version, "content_sha1", None)
        verified = False
        if reported_sha1 and SHA1_RE.match(reported_sha1):
            if reported_sha1 != hashlib.sha1(data).hexdigest():
                raise ContentIntegrityError(f"B2 sha1 for {key} does not match the upload", locator=locator)
            verified = True

        proof = StorageProof(
            backend=self.scheme,
            content_id=key,
            sha256=sha256_hex(data),
            size=len(data),
            verified=verified,
        )
        return StoredContent(content_id=key, locator=locator, proof=proof)

    async def size(self, content_id: str) -> int:
        return await self._run("stat", self._size, content_id)

    async def read(self, content_id: str, start: int, end: int) -> bytes:
        return await self._run("download", self._download_range, content_id, start, end)

    async def is_ready(self) -> bool:
        try:
            await self._run("authorize", self._get_bucket)
        except ContentStoreError:
            return False
        return True
