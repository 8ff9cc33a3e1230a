import logging
import uuid
from pathlib import Path

import aiofiles
import aiofiles.os

from streambox.modules.storage.base import (
    ContentIntegrityError,
    ContentStore,
    ContentStoreError,
    StorageProof,
    StoredContent,
    sha256_hex,
)
from streambox.modules.storage.object_store import safe_object_name

logger = logging.getLogger(__name__)


class LocalObjectStore(ContentStore):
    """Files on local disk, for development. Nothing attests them, so proofs stay unverified."""
    scheme = "local"

    def __init__(self, base_dir: Path):
        self.base_dir = Path(base_dir)

    def _path_for(self, key: str) -> Path:
        path = (self.base_dir / key).resolve()
        if self.base_dir.resolve() not in path.parents:
            raise ContentStoreError(f"Invalid object key: {key}")
        return path

    async def put(self, data: bytes, filename: str, mime_type: str) -> StoredContent:
        key = f"{uuid.uuid4()}/{safe_object_name(filename)}"
        destination = self._path_for(key)
        try:
            destination.parent.mkdir(parents=True, exist_ok=True)
            async with aiofiles.open(destination, "wb") as out_file:
                await out_file.write(data)
            written = (await aiofiles.os.stat(destination)).st_size
        except OSError as e:
            logger.warning("Local write of %s failed: %s", key, e)
            raise ContentStoreError(f"Local write failed: {e}") from e

        locator = self.locator_for(key)
        if written != len(data):
            raise ContentIntegrityError(f"Wrote {written} of {len(data)} bytes for {key}", locator=locator)

        proof = StorageProof(
            backend=self.scheme,
            content_id=key,
            sha256=sha256_hex(data),
            size=len(data),
            verified=False,
        )
        return StoredContent(content_id=key, locator=locator, proof=proof)

    async def size(self, content_id: str) -> int:
        path = self._path_for(content_id)
        try:
            return (await aiofiles.os.stat(path)).st_size
        except OSError as e:
            raise ContentStoreError(f"Local object {content_id} unavailable: {e}") from e

    async def read(self, content_id: str, start: int, end: int) -> bytes:
        path = self._path_for(content_id)
        try:
            async with aiofiles.open(path, "rb") as in_file:
                await in_file.seek(start)
                return await in_file.read(end - start + 1)
        except OSError as e:
            raise ContentStoreError(f"Local object {content_id} unavailable: {e}") from e

    async def is_ready(self) -> bool:
        try:
            self.base_dir.mkdir(parents=True, exist_ok=True)
        except OSError:
            return False
        return True
