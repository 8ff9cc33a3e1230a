import hashlib
import time
from dataclasses import dataclass, field, asdict


class ContentStoreError(Exception):
    """A storage backend failed to store or return bytes."""

    def __init__(self, message: str, timed_out: bool = False):
        super().__init__(message)
        self.timed_out = timed_out


class ContentIntegrityError(ContentStoreError):
    """The backend kept bytes that differ from the ones submitted; they sit at `locator`."""

    def __init__(self, message: str, locator: str):
        super().__init__(message)
        self.locator = locator


@dataclass
class StorageProof:
    backend: str
    content_id: str
    sha256: str
    size: int
    verified: bool
    timestamp: int = field(default_factory=lambda: int(time.time()))

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class StoredContent:
    content_id: str
    locator: str
    proof: StorageProof


def sha256_hex(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


class ContentStore:
    """
    Capability interface shared by every storage backend.

    Locators are "<scheme>://<content_id>"; the streaming side resolves a
    locator back to its store through the registry. `put` checks the bytes
    against what the backend reports and raises ContentIntegrityError on a
    mismatch. `read` returns the inclusive byte window [start, end], so
    callers never need the whole object in memory.
    """
    scheme: str = ""

    def locator_for(self, content_id: str) -> str:
        return f"{self.scheme}://{content_id}"

    async def put(self, data: bytes, filename: str, mime_type: str) -> StoredContent:
        raise NotImplementedError

    async def size(self, content_id: str) -> int:
        raise NotImplementedError

    async def read(self, content_id: str, start: int, end: int) -> bytes:
        raise NotImplementedError

    async def get(self, content_id: str) -> bytes:
        total = await self.size(content_id)
        if total == 0:
            return b""
        return await self.read(content_id, 0, total - 1)

    async def is_ready(self) -> bool:
        raise NotImplementedError

    async def close(self) -> None:
        return None
