"""
HTTP-backed stores.

ContentAddressedStore speaks the IPFS HTTP API (Lighthouse, Kubo, ...):
uploads go to {api}/api/v0/add and come back with a CID; retrieval and the
read-back half of the storage proof go through the public gateway.

RemoteUrlStore reads assets linked by plain http(s) URL, restricted to an
allowlist of hosts and without following redirects.
"""
import asyncio
import hashlib
import logging
from typing import Iterable, Optional, Tuple
from urllib.parse import urlsplit

import httpx

from streambox.modules.storage.base import (
    ContentIntegrityError,
    ContentStore,
    ContentStoreError,
    StorageProof,
    StoredContent,
    sha256_hex,
)

logger = logging.getLogger(__name__)


def reference_host_allowed(url: str, allowed_hosts: Iterable[str]) -> bool:
    host = urlsplit(url).hostname
    return bool(host) and host.lower() in {h.lower() for h in allowed_hosts}


class HttpContentStore(ContentStore):
    """Ranged reads and whole-operation timeouts over an httpx client."""

    def __init__(self, client: httpx.AsyncClient, timeout: float):
        self._client = client
        self.timeout = timeout

    def url_for(self, content_id: str) -> str:
        raise NotImplementedError

    async def _bounded(self, description: str, coro):
        try:
            return await asyncio.wait_for(coro, timeout=self.timeout)
        except (asyncio.TimeoutError, httpx.TimeoutException) as e:
            logger.warning("%s timed out", description)
            raise ContentStoreError(f"{description} timed out", timed_out=True) from e
        except httpx.HTTPError as e:
            logger.warning("%s failed: %s", description, e)
            raise ContentStoreError(f"{description} failed: {e}") from e

    async def _head_length(self, url: str) -> int:
        response = await self._client.head(url)
        response.raise_for_status()
        length = response.headers.get("content-length", "")
        if not length.isdigit():
            raise ContentStoreError(f"{url} did not report a length")
        return int(length)

    async def _read_window(self, url: str, start: int, end: int) -> bytes:
        async with self._client.stream("GET", url, headers={"Range": f"bytes={start}-{end}"}) as response:
            response.raise_for_status()
            if response.status_code == 206:
                return await response.aread()
            # Range ignored: skip to start and stop once the window is filled
            window = bytearray()
            received = 0
            async for chunk in response.aiter_bytes():
                lo, hi = max(start - received, 0), min(end + 1 - received, len(chunk))
                if lo < hi:
                    window += chunk[lo:hi]
                received += len(chunk)
                if received > end:
                    break
            return bytes(window)

    async def _fetch(self, url: str) -> bytes:
        response = await self._client.get(url)
        response.raise_for_status()
        return response.content

    async def size(self, content_id: str) -> int:
        url = self.url_for(content_id)
        return await self._bounded(f"Size of {url}", self._head_length(url))

    async def read(self, content_id: str, start: int, end: int) -> bytes:
        url = self.url_for(content_id)
        return await self._bounded(f"Retrieval of {url}", self._read_window(url, start, end))

    async def get(self, content_id: str) -> bytes:
        url = self.url_for(content_id)
        return await self._bounded(f"Retrieval of {url}", self._fetch(url))


class ContentAddressedStore(HttpContentStore):
    scheme = "ipfs"

    def __init__(
        self,
        api_url: str,
        gateway_url: str,
        api_key: Optional[str] = None,
        timeout: float = 60.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.api_url = api_url.rstrip("/")
        self.gateway_url = gateway_url.rstrip("/")
        headers = {"Authorization": f"Bearer {api_key}"} if api_key else {}
        self._owns_client = client is None
        super().__init__(client or httpx.AsyncClient(timeout=timeout, headers=headers), timeout)

    @classmethod
    def from_settings(cls, settings) -> "ContentAddressedStore":
        return cls(
            api_url=settings.CONTENT_STORE_API_URL,
            gateway_url=settings.CONTENT_STORE_GATEWAY_URL,
            api_key=settings.CONTENT_STORE_API_KEY,
            timeout=settings.CONTENT_STORE_TIMEOUT_SECONDS,
        )

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    def url_for(self, content_id: str) -> str:
        return f"{self.gateway_url}/ipfs/{content_id}"

    async def _add(self, data: bytes, filename: str, mime_type: str) -> dict:
        response = await self._client.post(
            f"{self.api_url}/api/v0/add",
            params={"cid-version": "1", "pin": "true"},
            files={"file": (filename, data, mime_type)},
        )
        response.raise_for_status()
        try:
            body = response.json()
        except ValueError as e:
            raise ContentStoreError("Content store returned invalid JSON") from e
        if not isinstance(body, dict):
            raise ContentStoreError("Content store returned an unexpected body")
        return body

    async def _read_back(self, cid: str) -> Tuple[str, int]:
        digest = hashlib.sha256()
        size = 0
        async with self._client.stream("GET", self.url_for(cid)) as response:
            response.raise_for_status()
            async for chunk in response.aiter_bytes():
                digest.update(chunk)
                size += len(chunk)
        return digest.hexdigest(), size

    async def put(self, data: bytes, filename: str, mime_type: str) -> StoredContent:
        body = await self._bounded(f"Content store upload of {filename}", self._add(data, filename, mime_type))
        cid = body.get("Hash") or body.get("cid")
        if not cid:
            raise ContentStoreError("Content store did not return a content id")
        locator = self.locator_for(cid)

        try:
            digest, size = await self._bounded(f"Read-back of {cid}", self._read_back(cid))
        except ContentStoreError as e:
            # Gateways lag behind the pinning node; the content stays unverified
            logger.info("Read-back of %s unavailable, proof left unverified: %s", cid, e)
            verified = False
        else:
            if digest != sha256_hex(data) or size != len(data):
                raise ContentIntegrityError(
                    f"Gateway returned {size} bytes with a different digest for {cid}", locator=locator
                )
            verified = True

        proof = StorageProof(
            backend=self.scheme,
            content_id=cid,
            sha256=sha256_hex(data),
            size=len(data),
            verified=verified,
        )
        return StoredContent(content_id=cid, locator=locator, proof=proof)

    async def is_ready(self) -> bool:
        try:
            response = await self._bounded("Version check", self._client.post(f"{self.api_url}/api/v0/version"))
        except ContentStoreError:
            return False
        return response.is_success


class RemoteUrlStore(HttpContentStore):
    """Read-only access to assets hosted at a plain http(s) URL on an allowed host."""

    def __init__(self, scheme: str, client: httpx.AsyncClient, allowed_hosts: Iterable[str] = (), timeout: float = 60.0):
        super().__init__(client, timeout)
        self.scheme = scheme
        self.allowed_hosts = tuple(allowed_hosts)

    def url_for(self, content_id: str) -> str:
        url = self.locator_for(content_id)
        if not reference_host_allowed(url, self.allowed_hosts):
            raise ContentStoreError(f"Host of {url} is not an allowed content host")
        return url

    async def put(self, data: bytes, filename: str, mime_type: str) -> StoredContent:
        raise ContentStoreError("Remote URLs are read-only")

    async def is_ready(self) -> bool:
        return True
