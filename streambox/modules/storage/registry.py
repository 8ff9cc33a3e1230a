from pathlib import Path
from typing import Dict, Iterable, Optional, Tuple

import httpx

from streambox.modules.storage.base import ContentStore, ContentStoreError
from streambox.modules.storage.content_store import ContentAddressedStore, RemoteUrlStore
from streambox.modules.storage.local_store import LocalObjectStore
from streambox.modules.storage.object_store import B2ObjectStore


class StoreRegistry:
    """Resolves locator schemes to stores and names the default upload backend."""

    def __init__(self, stores: Iterable[ContentStore], upload_backend: str, clients: Iterable[httpx.AsyncClient] = ()):
        self.stores: Dict[str, ContentStore] = {store.scheme: store for store in stores}
        if upload_backend not in self.stores:
            raise ValueError(f"Upload backend {upload_backend!r} is not registered")
        self.upload_backend = upload_backend
        self._clients = list(clients)

    @classmethod
    def from_settings(cls, settings) -> "StoreRegistry":
        remote_client = httpx.AsyncClient(timeout=settings.CONTENT_STORE_TIMEOUT_SECONDS)
        hosts = settings.CONTENT_REFERENCE_HOSTS
        timeout = settings.CONTENT_STORE_TIMEOUT_SECONDS
        stores = [
            ContentAddressedStore.from_settings(settings),
            B2ObjectStore.from_settings(settings),
            LocalObjectStore(Path(settings.LOCAL_STORAGE_DIR)),
            RemoteUrlStore("https", remote_client, hosts, timeout),
            RemoteUrlStore("http", remote_client, hosts, timeout),
        ]
        return cls(stores, settings.UPLOAD_BACKEND, clients=[remote_client])

    def for_upload(self, backend: Optional[str] = None) -> ContentStore:
        name = backend or self.upload_backend
        store = self.stores.get(name)
        if store is None:
            raise ContentStoreError(f"Unknown storage backend {name!r}")
        return store

    def resolve(self, locator: str) -> Tuple[ContentStore, str]:
        scheme, sep, content_id = (locator or "").partition("://")
        store = self.stores.get(scheme) if sep else None
        if store is None or not content_id:
            raise ContentStoreError(f"No storage backend for locator {locator!r}")
        return store, content_id

    async def readiness(self) -> Dict[str, bool]:
        return {scheme: await store.is_ready() for scheme, store in self.stores.items()}

    async def close(self) -> None:
        for store in self.stores.values():
            await store.close()
        for client in self._clients:
            await client.aclose()
