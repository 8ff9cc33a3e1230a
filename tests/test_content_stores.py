import asyncio
import hashlib

import httpx
import pytest

from streambox.modules.storage.base import ContentIntegrityError, ContentStoreError, sha256_hex
from streambox.modules.storage.content_store import ContentAddressedStore, RemoteUrlStore, reference_host_allowed
from streambox.modules.storage.local_store import LocalObjectStore
from streambox.modules.storage.object_store import safe_object_name
from streambox.modules.storage.registry import StoreRegistry
from tests.conftest import FakeStore

CID = "bafybeigdyrzt5sfp7udm7hu76uh7y26nf3efuylqabf3oclgtqy55fbzdi"


def ipfs_store(handler, timeout=60.0) -> ContentAddressedStore:
    return ContentAddressedStore(
        "http://ipfs-api.test",
        "http://gateway.test",
        timeout=timeout,
        client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
    )


def test_ipfs_put_returns_cid_and_verified_proof():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append((request.method, request.url.path, dict(request.url.params)))
        if request.url.path == "/api/v0/add":
            return httpx.Response(200, json={"Name": "clip.mp4", "Hash": CID, "Size": "11"})
        if request.url.path == f"/ipfs/{CID}":
            return httpx.Response(200, content=b"video-bytes")
        return httpx.Response(404)

    stored = asyncio.run(ipfs_store(handler).put(b"video-bytes", "clip.mp4", "video/mp4"))

    assert stored.content_id == CID
    assert stored.locator == f"ipfs://{CID}"
    assert stored.proof.sha256 == sha256_hex(b"video-bytes")
    assert stored.proof.size == 11
    assert stored.proof.verified is True
    assert seen[0] == ("POST", "/api/v0/add", {"cid-version": "1", "pin": "true"})
    assert seen[1] == ("GET", f"/ipfs/{CID}", {})


def test_ipfs_put_unverified_when_gateway_lags():
    def handler(request):
        if request.url.path == "/api/v0/add":
            return httpx.Response(200, json={"Hash": CID})
        return httpx.Response(504)

    stored = asyncio.run(ipfs_store(handler).put(b"x", "clip.mp4", "video/mp4"))
    assert stored.proof.verified is False


def test_ipfs_put_failure_raises():
    store = ipfs_store(lambda request: httpx.Response(500, text="pin failed"))
    with pytest.raises(ContentStoreError):
        asyncio.run(store.put(b"x", "clip.mp4", "video/mp4"))


def test_ipfs_put_without_cid_raises():
    store = ipfs_store(lambda request: httpx.Response(200, json={"Name": "clip.mp4"}))
    with pytest.raises(ContentStoreError):
        asyncio.run(store.put(b"x", "clip.mp4", "video/mp4"))


def test_ipfs_get_timeout_is_flagged():
    def handler(request):
        raise httpx.ConnectTimeout("slow", request=request)

    with pytest.raises(ContentStoreError) as exc:
        asyncio.run(ipfs_store(handler).get(CID))
    assert exc.value.timed_out


def test_ipfs_get_reads_through_gateway():
    def handler(request):
        assert str(request.url) == f"http://gateway.test/ipfs/{CID}"
        return httpx.Response(200, content=b"payload")

    assert asyncio.run(ipfs_store(handler).get(CID)) == b"payload"


def test_ipfs_put_rejects_bytes_the_gateway_does_not_return():
    def handler(request):
        if request.url.path == "/api/v0/add":
            return httpx.Response(200, json={"Hash": CID})
        return httpx.Response(200, content=b"something else")

    with pytest.raises(ContentIntegrityError) as exc:
        asyncio.run(ipfs_store(handler).put(b"video-bytes", "clip.mp4", "video/mp4"))
    assert exc.value.locator == f"ipfs://{CID}"


def test_ipfs_read_asks_the_gateway_for_a_range():
    ranges = []

    def handler(request):
        ranges.append(request.headers.get("range"))
        return httpx.Response(206, content=b"0123")

    assert asyncio.run(ipfs_store(handler).read(CID, 10, 13)) == b"0123"
    assert ranges == ["bytes=10-13"]


def test_ipfs_read_slices_when_the_gateway_ignores_ranges():
    store = ipfs_store(lambda request: httpx.Response(200, content=b"abcdefghij"))
    assert asyncio.run(store.read(CID, 3, 5)) == b"def"


def test_ipfs_size_comes_from_head():
    def handler(request):
        assert request.method == "HEAD"
        return httpx.Response(200, headers={"Content-Length": "5120"})

    assert asyncio.run(ipfs_store(handler).size(CID)) == 5120


def test_ipfs_operations_are_bounded_by_the_timeout():
    async def slow(request):
        await asyncio.sleep(0.2)
        return httpx.Response(206, content=b"late")

    with pytest.raises(ContentStoreError) as exc:
        asyncio.run(ipfs_store(slow, timeout=0.05).read(CID, 0, 3))
    assert exc.value.timed_out


def remote_store(handler, hosts=("cdn.example.com",)) -> RemoteUrlStore:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return RemoteUrlStore("https", client, allowed_hosts=hosts)


def test_remote_url_store_is_read_only():
    store = remote_store(lambda r: httpx.Response(200, content=b"remote"))

    assert asyncio.run(store.get("cdn.example.com/v.mp4")) == b"remote"
    with pytest.raises(ContentStoreError):
        asyncio.run(store.put(b"x", "v.mp4", "video/mp4"))


def test_remote_url_store_refuses_other_hosts():
    calls = []
    store = remote_store(lambda r: calls.append(r) or httpx.Response(200, content=b"secret"))

    for content_id in ("169.254.169.254/latest/meta-data", "localhost:5432/", "cdn.example.com.evil.test/v.mp4"):
        with pytest.raises(ContentStoreError):
            asyncio.run(store.read(content_id, 0, 10))
    assert calls == []


def test_remote_url_store_does_not_follow_redirects():
    def handler(request):
        if request.url.host == "cdn.example.com":
            return httpx.Response(302, headers={"Location": "http://169.254.169.254/"})
        return httpx.Response(200, content=b"metadata")

    with pytest.raises(ContentStoreError):
        asyncio.run(remote_store(handler).read("cdn.example.com/v.mp4", 0, 10))


def test_reference_host_allowed():
    assert reference_host_allowed("https://CDN.example.com/v.mp4", ["cdn.example.com"])
    assert not reference_host_allowed("https://cdn.example.com.evil.test/v.mp4", ["cdn.example.com"])
    assert not reference_host_allowed("https:///v.mp4", ["cdn.example.com"])
    assert not reference_host_allowed("https://cdn.example.com/v.mp4", [])


def test_local_store_round_trip(tmp_path):
    store = LocalObjectStore(tmp_path)
    stored = asyncio.run(store.put(b"local-bytes", "My Clip, final.mp4", "video/mp4"))

    assert stored.locator.startswith("local://")
    assert stored.content_id.endswith("/My_Clip_final.mp4")
    assert stored.proof.verified is False
    assert asyncio.run(store.get(stored.content_id)) == b"local-bytes"


def test_local_store_rejects_path_traversal(tmp_path):
    store = LocalObjectStore(tmp_path / "objects")
    with pytest.raises(ContentStoreError):
        asyncio.run(store.get("../../etc/passwd"))


def test_local_store_missing_object(tmp_path):
    with pytest.raises(ContentStoreError):
        asyncio.run(LocalObjectStore(tmp_path).get("nope/clip.mp4"))


def test_safe_object_name():
    assert safe_object_name("a b,c.mp4") == "a_bc.mp4"
    assert safe_object_name(",,,") == "unnamed_file"


def test_registry_resolves_locators():
    ipfs, local = FakeStore("ipfs"), FakeStore("local")
    registry = StoreRegistry([ipfs, local], "ipfs")

    assert registry.resolve(f"ipfs://{CID}") == (ipfs, CID)
    assert registry.resolve("local://abc/clip.mp4") == (local, "abc/clip.mp4")
    assert registry.for_upload() is ipfs
    assert registry.for_upload("local") is local
    with pytest.raises(ContentStoreError):
        registry.resolve("ftp://host/file")
    with pytest.raises(ContentStoreError):
        registry.resolve("/static/uploads/file.mp4")
    with pytest.raises(ContentStoreError):
        registry.for_upload("s3")


def test_registry_requires_known_upload_backend():
    with pytest.raises(ValueError):
        StoreRegistry([FakeStore("ipfs")], "b2")


def test_b2_proof_uses_server_sha1(monkeypatch):
    from streambox.modules.storage.object_store import B2ObjectStore

    class FileVersion:
        content_sha1 = hashlib.sha1(b"b2-bytes").hexdigest()

    store = B2ObjectStore("key-id", "key", "bucket", timeout=5)
    uploads = []
    monkeypatch.setattr(store, "_upload", lambda data, key, mime: uploads.append((key, mime)) or FileVersion())

    stored = asyncio.run(store.put(b"b2-bytes", "clip one.mp4", "video/mp4"))

    assert stored.locator.startswith("b2://assets/")
    assert stored.content_id.endswith("/clip_one.mp4")
    assert stored.proof.verified is True
    assert uploads[0][1] == "video/mp4"


def test_b2_without_credentials_is_a_store_error():
    from streambox.modules.storage.object_store import B2ObjectStore

    store = B2ObjectStore(None, None, "bucket", timeout=5)
    with pytest.raises(ContentStoreError):
        asyncio.run(store.get("assets/x/clip.mp4"))
    assert asyncio.run(store.is_ready()) is False


def test_local_store_reads_a_window(tmp_path):
    store = LocalObjectStore(tmp_path)
    stored = asyncio.run(store.put(b"0123456789", "clip.mp4", "video/mp4"))

    assert asyncio.run(store.size(stored.content_id)) == 10
    assert asyncio.run(store.read(stored.content_id, 2, 5)) == b"2345"
    assert asyncio.run(store.read(stored.content_id, 8, 20)) == b"89"


def b2_store(monkeypatch, file_version):
    from streambox.modules.storage.object_store import B2ObjectStore

    store = B2ObjectStore("key-id", "key", "bucket", timeout=5)
    monkeypatch.setattr(store, "_upload", lambda data, key, mime: file_version)
    return store


def test_b2_sha1_mismatch_is_an_integrity_error(monkeypatch):
    class FileVersion:
        content_sha1 = hashlib.sha1(b"other-bytes").hexdigest()
        size = 8

    with pytest.raises(ContentIntegrityError) as exc:
        asyncio.run(b2_store(monkeypatch, FileVersion()).put(b"b2-bytes", "clip.mp4", "video/mp4"))
    assert exc.value.locator.startswith("b2://assets/")


def test_b2_size_mismatch_is_an_integrity_error(monkeypatch):
    class FileVersion:
        content_sha1 = hashlib.sha1(b"b2-bytes").hexdigest()
        size = 3

    with pytest.raises(ContentIntegrityError):
        asyncio.run(b2_store(monkeypatch, FileVersion()).put(b"b2-bytes", "clip.mp4", "video/mp4"))


def test_b2_without_server_sha1_stays_unverified(monkeypatch):
    class FileVersion:
        content_sha1 = "none"
        size = 8

    stored = asyncio.run(b2_store(monkeypatch, FileVersion()).put(b"b2-bytes", "clip.mp4", "video/mp4"))
    assert stored.proof.verified is False


def test_b2_read_downloads_only_the_range(monkeypatch):
    from streambox.modules.storage.object_store import B2ObjectStore

    store = B2ObjectStore("key-id", "key", "bucket", timeout=5)
    calls = []
    monkeypatch.setattr(store, "_download_range", lambda key, start, end: calls.append((key, start, end)) or b"win")
    monkeypatch.setattr(store, "_size", lambda key: 1000)

    assert asyncio.run(store.read("assets/x/clip.mp4", 100, 102)) == b"win"
    assert asyncio.run(store.size("assets/x/clip.mp4")) == 1000
    assert calls == [("assets/x/clip.mp4", 100, 102)]
