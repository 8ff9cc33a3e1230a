import asyncio
from uuid import uuid4

import pytest

from streambox.core.errors import AccessDenied, AssetNotFound, ContentUnavailable
from streambox.modules.assets.models import MonetizationMode
from streambox.modules.delivery.ranges import ByteRange, RangeNotSatisfiable, parse_range
from streambox.modules.storage.base import ContentStoreError
from tests.conftest import tx_ref

CONTENT = bytes(range(256)) * 20  # 5120 bytes


async def drain(result):
    return b"".join([chunk async for chunk in result.body])


@pytest.mark.parametrize("header, expected", [
    ("bytes=0-999", ByteRange(0, 999)),
    ("bytes=100-", ByteRange(100, 5119)),
    ("bytes=-100", ByteRange(5020, 5119)),
    ("bytes=5000-99999", ByteRange(5000, 5119)),
    ("bytes=-99999", ByteRange(0, 5119)),
    ("BYTES = 1-1", ByteRange(1, 1)),
])
def test_parse_range(header, expected):
    assert parse_range(header, len(CONTENT)) == expected


@pytest.mark.parametrize("header", [None, "", "items=0-10", "bytes=0-1,4-5", "bytes=9-3", "bytes=-", "bytes=abc"])
def test_unusable_ranges_mean_full_body(header):
    assert parse_range(header, len(CONTENT)) is None


@pytest.mark.parametrize("header", ["bytes=5120-", "bytes=9000-9999", "bytes=-0"])
def test_unsatisfiable_ranges(header):
    with pytest.raises(RangeNotSatisfiable):
        parse_range(header, len(CONTENT))


def test_full_and_partial_responses(marketplace):
    async def scenario():
        async with marketplace() as env:
            creator = await env.account("creator")
            asset = await env.asset(creator, mode=MonetizationMode.FREE, price="0", content=CONTENT)

            full = await env.gate.serve(asset.id, None)
            assert full.status_code == 200
            assert await drain(full) == CONTENT
            assert full.headers["Content-Length"] == str(len(CONTENT))
            assert full.headers["Accept-Ranges"] == "bytes"
            assert full.media_type == "video/mp4"

            part = await env.gate.serve(asset.id, None, "bytes=0-999")
            assert part.status_code == 206
            assert await drain(part) == CONTENT[:1000]
            assert part.headers["Content-Range"] == f"bytes 0-999/{len(CONTENT)}"
            assert part.headers["Content-Length"] == "1000"

            tail = await env.gate.serve(asset.id, None, "bytes=5000-10000")
            assert tail.status_code == 206
            assert await drain(tail) == CONTENT[5000:]
            assert tail.headers["Content-Range"] == f"bytes 5000-5119/{len(CONTENT)}"

    asyncio.run(scenario())


def test_unsatisfiable_range_is_416(marketplace):
    async def scenario():
        async with marketplace() as env:
            creator = await env.account("creator")
            asset = await env.asset(creator, mode=MonetizationMode.FREE, price="0", content=CONTENT)

            result = await env.gate.serve(asset.id, None, "bytes=6000-")
            assert result.status_code == 416
            assert result.headers["Content-Range"] == f"bytes */{len(CONTENT)}"
            assert result.body is None
            assert (await env.gateway.get_asset(asset.id)).views == 0

    asyncio.run(scenario())


def test_unpaid_request_never_touches_the_store(marketplace):
    async def scenario():
        async with marketplace() as env:
            creator = await env.account("creator")
            buyer = await env.account("buyer")
            asset = await env.asset(creator, price="10.00", content=CONTENT)

            with pytest.raises(AccessDenied) as exc:
                await env.gate.serve(asset.id, buyer.buyer_key, "bytes=0-999")
            assert exc.value.status_code == 403

            with pytest.raises(AccessDenied) as exc:
                await env.gate.serve(asset.id, None)
            assert exc.value.status_code == 401

            assert env.store.get_calls == 0
            assert (await env.gateway.get_asset(asset.id)).views == 0

    asyncio.run(scenario())


def test_purchase_unlocks_stream(marketplace):
    async def scenario():
        async with marketplace() as env:
            creator = await env.account("creator")
            buyer = await env.account("buyer")
            asset = await env.asset(creator, price="10.00", content=CONTENT)
            ref = env.ledger.pay(tx_ref(1), "10.00")
            await env.verifier.confirm_purchase(asset.id, buyer.buyer_key, ref)

            result = await env.gate.serve(asset.id, buyer.buyer_key)
            assert result.status_code == 200
            assert await drain(result) == CONTENT

    asyncio.run(scenario())


def test_store_outage_is_content_unavailable_not_denial(marketplace):
    async def scenario():
        async with marketplace() as env:
            creator = await env.account("creator")
            asset = await env.asset(creator, mode=MonetizationMode.FREE, price="0", content=CONTENT)
            env.store.get_error = ContentStoreError("gateway timeout", timed_out=True)

            with pytest.raises(ContentUnavailable) as exc:
                await env.gate.serve(asset.id, None)
            assert exc.value.status_code == 502
            assert exc.value.retryable is True

    asyncio.run(scenario())


def test_asset_without_content(marketplace):
    async def scenario():
        async with marketplace() as env:
            creator = await env.account("creator")
            asset = await env.asset(creator, mode=MonetizationMode.FREE, price="0")

            with pytest.raises(ContentUnavailable) as exc:
                await env.gate.serve(asset.id, None)
            assert exc.value.status_code == 404
            with pytest.raises(AssetNotFound):
                await env.gate.serve(uuid4(), None)

    asyncio.run(scenario())


def test_views_count_playback_starts_only(marketplace):
    async def scenario():
        async with marketplace() as env:
            creator = await env.account("creator")
            asset = await env.asset(creator, mode=MonetizationMode.FREE, price="0", content=CONTENT)

            await env.gate.serve(asset.id, None)                    # counts
            await env.gate.serve(asset.id, None, "bytes=0-")        # counts
            await env.gate.serve(asset.id, None, "bytes=1000-1999")  # continuation
            await env.gate.serve(asset.id, None, "bytes=-100")      # continuation

            assert (await env.gateway.get_asset(asset.id)).views == 2

    asyncio.run(scenario())


def test_range_requests_read_only_the_requested_window(marketplace):
    async def scenario():
        async with marketplace() as env:
            creator = await env.account("creator")
            asset = await env.asset(creator, mode=MonetizationMode.FREE, price="0", content=CONTENT)

            part = await env.gate.serve(asset.id, None, "bytes=4000-4099")
            assert await drain(part) == CONTENT[4000:4100]
            assert env.store.reads == [(4000, 4099)]

            env.store.reads.clear()
            full = await env.gate.serve(asset.id, None)
            assert await drain(full) == CONTENT
            # chunk_size is 1024 in the test wiring
            assert env.store.reads == [(0, 1023), (1024, 2047), (2048, 3071), (3072, 4095), (4096, 5119)]

    asyncio.run(scenario())


def test_failure_after_first_window_ends_the_body_early(marketplace):
    async def scenario():
        async with marketplace() as env:
            creator = await env.account("creator")
            asset = await env.asset(creator, mode=MonetizationMode.FREE, price="0", content=CONTENT)

            result = await env.gate.serve(asset.id, None)
            env.store.get_error = ContentStoreError("gateway reset")
            assert await drain(result) == CONTENT[:1024]

    asyncio.run(scenario())


def test_reference_without_known_size_asks_the_store(marketplace):
    async def scenario():
        async with marketplace() as env:
            creator = await env.account("creator")
            asset = await env.asset(creator, mode=MonetizationMode.FREE, price="0")
            env.store.objects["bafyexternal"] = CONTENT
            await env.registrar.register_reference(asset.id, creator.id, "ipfs://bafyexternal")

            result = await env.gate.serve(asset.id, None, "bytes=-20")
            assert result.headers["Content-Range"] == f"bytes 5100-5119/{len(CONTENT)}"
            assert await drain(result) == CONTENT[-20:]

    asyncio.run(scenario())
