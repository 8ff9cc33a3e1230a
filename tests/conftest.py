import os

# Settings are read at import time
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("PLATFORM_RECIPIENT_ADDRESS", "0x" + "ab" * 20)
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./streambox-test.db")
os.environ.setdefault("UPLOAD_BACKEND", "local")

from contextlib import asynccontextmanager
from decimal import Decimal
from types import SimpleNamespace
from typing import Optional

import pytest
from fastapi.testclient import TestClient

from streambox.core.gateway import PersistenceGateway
from streambox.modules.assets.models import MonetizationMode
from streambox.modules.delivery.service import StreamingGate
from streambox.modules.ledger.client import LedgerError, LedgerTransaction, encode_approve
from streambox.modules.ledger.units import to_base_units
from streambox.modules.sales.service import PurchaseVerifier
from streambox.modules.storage.base import (
    ContentIntegrityError,
    ContentStore,
    ContentStoreError,
    StorageProof,
    StoredContent,
    sha256_hex,
)
from streambox.modules.storage.registry import StoreRegistry
from streambox.modules.uploads.service import UploadRegistrar

RECIPIENT = "0x" + "ab" * 20
BUYER_WALLET = "0x" + "cd" * 20
OTHER_WALLET = "0x" + "99" * 20
TOKEN = "0x" + "ef" * 20
DECIMALS = 18
CHAIN_ID = 314159


def tx_ref(n: int) -> str:
    return "0x" + format(n, "064x")


def units(amount: str) -> int:
    return to_base_units(Decimal(amount), DECIMALS)


class FakeLedger:
    """In-memory stand-in for LedgerClient."""

    def __init__(self):
        self.transactions = {}
        self.allowances = {}
        self.balances = {}
        self.error: Optional[LedgerError] = None
        self.lookups = 0

    def pay(self, ref: str, amount: str, recipient: str = RECIPIENT, sender: str = BUYER_WALLET, status: str = "confirmed"):
        self.transactions[ref] = LedgerTransaction(
            ref=ref,
            sender=sender,
            recipient=recipient,
            amount=units(amount),
            block_number=None if status == "pending" else 100,
            confirmations=0 if status == "pending" else 12,
            succeeded=status == "confirmed",
            confirmed=status == "confirmed",
        )
        return ref

    def approve(self, ref: str, amount: str, spender: str = RECIPIENT, sender: str = BUYER_WALLET, token: str = TOKEN):
        """Record a confirmed ERC-20 approval and the allowance it sets."""
        self.transactions[ref] = LedgerTransaction(
            ref=ref,
            sender=sender,
            recipient=token,
            amount=0,
            block_number=100,
            confirmations=12,
            succeeded=True,
            confirmed=True,
            data=encode_approve(spender, units(amount)),
        )
        if spender == RECIPIENT:
            self.allowances[sender] = units(amount)
        return ref

    async def lookup_transaction(self, ref):
        self.lookups += 1
        if self.error:
            raise self.error
        return self.transactions.get(ref)

    async def allowance(self, owner, spender, token):
        if self.error:
            raise self.error
        return self.allowances.get(owner, 0)

    async def balance_of(self, address, token=None):
        if self.error:
            raise self.error
        return self.balances.get(address, 0)

    async def is_ready(self):
        return self.error is None

    async def close(self):
        return None


class FakeStore(ContentStore):
    """Content-addressed store kept in a dict; counts every call."""

    def __init__(self, scheme: str = "ipfs"):
        self.scheme = scheme
        self.objects = {}
        self.put_calls = 0
        self.get_calls = 0
        self.reads = []
        self.put_error: Optional[ContentStoreError] = None
        self.get_error: Optional[ContentStoreError] = None
        self.corrupt_writes = False

    async def put(self, data, filename, mime_type):
        self.put_calls += 1
        if self.put_error:
            raise self.put_error
        cid = "bafy" + sha256_hex(data)[:24]
        self.objects[cid] = b"tampered" + data if self.corrupt_writes else data
        if self.corrupt_writes:
            raise ContentIntegrityError(f"{cid} read back differently", locator=self.locator_for(cid))
        proof = StorageProof(backend=self.scheme, content_id=cid, sha256=sha256_hex(data), size=len(data), verified=True)
        return StoredContent(content_id=cid, locator=self.locator_for(cid), proof=proof)

    def _object(self, content_id):
        if self.get_error:
            raise self.get_error
        if content_id not in self.objects:
            raise ContentStoreError(f"{content_id} not found")
        return self.objects[content_id]

    async def size(self, content_id):
        return len(self._object(content_id))

    async def read(self, content_id, start, end):
        self.get_calls += 1
        data = self._object(content_id)
        self.reads.append((start, end))
        return data[start:end + 1]

    async def is_ready(self):
        return True


class Marketplace:
    """Every core component wired against one sqlite file and the fakes."""

    def __init__(self, db_url: str):
        self.gateway = PersistenceGateway.from_url(db_url)
        self.ledger = FakeLedger()
        self.store = FakeStore("ipfs")
        self.stores = StoreRegistry([self.store], "ipfs")
        self.verifier = PurchaseVerifier(
            self.gateway, self.ledger, RECIPIENT, DECIMALS, CHAIN_ID, payment_token=TOKEN
        )
        self.registrar = UploadRegistrar(self.gateway, self.stores, reference_hosts=["cdn.example.com"])
        self.gate = StreamingGate(self.gateway, self.verifier, self.stores, chunk_size=1024)

    async def account(self, handle: str, wallet: Optional[str] = None):
        return await self.gateway.create_account(
            handle=handle,
            email=f"{handle}@example.com",
            hashed_password="unused",
            wallet_address=wallet,
        )

    async def asset(self, creator, mode=MonetizationMode.PAY_PER_VIEW, price="10.00", content: Optional[bytes] = None):
        asset = await self.gateway.create_asset(
            creator_id=creator.id,
            title=f"{creator.handle} video",
            category="music",
            mode=mode,
            price=Decimal(price),
        )
        if content is not None:
            stored = await self.store.put(content, "clip.mp4", "video/mp4")
            self.store.put_calls = 0
            asset = await self.gateway.update_asset_content(
                asset.id, stored.locator, stored.proof.to_dict(), True, "video/mp4", len(content)
            )
        return asset


@pytest.fixture
def db_url(tmp_path):
    return f"sqlite+aiosqlite:///{tmp_path / 'streambox.db'}"


@pytest.fixture
def marketplace(db_url):
    @asynccontextmanager
    async def _open():
        env = Marketplace(db_url)
        await env.gateway.create_schema()
        try:
            yield env
        finally:
            await env.gateway.dispose()
    return _open


@pytest.fixture
def api(db_url):
    from streambox.main import create_app

    app = create_app()
    env = Marketplace(db_url)
    app.state.gateway = env.gateway
    app.state.ledger = env.ledger
    app.state.stores = env.stores
    app.state.verifier = env.verifier
    app.state.registrar = env.registrar
    app.state.streaming_gate = env.gate

    with TestClient(app) as client:
        yield SimpleNamespace(client=client, app=app, ledger=env.ledger, store=env.store, gateway=env.gateway)
