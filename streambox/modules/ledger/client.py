"""
Ledger client over an EVM-compatible JSON-RPC endpoint.

Read-mostly and shared by every request: transaction lookup for purchase
verification, native/ERC-20 balance and allowance queries, and relaying
transactions the buyer already signed. It never holds private keys.

Any transport fault, timeout or JSON-RPC error raises LedgerError. A hash the
ledger does not know is not an error: lookup_transaction returns None.
"""
import asyncio
import itertools
import logging
import re
from dataclasses import dataclass
from typing import Any, List, Optional, Tuple

import httpx

logger = logging.getLogger(__name__)

TX_HASH_RE = re.compile(r"^0x[0-9a-fA-F]{64}$")
ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")

# ERC-20 selectors
BALANCE_OF = "0x70a08231"
ALLOWANCE = "0xdd62ed3e"
APPROVE = "0x095ea7b3"


class LedgerError(Exception):
    """The ledger could not answer; the true state is unknown."""

    def __init__(self, message: str, timed_out: bool = False):
        super().__init__(message)
        self.timed_out = timed_out


@dataclass
class LedgerTransaction:
    ref: str
    sender: Optional[str]
    recipient: Optional[str]
    amount: int # base units
    block_number: Optional[int]
    confirmations: int
    succeeded: bool
    confirmed: bool
    data: str = "0x"  # calldata


def _hex_to_int(value: Optional[str]) -> Optional[int]:
    if value is None:
        return None
    if value in ("0x", ""):
        return 0
    try:
        return int(value, 16)
    except (TypeError, ValueError) as e:
        raise LedgerError(f"Malformed quantity from ledger: {value!r}") from e


def _pad_address(address: str) -> str:
    return address.lower().replace("0x", "").rjust(64, "0")


def _pad_uint(value: int) -> str:
    return format(value, "x").rjust(64, "0")


def encode_approve(spender: str, amount: int) -> str:
    return APPROVE + _pad_address(spender) + _pad_uint(amount)


def is_address(value: Optional[str]) -> bool:
    return bool(value) and bool(ADDRESS_RE.match(value))


def decode_approve(data: Optional[str]) -> Optional[Tuple[str, int]]:
    """Return (spender, amount) when `data` is an ERC-20 approve call."""
    data = (data or "").lower()
    if not data.startswith(APPROVE) or len(data) != len(APPROVE) + 128:
        return None
    args = data[len(APPROVE):]
    try:
        amount = int(args[64:], 16)
    except ValueError:
        return None
    return "0x" + args[24:64], amount


class LedgerClient:
    def __init__(
        self,
        rpc_url: str,
        chain_id: int,
        timeout: float = 10.0,
        min_confirmations: int = 1,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.rpc_url = rpc_url
        self.chain_id = chain_id
        self.timeout = timeout
        self.min_confirmations = min_confirmations
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._ids = itertools.count(1)

    @classmethod
    def from_settings(cls, settings) -> "LedgerClient":
        return cls(
            rpc_url=settings.LEDGER_RPC_URL,
            chain_id=settings.LEDGER_CHAIN_ID,
            timeout=settings.LEDGER_TIMEOUT_SECONDS,
            min_confirmations=settings.LEDGER_MIN_CONFIRMATIONS,
        )

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _bounded(self, operation: str, coro):
        # httpx timeouts are per phase and per request; this caps the whole operation
        try:
            return await asyncio.wait_for(coro, timeout=self.timeout)
        except asyncio.TimeoutError as e:
            logger.warning("Ledger %s exceeded %ss", operation, self.timeout)
            raise LedgerError(f"Ledger {operation} timed out", timed_out=True) from e

    async def _call(self, method: str, params: List[Any]) -> Any:
        payload = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params}
        try:
            response = await self._client.post(self.rpc_url, json=payload)
            response.raise_for_status()
            body = response.json()
        except httpx.TimeoutException as e:
            logger.warning("Ledger %s timed out: %s", method, e)
            raise LedgerError(f"Ledger call {method} timed out", timed_out=True) from e
        except httpx.HTTPError as e:
            logger.warning("Ledger %s failed: %s", method, e)
            raise LedgerError(f"Ledger call {method} failed: {e}") from e
        except ValueError as e:
            raise LedgerError(f"Ledger call {method} returned invalid JSON") from e

        if not isinstance(body, dict):
            logger.warning("Ledger %s returned a %s body", method, type(body).__name__)
            raise LedgerError(f"Ledger call {method} returned an unexpected body")
        if body.get("error"):
            error = body["error"]
            message = error.get("message") if isinstance(error, dict) else str(error)
            logger.warning("Ledger %s returned error: %s", method, message)
            raise LedgerError(f"Ledger call {method} returned error: {message}")
        return body.get("result")

    async def lookup_transaction(self, ref: str) -> Optional[LedgerTransaction]:
        if not TX_HASH_RE.match(ref or ""):
            return None
        return await self._bounded("lookup", self._lookup_transaction(ref))

    async def _lookup_transaction(self, ref: str) -> Optional[LedgerTransaction]:
        tx = await self._call("eth_getTransactionByHash", [ref])
        if tx is None:
            return None
        if not isinstance(tx, dict):
            raise LedgerError("Malformed transaction from ledger")
        receipt = await self._call("eth_getTransactionReceipt", [ref])
        head = _hex_to_int(await self._call("eth_blockNumber", []))
        if receipt is not None and not isinstance(receipt, dict):
            raise LedgerError("Malformed receipt from ledger")

        block_number = _hex_to_int(receipt.get("blockNumber")) if receipt else None
        succeeded = bool(receipt) and _hex_to_int(receipt.get("status")) == 1
        confirmations = 0
        if block_number is not None and head is not None:
            confirmations = max(head - block_number + 1, 0)

        return LedgerTransaction(
            ref=ref,
            sender=(tx.get("from") or "").lower() or None,
            recipient=(tx.get("to") or "").lower() or None,
            amount=_hex_to_int(tx.get("value")) or 0,
            block_number=block_number,
            confirmations=confirmations,
            succeeded=succeeded,
            confirmed=succeeded and confirmations >= self.min_confirmations,
            data=tx.get("input") or "0x",
        )

    async def balance_of(self, address: str, token: Optional[str] = None) -> int:
        if token is None:
            call = self._call("eth_getBalance", [address, "latest"])
        else:
            data = BALANCE_OF + _pad_address(address)
            call = self._call("eth_call", [{"to": token, "data": data}, "latest"])
        return _hex_to_int(await self._bounded("balance", call)) or 0

    async def allowance(self, owner: str, spender: str, token: str) -> int:
        data = ALLOWANCE + _pad_address(owner) + _pad_address(spender)
        call = self._call("eth_call", [{"to": token, "data": data}, "latest"])
        return _hex_to_int(await self._bounded("allowance", call)) or 0

    async def transfer(self, signed_transaction: str) -> str:
        """Relay a transaction the sender signed elsewhere; returns its hash."""
        return await self._bounded("transfer", self._call("eth_sendRawTransaction", [signed_transaction]))

    async def is_ready(self) -> bool:
        try:
            chain_id = _hex_to_int(await self._bounded("chain id", self._call("eth_chainId", [])))
        except LedgerError:
            return False
        return chain_id == self.chain_id
