"""
Purchase verification.

A buyer asks for a quote, pays on the ledger with their own wallet, then
reports the transaction reference. The verifier checks the ledger and records
exactly one Purchase per (buyer, asset). No funds move here.
"""
import json
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional, Tuple
from uuid import UUID

from streambox.core.errors import (
    AssetNotFound,
    AssetNotForSale,
    LedgerUnavailable,
    PaymentVerificationFailed,
    ValidationFailed,
)
from streambox.core.gateway import PersistenceGateway, PurchaseConflict
from streambox.modules.assets.models import Asset, MonetizationMode
from streambox.modules.ledger.client import LedgerClient, LedgerError, LedgerTransaction, decode_approve, encode_approve, is_address
from streambox.modules.ledger.units import from_base_units, to_base_units
from streambox.modules.sales.models import Purchase, PaymentMethod
from streambox.modules.subscriptions.service import check_subscription_access

logger = logging.getLogger(__name__)


@dataclass
class PurchaseQuote:
    asset_id: UUID
    buyer_id: str
    amount: Decimal
    amount_base_units: int
    recipient: str
    payment_method: PaymentMethod
    unsigned_transaction: dict


class PurchaseVerifier:
    def __init__(
        self,
        gateway: PersistenceGateway,
        ledger: LedgerClient,
        recipient_address: str,
        token_decimals: int,
        chain_id: int,
        payment_token: Optional[str] = None,
    ):
        self.gateway = gateway
        self.ledger = ledger
        self.recipient_address = recipient_address.lower()
        self.token_decimals = token_decimals
        self.chain_id = chain_id
        self.payment_token = payment_token.lower() if payment_token else None

    @classmethod
    def from_settings(cls, gateway: PersistenceGateway, ledger: LedgerClient, settings) -> "PurchaseVerifier":
        return cls(
            gateway=gateway,
            ledger=ledger,
            recipient_address=settings.PLATFORM_RECIPIENT_ADDRESS,
            token_decimals=settings.PRICE_TOKEN_DECIMALS,
            chain_id=settings.LEDGER_CHAIN_ID,
            payment_token=settings.PAYMENT_TOKEN_ADDRESS,
        )

    async def _get_priced_asset(self, asset_id: UUID) -> Asset:
        asset = await self.gateway.get_asset(asset_id)
        if not asset:
            raise AssetNotFound(asset_id)
        if not asset.is_priced:
            raise AssetNotForSale("Asset is free, no purchase needed", asset_id=str(asset_id))
        return asset

    def _require_token(self) -> str:
        if not self.payment_token:
            raise ValidationFailed("Token payments are not enabled")
        return self.payment_token

    async def quote_purchase(
        self,
        asset_id: UUID,
        buyer_id: str,
        payment_method: PaymentMethod = PaymentMethod.NATIVE,
    ) -> PurchaseQuote:
        asset = await self._get_priced_asset(asset_id)
        units = to_base_units(asset.price, self.token_decimals)

        if payment_method == PaymentMethod.TOKEN:
            token = self._require_token()
            unsigned = {
                "to": token,
                "value": "0x0",
                "data": encode_approve(self.recipient_address, units),
                "chainId": hex(self.chain_id),
            }
        else:
            memo = json.dumps({"assetId": str(asset.id), "purchaseType": "single"}, separators=(",", ":"))
            unsigned = {
                "to": self.recipient_address,
                "value": hex(units),
                "data": "0x" + memo.encode("utf-8").hex(),
                "chainId": hex(self.chain_id),
            }

        return PurchaseQuote(
            asset_id=asset.id,
            buyer_id=buyer_id,
            amount=asset.price,
            amount_base_units=units,
            recipient=self.recipient_address,
            payment_method=payment_method,
            unsigned_transaction=unsigned,
        )

    async def confirm_purchase(
        self,
        asset_id: UUID,
        buyer_id: str,
        transaction_ref: str,
        payment_method: Optional[PaymentMethod] = None,
        buyer_address: Optional[str] = None,
    ) -> Purchase:
        """
        Verify `transaction_ref` on the ledger and record the purchase.

        `buyer_address` is the wallet linked to the buyer's account, never an
        address taken from the request. When present, the paying transaction
        must come from it; token payments require it.
        """
        asset = await self._get_priced_asset(asset_id)
        method = payment_method or PaymentMethod.NATIVE

        existing = await self.gateway.get_purchase(buyer_id, asset.id)
        if existing:
            return existing

        transaction_ref = (transaction_ref or "").strip()
        if not transaction_ref:
            raise ValidationFailed("transaction_ref is required to confirm a purchase")

        reused = await self.gateway.get_purchase_by_transaction(method, transaction_ref)
        if reused:
            self._reject(asset, buyer_id, "transaction_already_used", "Transaction was already used for another purchase")

        required = to_base_units(asset.price, self.token_decimals)
        payer = buyer_address.lower() if buyer_address else None
        try:
            if method == PaymentMethod.TOKEN:
                verified_units, payer = await self._verify_token(asset, buyer_id, transaction_ref, payer, required)
            else:
                verified_units, payer = await self._verify_native(asset, buyer_id, transaction_ref, payer, required)
        except LedgerError as e:
            # Outcome unknown; the caller may resubmit the same reference
            raise LedgerUnavailable(
                "Ledger unavailable, payment could not be verified yet",
                timed_out=e.timed_out or None,
            ) from e

        try:
            purchase = await self.gateway.insert_purchase(
                buyer_id=buyer_id,
                asset_id=asset.id,
                amount=from_base_units(verified_units, self.token_decimals),
                payment_method=method,
                transaction_ref=transaction_ref,
                payer_address=payer,
            )
        except PurchaseConflict:
            # A concurrent confirmation won the insert; theirs is the effective purchase
            winner = await self.gateway.get_purchase(buyer_id, asset.id)
            if winner:
                return winner
            self._reject(asset, buyer_id, "transaction_already_used", "Transaction was already used for another purchase")

        logger.info("Purchase %s recorded: buyer=%s asset=%s amount=%s tx=%s",
                    purchase.id, buyer_id, asset.id, purchase.amount, transaction_ref)
        return purchase

    def _reject(self, asset: Asset, buyer_id: str, reason: str, message: str):
        logger.info("Payment rejected for buyer=%s asset=%s: %s", buyer_id, asset.id, reason)
        raise PaymentVerificationFailed(message, reason=reason, asset_id=str(asset.id))

    async def _final_transaction(self, asset: Asset, buyer_id: str, ref: str) -> LedgerTransaction:
        tx = await self.ledger.lookup_transaction(ref)
        if tx is None:
            self._reject(asset, buyer_id, "transaction_not_found", "Transaction not found on the ledger")
        if not tx.succeeded and tx.block_number is not None:
            self._reject(asset, buyer_id, "transaction_failed", "Transaction failed on the ledger")
        if not tx.confirmed:
            self._reject(asset, buyer_id, "transaction_pending", "Transaction is not final yet, resubmit once confirmed")
        return tx

    async def _verify_native(self, asset: Asset, buyer_id: str, ref: str, payer: Optional[str], required: int) -> Tuple[int, Optional[str]]:
        tx = await self._final_transaction(asset, buyer_id, ref)
        if tx.recipient != self.recipient_address:
            self._reject(asset, buyer_id, "wrong_recipient", "Transaction did not pay the platform address")
        if tx.amount < required:
            self._reject(asset, buyer_id, "underpayment", f"Transaction amount is below the price of {asset.price}")
        if payer and tx.sender != payer:
            self._reject(asset, buyer_id, "sender_mismatch", "Transaction was not sent from the buyer's wallet")
        return tx.amount, tx.sender

    async def _verify_token(self, asset: Asset, buyer_id: str, ref: str, payer: Optional[str], required: int) -> Tuple[int, str]:
        # ref is the buyer's approve transaction; recording it makes each approval count once
        token = self._require_token()
        if not is_address(payer):
            raise ValidationFailed("A wallet linked to your account is required for token payments")
        tx = await self._final_transaction(asset, buyer_id, ref)
        if tx.recipient != token:
            self._reject(asset, buyer_id, "wrong_token", "Transaction is not a call on the payment token")
        if tx.sender != payer:
            self._reject(asset, buyer_id, "sender_mismatch", "Approval was not sent from the buyer's wallet")
        approval = decode_approve(tx.data)
        if approval is None or approval[0] != self.recipient_address:
            self._reject(asset, buyer_id, "not_an_approval", "Transaction does not approve the platform address")
        if approval[1] < required:
            self._reject(asset, buyer_id, "insufficient_allowance", "Approved amount is below the price")

        allowance = await self.ledger.allowance(payer, self.recipient_address, token)
        if allowance < required:
            self._reject(asset, buyer_id, "insufficient_allowance", "Token allowance toward the platform is below the price")
        balance = await self.ledger.balance_of(payer, token)
        if balance < required:
            self._reject(asset, buyer_id, "insufficient_balance", "Token balance is below the price")
        return required, payer

    async def has_access(self, asset_id: UUID, buyer_id: Optional[str]) -> bool:
        asset = await self.gateway.get_asset(asset_id)
        if not asset:
            raise AssetNotFound(asset_id)
        return await self.has_access_to(asset, buyer_id)

    async def has_access_to(self, asset: Asset, buyer_id: Optional[str]) -> bool:
        if asset.mode == MonetizationMode.FREE:
            return True
        if not buyer_id:
            return False
        if buyer_id == str(asset.creator_id):
            return True
        if await self.gateway.get_purchase(buyer_id, asset.id):
            return True
        if asset.mode == MonetizationMode.SUBSCRIPTION:
            return await check_subscription_access(self.gateway, buyer_id, asset.creator_id)
        return False
