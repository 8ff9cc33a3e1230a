from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from pydantic import BaseModel

from streambox.modules.sales.models import PaymentMethod


class PurchaseRequest(BaseModel):
    # No transaction_ref asks for a quote; with one, the purchase is confirmed.
    # buyer_address, when sent, must match the wallet on the account
    transaction_ref: Optional[str] = None
    payment_method: PaymentMethod = PaymentMethod.NATIVE
    buyer_address: Optional[str] = None

class QuoteResponse(BaseModel):
    asset_id: UUID
    buyer_id: str
    amount: Decimal
    amount_base_units: str
    recipient: str
    payment_method: PaymentMethod
    unsigned_transaction: dict

class PurchaseRead(BaseModel):
    id: UUID
    buyer_id: str
    asset_id: UUID
    amount: Decimal
    payment_method: PaymentMethod
    transaction_ref: str
    payer_address: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True

class AccessResponse(BaseModel):
    access: bool
