from typing import Any, Optional, Union
from uuid import UUID

from fastapi import APIRouter, Depends

from streambox.core import deps
from streambox.core.errors import ValidationFailed
from streambox.modules.accounts.models import Account
from streambox.modules.sales import schemas
from streambox.modules.sales.service import PurchaseVerifier

router = APIRouter()


def _payer_wallet(account: Account, claimed: Optional[str]) -> Optional[str]:
    wallet = account.wallet_address
    if claimed and (not wallet or claimed.lower() != wallet.lower()):
        raise ValidationFailed("buyer_address must be the wallet linked to your account")
    return wallet


@router.post("/{asset_id}/purchase", response_model=Union[schemas.PurchaseRead, schemas.QuoteResponse])
async def purchase_asset(
    asset_id: UUID,
    payload: schemas.PurchaseRequest,
    current_account: Account = Depends(deps.get_current_account),
    verifier: PurchaseVerifier = Depends(deps.get_verifier),
) -> Any:
    if not payload.transaction_ref:
        quote = await verifier.quote_purchase(asset_id, current_account.buyer_key, payload.payment_method)
        return schemas.QuoteResponse(
            asset_id=quote.asset_id,
            buyer_id=quote.buyer_id,
            amount=quote.amount,
            amount_base_units=str(quote.amount_base_units),
            recipient=quote.recipient,
            payment_method=quote.payment_method,
            unsigned_transaction=quote.unsigned_transaction,
        )

    purchase = await verifier.confirm_purchase(
        asset_id,
        current_account.buyer_key,
        payload.transaction_ref,
        payment_method=payload.payment_method,
        buyer_address=_payer_wallet(current_account, payload.buyer_address),
    )
    return schemas.PurchaseRead.model_validate(purchase)

@router.get("/{asset_id}/access", response_model=schemas.AccessResponse)
async def check_access(
    asset_id: UUID,
    current_account: Optional[Account] = Depends(deps.get_current_account_optional),
    verifier: PurchaseVerifier = Depends(deps.get_verifier),
) -> Any:
    buyer_id = current_account.buyer_key if current_account else None
    return {"access": await verifier.has_access(asset_id, buyer_id)}
