"""
Structured error taxonomy shared by every component.

Each error is an HTTPException so routers can let it propagate untouched; the
handler registered in main renders it as a stable JSON envelope:

    {"error": {"kind": ..., "message": ..., "retryable": ..., "requires_followup": ...}}
"""
from typing import Any, Dict, Optional
from fastapi import HTTPException, Request, status
from fastapi.responses import JSONResponse


class MarketplaceError(HTTPException):
    kind = "internal_error"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    retryable = False
    requires_followup = False

    def __init__(self, message: str, status_code: Optional[int] = None, requires_followup: Optional[bool] = None, **extra: Any):
        self.message = message
        if requires_followup is not None:
            self.requires_followup = requires_followup
        self.extra = extra
        super().__init__(status_code=status_code or type(self).status_code, detail=message)

    def to_payload(self) -> Dict[str, Any]:
        payload = {
            "kind": self.kind,
            "message": self.message,
            "retryable": self.retryable,
            "requires_followup": self.requires_followup,
        }
        payload.update({k: v for k, v in self.extra.items() if v is not None})
        return payload


# Validation / not-found
class ValidationFailed(MarketplaceError):
    kind = "validation_failed"
    status_code = status.HTTP_400_BAD_REQUEST

class AssetNotFound(MarketplaceError):
    kind = "asset_not_found"
    status_code = status.HTTP_404_NOT_FOUND

    def __init__(self, asset_id: Any):
        super().__init__(f"Asset {asset_id} not found", asset_id=str(asset_id))

class AccountNotFound(MarketplaceError):
    kind = "account_not_found"
    status_code = status.HTTP_404_NOT_FOUND

    def __init__(self, account_id: Any):
        super().__init__(f"Account {account_id} not found", account_id=str(account_id))


# Entitlement
class AssetNotForSale(MarketplaceError):
    kind = "asset_not_for_sale"
    status_code = status.HTTP_400_BAD_REQUEST

class NotAssetOwner(MarketplaceError):
    kind = "not_asset_owner"
    status_code = status.HTTP_403_FORBIDDEN

class AccessDenied(MarketplaceError):
    kind = "access_denied"
    status_code = status.HTTP_403_FORBIDDEN


# Verification
class PaymentVerificationFailed(MarketplaceError):
    kind = "payment_verification_failed"
    status_code = status.HTTP_402_PAYMENT_REQUIRED


# Infrastructure (retryable by the caller)
class LedgerUnavailable(MarketplaceError):
    kind = "ledger_unavailable"
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    retryable = True

class StorageUploadFailed(MarketplaceError):
    kind = "storage_upload_failed"
    status_code = status.HTTP_502_BAD_GATEWAY
    retryable = True

class RegistrationFailed(MarketplaceError):
    kind = "registration_failed"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    retryable = True
    requires_followup = True

class ContentUnavailable(MarketplaceError):
    kind = "content_unavailable"
    status_code = status.HTTP_502_BAD_GATEWAY
    retryable = True

class PersistenceUnavailable(MarketplaceError):
    kind = "persistence_unavailable"
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    retryable = True


async def marketplace_error_handler(request: Request, exc: MarketplaceError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.to_payload()},
        headers=exc.headers,
    )
