from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field, model_validator

from streambox.modules.accounts.schemas import CreatorSummary
from streambox.modules.assets.models import MonetizationMode


class AssetCreate(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    description: Optional[str] = None
    category: str = Field(min_length=1, max_length=64)
    thumbnail_url: Optional[str] = None
    duration_seconds: Optional[int] = Field(default=None, ge=0)
    mode: MonetizationMode = MonetizationMode.FREE
    price: Decimal = Field(default=Decimal("0.00"), ge=0, max_digits=12, decimal_places=2)

    @model_validator(mode="after")
    def check_price(self) -> "AssetCreate":
        if self.mode == MonetizationMode.FREE:
            self.price = Decimal("0.00")
        elif self.mode == MonetizationMode.PAY_PER_VIEW and self.price <= 0:
            raise ValueError("pay-per-view assets need a price greater than 0")
        return self

class AssetRead(BaseModel):
    id: UUID
    creator_id: UUID
    title: str
    description: Optional[str] = None
    category: str
    thumbnail_url: Optional[str] = None
    duration_seconds: Optional[int] = None
    mode: MonetizationMode
    price: Decimal
    mime_type: Optional[str] = None
    size_bytes: Optional[int] = None
    is_verified: bool
    has_content: bool = False
    views: int
    created_at: datetime
    creator: Optional[CreatorSummary] = None

    class Config:
        from_attributes = True

class ContentReference(BaseModel):
    content_url: str
    mime_type: Optional[str] = None

class UploadResponse(BaseModel):
    asset_id: UUID
    content_id: Optional[str] = None
    locator: str
    storage_proof: Optional[dict] = None
    verified: bool

class ViewsResponse(BaseModel):
    views: int
