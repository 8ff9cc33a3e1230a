from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, EmailStr, Field, field_validator

from streambox.modules.ledger.client import is_address


class AccountBase(BaseModel):
    handle: str = Field(min_length=3, max_length=32, pattern=r"^[A-Za-z0-9_\-]+$")
    email: EmailStr

class AccountCreate(AccountBase):
    # bcrypt only looks at the first 72 bytes
    password: str = Field(min_length=8, max_length=72)
    wallet_address: Optional[str] = None

    @field_validator("wallet_address")
    @classmethod
    def check_wallet(cls, v: Optional[str]) -> Optional[str]:
        if v is None or v == "":
            return None
        if not is_address(v):
            raise ValueError("wallet_address must be a 0x-prefixed 20 byte hex address")
        return v.lower()

class AccountUpdate(BaseModel):
    bio: Optional[str] = None
    avatar_url: Optional[str] = None
    wallet_address: Optional[str] = None

    @field_validator("wallet_address")
    @classmethod
    def check_wallet(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        if not is_address(v):
            raise ValueError("wallet_address must be a 0x-prefixed 20 byte hex address")
        return v.lower()

class AccountRead(AccountBase):
    id: UUID
    wallet_address: Optional[str] = None
    is_verified: bool
    bio: Optional[str] = None
    avatar_url: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True

class CreatorSummary(BaseModel):
    id: UUID
    handle: str
    avatar_url: Optional[str] = None
    is_verified: bool = False

    class Config:
        from_attributes = True

class CreatorProfile(CreatorSummary):
    bio: Optional[str] = None
    wallet_address: Optional[str] = None
    video_count: int = 0
    total_views: int = 0

class Token(BaseModel):
    access_token: str
    token_type: str
