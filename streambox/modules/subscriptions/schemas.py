from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel


class SubscriptionRead(BaseModel):
    id: UUID
    subscriber_id: str
    creator_id: UUID
    is_active: bool
    created_at: datetime
    cancelled_at: Optional[datetime] = None

    class Config:
        from_attributes = True
