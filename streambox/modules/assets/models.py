import uuid
from decimal import Decimal
from sqlalchemy import Column, String, Boolean, Integer, BigInteger, Numeric, DateTime, Text, ForeignKey, Enum, JSON, Uuid
from streambox.core.db import Base, utcnow
import enum

class MonetizationMode(str, enum.Enum):
    FREE = "free"
    PAY_PER_VIEW = "pay-per-view"
    SUBSCRIPTION = "subscription"

class Asset(Base):
    __tablename__ = "assets"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    creator_id = Column(Uuid(as_uuid=True), ForeignKey("accounts.id"), nullable=False, index=True)

    title = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    category = Column(String, nullable=False, index=True)
    thumbnail_url = Column(String, nullable=True)
    duration_seconds = Column(Integer, nullable=True)

    mode = Column(
        Enum(MonetizationMode, values_callable=lambda e: [m.value for m in e], native_enum=False),
        default=MonetizationMode.FREE,
        nullable=False,
    )
    price = Column(Numeric(12, 2), nullable=False, default=Decimal("0.00"))

    # Locator is "<scheme>://<id>" for managed stores or a plain URL/path for external hosting
    content_locator = Column(String, nullable=True)
    mime_type = Column(String, nullable=True)
    size_bytes = Column(BigInteger, nullable=True)
    # Storage proof descriptor, written together with the locator
    storage_proof = Column(JSON, nullable=True)
    is_verified = Column(Boolean, default=False, nullable=False)

    views = Column(Integer, default=0, nullable=False)

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), onupdate=utcnow)

    @property
    def is_priced(self) -> bool:
        return self.mode != MonetizationMode.FREE and self.price is not None and self.price > 0

    @property
    def has_content(self) -> bool:
        return bool(self.content_locator)
