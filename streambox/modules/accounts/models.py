import uuid
from sqlalchemy import Column, String, Boolean, DateTime, Uuid
from streambox.core.db import Base, utcnow

class Account(Base):
    __tablename__ = "accounts"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    handle = Column(String, unique=True, index=True, nullable=False)
    email = Column(String, unique=True, index=True, nullable=False)
    hashed_password = Column(String, nullable=False)

    # External ledger address, lowercased on write
    wallet_address = Column(String, nullable=True, index=True)
    is_verified = Column(Boolean, default=False, nullable=False) # Verified creator badge

    # Profile
    bio = Column(String, nullable=True)
    avatar_url = Column(String, nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), onupdate=utcnow)

    @property
    def buyer_key(self) -> str:
        """Identifier purchases and subscriptions are recorded under."""
        return str(self.id)
