import uuid
from sqlalchemy import Column, String, Boolean, DateTime, ForeignKey, Uuid, UniqueConstraint
from streambox.core.db import Base, utcnow

class Subscription(Base):
    __tablename__ = "subscriptions"
    __table_args__ = (
        UniqueConstraint("subscriber_id", "creator_id", name="uq_subscriptions_subscriber_creator"),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    subscriber_id = Column(String, nullable=False, index=True)
    creator_id = Column(Uuid(as_uuid=True), ForeignKey("accounts.id"), nullable=False, index=True)

    # Cancelling deactivates the row, history is kept
    is_active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
