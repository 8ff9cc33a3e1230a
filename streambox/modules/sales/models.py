import uuid
from sqlalchemy import Column, String, Numeric, DateTime, ForeignKey, Enum, Uuid, UniqueConstraint
from streambox.core.db import Base, utcnow
import enum

class PaymentMethod(str, enum.Enum):
    NATIVE = "native" # Single native-coin transfer, verified by transaction lookup
    TOKEN = "token"   # ERC-20 balance + allowance toward the platform

class Purchase(Base):
    """Permanent entitlement of one buyer to one priced asset. Never updated."""
    __tablename__ = "purchases"
    __table_args__ = (
        UniqueConstraint("buyer_id", "asset_id", name="uq_purchases_buyer_asset"),
        UniqueConstraint("payment_method", "transaction_ref", name="uq_purchases_method_tx"),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    buyer_id = Column(String, nullable=False, index=True) # Account id or external address
    asset_id = Column(Uuid(as_uuid=True), ForeignKey("assets.id"), nullable=False, index=True)

    amount = Column(Numeric(12, 2), nullable=False)
    payment_method = Column(
        Enum(PaymentMethod, values_callable=lambda e: [m.value for m in e], native_enum=False),
        default=PaymentMethod.NATIVE,
        nullable=False,
    )
    transaction_ref = Column(String, nullable=False)
    payer_address = Column(String, nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
