import enum
import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import JSON, Numeric, String, DateTime, ForeignKey, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.db import Base


class SubscriptionStatus(str, enum.Enum):
    pending = "pending"
    active = "active"
    failed = "failed"
    canceled = "canceled"
    expired = "expired"


class Subscription(Base):
    __tablename__ = "subscriptions"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    creator_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    subscriber_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    status: Mapped[str] = mapped_column(String(16), nullable=False, default=SubscriptionStatus.pending.value)
    amount: Mapped[Decimal] = mapped_column(Numeric(8, 2), nullable=False, default=Decimal("0.00"))
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    payment_id: Mapped[str | None] = mapped_column(String(64), nullable=True, unique=True)
    payment_provider: Mapped[str | None] = mapped_column(String(32), nullable=True)
    payment_reference: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)

    # plan snapshot at creation time ({"trial": true} for trials, null for free grants)
    plan_details: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    creator = relationship("User", foreign_keys=[creator_id], back_populates="subscribers")
    subscriber = relationship("User", foreign_keys=[subscriber_id], back_populates="subscriptions")
