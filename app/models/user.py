import uuid
from datetime import datetime

from sqlalchemy import JSON, String, Boolean, DateTime, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.db import Base


class User(Base):
    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    username: Mapped[str] = mapped_column(String(30), unique=True, index=True, nullable=False)
    email: Mapped[str] = mapped_column(String(320), unique=True, index=True, nullable=False)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    # creator settings; plans/trial are written through app.schemas.plans only
    is_subscription_required: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    subscription_plans: Mapped[list | None] = mapped_column(JSON, nullable=True)
    trial_option: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    # filled once, on the first successful payment
    mollie_customer_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    mollie_mandate_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    mollie_first_payment_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    subscriptions = relationship(
        "Subscription", foreign_keys="Subscription.subscriber_id", back_populates="subscriber"
    )
    subscribers = relationship(
        "Subscription", foreign_keys="Subscription.creator_id", back_populates="creator"
    )
