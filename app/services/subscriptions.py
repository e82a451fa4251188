"""Subscription lifecycle: creation, provider callbacks and webhook reconciliation.

A subscription is created ``pending`` together with a provider payment and
is then moved to ``active`` or ``failed`` by whichever of the browser
callback or the provider webhook reports back first. Both go through
:func:`apply_status`, which makes repeated deliveries harmless.
"""
from __future__ import annotations

import logging
import secrets
import string
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.core.config import settings
from app.models import Subscription, SubscriptionStatus, User
from app.services.payments import PaymentProvider, PaymentProviderError, PaymentStatus, ProviderPayment
from app.services.plans import free_expiry, resolve_plan

logger = logging.getLogger(__name__)

PAID_PREFIX = "sub"
FREE_PREFIX = "free_sub"

# target status -> statuses it may be entered from
_ALLOWED_SOURCES = {
    SubscriptionStatus.active: {SubscriptionStatus.pending, SubscriptionStatus.failed},
    SubscriptionStatus.failed: {SubscriptionStatus.pending},
}

_UNSETTLED_FAILURES = {PaymentStatus.failed, PaymentStatus.canceled, PaymentStatus.expired}


class SubscriptionCheckoutError(Exception):
    def __init__(self, subscription: Subscription, message: str):
        super().__init__(message)
        self.subscription = subscription
        self.message = message


@dataclass(frozen=True)
class CheckoutResult:
    subscription: Subscription
    checkout_url: str


@dataclass(frozen=True)
class CallbackResult:
    subscription: Subscription
    success: bool
    message: str


@dataclass(frozen=True)
class WebhookResult:
    status_code: int
    message: str


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(moment: datetime) -> datetime:
    # SQLite hands back naive datetimes; everything is stored in UTC
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment


def _random_token(length: int = 8) -> str:
    alphabet = string.ascii_letters + string.digits
    return "".join(secrets.choice(alphabet) for _ in range(length))


def make_payment_id(subscription_id: uuid.UUID, free: bool = False) -> str:
    prefix = FREE_PREFIX if free else PAID_PREFIX
    return f"{prefix}_{subscription_id}_{_random_token()}"


def callback_url(subscription_id: uuid.UUID, free: bool = False) -> str:
    route = "free-callback" if free else "callback"
    return f"{settings.app_url.rstrip('/')}/subscribe/{route}/{subscription_id}"


def webhook_url() -> str:
    return f"{settings.app_url.rstrip('/')}/subscribe/webhook"


def is_entitled(subscription: Subscription, now: Optional[datetime] = None) -> bool:
    now = now or _utcnow()
    return (
        subscription.status == SubscriptionStatus.active.value
        and subscription.expires_at is not None
        and _as_utc(subscription.expires_at) > now
    )


def find_entitled_subscription(db: Session, subscriber_id: uuid.UUID, creator_id: uuid.UUID) -> Optional[Subscription]:
    return db.scalar(
        select(Subscription)
        .where(Subscription.subscriber_id == subscriber_id)
        .where(Subscription.creator_id == creator_id)
        .where(Subscription.status == SubscriptionStatus.active.value)
        .where(Subscription.expires_at > _utcnow())
        .order_by(Subscription.expires_at.desc())
    )


def has_pending_subscription(db: Session, subscriber_id: uuid.UUID, creator_id: uuid.UUID) -> bool:
    found = db.scalar(
        select(Subscription.id)
        .where(Subscription.subscriber_id == subscriber_id)
        .where(Subscription.creator_id == creator_id)
        .where(Subscription.status == SubscriptionStatus.pending.value)
        .limit(1)
    )
    return found is not None


def list_subscriptions(db: Session, subscriber_id: uuid.UUID) -> list[Subscription]:
    return list(
        db.scalars(
            select(Subscription)
            .where(Subscription.subscriber_id == subscriber_id)
            .order_by(Subscription.created_at.desc())
        )
    )


def apply_status(db: Session, subscription: Subscription, new_status: SubscriptionStatus, reason: str) -> bool:
    """Move ``subscription`` to ``new_status`` if the transition is allowed.

    Returns True when the row was written. Re-applying the current status and
    disallowed transitions (e.g. active -> failed) leave the row untouched.
    """
    current = SubscriptionStatus(subscription.status)
    if current is new_status:
        logger.debug(f"Subscription {subscription.id} already {new_status.value} ({reason})")
        return False

    if current not in _ALLOWED_SOURCES.get(new_status, set()):
        logger.warning(
            f"Ignoring transition {current.value} -> {new_status.value} for subscription {subscription.id} ({reason})"
        )
        return False

    subscription.status = new_status.value
    db.add(subscription)
    db.commit()
    logger.info(f"Subscription {subscription.id}: {current.value} -> {new_status.value} ({reason})")
    return True


def store_customer_details(db: Session, provider: PaymentProvider, user: User, payment: ProviderPayment) -> None:
    """Remember the subscriber's provider customer and mandate after a first payment.

    Best effort: failures are logged and never reach the caller.
    """
    try:
        if user.mollie_customer_id:
            return

        customer_id = payment.customer_id
        if not customer_id:
            customer_id = provider.create_customer(name=user.name, email=user.email)

        mandate_id = None
        for mandate in provider.get_customer_mandates(customer_id):
            if mandate.status == "valid":
                mandate_id = mandate.id
                break

        user.mollie_customer_id = customer_id
        user.mollie_mandate_id = mandate_id
        user.mollie_first_payment_id = payment.id
        db.add(user)
        db.commit()
        logger.info(f"Stored provider customer {customer_id} for user {user.id} (mandate={mandate_id})")
    except Exception:
        db.rollback()
        logger.exception(f"Failed to store provider customer details for user {user.id}")


def _start_checkout(
    db: Session,
    provider: PaymentProvider,
    subscription: Subscription,
    *,
    free: bool,
    description: str,
    failure_message: str,
) -> CheckoutResult:
    payment_id = make_payment_id(subscription.id, free=free)
    metadata = {
        "subscription_id": str(subscription.id),
        "payment_id": payment_id,
    }
    if free:
        metadata["free_subscription"] = True

    try:
        created = provider.create_payment(
            amount=subscription.amount,
            description=description,
            redirect_url=callback_url(subscription.id, free=free),
            webhook_url=webhook_url(),
            metadata=metadata,
        )
    except PaymentProviderError as e:
        logger.error(f"Payment creation failed for subscription {subscription.id}: {e}")
        apply_status(db, subscription, SubscriptionStatus.failed, "payment creation failed")
        raise SubscriptionCheckoutError(subscription, failure_message) from e

    subscription.payment_id = payment_id
    subscription.payment_provider = provider.name
    subscription.payment_reference = created.id
    db.add(subscription)
    db.commit()
    db.refresh(subscription)

    return CheckoutResult(subscription=subscription, checkout_url=created.checkout_url)


def create_paid_subscription(
    db: Session,
    provider: PaymentProvider,
    subscriber: User,
    creator: User,
    plan_id: Optional[str] = None,
    trial: bool = False,
) -> CheckoutResult:
    resolved = resolve_plan(creator, plan_id=plan_id, trial=trial)

    subscription = Subscription(
        creator_id=creator.id,
        subscriber_id=subscriber.id,
        status=SubscriptionStatus.pending.value,
        amount=resolved.amount,
        expires_at=resolved.expires_at,
        plan_details=resolved.plan_details,
    )
    db.add(subscription)
    db.commit()
    db.refresh(subscription)

    return _start_checkout(
        db,
        provider,
        subscription,
        free=False,
        description=resolved.description,
        failure_message="Payment processing failed. Please try again later.",
    )


def create_free_subscription(
    db: Session,
    provider: PaymentProvider,
    subscriber: User,
    creator: User,
) -> CheckoutResult:
    """Zero-amount subscription whose payment only verifies the subscriber's card."""
    subscription = Subscription(
        creator_id=creator.id,
        subscriber_id=subscriber.id,
        status=SubscriptionStatus.pending.value,
        amount=Decimal("0.00"),
        expires_at=free_expiry(),
        plan_details=None,
    )
    db.add(subscription)
    db.commit()
    db.refresh(subscription)

    return _start_checkout(
        db,
        provider,
        subscription,
        free=True,
        description=f"Free subscription to {creator.name} (card verification)",
        failure_message="Payment verification failed. Please try again later.",
    )


def subscribe(
    db: Session,
    provider: PaymentProvider,
    subscriber: User,
    creator: User,
    plan_id: Optional[str] = None,
    trial: bool = False,
) -> CheckoutResult:
    if not creator.is_subscription_required:
        return create_free_subscription(db, provider, subscriber, creator)
    return create_paid_subscription(db, provider, subscriber, creator, plan_id=plan_id, trial=trial)


def _fetch_for_callback(provider: PaymentProvider, subscription: Subscription) -> ProviderPayment:
    if not subscription.payment_reference:
        raise PaymentProviderError(f"Subscription {subscription.id} has no payment reference")
    return provider.get_payment(subscription.payment_reference)


def _callback_provider_error(db: Session, subscription: Subscription, error: Exception) -> None:
    logger.error(f"Payment verification failed for subscription {subscription.id}: {error}")
    if settings.callback_fails_on_provider_error:
        apply_status(db, subscription, SubscriptionStatus.failed, "callback provider error")


def handle_paid_callback(db: Session, provider: PaymentProvider, subscription: Subscription) -> CallbackResult:
    try:
        payment = _fetch_for_callback(provider, subscription)
    except PaymentProviderError as e:
        _callback_provider_error(db, subscription, e)
        return CallbackResult(subscription, False, "Payment verification failed. Please try again later.")

    if payment.is_paid:
        apply_status(db, subscription, SubscriptionStatus.active, "callback: paid")
        store_customer_details(db, provider, subscription.subscriber, payment)
        return CallbackResult(subscription, True, "Subscription activated successfully!")

    apply_status(db, subscription, SubscriptionStatus.failed, f"callback: {payment.status.value}")
    return CallbackResult(subscription, False, "Subscription payment was not completed.")


def handle_free_callback(db: Session, provider: PaymentProvider, subscription: Subscription) -> CallbackResult:
    try:
        payment = _fetch_for_callback(provider, subscription)
    except PaymentProviderError as e:
        _callback_provider_error(db, subscription, e)
        return CallbackResult(subscription, False, "Follow request failed. Please try again later.")

    # a canceled or expired zero-amount verification still proves the card
    if payment.status in (PaymentStatus.paid, PaymentStatus.canceled, PaymentStatus.expired):
        apply_status(db, subscription, SubscriptionStatus.active, f"free callback: {payment.status.value}")
        if payment.is_paid:
            store_customer_details(db, provider, subscription.subscriber, payment)
        return CallbackResult(subscription, True, "You are now following this creator!")

    return CallbackResult(subscription, False, "Follow request could not be processed. Please try again.")


def handle_webhook(db: Session, provider: PaymentProvider, payment_reference: Optional[str]) -> WebhookResult:
    if not payment_reference:
        return WebhookResult(400, "Payment ID not provided")

    try:
        payment = provider.get_payment(payment_reference)
    except PaymentProviderError as e:
        logger.error(f"Webhook processing error for payment {payment_reference}: {e}")
        return WebhookResult(500, f"Webhook processing failed: {e}")

    raw_subscription_id = payment.metadata.get("subscription_id")
    if not raw_subscription_id:
        return WebhookResult(400, "Subscription ID not found in metadata")

    try:
        subscription_id = uuid.UUID(str(raw_subscription_id))
    except ValueError:
        return WebhookResult(404, "Subscription not found")

    subscription = db.get(Subscription, subscription_id)
    if not subscription:
        return WebhookResult(404, "Subscription not found")

    if payment.is_paid:
        apply_status(db, subscription, SubscriptionStatus.active, "webhook: paid")
        store_customer_details(db, provider, subscription.subscriber, payment)
    elif payment.status in _UNSETTLED_FAILURES:
        if Decimal(subscription.amount) == 0 and payment.metadata.get("free_subscription"):
            apply_status(db, subscription, SubscriptionStatus.active, f"webhook: free {payment.status.value}")
        else:
            apply_status(db, subscription, SubscriptionStatus.failed, f"webhook: {payment.status.value}")

    return WebhookResult(200, "Webhook processed")
