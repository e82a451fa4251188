from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from app.core.config import settings
from app.models import Follow, User
from app.services.subscriptions import find_entitled_subscription, has_pending_subscription

logger = logging.getLogger(__name__)


class SelfFollowError(Exception):
    pass


@dataclass(frozen=True)
class FollowOutcome:
    success: bool
    action: str
    followers_count: Optional[int] = None
    redirect_url: Optional[str] = None
    message: Optional[str] = None


def followers_count(db: Session, user_id: uuid.UUID) -> int:
    return db.scalar(select(func.count()).select_from(Follow).where(Follow.followed_id == user_id)) or 0


def is_following(db: Session, follower_id: uuid.UUID, followed_id: uuid.UUID) -> bool:
    found = db.scalar(
        select(Follow.id).where(Follow.follower_id == follower_id).where(Follow.followed_id == followed_id)
    )
    return found is not None


def toggle_follow(db: Session, follower: User, target: User) -> FollowOutcome:
    """Unfollow if already following, otherwise follow when an entitled subscription exists."""
    if follower.id == target.id:
        raise SelfFollowError("You cannot follow yourself")

    existing = db.scalar(
        select(Follow).where(Follow.follower_id == follower.id).where(Follow.followed_id == target.id)
    )
    if existing:
        db.delete(existing)
        db.commit()
        logger.info(f"User {follower.id} unfollowed {target.id}")
        return FollowOutcome(True, "unfollowed", followers_count=followers_count(db, target.id))

    if find_entitled_subscription(db, follower.id, target.id):
        db.add(Follow(follower_id=follower.id, followed_id=target.id))
        db.commit()
        logger.info(f"User {follower.id} followed {target.id}")
        return FollowOutcome(True, "followed", followers_count=followers_count(db, target.id))

    has_payment_method = bool(follower.mollie_customer_id and follower.mollie_mandate_id)
    if not has_payment_method and not has_pending_subscription(db, follower.id, target.id):
        message = "You need to connect a payment method to follow this user"
    else:
        message = "You need an active subscription to follow this user"

    return FollowOutcome(
        False,
        "redirect_to_subscription",
        redirect_url=f"{settings.frontend_url.rstrip('/')}/subscribe/{target.username}",
        message=message,
    )
