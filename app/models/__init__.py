from app.core.db import Base

from .user import User
from .subscription import Subscription, SubscriptionStatus
from .follow import Follow

__all__ = [
    "Base",
    "User",
    "Subscription",
    "SubscriptionStatus",
    "Follow",
]
