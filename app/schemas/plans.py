from __future__ import annotations

import enum
import logging
import secrets
from decimal import Decimal

from pydantic import BaseModel, Field, ValidationError, field_serializer, model_validator

logger = logging.getLogger(__name__)

MAX_PRICE = Decimal("999.99")


class PlanInterval(str, enum.Enum):
    monthly = "monthly"
    quarterly = "quarterly"
    biannually = "biannually"
    yearly = "yearly"


_INTERVALS = {i.value for i in PlanInterval}


class SubscriptionPlan(BaseModel):
    """A creator's recurring offer.

    The id is generated here, when settings are written, so stored plans
    always carry one.
    """

    id: str | None = Field(default=None, min_length=1, max_length=64)
    interval: PlanInterval
    price: Decimal = Field(ge=0, le=MAX_PRICE, decimal_places=2)
    is_default: bool = False

    @model_validator(mode="after")
    def _ensure_id(self) -> "SubscriptionPlan":
        if not self.id:
            self.id = f"{self.interval.value}_{secrets.token_hex(6)}"
        return self

    @field_serializer("price", when_used="json")
    def _price_as_number(self, price: Decimal) -> float:
        return float(price)


class TrialOption(BaseModel):
    enabled: bool = False
    duration_days: int = Field(default=7, ge=1, le=90)
    price: Decimal = Field(default=Decimal("0"), ge=0, le=MAX_PRICE, decimal_places=2)

    @field_serializer("price", when_used="json")
    def _price_as_number(self, price: Decimal) -> float:
        return float(price)


class SubscriptionSettingsIn(BaseModel):
    is_subscription_required: bool = False
    subscription_plans: list[SubscriptionPlan] = Field(default_factory=list)
    trial_option: TrialOption = Field(default_factory=TrialOption)

    @model_validator(mode="after")
    def _check_plans(self) -> "SubscriptionSettingsIn":
        if self.is_subscription_required and not self.subscription_plans:
            raise ValueError("At least one subscription plan is required when subscriptions are required")

        # only the first default flag survives
        seen_default = False
        for plan in self.subscription_plans:
            if plan.is_default and seen_default:
                plan.is_default = False
            seen_default = seen_default or plan.is_default

        ids = [p.id for p in self.subscription_plans]
        if len(ids) != len(set(ids)):
            raise ValueError("Subscription plan ids must be unique")
        return self


class SubscriptionSettingsOut(SubscriptionSettingsIn):
    pass


class CreatorPlansOut(BaseModel):
    success: bool = True
    is_subscription_required: bool
    plans: list[SubscriptionPlan]
    trial_option: TrialOption


def load_plans(raw: list | None) -> list[SubscriptionPlan]:
    """Read stored plans.

    An unknown interval is read as monthly. Entries that still fail
    validation are skipped.
    """
    plans = []
    for entry in raw or []:
        if isinstance(entry, dict) and entry.get("interval") not in _INTERVALS:
            entry = {**entry, "interval": PlanInterval.monthly.value}
        try:
            plans.append(SubscriptionPlan.model_validate(entry))
        except ValidationError as e:
            logger.warning(f"Skipping unreadable stored plan {entry!r}: {e.error_count()} error(s)")
    return plans


def load_trial_option(raw: dict | None) -> TrialOption:
    try:
        return TrialOption.model_validate(raw or {})
    except ValidationError as e:
        logger.warning(f"Ignoring unreadable stored trial option {raw!r}: {e.error_count()} error(s)")
        return TrialOption()
