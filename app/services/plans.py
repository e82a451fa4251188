from __future__ import annotations

import calendar
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Optional

from app.models import User
from app.schemas.plans import PlanInterval, SubscriptionPlan, load_plans, load_trial_option

FREE_SUBSCRIPTION_YEARS = 10

INTERVAL_MONTHS = {
    PlanInterval.monthly: 1,
    PlanInterval.quarterly: 3,
    PlanInterval.biannually: 6,
    PlanInterval.yearly: 12,
}


class NoOfferablePlansError(Exception):
    """Creator requires a paid subscription but has no plans configured."""


@dataclass(frozen=True)
class ResolvedPlan:
    amount: Decimal
    expires_at: datetime
    description: str
    plan_details: Optional[dict]
    is_trial: bool = False


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def add_months(moment: datetime, months: int) -> datetime:
    """Calendar month arithmetic, clamped to the last day of the target month."""
    month_index = moment.month - 1 + months
    year = moment.year + month_index // 12
    month = month_index % 12 + 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


def renewal_expiry(interval: PlanInterval | str, now: Optional[datetime] = None) -> datetime:
    now = now or _utcnow()
    try:
        months = INTERVAL_MONTHS[PlanInterval(interval)]
    except ValueError:
        months = INTERVAL_MONTHS[PlanInterval.monthly]
    return add_months(now, months)


def free_expiry(now: Optional[datetime] = None) -> datetime:
    return add_months(now or _utcnow(), 12 * FREE_SUBSCRIPTION_YEARS)


def select_plan(plans: list[SubscriptionPlan], plan_id: Optional[str] = None) -> Optional[SubscriptionPlan]:
    """Exact id match, then the first default plan, then the first plan."""
    if plan_id:
        for plan in plans:
            if plan.id == plan_id:
                return plan

    for plan in plans:
        if plan.is_default:
            return plan

    return plans[0] if plans else None


def resolve_plan(
    creator: User,
    plan_id: Optional[str] = None,
    trial: bool = False,
    now: Optional[datetime] = None,
) -> ResolvedPlan:
    """Amount, expiry and snapshot for a paid subscription to ``creator``.

    Callers route creators without ``is_subscription_required`` to the free
    path before getting here.
    """
    now = now or _utcnow()

    plan = select_plan(load_plans(creator.subscription_plans), plan_id)
    if plan is None:
        raise NoOfferablePlansError(f"Creator {creator.username} has no offerable plans")

    trial_option = load_trial_option(creator.trial_option)
    if trial and trial_option.enabled:
        days = trial_option.duration_days
        return ResolvedPlan(
            amount=trial_option.price,
            expires_at=now + timedelta(days=days),
            description=f"Trial subscription to {creator.name} for {days} days",
            plan_details={"trial": True},
            is_trial=True,
        )

    return ResolvedPlan(
        amount=plan.price,
        expires_at=renewal_expiry(plan.interval, now),
        description=f"Subscription to {creator.name} ({plan.interval.value})",
        plan_details=plan.model_dump(mode="json"),
    )
