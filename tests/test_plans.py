"""Tests for plan value objects and plan resolution."""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from pydantic import ValidationError

from app.schemas.plans import (
    PlanInterval,
    SubscriptionPlan,
    SubscriptionSettingsIn,
    load_plans,
    load_trial_option,
)
from app.services.plans import (
    NoOfferablePlansError,
    add_months,
    free_expiry,
    renewal_expiry,
    resolve_plan,
    select_plan,
)

NOW = datetime(2026, 1, 31, 12, 0, tzinfo=timezone.utc)


def _plans(*rows):
    return [SubscriptionPlan(id=i, interval=iv, price=p, is_default=d) for i, iv, p, d in rows]


class TestSelectPlan:
    def test_exact_id_wins_over_default(self):
        plans = _plans(("m", "monthly", 9.99, True), ("y", "yearly", 99.99, False))
        assert select_plan(plans, "y").id == "y"

    def test_unknown_id_falls_back_to_default(self):
        plans = _plans(("q", "quarterly", 25, False), ("m", "monthly", 9.99, True))
        assert select_plan(plans, "nope").id == "m"

    def test_no_default_falls_back_to_first(self):
        plans = _plans(("q", "quarterly", 25, False), ("y", "yearly", 99.99, False))
        assert select_plan(plans, None).id == "q"

    def test_first_default_is_used(self):
        plans = _plans(("a", "monthly", 1, False), ("b", "monthly", 2, True), ("c", "monthly", 3, True))
        assert select_plan(plans).id == "b"

    def test_empty_list(self):
        assert select_plan([], "m") is None


class TestExpiry:
    def test_add_months_clamps_to_month_end(self):
        assert add_months(NOW, 1) == datetime(2026, 2, 28, 12, 0, tzinfo=timezone.utc)

    def test_add_months_crosses_year(self):
        assert add_months(datetime(2026, 11, 15, tzinfo=timezone.utc), 3) == datetime(2027, 2, 15, tzinfo=timezone.utc)

    @pytest.mark.parametrize(
        "interval,months",
        [("monthly", 1), ("quarterly", 3), ("biannually", 6), ("yearly", 12)],
    )
    def test_interval_mapping(self, interval, months):
        start = datetime(2026, 3, 10, tzinfo=timezone.utc)
        assert renewal_expiry(interval, start) == add_months(start, months)

    def test_unknown_interval_uses_monthly(self):
        start = datetime(2026, 3, 10, tzinfo=timezone.utc)
        assert renewal_expiry("weekly", start) == datetime(2026, 4, 10, tzinfo=timezone.utc)

    def test_free_expiry_is_ten_years_out(self):
        start = datetime(2026, 3, 10, tzinfo=timezone.utc)
        assert free_expiry(start) == datetime(2036, 3, 10, tzinfo=timezone.utc)


class TestResolvePlan:
    def test_requested_yearly_plan(self, paid_creator):
        resolved = resolve_plan(paid_creator, plan_id="y", now=NOW)

        assert resolved.amount == Decimal("99.99")
        assert resolved.expires_at == datetime(2027, 1, 31, 12, 0, tzinfo=timezone.utc)
        assert resolved.plan_details["interval"] == "yearly"
        assert resolved.plan_details["id"] == "y"
        assert resolved.description == "Subscription to Clara (yearly)"
        assert resolved.is_trial is False

    def test_default_plan_when_omitted(self, paid_creator):
        resolved = resolve_plan(paid_creator, now=NOW)

        assert resolved.amount == Decimal("9.99")
        assert resolved.expires_at == add_months(NOW, 1)
        assert resolved.plan_details["interval"] == "monthly"

    def test_trial_overrides_plan(self, paid_creator):
        resolved = resolve_plan(paid_creator, plan_id="y", trial=True, now=NOW)

        assert resolved.amount == Decimal("0")
        assert resolved.expires_at == NOW + timedelta(days=7)
        assert resolved.plan_details == {"trial": True}
        assert resolved.description == "Trial subscription to Clara for 7 days"
        assert resolved.is_trial is True

    def test_trial_ignored_when_disabled(self, make_user):
        creator = make_user(
            "nina",
            is_subscription_required=True,
            subscription_plans=[{"id": "m", "interval": "monthly", "price": 5, "is_default": True}],
            trial_option={"enabled": False, "duration_days": 14, "price": 1},
        )
        resolved = resolve_plan(creator, trial=True, now=NOW)

        assert resolved.amount == Decimal("5")
        assert resolved.plan_details["id"] == "m"

    def test_no_plans_is_a_validation_error(self, make_user):
        creator = make_user("empty", is_subscription_required=True, subscription_plans=[])
        with pytest.raises(NoOfferablePlansError):
            resolve_plan(creator, now=NOW)


class TestSubscriptionSettings:
    def test_ids_are_generated_on_write(self):
        settings = SubscriptionSettingsIn(
            is_subscription_required=True,
            subscription_plans=[{"interval": "quarterly", "price": "24.50"}],
        )
        plan = settings.subscription_plans[0]
        assert plan.id.startswith("quarterly_")
        assert plan.is_default is False
        assert plan.model_dump(mode="json")["price"] == 24.5

    def test_required_without_plans_is_rejected(self):
        with pytest.raises(ValidationError):
            SubscriptionSettingsIn(is_subscription_required=True, subscription_plans=[])

    def test_only_first_default_survives(self):
        settings = SubscriptionSettingsIn(
            subscription_plans=[
                {"id": "a", "interval": "monthly", "price": 1, "is_default": True},
                {"id": "b", "interval": "yearly", "price": 10, "is_default": True},
            ],
        )
        assert [p.is_default for p in settings.subscription_plans] == [True, False]

    def test_duplicate_ids_are_rejected(self):
        with pytest.raises(ValidationError):
            SubscriptionSettingsIn(
                subscription_plans=[
                    {"id": "a", "interval": "monthly", "price": 1},
                    {"id": "a", "interval": "yearly", "price": 10},
                ],
            )

    @pytest.mark.parametrize("price", [-1, 1000, "9.999"])
    def test_price_bounds(self, price):
        with pytest.raises(ValidationError):
            SubscriptionPlan(interval="monthly", price=price)

    def test_unknown_interval_is_rejected(self):
        with pytest.raises(ValidationError):
            SubscriptionPlan(interval="weekly", price=1)

    @pytest.mark.parametrize("days", [0, 91])
    def test_trial_duration_bounds(self, days):
        with pytest.raises(ValidationError):
            SubscriptionSettingsIn(trial_option={"enabled": True, "duration_days": days, "price": 0})

    def test_loaders_handle_empty_columns(self):
        assert load_plans(None) == []
        trial = load_trial_option(None)
        assert trial.enabled is False
        assert trial.duration_days == 7

    def test_stored_plans_round_trip_through_loader(self):
        stored = [{"id": "m", "interval": "monthly", "price": 9.99, "is_default": True}]
        plan = load_plans(stored)[0]
        assert plan.interval is PlanInterval.monthly
        assert plan.price == Decimal("9.99")


class TestStoredPlans:
    def test_unknown_interval_is_read_as_monthly(self):
        plans = load_plans([{"id": "w", "interval": "weekly", "price": 5, "is_default": True}])

        assert [(p.id, p.interval) for p in plans] == [("w", PlanInterval.monthly)]

    def test_unreadable_entry_is_skipped(self):
        plans = load_plans(
            [
                {"id": "bad", "interval": "monthly", "price": "not-a-price"},
                {"id": "m", "interval": "monthly", "price": 9.99},
            ]
        )

        assert [p.id for p in plans] == ["m"]

    def test_unreadable_trial_option_falls_back_to_disabled(self):
        assert load_trial_option({"enabled": True, "duration_days": 0}).enabled is False

    def test_resolve_plan_with_unknown_stored_interval(self, make_user):
        creator = make_user(
            "wanda",
            is_subscription_required=True,
            subscription_plans=[{"id": "w", "interval": "weekly", "price": 5, "is_default": True}],
        )

        resolved = resolve_plan(creator, now=NOW)

        assert resolved.amount == Decimal("5")
        assert resolved.expires_at == add_months(NOW, 1)
        assert resolved.plan_details["id"] == "w"
