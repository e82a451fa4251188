from __future__ import annotations

import logging
import uuid

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from app.api.deps import get_current_user, get_db, get_user_or_404
from app.models import User
from app.schemas.plans import (
    CreatorPlansOut,
    SubscriptionSettingsIn,
    SubscriptionSettingsOut,
    load_plans,
    load_trial_option,
)
from app.schemas.subscriptions import FollowOut, FollowStatusOut
from app.services.follows import SelfFollowError, followers_count, is_following, toggle_follow

router = APIRouter(tags=["users"])
logger = logging.getLogger(__name__)


@router.put("/me/subscription-settings", response_model=SubscriptionSettingsOut)
def update_subscription_settings(
    payload: SubscriptionSettingsIn,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    user.is_subscription_required = payload.is_subscription_required
    user.subscription_plans = [plan.model_dump(mode="json") for plan in payload.subscription_plans]
    user.trial_option = payload.trial_option.model_dump(mode="json")
    db.add(user)
    db.commit()
    db.refresh(user)

    logger.info(f"User {user.id} saved {len(payload.subscription_plans)} subscription plan(s)")
    return SubscriptionSettingsOut(
        is_subscription_required=user.is_subscription_required,
        subscription_plans=load_plans(user.subscription_plans),
        trial_option=load_trial_option(user.trial_option),
    )


@router.get("/{user_id}/subscription-plans", response_model=CreatorPlansOut)
def creator_plans(user_id: uuid.UUID, db: Session = Depends(get_db)):
    creator = get_user_or_404(db, user_id)
    return CreatorPlansOut(
        is_subscription_required=creator.is_subscription_required,
        plans=load_plans(creator.subscription_plans),
        trial_option=load_trial_option(creator.trial_option),
    )


@router.post("/{user_id}/follow", response_model=FollowOut)
def follow_toggle(
    user_id: uuid.UUID,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    target = get_user_or_404(db, user_id)
    try:
        outcome = toggle_follow(db, user, target)
    except SelfFollowError as e:
        raise HTTPException(status_code=422, detail=str(e))

    return FollowOut(
        success=outcome.success,
        action=outcome.action,
        followers_count=outcome.followers_count,
        redirect_url=outcome.redirect_url,
        message=outcome.message,
    )


@router.get("/{user_id}/follow-status", response_model=FollowStatusOut)
def follow_status(
    user_id: uuid.UUID,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    target = get_user_or_404(db, user_id)
    return FollowStatusOut(
        is_following=is_following(db, user.id, target.id),
        followers_count=followers_count(db, target.id),
    )
