from __future__ import annotations

import logging
import uuid
from typing import Optional
from urllib.parse import urlencode, urlsplit

from fastapi import APIRouter, Depends, Form, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import PlainTextResponse, RedirectResponse
from pydantic import ValidationError
from sqlalchemy.orm import Session

from app.api.deps import get_current_user, get_db, get_payment_provider, get_user_or_404
from app.core.config import settings
from app.models import Subscription, User
from app.schemas.subscriptions import CreatorSummaryOut, SubscribeIn, SubscriptionOut
from app.services import subscriptions as lifecycle
from app.services.payments import PaymentProvider
from app.services.plans import NoOfferablePlansError

router = APIRouter(tags=["subscriptions"])
logger = logging.getLogger(__name__)


def profile_url(user: User) -> str:
    return f"{settings.frontend_url.rstrip('/')}/{user.username}"


def redirect_with_flash(url: str, *, success: Optional[str] = None, error: Optional[str] = None) -> RedirectResponse:
    """Flash messages travel as query parameters on the redirect target."""
    params = {"success": success} if success else {"error": error or ""}
    separator = "&" if "?" in url else "?"
    return RedirectResponse(f"{url}{separator}{urlencode(params)}", status_code=303)


def back_url(request: Request, creator: User) -> str:
    """The Referer when it is a frontend page, otherwise the creator's profile."""
    referer = request.headers.get("referer")
    if referer:
        frontend = urlsplit(settings.frontend_url)
        target = urlsplit(referer)
        if (target.scheme, target.netloc) == (frontend.scheme, frontend.netloc):
            return referer
    return profile_url(creator)


async def subscribe_payload(request: Request) -> SubscribeIn:
    """Read plan_id and trial from a JSON body or a browser form post."""
    if request.headers.get("content-type", "").startswith("application/json"):
        body = await request.body()
        try:
            data = await request.json() if body else {}
        except ValueError:
            raise HTTPException(status_code=400, detail="Malformed JSON body")
    else:
        form = await request.form()
        data = {key: value for key, value in form.items() if value != ""}

    try:
        return SubscribeIn.model_validate(data or {})
    except ValidationError as e:
        raise RequestValidationError(e.errors(include_url=False))


def _get_subscription_or_404(db: Session, subscription_id: uuid.UUID) -> Subscription:
    subscription = db.get(Subscription, subscription_id)
    if not subscription:
        raise HTTPException(status_code=404, detail="Subscription not found")
    return subscription


@router.get("/subscriptions", response_model=list[SubscriptionOut])
def my_subscriptions(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return [
        SubscriptionOut(
            id=sub.id,
            creator=CreatorSummaryOut.model_validate(sub.creator),
            status=sub.status,
            amount=sub.amount,
            expires_at=sub.expires_at,
            plan_details=sub.plan_details,
            is_entitled=lifecycle.is_entitled(sub),
            created_at=sub.created_at,
        )
        for sub in lifecycle.list_subscriptions(db, user.id)
    ]


# declared before /subscribe/{creator_id} so "webhook" is never read as a creator id
@router.post("/subscribe/webhook", response_class=PlainTextResponse)
def subscription_webhook(
    payment_id: Optional[str] = Form(default=None, alias="id"),
    db: Session = Depends(get_db),
    provider: PaymentProvider = Depends(get_payment_provider),
):
    """Mollie posts only the payment id; everything else is re-fetched from Mollie."""
    try:
        result = lifecycle.handle_webhook(db, provider, payment_id)
    except Exception as e:
        logger.exception(f"Webhook processing error for payment {payment_id}")
        return PlainTextResponse(f"Webhook processing failed: {e}", status_code=500)

    if result.status_code != 200:
        logger.warning(f"Webhook for payment {payment_id} answered {result.status_code}: {result.message}")
    return PlainTextResponse(result.message, status_code=result.status_code)


@router.get("/subscribe/callback/{subscription_id}")
def subscription_callback(
    subscription_id: uuid.UUID,
    db: Session = Depends(get_db),
    provider: PaymentProvider = Depends(get_payment_provider),
):
    subscription = _get_subscription_or_404(db, subscription_id)
    result = lifecycle.handle_paid_callback(db, provider, subscription)

    target = profile_url(subscription.creator)
    if result.success:
        return redirect_with_flash(target, success=result.message)
    return redirect_with_flash(target, error=result.message)


@router.get("/subscribe/free-callback/{subscription_id}")
def subscription_free_callback(
    subscription_id: uuid.UUID,
    db: Session = Depends(get_db),
    provider: PaymentProvider = Depends(get_payment_provider),
):
    subscription = _get_subscription_or_404(db, subscription_id)
    result = lifecycle.handle_free_callback(db, provider, subscription)

    target = profile_url(subscription.creator)
    if result.success:
        return redirect_with_flash(target, success=result.message)
    return redirect_with_flash(target, error=result.message)


@router.post("/subscribe/{creator_id}")
def subscribe(
    creator_id: uuid.UUID,
    request: Request,
    payload: SubscribeIn = Depends(subscribe_payload),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    provider: PaymentProvider = Depends(get_payment_provider),
):
    creator = get_user_or_404(db, creator_id)
    if creator.id == user.id:
        raise HTTPException(status_code=422, detail="You cannot subscribe to yourself")

    try:
        checkout = lifecycle.subscribe(
            db,
            provider,
            subscriber=user,
            creator=creator,
            plan_id=payload.plan_id,
            trial=payload.trial,
        )
    except NoOfferablePlansError as e:
        logger.warning(str(e))
        raise HTTPException(status_code=422, detail="Creator has no offerable plans")
    except lifecycle.SubscriptionCheckoutError as e:
        return redirect_with_flash(back_url(request, creator), error=e.message)

    logger.info(f"Subscription {checkout.subscription.id} pending checkout for user {user.id} -> {creator.id}")
    return RedirectResponse(checkout.checkout_url, status_code=303)
