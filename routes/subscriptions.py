# routes/subscriptions.py
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlmodel import Session

from core.database import get_session
from core.dependencies import get_subscription_service
from core.security import ensure_gym_access, get_current_user, require_owner_or_admin
from models.models import User, UserRole
from schemas.subscription_schema import (
    AccessCodeCheck,
    GatewayOrderRead,
    SubscriptionCheckoutRead,
    SubscriptionCreate,
    SubscriptionRead,
)
from services.subscription_service import SubscriptionService

router = APIRouter(prefix="/subscriptions", tags=["Subscriptions"])


# ==================================================================
#  ✅ Start a subscription (returns gateway checkout options)
# ==================================================================
@router.post("", response_model=SubscriptionCheckoutRead, status_code=status.HTTP_201_CREATED)
def create_subscription(
    data: SubscriptionCreate,
    current_user: User = Depends(get_current_user),
    service: SubscriptionService = Depends(get_subscription_service),
):
    checkout = service.create_subscription(current_user.id, data.plan_id, data.gym_id)
    return SubscriptionCheckoutRead(
        subscription=SubscriptionRead.model_validate(checkout.subscription),
        order=GatewayOrderRead.model_validate(checkout.order),
        payment_id=checkout.payment.id,
        gateway_options=checkout.gateway_options,
    )


# ==================================================================
#  ✅ My subscriptions
# ==================================================================
@router.get("/me", response_model=List[SubscriptionRead])
def my_subscriptions(
    current_user: User = Depends(get_current_user),
    service: SubscriptionService = Depends(get_subscription_service),
):
    return service.list_user_subscriptions(current_user.id)


# ==================================================================
#  ✅ Gym subscribers (owner / admin)
# ==================================================================
@router.get("/gym/{gym_id}", response_model=List[SubscriptionRead])
def gym_subscriptions(
    gym_id: int,
    status_filter: Optional[str] = Query(default=None, alias="status"),
    current_user: User = Depends(require_owner_or_admin),
    session: Session = Depends(get_session),
    service: SubscriptionService = Depends(get_subscription_service),
):
    ensure_gym_access(session, gym_id, current_user)
    return service.list_gym_subscriptions(gym_id, status_filter)


# ==================================================================
#  ✅ Access code check at the gym entrance
# ==================================================================
@router.get("/access/{access_code}", response_model=AccessCodeCheck)
def check_access_code(
    access_code: str,
    gym_id: Optional[int] = None,
    current_user: User = Depends(require_owner_or_admin),
    session: Session = Depends(get_session),
    service: SubscriptionService = Depends(get_subscription_service),
):
    if gym_id is not None:
        ensure_gym_access(session, gym_id, current_user)
    elif current_user.role != UserRole.ADMIN.value:
        raise HTTPException(status_code=400, detail="gym_id is required for owners")

    subscription = service.verify_access_code(access_code, gym_id)
    return AccessCodeCheck(valid=True, subscription=SubscriptionRead.model_validate(subscription))


# ==================================================================
#  ✅ My active subscription at a gym (null when none)
# ==================================================================
@router.get("/active", response_model=Optional[SubscriptionRead])
def my_active_subscription(
    gym_id: int,
    current_user: User = Depends(get_current_user),
    service: SubscriptionService = Depends(get_subscription_service),
):
    return service.get_active_subscription(current_user.id, gym_id)


# ==================================================================
#  ✅ Subscriptions nearing their end date (owner / admin)
# ==================================================================
@router.get("/expiring", response_model=List[SubscriptionRead])
def expiring_subscriptions(
    gym_id: Optional[int] = None,
    within_days: int = Query(default=7, ge=1, le=90),
    current_user: User = Depends(require_owner_or_admin),
    session: Session = Depends(get_session),
    service: SubscriptionService = Depends(get_subscription_service),
):
    if gym_id is not None:
        ensure_gym_access(session, gym_id, current_user)
    elif current_user.role != UserRole.ADMIN.value:
        raise HTTPException(status_code=400, detail="gym_id is required for owners")

    return service.list_expiring_subscriptions(gym_id, within_days)


# ==================================================================
#  ✅ Single subscription
# ==================================================================
@router.get("/{subscription_id}", response_model=SubscriptionRead)
def get_subscription(
    subscription_id: int,
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
    service: SubscriptionService = Depends(get_subscription_service),
):
    subscription = service.get_subscription(subscription_id)
    if subscription.user_id != current_user.id:
        if current_user.role == UserRole.USER.value:
            raise HTTPException(status_code=404, detail="Subscription not found")
        ensure_gym_access(session, subscription.gym_id, current_user)
    return subscription


# ==================================================================
#  ✅ Cancel
# ==================================================================
@router.post("/{subscription_id}/cancel", response_model=SubscriptionRead)
def cancel_subscription(
    subscription_id: int,
    current_user: User = Depends(get_current_user),
    service: SubscriptionService = Depends(get_subscription_service),
):
    return service.cancel_subscription(current_user.id, subscription_id)
