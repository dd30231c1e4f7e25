# routes/subscription.py
from typing import List

from fastapi import APIRouter, Depends, HTTPException
from sqlmodel import Session, select

from core.database import get_session
from core.security import get_current_user
from models.models import Subscription, User
from schemas.payment_schema import SubscriptionRead
from services.entitlement_service import cancel_subscription

router = APIRouter(prefix="/subscriptions", tags=["Subscriptions"])


@router.get("/me", response_model=List[SubscriptionRead])
def get_my_subscriptions(
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    return session.exec(
        select(Subscription)
        .where(Subscription.member_id == current_user.id)
        .order_by(Subscription.expires_at.desc())
    ).all()


@router.post("/{instructor_id}/cancel", response_model=SubscriptionRead)
def unsubscribe_from_instructor(
    instructor_id: int,
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    subscription = cancel_subscription(session, current_user.id, instructor_id)
    if not subscription:
        raise HTTPException(status_code=404, detail="No active subscription found")
    return subscription
