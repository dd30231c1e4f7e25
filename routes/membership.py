# routes/membership.py
from datetime import timedelta
from typing import List

from fastapi import APIRouter, Depends, HTTPException
from sqlmodel import Session, select

from core.clock import utcnow
from core.database import get_session
from core.errors import PaymentError
from core.security import get_current_user
from models.models import MEMBERSHIP_PLANS, Membership, MembershipStatus, User, get_membership_plan
from routes.payment import checkout_response, raise_http
from schemas.payment_schema import (
    CheckoutResponse,
    MembershipPlanOut,
    MembershipPurchase,
    MembershipRead,
    MyMembershipsResponse,
)
from services.checkout_service import create_membership_checkout
from services.entitlement_service import next_membership_start
from services.payhere_service import PayHereService, get_payhere_service

router = APIRouter(prefix="/memberships", tags=["Memberships"])


@router.get("/plans", response_model=List[MembershipPlanOut])
def get_membership_plans():
    return [MembershipPlanOut(**plan) for plan in MEMBERSHIP_PLANS]


@router.get("/me", response_model=MyMembershipsResponse)
def get_my_memberships(
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    memberships = session.exec(
        select(Membership)
        .where(Membership.user_id == current_user.id)
        .order_by(Membership.end_date.desc())
    ).all()
    now = utcnow()
    active = next(
        (m for m in memberships if m.status == MembershipStatus.ACTIVE.value and m.start_date <= now < m.end_date),
        None,
    )
    return MyMembershipsResponse(
        active=MembershipRead.model_validate(active) if active else None,
        items=[MembershipRead.model_validate(m) for m in memberships],
    )


@router.post("/purchase", response_model=CheckoutResponse, status_code=201)
def purchase_membership(
    data: MembershipPurchase,
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
    payhere: PayHereService = Depends(get_payhere_service),
):
    """
    Start a PayHere payment for a membership plan.

    The quoted period is stored on the payment for display only; the real
    period is computed again when the payment completes.
    """
    plan = get_membership_plan(data.plan_id)
    if not plan:
        raise HTTPException(status_code=400, detail="Invalid membership plan")

    quote_start = next_membership_start(session, current_user.id, utcnow())
    quote_end = quote_start + timedelta(days=plan["duration_days"])

    try:
        bundle = create_membership_checkout(session, payhere, current_user, plan, quote_start, quote_end)
    except PaymentError as e:
        raise_http(e)
    return checkout_response(bundle)
