# services/entitlement_service.py
"""
Entitlement activators.

Each activator takes a Payment that is already ``completed`` and makes sure
the matching Subscription or Membership exists, doing nothing on a repeat
call for the same payment.
"""
import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlmodel import Session, select

from core.clock import utcnow
from core.config import settings
from models.models import (
    Membership,
    MembershipStatus,
    Payment,
    PaymentStatus,
    Subscription,
    SubscriptionStatus,
)
from schemas.payment_schema import GenericMetadata, MembershipMetadata, SubscriptionMetadata

logger = logging.getLogger(__name__)


# ------------------------------------------------------------
# Subscription
# ------------------------------------------------------------
def activate_subscription(
    session: Session,
    payment: Payment,
    now: Optional[datetime] = None,
    period_days: Optional[int] = None,
) -> Optional[Subscription]:
    now = now or utcnow()
    period = timedelta(days=period_days or settings.SUBSCRIPTION_PERIOD_DAYS)

    if payment.status != PaymentStatus.COMPLETED.value:
        logger.warning(f"⚠️ Payment {payment.id} is {payment.status}, subscription not activated")
        return None

    instructor_id = payment.instructor_id
    details = payment.details
    if isinstance(details, SubscriptionMetadata):
        instructor_id = instructor_id or details.instructor_id
    if not instructor_id:
        logger.warning(f"⚠️ Subscription payment {payment.id} has no instructor")
        return None

    # Already activated by this payment
    existing = session.exec(
        select(Subscription).where(Subscription.payment_id == payment.id)
    ).first()
    if existing:
        if existing.status != SubscriptionStatus.ACTIVE.value:
            existing.status = SubscriptionStatus.ACTIVE.value
            existing.cancelled_at = None
            existing.updated_at = now
            session.add(existing)
            session.commit()
            session.refresh(existing)
        return existing

    # One row per (member, instructor): renewals reuse it
    subscription = session.exec(
        select(Subscription).where(
            Subscription.member_id == payment.user_id,
            Subscription.instructor_id == instructor_id,
        )
    ).first()

    if subscription:
        still_running = (
            subscription.status == SubscriptionStatus.ACTIVE.value
            and subscription.expires_at > now
        )
        base = subscription.expires_at if still_running else now
        subscription.status = SubscriptionStatus.ACTIVE.value
        subscription.subscribed_at = now
        subscription.expires_at = base + period
        subscription.cancelled_at = None
        subscription.payment_id = payment.id
        subscription.updated_at = now
        session.add(subscription)
        session.commit()
        session.refresh(subscription)
        logger.info(f"🔄 Subscription {subscription.id} renewed by payment {payment.id} until {subscription.expires_at}")
        return subscription

    subscription = Subscription(
        member_id=payment.user_id,
        instructor_id=instructor_id,
        status=SubscriptionStatus.ACTIVE.value,
        subscribed_at=now,
        expires_at=now + period,
        payment_id=payment.id,
        created_at=now,
        updated_at=now,
    )
    session.add(subscription)
    session.commit()
    session.refresh(subscription)
    logger.info(f"✅ Subscription {subscription.id} created for payment {payment.id}")
    return subscription


def cancel_subscription(
    session: Session,
    member_id: int,
    instructor_id: int,
    now: Optional[datetime] = None,
) -> Optional[Subscription]:
    """User-initiated cancellation; returns None when nothing active exists."""
    now = now or utcnow()
    subscription = session.exec(
        select(Subscription).where(
            Subscription.member_id == member_id,
            Subscription.instructor_id == instructor_id,
            Subscription.status == SubscriptionStatus.ACTIVE.value,
        )
    ).first()
    if not subscription:
        return None

    subscription.status = SubscriptionStatus.CANCELLED.value
    subscription.cancelled_at = now
    subscription.updated_at = now
    session.add(subscription)
    session.commit()
    session.refresh(subscription)
    logger.info(f"🗑️ Subscription {subscription.id} cancelled by member {member_id}")
    return subscription


# ------------------------------------------------------------
# Membership
# ------------------------------------------------------------
def next_membership_start(session: Session, user_id: int, now: datetime) -> datetime:
    """Now, or the day after the holder's current active period ends."""
    current = session.exec(
        select(Membership)
        .where(
            Membership.user_id == user_id,
            Membership.status == MembershipStatus.ACTIVE.value,
            Membership.end_date > now,
        )
        .order_by(Membership.end_date.desc())
    ).first()
    if current:
        return current.end_date + timedelta(days=1)
    return now


def activate_membership(
    session: Session,
    payment: Payment,
    now: Optional[datetime] = None,
) -> Optional[Membership]:
    now = now or utcnow()

    if payment.status != PaymentStatus.COMPLETED.value:
        logger.warning(f"⚠️ Payment {payment.id} is {payment.status}, membership not activated")
        return None

    existing = session.exec(
        select(Membership).where(Membership.payment_id == payment.id)
    ).first()
    if existing:
        return existing

    details = payment.details
    if not isinstance(details, MembershipMetadata):
        logger.warning(f"⚠️ Payment {payment.id} carries no membership plan")
        return None

    start_date = next_membership_start(session, payment.user_id, now)
    membership = Membership(
        user_id=payment.user_id,
        plan_id=details.plan_id,
        plan_name=details.plan_name,
        duration_days=details.duration_days,
        amount=payment.amount,
        currency=payment.currency,
        start_date=start_date,
        end_date=start_date + timedelta(days=details.duration_days),
        status=MembershipStatus.ACTIVE.value,
        payment_id=payment.id,
        auto_renew=False,
        created_at=now,
        updated_at=now,
    )
    session.add(membership)
    session.commit()
    session.refresh(membership)
    logger.info(f"✅ Membership {membership.id} created for payment {payment.id} ({membership.start_date} → {membership.end_date})")
    return membership


# ------------------------------------------------------------
# Dispatcher
# ------------------------------------------------------------
def activate_entitlements(session: Session, payment: Payment, now: Optional[datetime] = None):
    """
    Run the activator matching the payment's metadata kind.

    Never raises: the payment is already completed and stays completed even
    if activation fails, so failures are only logged for follow-up.
    """
    try:
        details = payment.details
        if isinstance(details, MembershipMetadata):
            return activate_membership(session, payment, now)
        if isinstance(details, SubscriptionMetadata):
            return activate_subscription(session, payment, now)
        if isinstance(details, GenericMetadata):
            return None
        raise TypeError(f"Unknown payment metadata kind: {details!r}")
    except Exception as e:
        session.rollback()
        logger.exception(f"❌ Entitlement activation failed for payment {payment.id}: {e}")
        return None
