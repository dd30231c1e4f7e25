import asyncio
from datetime import datetime, timedelta
from decimal import Decimal

from sqlmodel import Session

from models.models import (
    Membership,
    MembershipStatus,
    PaymentStatus,
    Subscription,
    SubscriptionStatus,
)
from services.expiry_service import run_expiration_checks, start_expiry_sweeper, stop_expiry_sweeper

NOW = datetime(2025, 6, 1, 0, 0)


def _subscription(session, member, instructor, expires_at, status=SubscriptionStatus.ACTIVE):
    subscription = Subscription(
        member_id=member.id,
        instructor_id=instructor.id,
        status=status.value,
        subscribed_at=expires_at - timedelta(days=30),
        expires_at=expires_at,
    )
    session.add(subscription)
    session.commit()
    session.refresh(subscription)
    return subscription


def _membership(session, user, end_date, status=MembershipStatus.ACTIVE):
    membership = Membership(
        user_id=user.id,
        plan_id="monthly",
        plan_name="1 Month",
        duration_days=30,
        amount=Decimal("6000.00"),
        start_date=end_date - timedelta(days=30),
        end_date=end_date,
        status=status.value,
    )
    session.add(membership)
    session.commit()
    session.refresh(membership)
    return membership


def test_subscription_expires_at_its_expiry_instant(session, member, other_member, instructor):
    due = _subscription(session, member, instructor, NOW)
    running = _subscription(session, other_member, instructor, NOW + timedelta(seconds=1))

    result = run_expiration_checks(session, NOW)

    assert result.expired_subscriptions == 1
    session.refresh(due)
    session.refresh(running)
    assert due.status == SubscriptionStatus.EXPIRED.value
    assert running.status == SubscriptionStatus.ACTIVE.value


def test_cancelled_subscription_is_left_alone(session, member, instructor):
    cancelled = _subscription(session, member, instructor, NOW - timedelta(days=1), SubscriptionStatus.CANCELLED)

    assert run_expiration_checks(session, NOW).expired_subscriptions == 0
    session.refresh(cancelled)
    assert cancelled.status == SubscriptionStatus.CANCELLED.value


def test_membership_expires_after_its_end_date(session, member):
    ending_now = _membership(session, member, NOW)
    ended = _membership(session, member, NOW - timedelta(minutes=1))
    pending = _membership(session, member, NOW - timedelta(days=3), MembershipStatus.PENDING)

    result = run_expiration_checks(session, NOW)

    assert result.expired_memberships == 2
    for membership in (ending_now, ended, pending):
        session.refresh(membership)
    assert ending_now.status == MembershipStatus.ACTIVE.value
    assert ended.status == MembershipStatus.EXPIRED.value
    assert pending.status == MembershipStatus.EXPIRED.value


def test_sweep_is_idempotent_and_leaves_payments(session, member, instructor, make_payment):
    payment = make_payment(member, status=PaymentStatus.COMPLETED, created_at=NOW - timedelta(days=60))
    _subscription(session, member, instructor, NOW - timedelta(days=1))
    _membership(session, member, NOW - timedelta(days=1))

    first = run_expiration_checks(session, NOW)
    second = run_expiration_checks(session, NOW)

    assert (first.expired_subscriptions, first.expired_memberships) == (1, 1)
    assert (second.expired_subscriptions, second.expired_memberships) == (0, 0)
    session.refresh(payment)
    assert payment.status == PaymentStatus.COMPLETED.value


def test_sweeper_runs_once_on_start_and_stops(engine, member, instructor, session):
    subscription = _subscription(session, member, instructor, datetime(2000, 1, 1))

    async def scenario():
        handle = start_expiry_sweeper(lambda: Session(engine), interval_seconds=3600)
        await asyncio.sleep(0.1)
        await stop_expiry_sweeper(handle)
        return handle

    handle = asyncio.run(scenario())

    assert handle.runs == 1
    assert handle.task.done()
    session.refresh(subscription)
    assert subscription.status == SubscriptionStatus.EXPIRED.value


def test_sweeper_survives_a_failing_run():
    def broken_factory():
        raise RuntimeError("database unavailable")

    async def scenario():
        handle = start_expiry_sweeper(broken_factory, interval_seconds=0.01)
        await asyncio.sleep(0.05)
        await stop_expiry_sweeper(handle)
        return handle

    handle = asyncio.run(scenario())

    assert handle.runs == 0
    assert handle.task.done()
    assert handle.task.exception() is None
