# services/expiry_service.py
"""
Periodic expiry of subscriptions and memberships.

Each run is a pair of bulk conditional updates, so overlapping runs and a
run interrupted half-way are both harmless. Payments are never touched.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy import update
from sqlmodel import Session

from core.clock import utcnow
from models.models import Membership, MembershipStatus, Subscription, SubscriptionStatus

logger = logging.getLogger(__name__)


@dataclass
class SweepResult:
    expired_subscriptions: int = 0
    expired_memberships: int = 0


def expire_subscriptions(session: Session, now: Optional[datetime] = None) -> int:
    now = now or utcnow()
    result = session.exec(
        update(Subscription)
        .where(
            Subscription.status == SubscriptionStatus.ACTIVE.value,
            Subscription.expires_at <= now,
        )
        .values(status=SubscriptionStatus.EXPIRED.value, updated_at=now)
    )
    session.commit()
    if result.rowcount:
        logger.info(f"🔄 Expired {result.rowcount} subscription(s)")
    return result.rowcount


def expire_memberships(session: Session, now: Optional[datetime] = None) -> int:
    now = now or utcnow()
    result = session.exec(
        update(Membership)
        .where(
            Membership.status.in_([MembershipStatus.ACTIVE.value, MembershipStatus.PENDING.value]),
            Membership.end_date < now,
        )
        .values(status=MembershipStatus.EXPIRED.value, updated_at=now)
    )
    session.commit()
    if result.rowcount:
        logger.info(f"🔄 Expired {result.rowcount} membership(s)")
    return result.rowcount


def run_expiration_checks(session: Session, now: Optional[datetime] = None) -> SweepResult:
    now = now or utcnow()
    result = SweepResult(
        expired_subscriptions=expire_subscriptions(session, now),
        expired_memberships=expire_memberships(session, now),
    )
    logger.info(
        f"✅ Expiration check complete. Subscriptions: {result.expired_subscriptions}, "
        f"Memberships: {result.expired_memberships}"
    )
    return result


# ------------------------------------------------------------
# Background task
# ------------------------------------------------------------
@dataclass
class SweeperHandle:
    interval_seconds: float
    stop_event: asyncio.Event = field(default_factory=asyncio.Event)
    task: Optional[asyncio.Task] = None
    runs: int = 0


async def _sweep_loop(handle: SweeperHandle, session_factory: Callable[[], Session]) -> None:
    while not handle.stop_event.is_set():
        try:
            with session_factory() as session:
                run_expiration_checks(session)
            handle.runs += 1
        except Exception as e:
            logger.exception(f"❌ Error in expiry sweep: {e}")

        try:
            await asyncio.wait_for(handle.stop_event.wait(), timeout=handle.interval_seconds)
        except asyncio.TimeoutError:
            pass


def start_expiry_sweeper(
    session_factory: Callable[[], Session],
    interval_seconds: float = 3600,
) -> SweeperHandle:
    """Run once now, then every ``interval_seconds``. Needs a running event loop."""
    handle = SweeperHandle(interval_seconds=interval_seconds)
    handle.task = asyncio.get_running_loop().create_task(_sweep_loop(handle, session_factory))
    logger.info(f"⏱️ Expiry sweeper started (every {interval_seconds / 60:.0f} min)")
    return handle


async def stop_expiry_sweeper(handle: SweeperHandle) -> None:
    handle.stop_event.set()
    if handle.task is not None:
        await handle.task
    logger.info("⏹️ Expiry sweeper stopped")
