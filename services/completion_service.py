# services/completion_service.py
"""
Payment completion.

A PayHere payment can be finalised from three places, in any order and any
number of times:

* the signed server-to-server notification (``payhere-notify``),
* the browser return redirect (``/payment/return?paymentId=``, unsigned),
* the payer's app calling ``/payments/{id}/complete`` (authenticated).

All three funnel into :func:`attempt_completion`; they only differ in the
eligibility check handed to it. The ``pending -> completed`` transition is a
single conditional UPDATE, so only one caller ever wins it and only the
winner activates entitlements and sends the receipt.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Callable, Mapping, Optional

from sqlalchemy import update
from sqlmodel import Session, select

from core.clock import utcnow
from core.config import settings
from core.errors import NotFoundError, SignatureError, StaleRequestError, ValidationError
from models.models import Payment, PaymentStatus, User
from services.email_service import email_service
from services.entitlement_service import activate_entitlements
from services.payhere_service import NotificationVerification, PayHereService

logger = logging.getLogger(__name__)

# Eligibility check: raises when the channel may not complete this payment
Eligibility = Callable[[Payment, datetime], None]
# BackgroundTasks.add_task compatible scheduler
Scheduler = Callable[..., Any]


class CompletionChannel(str, Enum):
    WEBHOOK = "webhook"
    RETURN_REDIRECT = "return_redirect"
    MANUAL = "manual"


@dataclass
class CompletionOutcome:
    payment: Payment
    channel: CompletionChannel
    transitioned: bool
    message: str

    @property
    def completed(self) -> bool:
        return self.payment.status == PaymentStatus.COMPLETED.value


# ------------------------------------------------------------
# Eligibility strategies
# ------------------------------------------------------------
def verified_notification(verification: NotificationVerification) -> Eligibility:
    def check(payment: Payment, now: datetime) -> None:
        if not verification.valid:
            raise SignatureError(verification.reason or "Invalid notification")
        if verification.order_id != payment.payhere_order_id:
            raise SignatureError("Notification does not belong to this payment")

    return check


def within_recency_window(window: timedelta) -> Eligibility:
    def check(payment: Payment, now: datetime) -> None:
        age = now - payment.created_at
        if age > window:
            logger.warning(
                f"⏰ Ignoring unsigned completion of payment {payment.id}: created {age} ago (window {window})"
            )
            raise StaleRequestError("Payment is too old to be completed from this channel")

    return check


def owned_and_recent(user_id: int, window: timedelta) -> Eligibility:
    recent = within_recency_window(window)

    def check(payment: Payment, now: datetime) -> None:
        if payment.user_id != user_id:
            # Same answer as an unknown id, existence is not disclosed
            raise NotFoundError("Payment not found")
        recent(payment, now)

    return check


def recency_window() -> timedelta:
    return timedelta(minutes=settings.PAYMENT_RECENCY_WINDOW_MINUTES)


# ------------------------------------------------------------
# Guarded transitions
# ------------------------------------------------------------
def _transition(
    session: Session,
    payment_id: int,
    expected: PaymentStatus,
    target: PaymentStatus,
    now: datetime,
    **values: Any,
) -> bool:
    """UPDATE ... WHERE status = expected; True only for the caller that moved the row."""
    result = session.exec(
        update(Payment)
        .where(Payment.id == payment_id, Payment.status == expected.value)
        .values(status=target.value, updated_at=now, **values)
    )
    session.commit()
    return result.rowcount == 1


def mark_refunded(session: Session, payment_id: int, now: Optional[datetime] = None) -> Payment:
    """Status flag only; the money goes back through the PayHere merchant portal."""
    now = now or utcnow()
    payment = session.get(Payment, payment_id)
    if not payment:
        raise NotFoundError("Payment not found")
    if not _transition(session, payment.id, PaymentStatus.COMPLETED, PaymentStatus.REFUNDED, now):
        raise ValidationError("Only completed payments can be refunded")
    session.refresh(payment)
    logger.info(f"↩️ Payment {payment.id} marked as refunded")
    return payment


# ------------------------------------------------------------
# Receipt
# ------------------------------------------------------------
def dispatch_receipt(session: Session, payment: Payment, schedule: Optional[Scheduler] = None) -> None:
    """Fire-and-forget; a failed receipt never fails the completion."""
    try:
        payer = session.get(User, payment.user_id)
        if not payer or not payer.email:
            logger.warning(f"⚠️ Cannot send receipt: payer or email not found for payment {payment.id}")
            return

        instructor_name = None
        if payment.instructor_id:
            instructor = session.get(User, payment.instructor_id)
            instructor_name = instructor.full_name if instructor else None

        kwargs = dict(
            to_email=payer.email,
            name=payer.full_name,
            order_id=payment.payhere_order_id,
            payment_id=payment.payhere_payment_id,
            amount=f"{payment.amount:.2f}",
            currency=payment.currency,
            description=payment.description,
            transaction_date=(payment.completed_at or payment.created_at).strftime("%Y-%m-%d %H:%M UTC"),
            instructor_name=instructor_name,
        )
        if schedule is not None:
            schedule(email_service.send_payment_receipt_email, **kwargs)
        else:
            email_service.send_payment_receipt_email(**kwargs)
    except Exception as e:
        logger.exception(f"❌ Failed to dispatch receipt for payment {payment.id}: {e}")


# ------------------------------------------------------------
# Shared completion
# ------------------------------------------------------------
def attempt_completion(
    session: Session,
    payment: Payment,
    eligibility: Eligibility,
    channel: CompletionChannel,
    payhere_payment_id: Optional[str] = None,
    now: Optional[datetime] = None,
    schedule: Optional[Scheduler] = None,
) -> CompletionOutcome:
    """
    Complete ``payment`` if it is still pending and the channel is eligible.

    A payment that is no longer pending is a successful no-op, whatever its
    status. Only the call that wins the conditional update activates
    entitlements and dispatches the receipt.
    """
    now = now or utcnow()

    if not payment.is_pending:
        return CompletionOutcome(payment, channel, False, f"Payment already {payment.status}")

    eligibility(payment, now)

    values = {"completed_at": now}
    if payhere_payment_id:
        values["payhere_payment_id"] = payhere_payment_id
    won = _transition(session, payment.id, PaymentStatus.PENDING, PaymentStatus.COMPLETED, now, **values)
    session.refresh(payment)

    if not won:
        logger.info(f"ℹ️ Payment {payment.id} already finalised ({payment.status}), {channel.value} ignored")
        return CompletionOutcome(payment, channel, False, f"Payment already {payment.status}")

    logger.info(f"✅ Payment {payment.id} completed via {channel.value}")
    activate_entitlements(session, payment, now)
    dispatch_receipt(session, payment, schedule)
    return CompletionOutcome(payment, channel, True, "Payment completed successfully")


# ------------------------------------------------------------
# Entry points
# ------------------------------------------------------------
def handle_payhere_notification(
    session: Session,
    fields: Mapping[str, str],
    payhere: PayHereService,
    now: Optional[datetime] = None,
    schedule: Optional[Scheduler] = None,
) -> CompletionOutcome:
    """Signed webhook. Raises SignatureError / NotFoundError, never mutates on either."""
    now = now or utcnow()
    verification = payhere.verify(fields)
    if not verification.valid:
        raise SignatureError(verification.reason or "Invalid notification")

    payment = session.exec(
        select(Payment).where(Payment.payhere_order_id == verification.order_id)
    ).first()
    if not payment:
        raise NotFoundError(f"No payment for order {verification.order_id}")

    if verification.success:
        return attempt_completion(
            session,
            payment,
            verified_notification(verification),
            CompletionChannel.WEBHOOK,
            payhere_payment_id=verification.payment_id,
            now=now,
            schedule=schedule,
        )

    failed = _transition(session, payment.id, PaymentStatus.PENDING, PaymentStatus.FAILED, now)
    session.refresh(payment)
    if failed:
        logger.info(f"❌ Payment {payment.id} failed (PayHere status {verification.status_code})")
    return CompletionOutcome(
        payment,
        CompletionChannel.WEBHOOK,
        failed,
        f"PayHere reported status {verification.status_code}",
    )


def _load_payment(session: Session, payment_id: int) -> Payment:
    payment = session.get(Payment, payment_id)
    if not payment:
        raise NotFoundError("Payment not found")
    return payment


def complete_from_return(
    session: Session,
    payment_id: int,
    window: Optional[timedelta] = None,
    now: Optional[datetime] = None,
    schedule: Optional[Scheduler] = None,
) -> CompletionOutcome:
    """Unsigned browser redirect, trusted only inside the recency window."""
    payment = _load_payment(session, payment_id)
    return attempt_completion(
        session,
        payment,
        within_recency_window(window or recency_window()),
        CompletionChannel.RETURN_REDIRECT,
        now=now,
        schedule=schedule,
    )


def complete_manually(
    session: Session,
    payment_id: int,
    user_id: int,
    window: Optional[timedelta] = None,
    now: Optional[datetime] = None,
    schedule: Optional[Scheduler] = None,
) -> CompletionOutcome:
    """Payer's own app, authenticated; window plus ownership."""
    payment = _load_payment(session, payment_id)
    if payment.user_id != user_id:
        raise NotFoundError("Payment not found")
    return attempt_completion(
        session,
        payment,
        owned_and_recent(user_id, window or recency_window()),
        CompletionChannel.MANUAL,
        now=now,
        schedule=schedule,
    )
