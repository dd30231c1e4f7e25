# services/checkout_service.py
import json
import logging
import secrets
import time
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Dict, Optional, Union

from sqlmodel import Session

from core.errors import InvalidAmount, InvalidPayerContact
from models.models import Payment, PaymentMethod, PaymentStatus, User
from schemas.payment_schema import (
    GenericMetadata,
    MembershipMetadata,
    PaymentMetadata,
    SubscriptionMetadata,
)
from services.payhere_service import PayHereService

logger = logging.getLogger(__name__)

ORDER_PREFIXES = {
    "generic": "ORDER",
    "subscription": "SUB",
    "membership": "MEM",
}


@dataclass
class CheckoutBundle:
    payment: Payment
    payment_url: str
    params: Dict[str, str]


def validate_payer_email(email: Optional[str]) -> str:
    email = (email or "").strip()
    if len(email) < 5 or "@" not in email or "." not in email:
        raise InvalidPayerContact("Valid email address is required for payment")
    return email


def validate_amount(amount: Union[Decimal, str, int, float, None]) -> Decimal:
    try:
        value = Decimal(str(amount))
        if not value.is_finite():
            raise InvalidAmount("Valid payment amount is required")
        # Checked at the precision PayHere is sent
        value = value.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    except (InvalidOperation, TypeError, ValueError):
        raise InvalidAmount("Valid payment amount is required")
    if value <= 0:
        raise InvalidAmount("Valid payment amount is required")
    return value


def generate_order_id(kind: str = "generic") -> str:
    """<PREFIX>_<epoch ms>_<random hex>, unique enough to be the idempotency key."""
    prefix = ORDER_PREFIXES.get(kind, "ORDER")
    return f"{prefix}_{time.time_ns() // 1_000_000}_{secrets.token_hex(5)}"


def create_checkout(
    session: Session,
    payhere: PayHereService,
    payer: User,
    amount: Union[Decimal, str, int, float],
    currency: str = "LKR",
    description: Optional[str] = None,
    instructor_id: Optional[int] = None,
    metadata: Optional[PaymentMetadata] = None,
) -> CheckoutBundle:
    """
    Create one pending Payment and the signed PayHere parameter set for it.

    Everything PayHere would reject is checked before the row is written.
    """
    payhere.require_credentials()
    payhere.check_callback_urls()
    email = validate_payer_email(payer.email)
    value = validate_amount(amount)
    metadata = metadata or GenericMetadata()

    payment = Payment(
        user_id=payer.id,
        instructor_id=instructor_id,
        amount=value,
        currency=(currency or "LKR").upper(),
        status=PaymentStatus.PENDING.value,
        payment_method=PaymentMethod.PAYHERE.value,
        payhere_order_id=generate_order_id(metadata.kind),
        description=description or "Payment",
        payment_metadata=json.dumps(metadata.model_dump(mode="json")),
    )
    session.add(payment)
    # Flush for the id the callback URLs carry
    session.flush()
    try:
        params = payhere.build_checkout_params(
            order_id=payment.payhere_order_id,
            payment_id=payment.id,
            amount=payment.amount,
            currency=payment.currency,
            items=payment.description,
            full_name=payer.full_name,
            email=email,
            phone=payer.phone_number,
            address=payer.address,
            city=payer.city,
        )
    except Exception:
        session.rollback()
        raise
    session.commit()
    session.refresh(payment)

    logger.info(f"💳 Payment {payment.id} created ({payment.payhere_order_id}, {payment.amount} {payment.currency})")
    return CheckoutBundle(payment=payment, payment_url=payhere.checkout_url, params=params)


def create_subscription_checkout(
    session: Session,
    payhere: PayHereService,
    payer: User,
    instructor: User,
    amount: Union[Decimal, str, int, float],
    currency: str = "LKR",
    description: Optional[str] = None,
) -> CheckoutBundle:
    return create_checkout(
        session,
        payhere,
        payer,
        amount,
        currency=currency,
        description=description or f"Monthly subscription to {instructor.full_name or 'Instructor'}",
        instructor_id=instructor.id,
        metadata=SubscriptionMetadata(instructor_id=instructor.id),
    )


def create_membership_checkout(
    session: Session,
    payhere: PayHereService,
    payer: User,
    plan: dict,
    quote_start,
    quote_end,
) -> CheckoutBundle:
    return create_checkout(
        session,
        payhere,
        payer,
        plan["price"],
        currency=plan.get("currency", "LKR"),
        description=f"{plan['name']} Membership",
        metadata=MembershipMetadata(
            plan_id=plan["id"],
            plan_name=plan["name"],
            duration_days=plan["duration_days"],
            period_start=quote_start,
            period_end=quote_end,
        ),
    )
