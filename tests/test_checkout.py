from datetime import timedelta
from decimal import Decimal

import pytest
from sqlmodel import select

from core.clock import utcnow
from core.errors import ConfigurationError, InvalidAmount, InvalidPayerContact, ValidationError
from models.models import Payment, PaymentStatus, User, get_membership_plan
from schemas.payment_schema import GenericMetadata, MembershipMetadata, SubscriptionMetadata
from services.checkout_service import (
    create_checkout,
    create_membership_checkout,
    create_subscription_checkout,
    generate_order_id,
)
from services.payhere_service import (
    DEFAULT_ADDRESS,
    DEFAULT_PHONE,
    PayHereService,
    build_checkout_hash,
    split_name,
)


def _payment_count(session) -> int:
    return len(session.exec(select(Payment)).all())


def test_checkout_creates_pending_payment(session, payhere, member):
    bundle = create_checkout(session, payhere, member, "1000", description="Drop-in session")

    payment = bundle.payment
    assert payment.id is not None
    assert payment.status == PaymentStatus.PENDING.value
    assert payment.amount == Decimal("1000.00")
    assert payment.currency == "LKR"
    assert payment.payhere_order_id.startswith("ORDER_")
    assert isinstance(payment.details, GenericMetadata)
    assert bundle.payment_url == "https://sandbox.payhere.lk/pay/checkout"


def test_checkout_params_are_signed(session, payhere, member):
    bundle = create_checkout(session, payhere, member, Decimal("1000"))
    params = bundle.params
    payment = bundle.payment

    assert params["merchant_id"] == "1211149"
    assert params["order_id"] == payment.payhere_order_id
    assert params["amount"] == "1000.00"
    assert params["currency"] == "LKR"
    assert params["return_url"] == f"https://api.getfit.test/payment/return?paymentId={payment.id}"
    assert params["cancel_url"] == f"https://api.getfit.test/payment/cancel?paymentId={payment.id}"
    assert params["notify_url"] == "https://api.getfit.test/api/v1/payments/payhere-notify"
    assert params["hash"] == build_checkout_hash(
        "1211149", payment.payhere_order_id, "1000.00", "LKR", "test-merchant-secret"
    )


def test_checkout_params_fill_missing_contact_details(session, payhere):
    payer = User(full_name="Madonna", email="madonna@getfit.lk")
    session.add(payer)
    session.commit()
    session.refresh(payer)

    params = create_checkout(session, payhere, payer, 500).params

    assert params["first_name"] == "Madonna"
    assert params["last_name"] == "User"
    assert params["phone"] == DEFAULT_PHONE
    assert params["address"] == DEFAULT_ADDRESS
    assert params["city"] == "Colombo"
    assert params["country"] == "Sri Lanka"


def test_checkout_params_keep_payer_details(session, payhere, member):
    params = create_checkout(session, payhere, member, 500).params

    assert params["first_name"] == "Kasun"
    assert params["last_name"] == "Silva"
    assert params["phone"] == "0771234567"
    assert params["city"] == "Kandy"
    assert params["email"] == "kasun@getfit.lk"


@pytest.mark.parametrize("full_name, expected", [
    ("", ("Customer", "User")),
    ("  Kasun   Chamara  Silva ", ("Kasun", "Chamara Silva")),
])
def test_split_name(full_name, expected):
    assert split_name(full_name) == expected


@pytest.mark.parametrize("email", ["", "a@b", "no-at-sign.lk", "user@localhost"])
def test_invalid_payer_email_is_rejected_without_a_row(session, payhere, email):
    payer = User(full_name="Bad Email", email=email)
    with pytest.raises(InvalidPayerContact):
        create_checkout(session, payhere, payer, 1000)
    assert _payment_count(session) == 0


@pytest.mark.parametrize("amount", [0, -5, "0.004", "abc", "NaN", "Infinity", "1e30", None])
def test_invalid_amount_is_rejected_without_a_row(session, payhere, member, amount):
    with pytest.raises(InvalidAmount):
        create_checkout(session, payhere, member, amount)
    assert _payment_count(session) == 0


def test_amount_is_rounded_to_cents(session, payhere, member):
    bundle = create_checkout(session, payhere, member, "0.005")
    assert bundle.payment.amount == Decimal("0.01")
    assert bundle.params["amount"] == "0.01"


def test_rejected_params_leave_no_row(session, member, settings_factory):
    payhere = PayHereService(settings_factory(DEFAULT_COUNTRY=""))
    with pytest.raises(ValidationError):
        create_checkout(session, payhere, member, 1000)
    assert _payment_count(session) == 0


def test_unconfigured_merchant_is_rejected_without_a_row(session, member, settings_factory):
    payhere = PayHereService(settings_factory(PAYHERE_MERCHANT_ID="", PAYHERE_MERCHANT_SECRET=""))
    assert not payhere.enabled

    with pytest.raises(ConfigurationError):
        create_checkout(session, payhere, member, 1000)
    assert _payment_count(session) == 0


def test_relative_callback_url_is_rejected(session, member, settings_factory):
    payhere = PayHereService(settings_factory(BACKEND_URL="api.getfit.test"))
    with pytest.raises(ConfigurationError):
        create_checkout(session, payhere, member, 1000)
    assert _payment_count(session) == 0


def test_loopback_callback_url_only_warns(session, member, settings_factory):
    payhere = PayHereService(settings_factory(BACKEND_URL="http://localhost:8000"))
    bundle = create_checkout(session, payhere, member, 1000)
    assert bundle.params["notify_url"] == "http://localhost:8000/api/v1/payments/payhere-notify"


def test_live_mode_uses_live_checkout_url(session, member, settings_factory):
    payhere = PayHereService(settings_factory(PAYHERE_SANDBOX=False))
    assert create_checkout(session, payhere, member, 1000).payment_url == "https://www.payhere.lk/pay/checkout"


def test_subscription_checkout_records_instructor(session, payhere, member, instructor):
    payment = create_subscription_checkout(session, payhere, member, instructor, "2500").payment

    assert payment.instructor_id == instructor.id
    assert payment.payhere_order_id.startswith("SUB_")
    assert payment.description == "Monthly subscription to Nimal Perera"
    details = payment.details
    assert isinstance(details, SubscriptionMetadata)
    assert details.instructor_id == instructor.id


def test_membership_checkout_records_plan(session, payhere, member):
    plan = get_membership_plan("quarterly")
    start = utcnow()
    payment = create_membership_checkout(
        session, payhere, member, plan, start, start + timedelta(days=90)
    ).payment

    assert payment.payhere_order_id.startswith("MEM_")
    assert payment.amount == Decimal("14000.00")
    assert payment.description == "3 Months Membership"
    details = payment.details
    assert isinstance(details, MembershipMetadata)
    assert details.plan_id == "quarterly"
    assert details.duration_days == 90


def test_order_ids_are_unique():
    ids = {generate_order_id("membership") for _ in range(200)}
    assert len(ids) == 200
