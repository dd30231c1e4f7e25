import json
import os
from datetime import datetime
from decimal import Decimal

# Settings are read at import time
os.environ["SECRET_KEY"] = "test-secret-key"
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["PAYHERE_MERCHANT_ID"] = "1211149"
os.environ["PAYHERE_MERCHANT_SECRET"] = "test-merchant-secret"
os.environ["PAYHERE_SANDBOX"] = "true"
os.environ["BACKEND_URL"] = "https://api.getfit.test"
os.environ["SENDGRID_API_KEY"] = ""

import pytest
from fastapi.testclient import TestClient
from sqlmodel import Session, SQLModel, create_engine

from core.clock import utcnow
from core.config import Settings
from core.database import get_session
from core.security import create_token_for_user
from main import app
from models.models import Payment, PaymentStatus, User, UserRole
from services.payhere_service import PayHereService, build_notification_signature, get_payhere_service


@pytest.fixture
def engine(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'payments.db'}",
        connect_args={"check_same_thread": False},
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session(engine):
    with Session(engine) as session:
        yield session


def make_settings(**overrides) -> Settings:
    values = dict(
        SECRET_KEY="test-secret-key",
        PAYHERE_MERCHANT_ID="1211149",
        PAYHERE_MERCHANT_SECRET="test-merchant-secret",
        PAYHERE_SANDBOX=True,
        BACKEND_URL="https://api.getfit.test",
    )
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def payhere():
    return PayHereService(make_settings())


@pytest.fixture
def settings_factory():
    return make_settings


# -------------------------
# Users
# -------------------------
def _add_user(session: Session, **data) -> User:
    user = User(**data)
    session.add(user)
    session.commit()
    session.refresh(user)
    return user


@pytest.fixture
def member(session):
    return _add_user(
        session,
        full_name="Kasun Silva",
        email="kasun@getfit.lk",
        role=UserRole.MEMBER.value,
        phone_number="077 123 4567",
        city="Kandy",
    )


@pytest.fixture
def other_member(session):
    return _add_user(session, full_name="Dilini Fernando", email="dilini@getfit.lk", role=UserRole.MEMBER.value)


@pytest.fixture
def instructor(session):
    return _add_user(session, full_name="Nimal Perera", email="nimal@getfit.lk", role=UserRole.INSTRUCTOR.value)


@pytest.fixture
def admin(session):
    return _add_user(session, full_name="Admin User", email="admin@getfit.lk", role=UserRole.ADMIN.value)


# -------------------------
# Payments & notifications
# -------------------------
@pytest.fixture
def make_payment(session):
    """Insert a Payment row directly, bypassing checkout."""
    counter = {"n": 0}

    def factory(
        user: User,
        amount="1000.00",
        status: PaymentStatus = PaymentStatus.PENDING,
        metadata: dict | None = None,
        instructor_id: int | None = None,
        created_at: datetime | None = None,
    ) -> Payment:
        counter["n"] += 1
        created_at = created_at or utcnow()
        payment = Payment(
            user_id=user.id,
            instructor_id=instructor_id,
            amount=Decimal(amount),
            currency="LKR",
            status=status.value,
            payhere_order_id=f"TEST_{counter['n']}",
            description="Test payment",
            payment_metadata=json.dumps(metadata) if metadata else None,
            created_at=created_at,
            updated_at=created_at,
            completed_at=created_at if status == PaymentStatus.COMPLETED else None,
        )
        session.add(payment)
        session.commit()
        session.refresh(payment)
        return payment

    return factory


@pytest.fixture
def signed_notification(payhere):
    """Build notification fields the way PayHere posts them."""

    def factory(payment: Payment, status_code: str = "2", amount: str | None = None, payment_id: str = "320025071278"):
        fields = {
            "merchant_id": payhere.merchant_id,
            "order_id": payment.payhere_order_id,
            "payment_id": payment_id,
            "payhere_amount": amount or f"{payment.amount:.2f}",
            "payhere_currency": payment.currency,
            "status_code": status_code,
        }
        fields["md5sig"] = build_notification_signature(
            fields["merchant_id"],
            fields["order_id"],
            fields["payhere_amount"],
            fields["payhere_currency"],
            fields["status_code"],
            payhere.merchant_secret,
        )
        return fields

    return factory


@pytest.fixture
def scheduled():
    """Stand-in for BackgroundTasks.add_task that records instead of running."""
    calls = []

    def schedule(func, *args, **kwargs):
        calls.append((func, args, kwargs))

    schedule.calls = calls
    return schedule


# -------------------------
# API client
# -------------------------
@pytest.fixture
def client(engine, payhere):
    def override_session():
        with Session(engine) as session:
            yield session

    app.dependency_overrides[get_session] = override_session
    app.dependency_overrides[get_payhere_service] = lambda: payhere
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def auth():
    def headers(user: User) -> dict:
        return {"Authorization": f"Bearer {create_token_for_user(user)}"}

    return headers
