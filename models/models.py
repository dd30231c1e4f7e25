# getfit_backend/models.py
from typing import Optional
from datetime import datetime, timedelta
from decimal import Decimal
from enum import Enum
from sqlmodel import SQLModel, Field
from sqlalchemy import UniqueConstraint
import json

from core.clock import utcnow


# ============================================================
# ENUMS
# ============================================================
class UserRole(str, Enum):
    MEMBER = "member"
    INSTRUCTOR = "instructor"
    ADMIN = "admin"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"


class PaymentMethod(str, Enum):
    PAYHERE = "payhere"


class SubscriptionStatus(str, Enum):
    ACTIVE = "active"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


class MembershipStatus(str, Enum):
    ACTIVE = "active"
    PENDING = "pending"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


# ============================================================
# USER (payer / beneficiary, read-only for the payment core)
# ============================================================
class User(SQLModel, table=True):
    __tablename__ = "user"

    id: Optional[int] = Field(default=None, primary_key=True)
    full_name: str = Field(max_length=100)
    email: str = Field(index=True, unique=True, max_length=100, nullable=False)
    role: str = Field(default=UserRole.MEMBER.value, max_length=20, index=True)
    is_active: bool = Field(default=True)

    # Contact details forwarded to the checkout page
    phone_number: Optional[str] = Field(default=None, max_length=30)
    address: Optional[str] = Field(default=None, max_length=200)
    city: Optional[str] = Field(default=None, max_length=100)

    created_at: datetime = Field(default_factory=utcnow)


# ============================================================
# PAYMENT (append-only financial record)
# ============================================================
class Payment(SQLModel, table=True):
    __tablename__ = "payment"

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="user.id", nullable=False, index=True)
    instructor_id: Optional[int] = Field(default=None, foreign_key="user.id", index=True)

    amount: Decimal = Field(default=Decimal("0.00"), max_digits=12, decimal_places=2)
    currency: str = Field(default="LKR", max_length=3)
    status: str = Field(default=PaymentStatus.PENDING.value, max_length=20, index=True)
    payment_method: str = Field(default=PaymentMethod.PAYHERE.value, max_length=20)

    # Gateway correlation: order id is ours (idempotency key), payment id is PayHere's
    payhere_order_id: str = Field(unique=True, index=True, max_length=64, nullable=False)
    payhere_payment_id: Optional[str] = Field(default=None, max_length=64)

    description: Optional[str] = Field(default=None, max_length=200)
    payment_metadata: Optional[str] = None

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = None

    @property
    def details(self):
        """Typed view of payment_metadata (membership / subscription / generic)."""
        from schemas.payment_schema import parse_payment_metadata

        raw = json.loads(self.payment_metadata) if self.payment_metadata else {}
        return parse_payment_metadata(raw)

    @property
    def is_pending(self) -> bool:
        return self.status == PaymentStatus.PENDING.value


# ============================================================
# SUBSCRIPTION (member -> instructor)
# ============================================================
class Subscription(SQLModel, table=True):
    __tablename__ = "subscription"
    # One row per pair; renewals reuse it
    __table_args__ = (UniqueConstraint("member_id", "instructor_id", name="uq_member_instructor"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    member_id: int = Field(foreign_key="user.id", nullable=False, index=True)
    instructor_id: int = Field(foreign_key="user.id", nullable=False, index=True)

    status: str = Field(default=SubscriptionStatus.ACTIVE.value, max_length=20, index=True)
    subscribed_at: datetime = Field(default_factory=utcnow)
    expires_at: datetime = Field(default_factory=lambda: utcnow() + timedelta(days=30), index=True)
    cancelled_at: Optional[datetime] = None

    payment_id: Optional[int] = Field(default=None, foreign_key="payment.id", index=True)

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


# ============================================================
# MEMBERSHIP (facility access plan)
# ============================================================
class Membership(SQLModel, table=True):
    __tablename__ = "membership"

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="user.id", nullable=False, index=True)

    plan_id: str = Field(max_length=50)
    plan_name: str = Field(max_length=100)
    duration_days: int
    amount: Decimal = Field(default=Decimal("0.00"), max_digits=12, decimal_places=2)
    currency: str = Field(default="LKR", max_length=3)

    start_date: datetime
    end_date: datetime = Field(index=True)
    status: str = Field(default=MembershipStatus.ACTIVE.value, max_length=20, index=True)

    # Not unique at the DB level: guarded by lookup-before-create
    payment_id: Optional[int] = Field(default=None, foreign_key="payment.id", index=True)
    auto_renew: bool = Field(default=False)

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


# ============================================================
# MEMBERSHIP PLANS (constant)
# ============================================================
MEMBERSHIP_PLANS = [
    {
        "id": "monthly",
        "name": "1 Month",
        "duration_days": 30,
        "price": Decimal("6000.00"),
        "currency": "LKR",
        "description": "Access to all gym facilities for 30 days.",
    },
    {
        "id": "quarterly",
        "name": "3 Months",
        "duration_days": 90,
        "price": Decimal("14000.00"),
        "currency": "LKR",
        "description": "Save compared to monthly plan.",
    },
    {
        "id": "annual",
        "name": "1 Year",
        "duration_days": 365,
        "price": Decimal("50000.00"),
        "currency": "LKR",
        "description": "Best value plan.",
    },
]


def get_membership_plan(plan_id: str) -> Optional[dict]:
    return next((plan for plan in MEMBERSHIP_PLANS if plan["id"] == plan_id), None)


# ============================================================
# EXPORTS
# ============================================================
__all__ = [
    "User",
    "Payment",
    "Subscription",
    "Membership",
    "UserRole",
    "PaymentStatus",
    "PaymentMethod",
    "SubscriptionStatus",
    "MembershipStatus",
    "MEMBERSHIP_PLANS",
    "get_membership_plan",
]
