# payment_schema.py
from pydantic import BaseModel, Field, ConfigDict, TypeAdapter
from typing import Optional, List, Literal, Union, Annotated, Dict, Any
from datetime import datetime
from decimal import Decimal


# ---------------------------
# Payment metadata (closed variant, discriminated on "kind")
# ---------------------------
class MembershipMetadata(BaseModel):
    kind: Literal["membership"] = "membership"
    plan_id: str
    plan_name: str
    duration_days: int = Field(..., gt=0)
    # Quoted at purchase time; the activator recomputes the real period
    period_start: Optional[datetime] = None
    period_end: Optional[datetime] = None


class SubscriptionMetadata(BaseModel):
    kind: Literal["subscription"] = "subscription"
    instructor_id: int


class GenericMetadata(BaseModel):
    kind: Literal["generic"] = "generic"


PaymentMetadata = Annotated[
    Union[MembershipMetadata, SubscriptionMetadata, GenericMetadata],
    Field(discriminator="kind"),
]

_metadata_adapter = TypeAdapter(PaymentMetadata)


def parse_payment_metadata(raw: Optional[Dict[str, Any]]) -> "PaymentMetadata":
    """Payments created without metadata are generic."""
    if not raw or "kind" not in raw:
        return GenericMetadata()
    return _metadata_adapter.validate_python(raw)


# ---------------------------
# Requests
# ---------------------------
class PaymentIntentCreate(BaseModel):
    amount: Decimal
    currency: str = Field(default="LKR", max_length=3)
    instructor_id: Optional[int] = None
    description: Optional[str] = Field(default=None, max_length=200)


class SubscriptionPaymentCreate(BaseModel):
    instructor_id: int
    amount: Decimal
    currency: str = Field(default="LKR", max_length=3)
    description: Optional[str] = Field(default=None, max_length=200)


class MembershipPurchase(BaseModel):
    plan_id: str


# ---------------------------
# Responses
# ---------------------------
class PaymentRead(BaseModel):
    id: int
    user_id: int
    instructor_id: Optional[int]
    amount: Decimal
    currency: str
    status: str
    payment_method: str
    payhere_order_id: str
    payhere_payment_id: Optional[str]
    description: Optional[str]
    payment_metadata: Optional[str]
    created_at: datetime
    updated_at: datetime
    completed_at: Optional[datetime]

    model_config = ConfigDict(from_attributes=True)


class CheckoutResponse(BaseModel):
    payment: PaymentRead
    payment_url: str
    payment_params: Dict[str, str]


class CompletionResponse(BaseModel):
    success: bool
    message: str
    payment: Optional[PaymentRead] = None


class EarningsResponse(BaseModel):
    items: List[PaymentRead]
    total: Decimal


class SubscriptionRead(BaseModel):
    id: int
    member_id: int
    instructor_id: int
    status: str
    subscribed_at: datetime
    expires_at: datetime
    cancelled_at: Optional[datetime]
    payment_id: Optional[int]

    model_config = ConfigDict(from_attributes=True)


class MembershipRead(BaseModel):
    id: int
    user_id: int
    plan_id: str
    plan_name: str
    duration_days: int
    amount: Decimal
    currency: str
    start_date: datetime
    end_date: datetime
    status: str
    payment_id: Optional[int]
    auto_renew: bool

    model_config = ConfigDict(from_attributes=True)


class MembershipPlanOut(BaseModel):
    id: str
    name: str
    price: Decimal
    currency: str
    duration_days: int
    description: str


class MyMembershipsResponse(BaseModel):
    active: Optional[MembershipRead]
    items: List[MembershipRead]
