from .payment_schema import (
    MembershipMetadata, SubscriptionMetadata, GenericMetadata, PaymentMetadata,
    parse_payment_metadata,
    PaymentIntentCreate, SubscriptionPaymentCreate, MembershipPurchase,
    PaymentRead, CheckoutResponse, CompletionResponse, EarningsResponse,
    SubscriptionRead, MembershipRead, MembershipPlanOut, MyMembershipsResponse,
)

__all__ = [
    # Payment metadata
    "MembershipMetadata", "SubscriptionMetadata", "GenericMetadata", "PaymentMetadata",
    "parse_payment_metadata",

    # Requests
    "PaymentIntentCreate", "SubscriptionPaymentCreate", "MembershipPurchase",

    # Responses
    "PaymentRead", "CheckoutResponse", "CompletionResponse", "EarningsResponse",
    "SubscriptionRead", "MembershipRead", "MembershipPlanOut", "MyMembershipsResponse",
]
