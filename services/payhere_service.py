# ================================================================
# services/payhere_service.py — PayHere hosted checkout
# ================================================================
"""
PayHere signing and verification.

Outbound checkout hash::

    UPPER(MD5(merchant_id + order_id + amount_2dp + CURRENCY + UPPER(MD5(secret))))

Inbound notification signature (``md5sig``)::

    UPPER(MD5(merchant_id + order_id + payhere_amount + payhere_currency
              + status_code + UPPER(MD5(secret))))

See https://support.payhere.lk/api-&-mobile-sdk/checkout-api
"""
import hashlib
import hmac
import logging
import re
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Dict, Mapping, Optional, Union
from urllib.parse import urlparse

from core.config import Settings, settings
from core.errors import ConfigurationError, ValidationError

logger = logging.getLogger(__name__)

# PayHere status codes: 2 = success, 0 = pending, -1 = cancelled, -2 = failed, -3 = chargedback
SUCCESS_STATUS_CODE = "2"

NOTIFICATION_FIELDS = (
    "merchant_id",
    "order_id",
    "payhere_amount",
    "payhere_currency",
    "status_code",
    "md5sig",
)

REQUIRED_CHECKOUT_PARAMS = (
    "merchant_id", "return_url", "cancel_url", "notify_url",
    "first_name", "last_name", "email", "phone", "address", "city",
    "country", "order_id", "items", "currency", "amount",
)

LOOPBACK_HOSTS = {"localhost", "127.0.0.1", "0.0.0.0", "::1"}

DEFAULT_PHONE = "0770000000"
DEFAULT_ADDRESS = "Not Provided"


# ------------------------
# Signature engine (pure)
# ------------------------
def _md5_upper(value: str) -> str:
    return hashlib.md5(value.encode("utf-8")).hexdigest().upper()


def _same(left: str, right: str) -> bool:
    return hmac.compare_digest(left.encode("utf-8"), right.encode("utf-8"))


def hash_merchant_secret(merchant_secret: str) -> str:
    return _md5_upper(merchant_secret)


def format_amount(amount: Union[Decimal, str, int, float]) -> str:
    """Two decimal places, no thousands separator ("1000.00")."""
    value = Decimal(str(amount)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    return f"{value:.2f}"


def build_checkout_hash(
    merchant_id: str,
    order_id: str,
    amount: Union[Decimal, str, int, float],
    currency: str,
    merchant_secret: str,
) -> str:
    payload = (
        f"{merchant_id}{order_id}{format_amount(amount)}"
        f"{currency.upper()}{hash_merchant_secret(merchant_secret)}"
    )
    return _md5_upper(payload)


def build_notification_signature(
    merchant_id: str,
    order_id: str,
    payhere_amount: str,
    payhere_currency: str,
    status_code: str,
    merchant_secret: str,
) -> str:
    payload = (
        f"{merchant_id}{order_id}{payhere_amount}{payhere_currency}"
        f"{status_code}{hash_merchant_secret(merchant_secret)}"
    )
    return _md5_upper(payload)


@dataclass(frozen=True)
class NotificationVerification:
    valid: bool
    reason: Optional[str] = None
    success: bool = False
    order_id: Optional[str] = None
    payment_id: Optional[str] = None
    amount: Optional[Decimal] = None
    currency: Optional[str] = None
    status_code: Optional[str] = None

    @classmethod
    def rejected(cls, reason: str) -> "NotificationVerification":
        return cls(valid=False, reason=reason)


def verify_notification(
    fields: Mapping[str, str],
    merchant_id: str,
    merchant_secret: str,
) -> NotificationVerification:
    """
    Check an inbound notification against the shared secret.

    An authentic notification that reports a non-success status is still
    ``valid``; ``success`` tells the two apart.
    """
    values = {name: str(fields.get(name) or "").strip() for name in NOTIFICATION_FIELDS}
    missing = [name for name, value in values.items() if not value]
    if missing:
        return NotificationVerification.rejected(f"Missing fields: {', '.join(missing)}")

    if not _same(values["merchant_id"], str(merchant_id)):
        return NotificationVerification.rejected("Invalid merchant ID")

    expected = build_notification_signature(
        values["merchant_id"],
        values["order_id"],
        values["payhere_amount"],
        values["payhere_currency"],
        values["status_code"],
        merchant_secret,
    )
    if not _same(expected, values["md5sig"].upper()):
        return NotificationVerification.rejected("Invalid hash signature")

    try:
        amount = Decimal(values["payhere_amount"])
    except InvalidOperation:
        return NotificationVerification.rejected("Unparseable amount")

    return NotificationVerification(
        valid=True,
        success=values["status_code"] == SUCCESS_STATUS_CODE,
        order_id=values["order_id"],
        payment_id=str(fields.get("payment_id") or "").strip() or None,
        amount=amount,
        currency=values["payhere_currency"],
        status_code=values["status_code"],
    )


# ------------------------
# Checkout parameter builder
# ------------------------
def split_name(full_name: Optional[str]) -> tuple[str, str]:
    parts = [part for part in (full_name or "").strip().split(" ") if part]
    first_name = parts[0] if parts else "Customer"
    last_name = " ".join(parts[1:]) or "User"
    return first_name, last_name


def sanitize_phone(phone: Optional[str]) -> str:
    digits = re.sub(r"[^\d+]", "", phone or "")
    return digits if len(digits) >= 9 else DEFAULT_PHONE


def check_public_url(url: str) -> None:
    """Absolute URL required; loopback hosts only produce a warning."""
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.hostname:
        raise ConfigurationError(f"PayHere callback URL must be absolute: {url!r}")
    if parsed.hostname in LOOPBACK_HOSTS:
        logger.warning(
            "⚠️ PayHere will not reach %s, set BACKEND_URL to a public URL (ngrok, Render...)", url
        )


class PayHereService:
    """
    Builds signed checkout parameter sets and verifies notifications
    for one merchant account.
    """

    def __init__(self, config: Settings = settings):
        self.merchant_id = (config.PAYHERE_MERCHANT_ID or "").strip()
        self.merchant_secret = (config.PAYHERE_MERCHANT_SECRET or "").strip()
        self.is_sandbox = config.PAYHERE_SANDBOX
        self.base_url = config.PAYHERE_BASE_URL
        self.return_url = config.PAYHERE_RETURN_URL
        self.cancel_url = config.PAYHERE_CANCEL_URL
        self.notify_url = config.PAYHERE_NOTIFY_URL
        self.default_city = config.DEFAULT_CITY
        self.default_country = config.DEFAULT_COUNTRY

    @property
    def enabled(self) -> bool:
        return bool(self.merchant_id and self.merchant_secret)

    @property
    def checkout_url(self) -> str:
        return f"{self.base_url}/pay/checkout"

    def require_credentials(self) -> None:
        if not self.enabled:
            logger.error(
                "❌ PayHere not configured (merchant id set: %s, secret set: %s)",
                bool(self.merchant_id), bool(self.merchant_secret),
            )
            raise ConfigurationError(
                "PayHere not configured. Set PAYHERE_MERCHANT_ID and PAYHERE_MERCHANT_SECRET."
            )

    def check_callback_urls(self) -> None:
        for url in (self.return_url, self.cancel_url, self.notify_url):
            check_public_url(url)

    def build_checkout_params(
        self,
        *,
        order_id: str,
        payment_id: int,
        amount: Decimal,
        currency: str,
        items: str,
        full_name: Optional[str],
        email: str,
        phone: Optional[str] = None,
        address: Optional[str] = None,
        city: Optional[str] = None,
        country: Optional[str] = None,
    ) -> Dict[str, str]:
        self.require_credentials()

        return_url = f"{self.return_url}?paymentId={payment_id}"
        cancel_url = f"{self.cancel_url}?paymentId={payment_id}"

        first_name, last_name = split_name(full_name)
        params = {
            "merchant_id": self.merchant_id,
            "return_url": return_url,
            "cancel_url": cancel_url,
            "notify_url": self.notify_url,
            "first_name": first_name,
            "last_name": last_name,
            "email": email,
            "phone": sanitize_phone(phone),
            # Some gateway configurations reject empty optional fields
            "address": ((address or "").strip() or DEFAULT_ADDRESS)[:100],
            "city": ((city or "").strip() or self.default_city)[:50],
            "country": country or self.default_country,
            "order_id": order_id,
            "items": (items or "Payment")[:200],
            "currency": currency.upper(),
            "amount": format_amount(amount),
        }

        missing = [name for name in REQUIRED_CHECKOUT_PARAMS if not params.get(name)]
        if missing:
            raise ValidationError(f"Missing required PayHere parameters: {', '.join(missing)}")

        params["hash"] = build_checkout_hash(
            self.merchant_id, order_id, amount, currency, self.merchant_secret
        )

        if self.is_sandbox:
            logger.info(
                "🔐 PayHere checkout prepared: order=%s amount=%s %s hash=%s...",
                order_id, params["amount"], params["currency"], params["hash"][:8],
            )
        return params

    def verify(self, fields: Mapping[str, str]) -> NotificationVerification:
        self.require_credentials()
        return verify_notification(fields, self.merchant_id, self.merchant_secret)


def get_payhere_service() -> PayHereService:
    """FastAPI dependency."""
    return PayHereService(settings)
