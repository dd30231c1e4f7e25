# routes/payment.py
from decimal import Decimal
from typing import List

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, Request
from fastapi.responses import HTMLResponse, JSONResponse
from sqlmodel import Session, select
import logging

from core.database import get_session
from core.errors import (
    ConfigurationError,
    NotFoundError,
    PaymentError,
    SignatureError,
    StaleRequestError,
    ValidationError,
)
from core.security import get_current_admin, get_current_instructor, get_current_user
from models.models import Payment, PaymentStatus, User, UserRole
from schemas.payment_schema import (
    CheckoutResponse,
    CompletionResponse,
    EarningsResponse,
    PaymentIntentCreate,
    PaymentRead,
    SubscriptionPaymentCreate,
)
from services.checkout_service import CheckoutBundle, create_checkout, create_subscription_checkout
from services.completion_service import (
    complete_from_return,
    complete_manually,
    handle_payhere_notification,
    mark_refunded,
)
from services.payhere_service import NOTIFICATION_FIELDS, PayHereService, get_payhere_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payments", tags=["Payments"])
redirect_router = APIRouter(prefix="/payment", tags=["PayHere Redirects"])


# -------------------------
# Helper Functions
# -------------------------
def raise_http(error: PaymentError):
    """Translate a domain error into the HTTP status the client sees."""
    if isinstance(error, ConfigurationError):
        raise HTTPException(status_code=500, detail=error.message)
    if isinstance(error, NotFoundError):
        raise HTTPException(status_code=404, detail=error.message)
    if isinstance(error, (ValidationError, SignatureError, StaleRequestError)):
        raise HTTPException(status_code=400, detail=error.message)
    raise HTTPException(status_code=500, detail=error.message)


def checkout_response(bundle: CheckoutBundle) -> CheckoutResponse:
    return CheckoutResponse(
        payment=PaymentRead.model_validate(bundle.payment),
        payment_url=bundle.payment_url,
        payment_params=bundle.params,
    )


def render_page(title: str, message: str, color: str, symbol: str) -> str:
    return f"""<!DOCTYPE html>
<html>
  <head>
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <title>{title}</title>
  </head>
  <body style="font-family: -apple-system, Roboto, sans-serif; display: flex; justify-content: center; align-items: center; min-height: 100vh; margin: 0;">
    <div style="text-align: center; max-width: 400px; padding: 40px;">
      <div style="color: {color}; font-size: 48px;">{symbol}</div>
      <h1>{title}</h1>
      <p>{message}</p>
    </div>
  </body>
</html>"""


# -------------------------
# Checkout
# -------------------------
@router.post("/create-intent", response_model=CheckoutResponse, status_code=201)
def create_payment_intent(
    data: PaymentIntentCreate,
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
    payhere: PayHereService = Depends(get_payhere_service),
):
    """Start a generic PayHere payment for the current user."""
    try:
        bundle = create_checkout(
            session,
            payhere,
            current_user,
            data.amount,
            currency=data.currency,
            description=data.description,
            instructor_id=data.instructor_id,
        )
    except PaymentError as e:
        raise_http(e)
    return checkout_response(bundle)


@router.post("/subscription", response_model=CheckoutResponse, status_code=201)
def create_subscription_payment(
    data: SubscriptionPaymentCreate,
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
    payhere: PayHereService = Depends(get_payhere_service),
):
    """Start a PayHere payment for a subscription to an instructor."""
    instructor = session.get(User, data.instructor_id)
    if not instructor or instructor.role != UserRole.INSTRUCTOR.value:
        raise HTTPException(status_code=404, detail="Instructor not found")

    try:
        bundle = create_subscription_checkout(
            session,
            payhere,
            current_user,
            instructor,
            data.amount,
            currency=data.currency,
            description=data.description,
        )
    except PaymentError as e:
        raise_http(e)
    return checkout_response(bundle)


# -------------------------
# PayHere notification (server to server)
# -------------------------
@router.post("/payhere-notify")
async def payhere_notify(
    request: Request,
    background_tasks: BackgroundTasks,
    session: Session = Depends(get_session),
    payhere: PayHereService = Depends(get_payhere_service),
):
    """
    PayHere notify_url. Anything parseable is acknowledged with 200 so the
    gateway does not retry; rejections are only logged.
    """
    try:
        form = await request.form()
        fields = {key: str(value) for key, value in form.items()}
    except Exception as e:
        logger.warning(f"❌ Unparseable PayHere notification: {e}")
        return JSONResponse(status_code=400, content={"error": "Invalid payload"})

    missing = [name for name in NOTIFICATION_FIELDS if not fields.get(name)]
    if missing:
        logger.warning(f"❌ PayHere notification missing fields: {missing}")
        return JSONResponse(status_code=400, content={"error": f"Missing fields: {', '.join(missing)}"})

    try:
        outcome = handle_payhere_notification(
            session, fields, payhere, schedule=background_tasks.add_task
        )
    except SignatureError as e:
        logger.warning(f"🚫 PayHere notification rejected for order {fields.get('order_id')}: {e.message}")
        return {"received": True}
    except NotFoundError as e:
        logger.warning(f"⚠️ {e.message}")
        return {"received": True, "message": "Payment not found"}
    except ConfigurationError as e:
        return JSONResponse(status_code=500, content={"error": e.message})

    logger.info(f"📬 PayHere notification for payment {outcome.payment.id}: {outcome.message}")
    return {"received": True}


# -------------------------
# Payer queries
# -------------------------
@router.get("/history", response_model=List[PaymentRead])
def get_payment_history(
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    payments = session.exec(
        select(Payment)
        .where(Payment.user_id == current_user.id)
        .order_by(Payment.created_at.desc())
    ).all()
    return payments


@router.get("/earnings", response_model=EarningsResponse)
def get_instructor_earnings(
    current_user: User = Depends(get_current_instructor),
    session: Session = Depends(get_session),
):
    payments = session.exec(
        select(Payment)
        .where(
            Payment.instructor_id == current_user.id,
            Payment.status == PaymentStatus.COMPLETED.value,
        )
        .order_by(Payment.created_at.desc())
    ).all()
    total = sum((p.amount for p in payments), Decimal("0.00"))
    return EarningsResponse(items=[PaymentRead.model_validate(p) for p in payments], total=total)


@router.get("/{payment_id}", response_model=PaymentRead)
def confirm_payment(
    payment_id: int,
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    """Current status of one of the user's payments."""
    payment = session.get(Payment, payment_id)
    if not payment or payment.user_id != current_user.id:
        raise HTTPException(status_code=404, detail="Payment not found")
    return payment


# -------------------------
# Manual completion (client fallback poll)
# -------------------------
@router.post("/{payment_id}/complete", response_model=CompletionResponse)
def mark_payment_complete(
    payment_id: int,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    """Called by the app when the user comes back from PayHere."""
    try:
        outcome = complete_manually(
            session, payment_id, current_user.id, schedule=background_tasks.add_task
        )
    except StaleRequestError as e:
        payment = session.get(Payment, payment_id)
        return CompletionResponse(
            success=False,
            message=e.message,
            payment=PaymentRead.model_validate(payment) if payment else None,
        )
    except PaymentError as e:
        raise_http(e)

    return CompletionResponse(
        success=outcome.completed,
        message=outcome.message,
        payment=PaymentRead.model_validate(outcome.payment),
    )


# -------------------------
# Admin
# -------------------------
@router.post("/{payment_id}/refund", response_model=CompletionResponse)
def refund_payment(
    payment_id: int,
    current_user: User = Depends(get_current_admin),
    session: Session = Depends(get_session),
):
    try:
        payment = mark_refunded(session, payment_id)
    except PaymentError as e:
        raise_http(e)
    return CompletionResponse(
        success=True,
        message="Payment marked as refunded. Please process refund through PayHere merchant portal.",
        payment=PaymentRead.model_validate(payment),
    )


# -------------------------
# Browser redirects from PayHere
# -------------------------
@redirect_router.get("/return", response_class=HTMLResponse)
def payment_return(
    background_tasks: BackgroundTasks,
    payment_id: int = Query(..., alias="paymentId"),
    session: Session = Depends(get_session),
):
    try:
        outcome = complete_from_return(session, payment_id, schedule=background_tasks.add_task)
    except (NotFoundError, StaleRequestError) as e:
        logger.warning(f"⚠️ Return redirect for payment {payment_id} ignored: {e.message}")
        return render_page(
            "Payment Processing",
            "You can close this page and return to the app. Your payment is being processed.",
            "#f59e0b",
            "…",
        )

    if outcome.completed:
        return render_page(
            "Payment Successful",
            "You can close this page and return to the app.",
            "#10b981",
            "✓",
        )
    return render_page(
        "Payment Not Completed",
        f"Your payment is {outcome.payment.status}. You can close this page and return to the app.",
        "#ef4444",
        "✕",
    )


@redirect_router.get("/cancel", response_class=HTMLResponse)
def payment_cancel(payment_id: int = Query(..., alias="paymentId")):
    # PayHere reports the cancellation through notify_url; nothing to change here
    logger.info(f"🚪 Checkout cancelled by user for payment {payment_id}")
    return render_page(
        "Payment Cancelled",
        "Your payment was cancelled. You can close this page and return to the app.",
        "#ef4444",
        "✕",
    )
