import logging
from sendgrid import SendGridAPIClient
from sendgrid.helpers.mail import Mail

from core.config import settings

logger = logging.getLogger(__name__)


class EmailService:
    """
    Centralized email utility for Get-Fit.
    Sends payment receipts and other transactional emails via SendGrid.
    """

    def __init__(self, api_key: str | None = None, sender_email: str | None = None):
        self.sendgrid_api_key = api_key if api_key is not None else settings.SENDGRID_API_KEY
        self.sender_email = sender_email if sender_email is not None else settings.MAIL_FROM

        self.enabled = bool(self.sendgrid_api_key and self.sender_email)
        if not self.enabled:
            logger.warning("📧 Email service not configured. Missing SENDGRID_API_KEY or MAIL_FROM.")
        else:
            logger.info(f"📧 Email service configured and ready. Sender: {self.sender_email}")

    # ============================================================
    # ✅ Send Payment Receipt (synchronous for BackgroundTasks)
    # ============================================================
    def send_payment_receipt_email(
        self,
        to_email: str,
        name: str,
        order_id: str,
        payment_id: str | None,
        amount: str,
        currency: str,
        description: str | None,
        transaction_date: str,
        instructor_name: str | None = None,
    ) -> bool:
        """Synchronous email send (works with FastAPI BackgroundTasks)."""

        if not self.enabled:
            # Development fallback (no SendGrid setup)
            logger.info(f"📨 [Mock Email] Receipt to: {to_email}")
            logger.info(f"Order: {order_id} | Amount: {amount} {currency}")
            return True

        subject = f"🧾 Payment receipt: {description or 'Get-Fit payment'}"

        instructor_row = ""
        if instructor_name:
            instructor_row = f"<tr><td><b>Instructor</b></td><td>{instructor_name}</td></tr>"

        html_content = f"""
        <div style="font-family: Arial, sans-serif; line-height: 1.6; color: #333;">
            <h2>Hi {name},</h2>
            <p>Thank you! We received your payment.</p>

            <table style="border-collapse: collapse; margin: 20px 0;">
                <tr><td><b>Order ID</b></td><td>{order_id}</td></tr>
                <tr><td><b>Payment ID</b></td><td>{payment_id or '-'}</td></tr>
                <tr><td><b>Description</b></td><td>{description or '-'}</td></tr>
                {instructor_row}
                <tr><td><b>Amount</b></td><td>{amount} {currency}</td></tr>
                <tr><td><b>Date</b></td><td>{transaction_date}</td></tr>
            </table>

            <p><small>Please keep this receipt for your records. This is your official proof of payment.</small></p>
            <hr style="border:none; border-top:1px solid #eee; margin: 24px 0;">
            <p>Thank you for choosing <strong>Get-Fit Gym</strong>!</p>
        </div>
        """

        try:
            message = Mail(
                from_email=self.sender_email,
                to_emails=to_email,
                subject=subject,
                html_content=html_content,
            )
            sg = SendGridAPIClient(self.sendgrid_api_key)
            response = sg.send(message)
            logger.info(f"✅ Receipt email sent to {to_email}. Status: {response.status_code}")
            return True
        except Exception as e:
            logger.exception("❌ Failed to send receipt email to %s: %s", to_email, e)
            return False


# ============================================================
# ✅ Global instance for app-wide import
# ============================================================
email_service = EmailService()
