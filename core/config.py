# ==================================================================================
# core/config.py — FastAPI Configuration (PayHere + SendGrid + Pydantic v2)
# ==================================================================================
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import EmailStr, ValidationError
import sys


class Settings(BaseSettings):
    # ------------------------
    # DATABASE CONFIG
    # ------------------------
    DATABASE_URL: str = "sqlite:///./getfit.db"

    # ------------------------
    # SECURITY CONFIG
    # ------------------------
    SECRET_KEY: str
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60

    # ------------------------
    # SENDGRID EMAIL CONFIG
    # ------------------------
    SENDGRID_API_KEY: str | None = None
    MAIL_FROM: EmailStr | None = None  # Example: "Get-Fit Gym <billing@getfit.lk>"

    # ------------------------
    # FRONTEND & BACKEND CONFIG
    # ------------------------
    # PayHere only calls back to publicly reachable hosts, set BACKEND_URL to
    # the deployed URL (Render, ngrok...) even in sandbox mode.
    FRONTEND_URL: str = "http://localhost:3000"
    BACKEND_URL: str = "http://localhost:8000"

    # ------------------------
    # PAYHERE / PAYMENT CONFIG
    # ------------------------
    PAYHERE_MERCHANT_ID: str | None = None
    PAYHERE_MERCHANT_SECRET: str | None = None
    PAYHERE_SANDBOX: bool = True

    # Unsigned completion channels (return redirect, manual completion) are
    # only trusted this long after the payment was created.
    PAYMENT_RECENCY_WINDOW_MINUTES: int = 60
    SUBSCRIPTION_PERIOD_DAYS: int = 30
    EXPIRY_SWEEP_INTERVAL_SECONDS: int = 3600

    DEFAULT_CITY: str = "Colombo"
    DEFAULT_COUNTRY: str = "Sri Lanka"

    @property
    def PAYHERE_BASE_URL(self) -> str:
        """Gateway host, sandbox or live."""
        return "https://sandbox.payhere.lk" if self.PAYHERE_SANDBOX else "https://www.payhere.lk"

    @property
    def PAYHERE_RETURN_URL(self) -> str:
        return f"{self.BACKEND_URL.rstrip('/')}/payment/return"

    @property
    def PAYHERE_CANCEL_URL(self) -> str:
        return f"{self.BACKEND_URL.rstrip('/')}/payment/cancel"

    @property
    def PAYHERE_NOTIFY_URL(self) -> str:
        return f"{self.BACKEND_URL.rstrip('/')}/api/v1/payments/payhere-notify"

    # ------------------------
    # ENVIRONMENT SETTINGS
    # ------------------------
    ENVIRONMENT: str = "development"  # 'development' | 'production'
    DEBUG: bool = True

    @property
    def IS_PRODUCTION(self) -> bool:
        """Convenience helper to check if running in production"""
        return self.ENVIRONMENT.lower() == "production"

    # ------------------------
    # Pydantic v2 Settings
    # ------------------------
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",  # Ignores unknown env vars (Render defaults)
    )


# ------------------------
# Global Settings Loader
# ------------------------
try:
    settings = Settings()
    print("✅ Environment variables loaded successfully.")
    print(f"🌍 Environment: {settings.ENVIRONMENT}, Debug: {settings.DEBUG}, PayHere sandbox: {settings.PAYHERE_SANDBOX}")
except ValidationError as e:
    print("❌ Environment configuration error — missing or invalid settings!")
    print(e)
    sys.exit(1)
