import logging
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager

from core.config import settings
from core.database import create_db_and_tables, new_session
from routes.payment import router as payment_router, redirect_router
from routes.membership import router as membership_router
from routes.subscription import router as subscription_router
from services.expiry_service import start_expiry_sweeper, stop_expiry_sweeper

logging.basicConfig(level=logging.INFO)


# =========================================
# 🏁 Lifespan (DB initialization + expiry sweeper)
# =========================================
@asynccontextmanager
async def lifespan(app: FastAPI):
    create_db_and_tables()
    print("✅ Database tables created on startup.")
    sweeper = start_expiry_sweeper(new_session, settings.EXPIRY_SWEEP_INTERVAL_SECONDS)
    yield
    await stop_expiry_sweeper(sweeper)
    print("✅ Application shutting down.")

# =========================================
#  ✅ FastAPI App
# =========================================
app = FastAPI(lifespan=lifespan, title="Get-Fit Payments Backend")

allowed_origins = [
    settings.FRONTEND_URL,
    "http://localhost:3000",
    "http://127.0.0.1:3000",
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# =========================================
# 📦 Routers
# =========================================
app.include_router(payment_router, prefix="/api/v1")  # ✅ PayHere Payment Integration
app.include_router(membership_router, prefix="/api/v1")
app.include_router(subscription_router, prefix="/api/v1")
app.include_router(redirect_router)  # PayHere return / cancel pages


# =========================================
# 🩺 Health Check
# =========================================
@app.get("/health")
def health_check():
    return {"status": "ok", "message": "Backend is running", "environment": settings.ENVIRONMENT}
