# scripts/seed.py

import os
import sys
import argparse

from sqlmodel import Session, select

# Ensure root path for relative imports
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from core.database import engine, create_db_and_tables
from core.security import create_token_for_user
from models.models import User, UserRole
from services.expiry_service import run_expiration_checks


DEMO_USERS = [
    {"full_name": "Admin User", "email": "admin@getfit.lk", "role": UserRole.ADMIN.value},
    {"full_name": "Nimal Perera", "email": "instructor@getfit.lk", "role": UserRole.INSTRUCTOR.value},
    {
        "full_name": "Kasun Silva",
        "email": "member@getfit.lk",
        "role": UserRole.MEMBER.value,
        "phone_number": "0771234567",
        "city": "Kandy",
    },
]


def seed_dev_data(show_tokens: bool = False):
    """Seed development database with an admin, an instructor and a member."""
    print("🌱 Seeding development data...")
    create_db_and_tables()

    with Session(engine) as session:
        for data in DEMO_USERS:
            user = session.exec(select(User).where(User.email == data["email"])).first()
            if not user:
                user = User(**data, is_active=True)
                session.add(user)
                session.commit()
                session.refresh(user)
                print(f"✅ Added {data['role']} {data['email']}")

            if show_tokens:
                print(f"🔑 {user.email}: {create_token_for_user(user)}")

    print("🌱 Development data seeding complete.")


def expire_now():
    """One expiry sweep outside the API process (cron / manual run)."""
    with Session(engine) as session:
        result = run_expiration_checks(session)
    print(
        f"✅ Expired {result.expired_subscriptions} subscription(s) and "
        f"{result.expired_memberships} membership(s)"
    )


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Seed or maintain the Get-Fit payments database.")
    parser.add_argument(
        "command",
        choices=["seed", "expire"],
        nargs="?",
        default="seed",
        help="seed demo users, or run one expiry sweep",
    )
    parser.add_argument("--tokens", action="store_true", help="print a bearer token for each demo user")
    args = parser.parse_args()

    if args.command == "seed":
        seed_dev_data(show_tokens=args.tokens)
    elif args.command == "expire":
        expire_now()
