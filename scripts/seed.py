# scripts/seed.py

import os
import sys
import argparse
from typing import Optional

from dotenv import load_dotenv
from sqlalchemy.engine import Engine
from sqlmodel import Session, select

# Ensure root path for relative imports
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from core.database import engine, create_db_and_tables
from core.security import create_token_for_user
from models.models import User, UserRole, Gym, Plan, DurationUnit

# ✅ Load environment variables
load_dotenv()


def get_or_create_user(session: Session, email: str, full_name: str, role: UserRole, mobile: Optional[str] = None) -> User:
    user = session.exec(select(User).where(User.email == email)).first()
    if not user:
        user = User(
            full_name=full_name,
            email=email,
            mobile_number=mobile,
            role=role.value,
            is_active=True,
        )
        session.add(user)
        session.commit()
        session.refresh(user)
        print(f"✅ Added {role.value} {email}")
    return user


def seed_dev_data(db_engine: Engine = engine):
    """Seed development database with a demo gym, plans and users."""
    print("🌱 Seeding development data...")
    create_db_and_tables(db_engine)

    with Session(db_engine) as session:
        # -----------------------------
        # 👥 Users
        # -----------------------------
        admin = get_or_create_user(session, "admin@gymflow.dev", "Platform Admin", UserRole.ADMIN)
        owner = get_or_create_user(session, "owner@gymflow.dev", "Gym Owner", UserRole.OWNER, "+919800000001")
        member = get_or_create_user(session, "member@gymflow.dev", "Demo Member", UserRole.USER, "+919800000002")

        # -----------------------------
        # 🏋️ Demo Gym
        # -----------------------------
        gym = session.exec(select(Gym).where(Gym.name == "Demo Fitness Hub")).first()
        if not gym:
            gym = Gym(name="Demo Fitness Hub", owner_id=owner.id)
            session.add(gym)
            session.commit()
            session.refresh(gym)
            print("✅ Created Demo Fitness Hub")

        # -----------------------------
        # 📋 Plans
        # -----------------------------
        plans = [
            ("Day Pass", 99.0, 1, DurationUnit.DAY),
            ("Weekly", 499.0, 1, DurationUnit.WEEK),
            ("Monthly", 1000.0, 1, DurationUnit.MONTH),
            ("Quarterly", 2700.0, 3, DurationUnit.MONTH),
            ("Annual", 9999.0, 1, DurationUnit.YEAR),
        ]
        for name, price, value, unit in plans:
            existing = session.exec(
                select(Plan).where(Plan.gym_id == gym.id, Plan.name == name)
            ).first()
            if not existing:
                session.add(Plan(
                    gym_id=gym.id,
                    name=name,
                    price=price,
                    duration_value=value,
                    duration_unit=unit.value,
                ))
        session.commit()
        print("✅ Added sample plans")

        # -----------------------------
        # 🔑 Dev tokens
        # -----------------------------
        for user in (admin, owner, member):
            print(f"🔑 {user.role:<6} {user.email}: {create_token_for_user(user)}")

        print("🌱 Development data seeding complete.")


def seed_staging_data(db_engine: Engine = engine):
    """Seed staging database with minimal safe data."""
    print("🌱 Seeding staging data...")
    create_db_and_tables(db_engine)

    with Session(db_engine) as session:
        get_or_create_user(session, "staging-admin@gymflow.dev", "Staging Admin", UserRole.ADMIN)

    print("🌱 Staging data seeding complete.")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Seed the GymFlow database.")
    parser.add_argument(
        "--env",
        choices=["dev", "staging"],
        default="dev",
        help="Select environment to seed (dev or staging)",
    )
    args = parser.parse_args()

    if args.env == "dev":
        seed_dev_data()
    elif args.env == "staging":
        seed_staging_data()
