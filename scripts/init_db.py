"""
Database bootstrap for local development and the release phase.

  python scripts/init_db.py                  seed the first account
  python scripts/init_db.py --create-tables  create_all() first (no Alembic)
"""
import os
import sys
from datetime import datetime
from pathlib import Path

from sqlalchemy.orm import Session
from werkzeug.security import generate_password_hash

# Ensure repo root is on sys.path when running as a script.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.keepsake.db import build_engine
from app.keepsake.models import Base, User, UserSettings


def _database_url(explicit: str | None) -> str:
    return (explicit or os.environ.get("DATABASE_URL") or "sqlite:///keepsake.db").strip()


def create_tables(*, database_url: str | None = None) -> None:
    """Development shortcut: create every table without Alembic."""
    engine = build_engine(_database_url(database_url))
    Base.metadata.create_all(bind=engine)
    print(f"Created tables on {engine.url.render_as_string(hide_password=True)}")


def seed_only(*, database_url: str | None = None) -> None:
    """
    Seed a first user from SEED_USER_EMAIL / SEED_USER_PASSWORD when both are set.
    Idempotent; never overwrites an existing user's password.
    """
    email = (os.environ.get("SEED_USER_EMAIL") or "").strip().lower()
    password = os.environ.get("SEED_USER_PASSWORD") or ""
    if not email or not password:
        print("SEED_USER_EMAIL/SEED_USER_PASSWORD not set; nothing to seed.")
        return

    # Plain engine so the release phase runs without building the Flask app.
    engine = build_engine(_database_url(database_url))
    with Session(engine, expire_on_commit=False) as s, s.begin():
        user = s.query(User).filter(User.email == email).one_or_none()
        now = datetime.utcnow()
        if not user:
            user = User(
                name=(os.environ.get("SEED_USER_NAME") or email.split("@")[0]).strip(),
                email=email,
                password_hash=generate_password_hash(password),
                is_active=True,
                created_at=now,
                updated_at=now,
            )
            s.add(user)
            s.flush()
        if s.get(UserSettings, user.id) is None:
            s.add(UserSettings(user_id=user.id, created_at=now, updated_at=now))

    print("Initialized database (seed_only).")
    print(f"Seed user email: {email}")


def main() -> None:
    if "--create-tables" in sys.argv[1:]:
        create_tables(database_url=None)
    seed_only(database_url=None)


if __name__ == "__main__":
    main()
