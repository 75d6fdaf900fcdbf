import os

from sqlalchemy.orm import Session

from backend.app.core.security import get_password_hash
from backend.app.models.user import User


DEFAULT_DEV_PASSWORD = "Secret123!"
DEFAULT_DEV_USERS = [
    ("admin@example.com", "admin"),
    ("billing@example.com", "billing"),
]


def ensure_default_dev_users(db: Session) -> None:
    """
    Create default admin and billing accounts for local development if missing.
    Skips execution when running under pytest to avoid altering test expectations.
    """
    if os.getenv("PYTEST_CURRENT_TEST"):
        return

    created = False
    for email, role in DEFAULT_DEV_USERS:
        existing = db.query(User).filter(User.email == email).first()
        if existing:
            continue

        user = User(
            email=email,
            hashed_password=get_password_hash(DEFAULT_DEV_PASSWORD),
            is_active=True,
            is_admin=role == "admin",
            role=role,
        )
        db.add(user)
        created = True

    if created:
        db.commit()
