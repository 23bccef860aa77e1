"""Seed the bootstrap admin account from ADMIN_* settings."""
import logging

from sqlalchemy import or_
from sqlalchemy.orm import Session

from app.config import get_settings
from app.models.user import User, UserRole
from app.schemas.auth import normalize_phone, normalize_username
from app.services.auth import get_password_hash

log = logging.getLogger("uvicorn.error")


def seed_admin(db: Session) -> User | None:
    settings = get_settings()
    if not (settings.admin_username and settings.admin_email and settings.admin_phone and settings.admin_password):
        return None
    username = normalize_username(settings.admin_username)
    email = settings.admin_email.strip().lower()
    existing = db.query(User).filter(or_(User.username == username, User.email == email)).first()
    if existing:
        return existing
    admin = User(
        username=username,
        email=email,
        phone=normalize_phone(settings.admin_phone),
        hashed_password=get_password_hash(settings.admin_password),
        role=UserRole.admin,
        is_confirmed=True,
        is_email_confirmed=True,
    )
    db.add(admin)
    db.commit()
    db.refresh(admin)
    log.info("[Seed] Admin account %s created", username)
    return admin
