"""Identity & credential manager: accounts, passwords and transient secrets (PIN, email confirmation, password reset)."""
import enum
import hashlib
import hmac
import logging
import secrets
from dataclasses import dataclass
from datetime import timedelta

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.config import get_settings
from app.database import utcnow
from app.errors import DuplicateKeyError, InvalidOrExpiredSecret
from app.models.user import User, UserRole
from app.schemas.auth import SignupRequest
from app.services.auth import get_password_hash

log = logging.getLogger("uvicorn.error")
settings = get_settings()

PIN_CODE_LENGTH = 6
TOKEN_BYTES = 32
UNIQUE_FIELDS = ("username", "email", "phone")


class SecretPurpose(str, enum.Enum):
    pin = "pin"
    email_confirm = "email_confirm"
    password_reset = "password_reset"


@dataclass(frozen=True)
class _SecretColumns:
    hash_attr: str
    expires_attr: str


_COLUMNS = {
    SecretPurpose.pin: _SecretColumns("pin_code_hash", "pin_code_expires_at"),
    SecretPurpose.email_confirm: _SecretColumns("email_confirm_token_hash", "email_confirm_expires_at"),
    SecretPurpose.password_reset: _SecretColumns("password_reset_token_hash", "password_reset_expires_at"),
}


def secret_lifetime(purpose: SecretPurpose) -> timedelta:
    if purpose == SecretPurpose.pin:
        return timedelta(minutes=settings.pin_code_expire_minutes)
    if purpose == SecretPurpose.email_confirm:
        return timedelta(days=settings.email_confirmation_expire_days)
    return timedelta(minutes=settings.password_reset_expire_minutes)


def hash_secret(purpose: SecretPurpose, value: str) -> str:
    """One-way hash of a transient secret. The purpose is part of the message, so a value never matches another purpose."""
    msg = f"{purpose.value}:{(value or '').strip()}".encode("utf-8")
    return hmac.new(settings.secret_key.encode("utf-8"), msg, hashlib.sha256).hexdigest()


def _generate_secret(purpose: SecretPurpose) -> str:
    if purpose == SecretPurpose.pin:
        return "".join(str(secrets.randbelow(10)) for _ in range(PIN_CODE_LENGTH))
    return secrets.token_hex(TOKEN_BYTES)


def find_by_identifier(db: Session, identifier: str) -> User | None:
    """Look an account up by username or email."""
    ident = (identifier or "").strip().lower()
    if not ident:
        return None
    return db.query(User).filter(or_(User.username == ident, User.email == ident)).first()


def _duplicate_fields(db: Session, values: dict[str, str], exclude_id: int | None = None) -> list[str]:
    taken = []
    for field in UNIQUE_FIELDS:
        value = values.get(field)
        if value is None:
            continue
        q = db.query(User.id).filter(getattr(User, field) == value)
        if exclude_id is not None:
            q = q.filter(User.id != exclude_id)
        if q.first():
            taken.append(field)
    return taken


def duplicate_field_from_integrity_error(exc: IntegrityError) -> str | None:
    msg = str(getattr(exc, "orig", None) or exc).lower()
    for field in UNIQUE_FIELDS:
        if field in msg:
            return field
    return None


def create_account(db: Session, data: SignupRequest, role: UserRole = UserRole.client) -> User:
    """Create an unconfirmed account. The confirmation field is validated by the schema and never stored."""
    taken = _duplicate_fields(db, {"username": data.username, "email": data.email, "phone": data.phone})
    if taken:
        raise DuplicateKeyError(taken[0])
    user = User(
        username=data.username,
        email=data.email,
        phone=data.phone,
        hashed_password=get_password_hash(data.password),
        role=role,
        is_confirmed=False,
        confirmation_deadline=utcnow() + timedelta(minutes=settings.signup_confirmation_window_minutes),
    )
    db.add(user)
    try:
        db.commit()
    except IntegrityError as e:
        # Unique constraints are the real guard when two signups race
        db.rollback()
        field = duplicate_field_from_integrity_error(e)
        if field:
            raise DuplicateKeyError(field)
        raise
    db.refresh(user)
    log.info("[Auth] Account created id=%s username=%s", user.id, user.username)
    return user


def update_profile(db: Session, user: User, values: dict[str, str]) -> User:
    values = {k: v for k, v in values.items() if v is not None}
    taken = _duplicate_fields(db, values, exclude_id=user.id)
    if taken:
        raise DuplicateKeyError(taken[0])
    for field, value in values.items():
        setattr(user, field, value)
    if "email" in values:
        user.is_email_confirmed = False
        user.email_confirm_token_hash = None
        user.email_confirm_expires_at = None
    try:
        db.commit()
    except IntegrityError as e:
        db.rollback()
        field = duplicate_field_from_integrity_error(e)
        if field:
            raise DuplicateKeyError(field)
        raise
    db.refresh(user)
    return user


def set_password(db: Session, user: User, password: str) -> User:
    user.hashed_password = get_password_hash(password)
    user.password_changed_at = utcnow()
    db.commit()
    db.refresh(user)
    return user


def issue_transient_secret(db: Session, purpose: SecretPurpose, user: User) -> str:
    """Store the hash and expiry of a fresh secret (replacing any previous one) and return the plaintext."""
    cols = _COLUMNS[purpose]
    value = _generate_secret(purpose)
    setattr(user, cols.hash_attr, hash_secret(purpose, value))
    setattr(user, cols.expires_attr, utcnow() + secret_lifetime(purpose))
    db.commit()
    db.refresh(user)
    return value


def clear_transient_secret(db: Session, purpose: SecretPurpose, user: User) -> None:
    cols = _COLUMNS[purpose]
    setattr(user, cols.hash_attr, None)
    setattr(user, cols.expires_attr, None)
    db.commit()


def consume_transient_secret(
    db: Session,
    purpose: SecretPurpose,
    candidate: str,
    user: User | None = None,
    also_set: dict | None = None,
) -> User:
    """
    Single-use check of a secret: one conditional UPDATE matches the hash and a future expiry and clears both.
    Without `user`, the account is located by the secret hash (links sent by email).
    `also_set` column values are written by the same UPDATE, so they only apply when the secret was valid.
    Wrong and expired values raise the same InvalidOrExpiredSecret.
    """
    if not candidate:
        raise InvalidOrExpiredSecret()
    cols = _COLUMNS[purpose]
    hash_col = getattr(User, cols.hash_attr)
    expires_col = getattr(User, cols.expires_attr)
    hashed = hash_secret(purpose, candidate)

    if user is None:
        row = db.query(User.id).filter(hash_col == hashed).first()
        if not row:
            raise InvalidOrExpiredSecret()
        user_id = row[0]
    else:
        user_id = user.id

    updated = (
        db.query(User)
        .filter(User.id == user_id, hash_col == hashed, expires_col > utcnow())
        .update({hash_col: None, expires_col: None, **(also_set or {})}, synchronize_session=False)
    )
    db.commit()
    if updated != 1:
        raise InvalidOrExpiredSecret()
    account = db.query(User).filter(User.id == user_id).first()
    if account is None:
        raise InvalidOrExpiredSecret()
    return account


def secret_is_valid(db: Session, purpose: SecretPurpose, candidate: str) -> bool:
    """Non-consuming check, used to tell the frontend whether a link can still be used."""
    cols = _COLUMNS[purpose]
    hashed = hash_secret(purpose, candidate or "")
    return (
        db.query(User.id)
        .filter(getattr(User, cols.hash_attr) == hashed, getattr(User, cols.expires_attr) > utcnow())
        .first()
        is not None
    )
