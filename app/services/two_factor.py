"""
Two-step authentication: signup/signin issue a PIN by SMS, confirm-pin exchanges it for a session token.

UNAUTHENTICATED -> CREDENTIALS_ACCEPTED (PIN pending) -> SESSION_ACTIVE, with REJECTED on bad
credentials/PIN and ABANDONED when a signup PIN is never confirmed (removed by the expiry timer/sweep).
"""
import logging
from datetime import timedelta

from sqlalchemy.orm import Session

from app.config import get_settings
from app.errors import DependencyError, IncorrectCredentials, InvalidOrExpiredSecret, ValidationError
from app.models.user import User
from app.schemas.auth import SignupRequest
from app.services import notifications
from app.services.auth import create_access_token, verify_password_or_dummy
from app.services.cleanup import delete_account_cascade, expire_unconfirmed_account
from app.services.credentials import (
    SecretPurpose,
    clear_transient_secret,
    consume_transient_secret,
    create_account,
    find_by_identifier,
    issue_transient_secret,
)
from app.services.scheduler import ExpiryScheduler, account_purge_key, signup_expiry_key

log = logging.getLogger("uvicorn.error")
settings = get_settings()

PIN_SEND_FAILED = "There was an error sending the PIN code. Try again later!"
INVALID_PIN = "Invalid or expired PIN code."


def signup(db: Session, data: SignupRequest, scheduler: ExpiryScheduler) -> User:
    """Create the account, text its PIN and arm the unconfirmed-signup timer."""
    user = create_account(db, data)
    pin_code = issue_transient_secret(db, SecretPurpose.pin, user)
    if not notifications.send_pin_code(user.phone, pin_code):
        user_id = user.id
        delete_account_cascade(db, user_id)
        log.warning("[Auth] PIN delivery failed on signup; removed account id=%s", user_id)
        raise DependencyError(PIN_SEND_FAILED)
    scheduler.schedule(
        signup_expiry_key(user.id),
        timedelta(minutes=settings.signup_confirmation_window_minutes),
        expire_unconfirmed_account,
        user.id,
    )
    return user


def signin(db: Session, identifier: str, password: str | None) -> User:
    """Check credentials and text a fresh PIN. Unknown account, wrong password and unconfirmed account look the same."""
    if not identifier or not password:
        raise ValidationError("Please provide username and password.")
    user = find_by_identifier(db, identifier)
    password_ok = verify_password_or_dummy(password, user.hashed_password if user else None)
    if not user or not password_ok or not user.is_confirmed:
        log.info("[Auth] Signin rejected for identifier=%s", identifier)
        raise IncorrectCredentials()
    pin_code = issue_transient_secret(db, SecretPurpose.pin, user)
    if not notifications.send_pin_code(user.phone, pin_code):
        clear_transient_secret(db, SecretPurpose.pin, user)
        raise DependencyError(PIN_SEND_FAILED)
    return user


def confirm_pin(db: Session, identifier: str, pin_code: str, scheduler: ExpiryScheduler) -> tuple[User, str]:
    """
    Consume the PIN and open a session. The first confirmation marks the account confirmed (and sends the
    welcome email); a deactivated account is reactivated. Returns (user, session token).
    """
    user = find_by_identifier(db, identifier)
    if not user:
        raise InvalidOrExpiredSecret(INVALID_PIN)
    try:
        user = consume_transient_secret(db, SecretPurpose.pin, pin_code, user=user)
    except InvalidOrExpiredSecret:
        raise InvalidOrExpiredSecret(INVALID_PIN)
    user_id = user.id

    if not user.is_confirmed:
        first_confirmation = (
            db.query(User)
            .filter(User.id == user_id, User.is_confirmed.is_(False))
            .update({User.is_confirmed: True, User.confirmation_deadline: None}, synchronize_session=False)
        )
        db.commit()
        if first_confirmation:
            scheduler.cancel(signup_expiry_key(user_id))
            if not notifications.send_welcome_email(user.email, user.username):
                log.warning("[Auth] Welcome email not sent to user id=%s", user_id)

    if user.is_deactivated:
        revived = (
            db.query(User)
            .filter(User.id == user_id, User.is_deactivated.is_(True))
            .update({User.is_deactivated: False, User.deactivated_at: None}, synchronize_session=False)
        )
        db.commit()
        if revived:
            scheduler.cancel(account_purge_key(user_id))
            log.info("[Auth] Reactivated account id=%s", user_id)

    db.expire_all()
    user = db.query(User).filter(User.id == user_id).first()
    if not user or not user.is_confirmed:
        # Removed by the expiry timer between PIN check and confirmation
        raise InvalidOrExpiredSecret(INVALID_PIN)
    return user, create_access_token(user.id)
