"""Account maintenance: email confirmation, password recovery/change, soft delete and admin actions."""
import logging
from datetime import timedelta

from sqlalchemy.orm import Session

from app.config import get_settings
from app.database import utcnow
from app.errors import (
    DependencyError,
    Forbidden,
    IncorrectCredentials,
    InvalidOrExpiredSecret,
    NotFoundError,
    ValidationError,
)
from app.models.user import User, UserRole
from app.services import notifications
from app.services.auth import create_access_token, get_password_hash, verify_password
from app.services.cleanup import delete_account_cascade, purge_deactivated_account
from app.services.credentials import (
    SecretPurpose,
    clear_transient_secret,
    consume_transient_secret,
    issue_transient_secret,
    set_password,
)
from app.services.scheduler import ExpiryScheduler, account_purge_key, signup_expiry_key

log = logging.getLogger("uvicorn.error")
settings = get_settings()


def send_confirmation_email(db: Session, user: User) -> None:
    if user.is_email_confirmed:
        raise Forbidden("Your email address is already confirmed.")
    token = issue_transient_secret(db, SecretPurpose.email_confirm, user)
    url = f"{settings.frontend_url}/confirm-email/{token}"
    if not notifications.send_email_confirmation(user.email, user.username, url):
        clear_transient_secret(db, SecretPurpose.email_confirm, user)
        raise DependencyError("There was an error sending the confirmation email. Try again later!")


def confirm_email(db: Session, token: str) -> User:
    try:
        return consume_transient_secret(
            db,
            SecretPurpose.email_confirm,
            token,
            also_set={User.is_email_confirmed: True},
        )
    except InvalidOrExpiredSecret:
        raise NotFoundError("This confirmation link is invalid or has expired.")


def forgot_password(db: Session, email: str) -> None:
    """Email a reset link when the address belongs to an account. Unknown addresses are silently ignored."""
    user = db.query(User).filter(User.email == (email or "").strip().lower()).first()
    if not user or not user.is_confirmed:
        return
    token = issue_transient_secret(db, SecretPurpose.password_reset, user)
    url = f"{settings.frontend_url}/reset-password/{token}"
    if not notifications.send_forgot_password(user.email, user.username, url):
        clear_transient_secret(db, SecretPurpose.password_reset, user)
        raise DependencyError("There was an error sending the email. Try again later!")


def reset_password(db: Session, token: str, password: str) -> tuple[User, str]:
    """Set a new password from a reset link; the token check and the password write are one UPDATE."""
    try:
        user = consume_transient_secret(
            db,
            SecretPurpose.password_reset,
            token,
            also_set={
                User.hashed_password: get_password_hash(password),
                User.password_changed_at: utcnow(),
            },
        )
    except InvalidOrExpiredSecret:
        raise ValidationError("Token is invalid or has expired!")
    log.info("[Auth] Password reset for user id=%s", user.id)
    return user, create_access_token(user.id)


def change_password(db: Session, user: User, current_password: str, new_password: str) -> str:
    if not verify_password(current_password, user.hashed_password):
        raise IncorrectCredentials("Your current password is wrong.")
    set_password(db, user, new_password)
    return create_access_token(user.id)


def deactivate_account(db: Session, user: User, scheduler: ExpiryScheduler) -> None:
    """Soft delete: the account can no longer authenticate until a PIN confirmation revives it."""
    updated = (
        db.query(User)
        .filter(User.id == user.id, User.is_deactivated.is_(False))
        .update({User.is_deactivated: True, User.deactivated_at: utcnow()}, synchronize_session=False)
    )
    db.commit()
    if updated:
        scheduler.schedule(
            account_purge_key(user.id),
            timedelta(days=settings.deactivated_account_grace_days),
            purge_deactivated_account,
            user.id,
        )
        log.info("[Auth] Deactivated account id=%s", user.id)


def delete_user(db: Session, user_id: int, scheduler: ExpiryScheduler) -> None:
    if not delete_account_cascade(db, user_id):
        raise NotFoundError("No user found with that ID.")
    scheduler.cancel(signup_expiry_key(user_id))
    scheduler.cancel(account_purge_key(user_id))
    log.info("[Auth] Deleted account id=%s", user_id)


def set_role(db: Session, user_id: int, role: UserRole) -> User:
    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        raise NotFoundError("No user found with that ID.")
    user.role = role
    db.commit()
    db.refresh(user)
    return user
