"""Shared dependencies: DB session, scheduler, current user and role checks."""
import hmac

from fastapi import Depends, Header, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session
from app.config import get_settings
from app.database import get_db
from app.errors import AccountGone, Forbidden, InvalidToken, NotAuthenticated, PasswordChangedSince
from app.models.user import User, UserRole
from app.services.auth import decode_token
from app.services.scheduler import ExpiryScheduler, get_scheduler

security = HTTPBearer(auto_error=False)


def get_expiry_scheduler() -> ExpiryScheduler:
    return get_scheduler()


def _token_from_request(request: Request, credentials: HTTPAuthorizationCredentials | None) -> str | None:
    if credentials and (credentials.credentials or "").strip():
        return credentials.credentials.strip()
    cookie = (request.cookies.get(get_settings().jwt_cookie_name) or "").strip()
    return cookie or None


def get_current_user(
    request: Request,
    db: Session = Depends(get_db),
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
) -> User:
    """Bearer header first, then the session cookie. The resolved account is the request's caller."""
    token_str = _token_from_request(request, credentials)
    if not token_str:
        raise NotAuthenticated()
    payload = decode_token(token_str)
    try:
        user_id = int(payload.get("sub"))
    except (TypeError, ValueError):
        raise InvalidToken()
    user = db.query(User).filter(User.id == user_id).first()
    if not user or user.is_deactivated:
        raise AccountGone()
    if user.changed_password_after(payload["iat"]):
        raise PasswordChangedSince()
    return user


def require_roles(*roles: UserRole):
    """Dependency factory: the caller's role must be one of `roles`."""
    allowed = set(roles)

    def _check(current_user: User = Depends(get_current_user)) -> User:
        if current_user.role not in allowed:
            raise Forbidden()
        return current_user

    return _check


require_admin = require_roles(UserRole.admin)
require_renter = require_roles(UserRole.client, UserRole.provider)


def require_device_key(x_device_key: str | None = Header(default=None)) -> None:
    expected = get_settings().device_api_key
    if not expected or not hmac.compare_digest(x_device_key or "", expected):
        raise NotAuthenticated("Invalid device key.")


def get_optional_user(
    request: Request,
    db: Session = Depends(get_db),
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
) -> User | None:
    """Like get_current_user, but anonymous callers get None instead of a 401."""
    if not _token_from_request(request, credentials):
        return None
    return get_current_user(request, db, credentials)
