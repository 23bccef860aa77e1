"""Accounts: two-step authentication, email confirmation, password recovery and account management."""

from fastapi import APIRouter, Depends, Response
from sqlalchemy.orm import Session

from app.config import get_settings
from app.database import get_db
from app.dependencies import get_current_user, get_expiry_scheduler, require_admin
from app.models.user import User
from app.schemas.auth import (
    ChangePasswordRequest,
    ConfirmPinRequest,
    ForgotPasswordRequest,
    MessageResponse,
    PinExpirationResponse,
    ResetLinkResponse,
    ResetPasswordRequest,
    SetRoleRequest,
    SigninRequest,
    SignupRequest,
    TokenResponse,
    UpdateMeRequest,
    UserResponse,
)
from app.services import accounts, two_factor
from app.services.auth import access_token_ttl
from app.services.credentials import SecretPurpose, find_by_identifier, secret_is_valid, update_profile
from app.services.scheduler import ExpiryScheduler

settings = get_settings()

router = APIRouter(prefix="/users", tags=["users"])

PIN_SENT_MESSAGE = "Please confirm your PIN code sent to your phone number."


def _set_token_cookie(response: Response, token: str) -> None:
    response.set_cookie(
        key=settings.jwt_cookie_name,
        value=token,
        max_age=int(access_token_ttl().total_seconds()),
        httponly=True,
        samesite="lax",
        secure=settings.jwt_cookie_secure or settings.is_production,
    )


def _token_response(response: Response, user: User, token: str, message: str | None = None) -> TokenResponse:
    _set_token_cookie(response, token)
    return TokenResponse(token=token, message=message, user=UserResponse.model_validate(user))


@router.post("/signup", status_code=201, response_model=MessageResponse)
def signup(
    data: SignupRequest,
    db: Session = Depends(get_db),
    scheduler: ExpiryScheduler = Depends(get_expiry_scheduler),
):
    two_factor.signup(db, data, scheduler)
    return MessageResponse(message=PIN_SENT_MESSAGE)


@router.post("/signin", response_model=MessageResponse)
def signin(data: SigninRequest, db: Session = Depends(get_db)):
    two_factor.signin(db, data.identifier, data.password)
    return MessageResponse(message=PIN_SENT_MESSAGE)


@router.post("/confirm-pin", response_model=TokenResponse)
def confirm_pin(
    data: ConfirmPinRequest,
    response: Response,
    db: Session = Depends(get_db),
    scheduler: ExpiryScheduler = Depends(get_expiry_scheduler),
):
    user, token = two_factor.confirm_pin(db, data.identifier, data.pin_code, scheduler)
    return _token_response(response, user, token, message="You are now logged in.")


@router.get("/logout", response_model=MessageResponse)
def logout(response: Response):
    response.delete_cookie(settings.jwt_cookie_name, httponly=True, samesite="lax")
    return MessageResponse(message="You are now logged out.")


@router.get("/send-confirmation-email", response_model=MessageResponse)
def send_confirmation_email(db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    accounts.send_confirmation_email(db, current_user)
    return MessageResponse(message="A confirmation email was sent to your email address.")


@router.patch("/confirm-email/{token}", response_model=MessageResponse)
def confirm_email(token: str, db: Session = Depends(get_db)):
    accounts.confirm_email(db, token)
    return MessageResponse(message="Your email address is now confirmed.")


@router.post("/forgot-password", response_model=MessageResponse)
def forgot_password(data: ForgotPasswordRequest, db: Session = Depends(get_db)):
    accounts.forgot_password(db, data.email)
    return MessageResponse(message="If an account exists for this email address, a reset link was sent to it.")


@router.get("/reset-password/{token}", response_model=ResetLinkResponse)
def is_reset_link_valid(token: str, db: Session = Depends(get_db)):
    return ResetLinkResponse(is_valid=secret_is_valid(db, SecretPurpose.password_reset, token))


@router.patch("/reset-password/{token}", response_model=TokenResponse)
def reset_password(token: str, data: ResetPasswordRequest, response: Response, db: Session = Depends(get_db)):
    user, new_token = accounts.reset_password(db, token, data.password)
    return _token_response(response, user, new_token, message="Your password has been reset.")


@router.patch("/change-password", response_model=TokenResponse)
def change_password(
    data: ChangePasswordRequest,
    response: Response,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    token = accounts.change_password(db, current_user, data.current_password, data.password)
    return _token_response(response, current_user, token, message="Your password has been changed.")


@router.get("/validate", response_model=UserResponse)
def validate(current_user: User = Depends(get_current_user)):
    """Token check used by the frontend on load."""
    return current_user


@router.get("/me", response_model=UserResponse)
def me(current_user: User = Depends(get_current_user)):
    return current_user


@router.patch("/me", response_model=UserResponse)
def update_me(data: UpdateMeRequest, db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    return update_profile(db, current_user, data.model_dump(exclude_none=True))


@router.delete("/me", status_code=204)
def delete_me(
    response: Response,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    scheduler: ExpiryScheduler = Depends(get_expiry_scheduler),
):
    accounts.deactivate_account(db, current_user, scheduler)
    response.delete_cookie(settings.jwt_cookie_name, httponly=True, samesite="lax")


@router.get("/{identifier}/pin-expiration", response_model=PinExpirationResponse)
def pin_expiration(identifier: str, db: Session = Depends(get_db)):
    """Expiry of the pending PIN, or null. Unknown accounts answer the same as accounts without a PIN."""
    user = find_by_identifier(db, identifier)
    return PinExpirationResponse(pin_code_expires_at=user.pin_code_expires_at if user else None)


@router.delete("/{user_id}", status_code=204)
def delete_user(
    user_id: int,
    db: Session = Depends(get_db),
    _admin: User = Depends(require_admin),
    scheduler: ExpiryScheduler = Depends(get_expiry_scheduler),
):
    accounts.delete_user(db, user_id, scheduler)
    return Response(status_code=204)


@router.patch("/{user_id}/role", response_model=UserResponse)
def set_role(user_id: int, data: SetRoleRequest, db: Session = Depends(get_db), _admin: User = Depends(require_admin)):
    return accounts.set_role(db, user_id, data.role)
