"""Account, credential and session schemas."""
import re
from datetime import datetime
from pydantic import BaseModel, EmailStr, Field, ValidationInfo, field_validator
from app.models.user import UserRole

PHONE_MIN_DIGITS = 10
PHONE_MAX_DIGITS = 15
USERNAME_MIN_LENGTH = 4
USERNAME_MAX_LENGTH = 30
PASSWORD_MIN_LENGTH = 8
PASSWORD_MAX_LENGTH = 100


def _normalize_phone(value: str | None) -> str:
    if value is None:
        return ""
    s = value.strip()
    digits = re.sub(r"\D", "", s)
    return digits


def normalize_phone(value: str | None) -> str:
    """Validate a phone number and return it as '+<digits>' (stored form)."""
    digits = _normalize_phone(value)
    if not digits:
        raise ValueError("Please provide your phone number.")
    if len(digits) < PHONE_MIN_DIGITS:
        raise ValueError(f"Phone number must have at least {PHONE_MIN_DIGITS} digits (e.g. +41 79 123 45 67).")
    if len(digits) > PHONE_MAX_DIGITS:
        raise ValueError(f"Phone number cannot exceed {PHONE_MAX_DIGITS} digits.")
    return f"+{digits}"


def normalize_username(value: str | None) -> str:
    s = (value or "").strip().lower()
    if len(s) < USERNAME_MIN_LENGTH:
        raise ValueError(f"A username must have at least {USERNAME_MIN_LENGTH} characters.")
    if len(s) > USERNAME_MAX_LENGTH:
        raise ValueError(f"A username must have less or equal than {USERNAME_MAX_LENGTH} characters.")
    return s


def password_errors(password: str) -> list[str]:
    """Every password rule the value breaks (empty list when the password is strong enough)."""
    errors = []
    if len(password) < PASSWORD_MIN_LENGTH:
        errors.append(f"The password must contain at least {PASSWORD_MIN_LENGTH} characters.")
    if len(password) > PASSWORD_MAX_LENGTH:
        errors.append(f"The password must contain at most {PASSWORD_MAX_LENGTH} characters.")
    if not re.search(r"[A-Z]", password):
        errors.append("The password must contain at least 1 letter in uppercase.")
    if not re.search(r"[a-z]", password):
        errors.append("The password must contain at least 1 letter in lowercase.")
    if not re.search(r"\d", password):
        errors.append("The password must contain at least 1 digit.")
    if not re.search(r"[^A-Za-z0-9\s]", password):
        errors.append("The password must contain at least 1 special character.")
    if re.search(r"\s", password):
        errors.append("The password must not contain spaces.")
    return errors


class _NewPassword(BaseModel):
    """Mixin for payloads carrying a new password and its confirmation."""
    password: str
    password_confirm: str = Field(alias="passwordConfirm")

    @field_validator("password")
    @classmethod
    def password_strong(cls, v: str) -> str:
        errors = password_errors(v)
        if errors:
            raise ValueError(" ".join(errors))
        return v

    @field_validator("password_confirm")
    @classmethod
    def passwords_match(cls, v: str, info: ValidationInfo) -> str:
        password = info.data.get("password")
        if password is not None and v != password:
            raise ValueError("Passwords are not the same.")
        return v

    class Config:
        populate_by_name = True


class SignupRequest(_NewPassword):
    username: str
    email: EmailStr
    phone: str

    @field_validator("username")
    @classmethod
    def username_valid(cls, v: str) -> str:
        return normalize_username(v)

    @field_validator("email")
    @classmethod
    def email_lower(cls, v: str) -> str:
        return v.strip().lower()

    @field_validator("phone")
    @classmethod
    def phone_valid(cls, v: str) -> str:
        return normalize_phone(v)


class SigninRequest(BaseModel):
    """`username` may hold either the username or the email address."""
    username: str | None = None
    email: str | None = None
    password: str | None = None

    @property
    def identifier(self) -> str:
        return (self.username or self.email or "").strip().lower()


class ConfirmPinRequest(BaseModel):
    username: str | None = None
    email: str | None = None
    pin_code: str = Field(alias="pinCode")

    @property
    def identifier(self) -> str:
        return (self.username or self.email or "").strip().lower()

    class Config:
        populate_by_name = True


class ForgotPasswordRequest(BaseModel):
    email: str


class ResetPasswordRequest(_NewPassword):
    pass


class ChangePasswordRequest(_NewPassword):
    current_password: str = Field(alias="currentPassword")


class UpdateMeRequest(BaseModel):
    username: str | None = None
    email: EmailStr | None = None
    phone: str | None = None

    @field_validator("username")
    @classmethod
    def username_valid(cls, v: str | None) -> str | None:
        return normalize_username(v) if v is not None else None

    @field_validator("email")
    @classmethod
    def email_lower(cls, v: str | None) -> str | None:
        return v.strip().lower() if v is not None else None

    @field_validator("phone")
    @classmethod
    def phone_valid(cls, v: str | None) -> str | None:
        return normalize_phone(v) if v is not None else None


class SetRoleRequest(BaseModel):
    role: UserRole


class UserResponse(BaseModel):
    id: int
    username: str
    email: str
    phone: str
    role: UserRole
    is_confirmed: bool
    is_email_confirmed: bool

    class Config:
        from_attributes = True


class MessageResponse(BaseModel):
    status: str = "success"
    message: str


class TokenResponse(BaseModel):
    status: str = "success"
    token: str
    message: str | None = None
    user: UserResponse


class ResetLinkResponse(BaseModel):
    status: str = "success"
    is_valid: bool


class PinExpirationResponse(BaseModel):
    status: str = "success"
    pin_code_expires_at: datetime | None = None
