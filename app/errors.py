"""Typed application errors. Each maps to one HTTP status in the exception handlers (app.main)."""
from typing import Any


class AppError(Exception):
    status_code = 500
    message = "Something went wrong. Try again!"

    def __init__(self, message: str | None = None, *, fields: list[dict[str, Any]] | None = None):
        super().__init__(message or self.message)
        self.message = message or self.message
        self.fields = fields

    @property
    def status(self) -> str:
        return "fail" if str(self.status_code).startswith("4") else "error"

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {"status": self.status, "message": self.message}
        if self.fields:
            body["fields"] = self.fields
        return body


class ValidationError(AppError):
    status_code = 400
    message = "Invalid input data."


class DuplicateKeyError(AppError):
    status_code = 400

    def __init__(self, field: str):
        super().__init__(
            f"Duplicate field value for {field}. Please use another value!",
            fields=[{field: f"This {field} is not available."}],
        )
        self.field = field


class AuthenticationError(AppError):
    status_code = 401
    message = "You are not logged in! Please log in to get access."


class IncorrectCredentials(AuthenticationError):
    message = "Incorrect credentials."


class InvalidOrExpiredSecret(AuthenticationError):
    message = "The provided code is invalid or has expired."


class NotAuthenticated(AuthenticationError):
    pass


class InvalidToken(AuthenticationError):
    message = "Invalid token. Please log in again!"


class TokenExpired(AuthenticationError):
    message = "Your token has expired. Please log in again!"


class AccountGone(AuthenticationError):
    message = "The user belonging to this token no longer exists."


class PasswordChangedSince(AuthenticationError):
    message = "User recently changed password! Please log in again."


class AuthorizationError(AppError):
    status_code = 403
    message = "You do not have permission to perform this action."


Forbidden = AuthorizationError


class NotFoundError(AppError):
    status_code = 404
    message = "Resource not found."


class ConflictError(AppError):
    status_code = 400
    message = "The resource is not in a state that allows this operation."


class AlreadyOccupied(ConflictError):
    message = "This parking is already occupied."


class SelfReservation(ConflictError):
    message = "You cannot reserve your own parking."


class NoActiveReservation(ConflictError):
    message = "You have no active reservation on this parking."


class AlreadyValidated(ConflictError):
    message = "This parking has already been validated."


class ConfirmationTimeout(AppError):
    status_code = 408
    message = "The parking did not confirm the reservation in time. Please try again."


class DependencyError(AppError):
    status_code = 500
    message = "There was an error sending the notification. Try again later!"


class InternalError(AppError):
    status_code = 500
