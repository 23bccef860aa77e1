"""Accounts, credentials and transient secrets."""
import calendar

from sqlalchemy import Column, Integer, String, Enum as SQLEnum, DateTime, Boolean
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from app.database import Base
import enum


class UserRole(str, enum.Enum):
    client = "client"
    provider = "provider"
    admin = "admin"


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    username = Column(String(30), unique=True, index=True, nullable=False)
    email = Column(String(255), unique=True, index=True, nullable=False)
    phone = Column(String(20), unique=True, nullable=False)
    hashed_password = Column(String(255), nullable=False)
    role = Column(SQLEnum(UserRole), nullable=False, default=UserRole.client)

    # Set by the first successful PIN confirmation; unconfirmed accounts are removed after confirmation_deadline
    is_confirmed = Column(Boolean, default=False, nullable=False)
    confirmation_deadline = Column(DateTime, nullable=True, index=True)

    # Transient secrets: only the HMAC of the value is stored, next to an absolute expiry
    pin_code_hash = Column(String(64), nullable=True)
    pin_code_expires_at = Column(DateTime, nullable=True)

    is_email_confirmed = Column(Boolean, default=False, nullable=False)
    email_confirm_token_hash = Column(String(64), nullable=True, index=True)
    email_confirm_expires_at = Column(DateTime, nullable=True)

    password_reset_token_hash = Column(String(64), nullable=True, index=True)
    password_reset_expires_at = Column(DateTime, nullable=True)

    password_changed_at = Column(DateTime, nullable=True)

    # Soft delete: revived by the next successful PIN confirmation, purged after the grace period
    is_deactivated = Column(Boolean, default=False, nullable=False)
    deactivated_at = Column(DateTime, nullable=True, index=True)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, onupdate=func.now())

    parkings = relationship("Parking", back_populates="owner")
    occupations = relationship("Occupation", back_populates="client")

    def changed_password_after(self, issued_at: float) -> bool:
        """True when the password was changed after a token issued at `issued_at` (epoch seconds)."""
        if not self.password_changed_at:
            return False
        changed = self.password_changed_at
        changed_ts = calendar.timegm(changed.timetuple()) + changed.microsecond / 1_000_000
        return changed_ts > float(issued_at)
