"""Rentable parking spots."""
from sqlalchemy import Column, Integer, String, Boolean, ForeignKey, Enum as SQLEnum, DateTime, Numeric, Float, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from app.database import Base
import enum


class ParkType(str, enum.Enum):
    indoor = "indoor"
    outdoor = "outdoor"


class Parking(Base):
    __tablename__ = "parkings"

    id = Column(Integer, primary_key=True, index=True)
    owner_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)

    title = Column(String(30), unique=True, nullable=False)
    description = Column(Text, nullable=True)
    park_type = Column(SQLEnum(ParkType), nullable=False, default=ParkType.outdoor)
    price = Column(Numeric(10, 2), nullable=False)  # per hour

    latitude = Column(Float, nullable=True)
    longitude = Column(Float, nullable=True)
    city = Column(String(100), nullable=True, index=True)
    address = Column(String(255), nullable=True)

    # Toggled only by the reservation lifecycle (conditional updates); true while a claim is open
    is_occupied = Column(Boolean, default=False, nullable=False)

    # Listings start pending and become public once an admin validates them
    is_pending = Column(Boolean, default=True, nullable=False)
    validated_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, onupdate=func.now())

    owner = relationship("User", back_populates="parkings")
    occupations = relationship("Occupation", back_populates="parking")

    @property
    def is_validated(self) -> bool:
        return not self.is_pending
