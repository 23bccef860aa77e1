"""Reservations (occupations) of a parking by a renter."""
from sqlalchemy import Column, Integer, ForeignKey, DateTime, Numeric, Enum as SQLEnum, Index, text
from sqlalchemy.orm import relationship
from app.database import Base
import enum


class OccupationStatus(str, enum.Enum):
    pending = "pending"  # waiting for the device signal
    active = "active"
    ended = "ended"


class Occupation(Base):
    __tablename__ = "occupations"
    __table_args__ = (
        # At most one open occupation per parking, enforced by the database
        Index(
            "uq_occupations_open_parking",
            "parking_id",
            unique=True,
            sqlite_where=text("end_at IS NULL"),
            postgresql_where=text("end_at IS NULL"),
        ),
    )

    id = Column(Integer, primary_key=True, index=True)
    parking_id = Column(Integer, ForeignKey("parkings.id"), nullable=False, index=True)
    client_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)

    status = Column(SQLEnum(OccupationStatus), nullable=False, default=OccupationStatus.active)
    start_at = Column(DateTime, nullable=False)
    end_at = Column(DateTime, nullable=True)
    confirm_by = Column(DateTime, nullable=True)

    hourly_price = Column(Numeric(10, 2), nullable=False)  # parking price when the reservation started
    bill = Column(Numeric(10, 2), nullable=True)

    parking = relationship("Parking", back_populates="occupations")
    client = relationship("User", back_populates="occupations")
