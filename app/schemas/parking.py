"""Parking and occupation schemas."""
from datetime import datetime
from decimal import Decimal
from pydantic import BaseModel, Field, field_validator
from app.models.occupation import OccupationStatus
from app.models.parking import ParkType

TITLE_MIN_LENGTH = 4
TITLE_MAX_LENGTH = 30


class Location(BaseModel):
    latitude: float | None = Field(default=None, ge=-90, le=90)
    longitude: float | None = Field(default=None, ge=-180, le=180)
    city: str | None = None
    address: str | None = None

    @field_validator("city")
    @classmethod
    def city_lower(cls, v: str | None) -> str | None:
        return v.strip().lower() if v else v


class ParkingCreate(BaseModel):
    title: str
    description: str | None = None
    park_type: ParkType = ParkType.outdoor
    price: Decimal = Field(ge=0, max_digits=10, decimal_places=2)  # per hour, 0 for free
    location: Location | None = None

    @field_validator("title")
    @classmethod
    def title_valid(cls, v: str) -> str:
        s = (v or "").strip().lower()
        if len(s) < TITLE_MIN_LENGTH:
            raise ValueError(f"A parking slot title must have at least {TITLE_MIN_LENGTH} characters.")
        if len(s) > TITLE_MAX_LENGTH:
            raise ValueError(f"A parking slot title must have less or equal than {TITLE_MAX_LENGTH} characters.")
        return s


class ParkingFilters(BaseModel):
    free: bool = False
    city: str | None = None
    park_type: ParkType | None = None
    min_price: Decimal | None = None
    max_price: Decimal | None = None


class ParkingResponse(BaseModel):
    id: int
    owner_id: int
    title: str
    description: str | None = None
    park_type: ParkType
    price: float
    latitude: float | None = None
    longitude: float | None = None
    city: str | None = None
    address: str | None = None
    is_occupied: bool
    is_pending: bool
    validated_at: datetime | None = None

    class Config:
        from_attributes = True


class OccupationResponse(BaseModel):
    id: int
    parking_id: int
    client_id: int
    status: OccupationStatus
    start_at: datetime
    end_at: datetime | None = None
    hourly_price: float
    bill: float | None = None

    class Config:
        from_attributes = True
