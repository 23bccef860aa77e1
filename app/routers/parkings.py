"""Parkings: listing, admin validation and the reservation lifecycle."""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.config import get_settings
from app.database import get_db
from app.dependencies import (
    get_current_user,
    get_expiry_scheduler,
    get_optional_user,
    require_admin,
    require_device_key,
    require_renter,
)
from app.models.user import User
from app.schemas.parking import OccupationResponse, ParkingCreate, ParkingFilters, ParkingResponse
from app.services import reservations
from app.services.scheduler import ExpiryScheduler

router = APIRouter(prefix="/parkings", tags=["parkings"])


@router.get("", response_model=list[ParkingResponse])
def list_parkings(filters: ParkingFilters = Depends(), db: Session = Depends(get_db)):
    return reservations.list_parkings(db, filters)


@router.post("", status_code=201, response_model=ParkingResponse)
def create_parking(data: ParkingCreate, db: Session = Depends(get_db), current_user: User = Depends(require_renter)):
    return reservations.create_parking(db, current_user, data)


@router.get("/{parking_id}", response_model=ParkingResponse)
def get_parking(parking_id: int, db: Session = Depends(get_db), viewer: User | None = Depends(get_optional_user)):
    return reservations.get_parking(db, parking_id, viewer)


@router.patch("/{parking_id}/validate", response_model=ParkingResponse)
def validate_parking(parking_id: int, db: Session = Depends(get_db), admin: User = Depends(require_admin)):
    return reservations.validate_parking(db, parking_id, admin)


@router.patch("/{parking_id}/start-reservation", response_model=OccupationResponse)
def start_reservation(
    parking_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_renter),
    scheduler: ExpiryScheduler = Depends(get_expiry_scheduler),
):
    """
    Occupy the parking. When device confirmation is on, the request is held open until the
    parking's device confirms the car (or the window elapses, answered with 408).
    """
    occupation = reservations.start_reservation(db, parking_id, current_user, scheduler)
    if get_settings().reservation_device_confirmation:
        occupation = reservations.wait_for_device_confirmation(db, occupation.id, scheduler)
    return occupation


@router.patch("/{parking_id}/end-reservation", response_model=OccupationResponse)
def end_reservation(parking_id: int, db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    return reservations.end_reservation(db, parking_id, current_user)


@router.post("/{parking_id}/device-signal", response_model=OccupationResponse, dependencies=[Depends(require_device_key)])
def device_signal(
    parking_id: int,
    db: Session = Depends(get_db),
    scheduler: ExpiryScheduler = Depends(get_expiry_scheduler),
):
    return reservations.confirm_device_signal(db, parking_id, scheduler)
