"""
Reservation lifecycle of a parking: FREE -> (PENDING_CONFIRMATION ->) OCCUPIED -> FREE.

Every transition is a conditional UPDATE/DELETE keyed on the current state, so two concurrent
requests can never both win: the losing one matches zero rows.
"""
import logging
import time
from datetime import datetime, timedelta
from decimal import Decimal, ROUND_HALF_UP

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.config import get_settings
from app.database import utcnow
from app.errors import (
    AlreadyOccupied,
    AlreadyValidated,
    ConfirmationTimeout,
    ConflictError,
    DuplicateKeyError,
    Forbidden,
    NoActiveReservation,
    NotFoundError,
    SelfReservation,
)
from app.models.occupation import Occupation, OccupationStatus
from app.models.parking import Parking
from app.models.user import User, UserRole
from app.schemas.parking import ParkingCreate, ParkingFilters
from app.services import notifications
from app.services.cleanup import expire_pending_occupation
from app.services.scheduler import ExpiryScheduler, reservation_expiry_key

log = logging.getLogger("uvicorn.error")
settings = get_settings()

CENT = Decimal("0.01")
SECONDS_PER_HOUR = Decimal(3600)
PARKING_NOT_FOUND = "No parking found with that ID."


def compute_bill(start: datetime, end: datetime, hourly_price) -> Decimal:
    """Elapsed hours times the hourly price, rounded half-up to the cent."""
    seconds = Decimal(str(max((end - start).total_seconds(), 0)))
    return (seconds / SECONDS_PER_HOUR * Decimal(str(hourly_price))).quantize(CENT, rounding=ROUND_HALF_UP)


def create_parking(db: Session, owner: User, data: ParkingCreate) -> Parking:
    if db.query(Parking.id).filter(Parking.title == data.title).first():
        raise DuplicateKeyError("title")
    parking = Parking(
        owner_id=owner.id,
        title=data.title,
        description=data.description,
        park_type=data.park_type,
        price=data.price,
        latitude=data.location.latitude if data.location else None,
        longitude=data.location.longitude if data.location else None,
        city=data.location.city if data.location else None,
        address=data.location.address if data.location else None,
        is_pending=True,
        is_occupied=False,
    )
    db.add(parking)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise DuplicateKeyError("title")
    db.refresh(parking)
    log.info("[Reservation] Parking id=%s created by user id=%s (pending validation)", parking.id, owner.id)
    return parking


def list_parkings(db: Session, filters: ParkingFilters) -> list[Parking]:
    """Validated parkings only."""
    q = db.query(Parking).filter(Parking.is_pending.is_(False))
    if filters.free:
        q = q.filter(Parking.is_occupied.is_(False))
    if filters.city:
        q = q.filter(Parking.city == filters.city.strip().lower())
    if filters.park_type:
        q = q.filter(Parking.park_type == filters.park_type)
    if filters.min_price is not None:
        q = q.filter(Parking.price >= filters.min_price)
    if filters.max_price is not None:
        q = q.filter(Parking.price <= filters.max_price)
    return q.order_by(Parking.id).all()


def get_parking(db: Session, parking_id: int, viewer: User | None = None) -> Parking:
    """A validated parking, or a pending one when the viewer is its owner or an admin."""
    parking = db.query(Parking).filter(Parking.id == parking_id).first()
    if not parking:
        raise NotFoundError(PARKING_NOT_FOUND)
    if parking.is_pending:
        allowed = viewer is not None and (viewer.id == parking.owner_id or viewer.role == UserRole.admin)
        if not allowed:
            raise NotFoundError(PARKING_NOT_FOUND)
    return parking


def validate_parking(db: Session, parking_id: int, admin: User) -> Parking:
    """PENDING -> VALIDATED (admin only). Validating twice raises AlreadyValidated."""
    if admin.role != UserRole.admin:
        raise Forbidden()
    parking = db.query(Parking).filter(Parking.id == parking_id).first()
    if not parking:
        raise NotFoundError(PARKING_NOT_FOUND)
    updated = (
        db.query(Parking)
        .filter(Parking.id == parking_id, Parking.is_pending.is_(True))
        .update({Parking.is_pending: False, Parking.validated_at: utcnow()}, synchronize_session=False)
    )
    db.commit()
    if updated != 1:
        raise AlreadyValidated()
    db.refresh(parking)
    owner = parking.owner
    if not notifications.send_parking_validated(owner.email, owner.username, parking.title):
        log.warning("[Reservation] Validation email not sent for parking id=%s", parking.id)
    return parking


def _notify_reserved(parking: Parking, renter: User, occupation: Occupation) -> None:
    owner = parking.owner
    sent = notifications.send_parking_reserved(
        owner.email,
        owner.username,
        renter.username,
        parking.title,
        occupation.id,
        occupation.start_at.isoformat(),
    )
    if not sent:
        log.warning("[Reservation] Owner not notified of reservation id=%s", occupation.id)


def start_reservation(db: Session, parking_id: int, renter: User, scheduler: ExpiryScheduler) -> Occupation:
    """
    Claim a free validated parking. The claim is a conditional UPDATE on is_occupied committed together
    with the open occupation. With device confirmation on, the occupation starts pending and an expiry
    timer releases the parking if the device never confirms.
    """
    parking = db.query(Parking).filter(Parking.id == parking_id).first()
    if not parking or parking.is_pending:
        raise NotFoundError(PARKING_NOT_FOUND)
    if parking.owner_id == renter.id:
        raise SelfReservation()

    device_confirmation = settings.reservation_device_confirmation
    timeout = timedelta(seconds=settings.reservation_confirmation_timeout_seconds)
    now = utcnow()

    claimed = (
        db.query(Parking)
        .filter(Parking.id == parking_id, Parking.is_occupied.is_(False), Parking.is_pending.is_(False))
        .update({Parking.is_occupied: True}, synchronize_session=False)
    )
    if claimed != 1:
        db.rollback()
        raise AlreadyOccupied()
    occupation = Occupation(
        parking_id=parking_id,
        client_id=renter.id,
        status=OccupationStatus.pending if device_confirmation else OccupationStatus.active,
        start_at=now,
        confirm_by=now + timeout if device_confirmation else None,
        hourly_price=parking.price,
    )
    db.add(occupation)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise AlreadyOccupied()
    db.refresh(occupation)
    db.refresh(parking)

    if device_confirmation:
        scheduler.schedule(reservation_expiry_key(occupation.id), timeout, expire_pending_occupation, occupation.id)
        log.info("[Reservation] Occupation id=%s pending device confirmation", occupation.id)
        return occupation

    log.info("[Reservation] Parking id=%s occupied by user id=%s", parking_id, renter.id)
    _notify_reserved(parking, renter, occupation)
    return occupation


def revert_pending_occupation(db: Session, occupation_id: int) -> bool:
    """PENDING_CONFIRMATION -> FREE: discard the tentative occupation and release the parking. False if it was already confirmed or gone."""
    row = (
        db.query(Occupation.parking_id)
        .filter(Occupation.id == occupation_id, Occupation.status == OccupationStatus.pending)
        .first()
    )
    if not row:
        return False
    deleted = (
        db.query(Occupation)
        .filter(Occupation.id == occupation_id, Occupation.status == OccupationStatus.pending)
        .delete(synchronize_session=False)
    )
    if deleted != 1:
        db.rollback()
        return False
    db.query(Parking).filter(Parking.id == row[0]).update({Parking.is_occupied: False}, synchronize_session=False)
    db.commit()
    return True


def wait_for_device_confirmation(db: Session, occupation_id: int, scheduler: ExpiryScheduler) -> Occupation:
    """Block the caller until the device confirms the occupation, or revert it and raise ConfirmationTimeout."""
    deadline = time.monotonic() + settings.reservation_confirmation_timeout_seconds
    while True:
        db.expire_all()
        occupation = db.query(Occupation).filter(Occupation.id == occupation_id).first()
        if occupation is None:
            # Reverted by the expiry timer
            raise ConfirmationTimeout()
        if occupation.status != OccupationStatus.pending:
            return occupation
        if time.monotonic() >= deadline:
            break
        time.sleep(settings.reservation_confirmation_poll_seconds)

    if revert_pending_occupation(db, occupation_id):
        scheduler.cancel(reservation_expiry_key(occupation_id))
        log.info("[Reservation] Occupation id=%s not confirmed in time; parking released", occupation_id)
        raise ConfirmationTimeout()
    # Confirmed at the last moment
    db.expire_all()
    occupation = db.query(Occupation).filter(Occupation.id == occupation_id).first()
    if occupation is None:
        raise ConfirmationTimeout()
    return occupation


def confirm_device_signal(db: Session, parking_id: int, scheduler: ExpiryScheduler) -> Occupation:
    """PENDING_CONFIRMATION -> OCCUPIED when the parking's device reports the car within the window."""
    parking = db.query(Parking).filter(Parking.id == parking_id).first()
    if not parking:
        raise NotFoundError(PARKING_NOT_FOUND)
    occupation = (
        db.query(Occupation)
        .filter(Occupation.parking_id == parking_id, Occupation.status == OccupationStatus.pending)
        .first()
    )
    if not occupation:
        raise NoActiveReservation("No reservation is waiting for confirmation on this parking.")
    now = utcnow()
    confirmed = (
        db.query(Occupation)
        .filter(
            Occupation.id == occupation.id,
            Occupation.status == OccupationStatus.pending,
            Occupation.confirm_by > now,
        )
        .update(
            {Occupation.status: OccupationStatus.active, Occupation.start_at: now, Occupation.confirm_by: None},
            synchronize_session=False,
        )
    )
    db.commit()
    if confirmed != 1:
        raise ConflictError("The confirmation window of this reservation has elapsed.")
    scheduler.cancel(reservation_expiry_key(occupation.id))
    db.refresh(occupation)
    log.info("[Reservation] Occupation id=%s confirmed by device", occupation.id)
    _notify_reserved(parking, occupation.client, occupation)
    return occupation


def end_reservation(db: Session, parking_id: int, renter: User) -> Occupation:
    """OCCUPIED -> FREE: close the renter's open occupation, bill it and release the parking."""
    parking = db.query(Parking).filter(Parking.id == parking_id).first()
    if not parking:
        raise NotFoundError(PARKING_NOT_FOUND)
    occupation = (
        db.query(Occupation)
        .filter(
            Occupation.parking_id == parking_id,
            Occupation.client_id == renter.id,
            Occupation.status == OccupationStatus.active,
            Occupation.end_at.is_(None),
        )
        .first()
    )
    if not occupation:
        raise NoActiveReservation()

    end = utcnow()
    if end <= occupation.start_at:
        end = occupation.start_at + timedelta(microseconds=1)
    bill = compute_bill(occupation.start_at, end, occupation.hourly_price)
    closed = (
        db.query(Occupation)
        .filter(
            Occupation.id == occupation.id,
            Occupation.status == OccupationStatus.active,
            Occupation.end_at.is_(None),
        )
        .update(
            {Occupation.end_at: end, Occupation.bill: bill, Occupation.status: OccupationStatus.ended},
            synchronize_session=False,
        )
    )
    if closed != 1:
        db.rollback()
        raise NoActiveReservation()
    db.query(Parking).filter(Parking.id == parking_id).update({Parking.is_occupied: False}, synchronize_session=False)
    db.commit()
    db.refresh(occupation)
    db.refresh(parking)
    log.info("[Reservation] Occupation id=%s ended, bill=%s", occupation.id, bill)

    owner = parking.owner
    if not notifications.send_parking_reservation_ended(owner.email, owner.username, renter.username, parking.title, str(bill)):
        log.warning("[Reservation] Owner not notified of end of reservation id=%s", occupation.id)
    return occupation


def list_own_occupations(db: Session, user: User) -> list[Occupation]:
    return db.query(Occupation).filter(Occupation.client_id == user.id).order_by(Occupation.start_at.desc()).all()
