"""Expiry-driven cleanup: unconfirmed signups, deactivated accounts past their grace period, unconfirmed reservations."""
import logging
from datetime import timedelta

from sqlalchemy.orm import Session

from app.config import get_settings
from app.database import SessionLocal, utcnow
from app.models.occupation import Occupation, OccupationStatus
from app.models.parking import Parking
from app.models.user import User

log = logging.getLogger("uvicorn.error")


def delete_account_cascade(db: Session, user_id: int, *conditions) -> bool:
    """
    Delete an account and everything referencing it: its occupations as renter, its parkings and their occupations.
    `conditions` are extra filters on the user row; when the row no longer matches them
    (e.g. the account got confirmed meanwhile) the whole deletion is rolled back and False is returned.
    """
    owned_ids = [pid for (pid,) in db.query(Parking.id).filter(Parking.owner_id == user_id).all()]

    # Parkings held by this renter become free again
    held_ids = [
        pid
        for (pid,) in db.query(Occupation.parking_id)
        .filter(Occupation.client_id == user_id, Occupation.end_at.is_(None))
        .all()
    ]
    if held_ids:
        db.query(Parking).filter(Parking.id.in_(held_ids)).update(
            {Parking.is_occupied: False}, synchronize_session=False
        )

    db.query(Occupation).filter(Occupation.client_id == user_id).delete(synchronize_session=False)
    if owned_ids:
        db.query(Occupation).filter(Occupation.parking_id.in_(owned_ids)).delete(synchronize_session=False)
        db.query(Parking).filter(Parking.id.in_(owned_ids)).delete(synchronize_session=False)

    deleted = db.query(User).filter(User.id == user_id, *conditions).delete(synchronize_session=False)
    if deleted != 1:
        db.rollback()
        return False
    db.commit()
    return True


def expire_unconfirmed_account(user_id: int) -> bool:
    """Timer callback: drop a signup whose PIN was never confirmed."""
    db = SessionLocal()
    try:
        deleted = delete_account_cascade(db, user_id, User.is_confirmed.is_(False))
        if deleted:
            log.info("[Cleanup] Deleted unconfirmed account id=%s", user_id)
        return deleted
    finally:
        db.close()


def purge_deactivated_account(user_id: int) -> bool:
    """Timer callback: hard-delete an account that stayed deactivated for the whole grace period."""
    cutoff = utcnow() - timedelta(days=get_settings().deactivated_account_grace_days)
    db = SessionLocal()
    try:
        deleted = delete_account_cascade(
            db,
            user_id,
            User.is_deactivated.is_(True),
            User.deactivated_at <= cutoff,
        )
        if deleted:
            log.info("[Cleanup] Purged deactivated account id=%s", user_id)
        return deleted
    finally:
        db.close()


def expire_pending_occupation(occupation_id: int) -> bool:
    """Timer callback: release a parking whose device never confirmed the reservation."""
    from app.services.reservations import revert_pending_occupation

    db = SessionLocal()
    try:
        reverted = revert_pending_occupation(db, occupation_id)
        if reverted:
            log.info("[Cleanup] Expired unconfirmed occupation id=%s", occupation_id)
        return reverted
    finally:
        db.close()


def run_expiry_sweep() -> dict[str, int]:
    """Periodic job: apply every overdue cleanup, including timers lost by a restart."""
    settings = get_settings()
    now = utcnow()
    purge_cutoff = now - timedelta(days=settings.deactivated_account_grace_days)
    db = SessionLocal()
    try:
        unconfirmed = [
            uid
            for (uid,) in db.query(User.id)
            .filter(User.is_confirmed.is_(False), User.confirmation_deadline <= now)
            .all()
        ]
        deactivated = [
            uid
            for (uid,) in db.query(User.id)
            .filter(User.is_deactivated.is_(True), User.deactivated_at <= purge_cutoff)
            .all()
        ]
        pending = [
            oid
            for (oid,) in db.query(Occupation.id)
            .filter(Occupation.status == OccupationStatus.pending, Occupation.confirm_by <= now)
            .all()
        ]
    finally:
        db.close()

    counts = {
        "unconfirmed_accounts": sum(1 for uid in unconfirmed if expire_unconfirmed_account(uid)),
        "deactivated_accounts": sum(1 for uid in deactivated if purge_deactivated_account(uid)),
        "pending_occupations": sum(1 for oid in pending if expire_pending_occupation(oid)),
    }
    if any(counts.values()):
        log.info("[Cleanup] Expiry sweep: %s", counts)
    return counts
