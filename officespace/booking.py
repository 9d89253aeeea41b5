"""
Reservation booking workflow.

``book_office`` validates the request, then takes the per-office lock and
runs the overlap check, the pricing and the insert while holding it, so two
concurrent requests for the same office cannot both pass the check. The
transaction used for the eligibility reads is committed before locking; the
check then sees every booking committed before the lock was taken.
"""
import logging
from datetime import date
from typing import Optional, Tuple

from sqlalchemy import and_, or_
from sqlalchemy.orm import Query, Session

from . import models, schemas
from .config import Settings
from .exceptions import ValidationFailed

logger = logging.getLogger(__name__)

MONTHLY_DISCOUNT_MIN_DAYS = 28


def number_of_days(start_date: date, end_date: date) -> int:
    """Length of a reservation, both ends included."""
    return (end_date - start_date).days + 1


def calculate_price(days: int, price_per_day: int, monthly_discount: Optional[int]) -> int:
    price = days * price_per_day
    if days >= MONTHLY_DISCOUNT_MIN_DAYS and monthly_discount:
        price = price - price * monthly_discount / 100
    return int(round(price))


def between_dates(query: Query, from_date: date, to_date: date) -> Query:
    """Reservations touching ``[from_date, to_date]``, bounds inclusive."""
    R = models.Reservation
    return query.filter(
        or_(
            R.start_date.between(from_date, to_date),
            R.end_date.between(from_date, to_date),
            and_(R.start_date < from_date, R.end_date > to_date),
        )
    )


def active_between(query: Query, from_date: date, to_date: date) -> Query:
    return between_dates(
        query.filter(models.Reservation.status == models.Reservation.STATUS_ACTIVE),
        from_date,
        to_date,
    )


def validate_dates(start_date: date, end_date: date, today: date) -> None:
    errors = {}
    if start_date <= today:
        errors["start_date"] = "The start date must be a date after today."
    if end_date <= start_date:
        errors["end_date"] = "The end date must be a date after start date."
    if errors:
        raise ValidationFailed(errors)


def lock_name(office_id: int) -> str:
    return f"reservations_office_{office_id}"


def book_office(
    db: Session,
    locks,
    user: models.User,
    data: schemas.ReservationCreate,
    settings: Settings,
    today: Optional[date] = None,
) -> Tuple[models.Reservation, models.Office]:
    validate_dates(data.start_date, data.end_date, today or date.today())

    office = (
        db.query(models.Office)
        .filter(models.Office.id == data.office_id, models.Office.deleted_at.is_(None))
        .first()
    )
    if office is None:
        raise ValidationFailed({"office_id": "Invalid Office ID"})

    if office.user_id == user.id:
        raise ValidationFailed({"office_id": "You cannot make a reservation in your own office!"})

    if office.hidden or office.approval_status != models.Office.APPROVAL_APPROVED:
        raise ValidationFailed({"office_id": "You cannot make a reservation on a hidden office!"})

    office_id = office.id
    # The overlap check must read in a transaction opened under the lock.
    db.commit()

    with locks.lock(
        lock_name(office_id),
        ttl=settings.reservation_lock_ttl,
        wait=settings.reservation_lock_wait,
    ):
        conflicting = active_between(
            db.query(models.Reservation.id).filter(models.Reservation.office_id == office_id),
            data.start_date,
            data.end_date,
        )
        if db.query(conflicting.exists()).scalar():
            raise ValidationFailed({"office_id": "You cannot make a reservation during this time!"})

        days = number_of_days(data.start_date, data.end_date)
        reservation = models.Reservation(
            user_id=user.id,
            office_id=office_id,
            start_date=data.start_date,
            end_date=data.end_date,
            status=models.Reservation.STATUS_ACTIVE,
            price=calculate_price(days, office.price_per_day, office.monthly_discount),
        )
        db.add(reservation)
        db.commit()
        db.refresh(reservation)

    logger.info(
        "Reservation %s created on office %s by user %s (%s days, price %s)",
        reservation.id, office.id, user.id, days, reservation.price,
    )
    return reservation, office


def cancel_reservation(
    db: Session,
    reservation: models.Reservation,
    today: Optional[date] = None,
) -> models.Reservation:
    today = today or date.today()
    if reservation.status == models.Reservation.STATUS_CANCEL:
        raise ValidationFailed({"reservation": "This reservation is already cancelled."})
    if reservation.start_date <= today:
        raise ValidationFailed({"reservation": "You cannot cancel a reservation that has already started."})

    reservation.status = models.Reservation.STATUS_CANCEL
    db.commit()
    db.refresh(reservation)
    logger.info("Reservation %s cancelled", reservation.id)
    return reservation
