from dataclasses import dataclass
from datetime import date
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request
from sqlalchemy.orm import Query, Session, joinedload

from .. import models, schemas
from ..booking import between_dates, book_office, cancel_reservation
from ..config import Settings, get_settings
from ..deps import get_current_user, get_db, get_lock_provider, get_notifier
from ..exceptions import ValidationFailed
from ..notifications import NewHostReservation, NewReservation, Notifier
from ..pagination import page_param, paginate

router = APIRouter(prefix="/reservations", tags=["reservations"])


@dataclass
class ReservationFilters:
    status: Optional[int] = None
    office_id: Optional[int] = None
    from_date: Optional[date] = None
    to_date: Optional[date] = None


def reservation_filters(
    status: Optional[int] = None,
    office_id: Optional[int] = None,
    from_date: Optional[date] = None,
    to_date: Optional[date] = None,
) -> ReservationFilters:
    """Query filters shared by the visitor and host reservation listings."""
    errors = {}
    if status is not None and status not in (
        models.Reservation.STATUS_ACTIVE,
        models.Reservation.STATUS_CANCEL,
    ):
        errors["status"] = "The selected status is invalid."
    if from_date is not None and to_date is None:
        errors["to_date"] = "The to date field is required when from date is present."
    if to_date is not None and from_date is None:
        errors["from_date"] = "The from date field is required when to date is present."
    if from_date is not None and to_date is not None and to_date <= from_date:
        errors["to_date"] = "The to date must be a date after from date."
    if errors:
        raise ValidationFailed(errors)
    return ReservationFilters(status, office_id, from_date, to_date)


def apply_filters(query: Query, filters: ReservationFilters) -> Query:
    if filters.office_id is not None:
        query = query.filter(models.Reservation.office_id == filters.office_id)
    if filters.status is not None:
        query = query.filter(models.Reservation.status == filters.status)
    if filters.from_date is not None and filters.to_date is not None:
        query = between_dates(query, filters.from_date, filters.to_date)
    return query.options(
        joinedload(models.Reservation.office).joinedload(models.Office.featured_image)
    ).order_by(models.Reservation.id.asc())


@router.get("/", response_model=schemas.Page[schemas.ReservationOut])
def list_reservations(
    request: Request,
    page: int = Depends(page_param),
    filters: ReservationFilters = Depends(reservation_filters),
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
    settings: Settings = Depends(get_settings),
):
    """
    List the caller's reservations.

    Filters: ``status``, ``office_id`` and a ``from_date``/``to_date`` pair
    matching reservations that touch the range.
    """
    query = db.query(models.Reservation).filter(models.Reservation.user_id == current_user.id)
    return paginate(
        apply_filters(query, filters),
        page=page,
        per_page=settings.reservations_per_page,
        request=request,
        schema=schemas.ReservationOut,
    )


@router.post("/", response_model=schemas.Item[schemas.ReservationOut], status_code=201)
def create_reservation(
    reservation_in: schemas.ReservationCreate,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
    notifier: Notifier = Depends(get_notifier),
    locks=Depends(get_lock_provider),
    settings: Settings = Depends(get_settings),
):
    """
    Book an office for a date range.

    The office must exist, be approved, visible and not owned by the caller,
    and the range must not overlap an active reservation. The price is the
    number of days (both ends included) times the daily price, with the
    monthly discount applied from 28 days on.

    Both the visitor and the host are notified once the reservation is
    stored.
    """
    reservation, office = book_office(db, locks, current_user, reservation_in, settings)

    background_tasks.add_task(notifier.send, [current_user.id], NewReservation(reservation))
    background_tasks.add_task(notifier.send, [office.user_id], NewHostReservation(reservation))

    return schemas.Item[schemas.ReservationOut](data=schemas.ReservationOut.model_validate(reservation))


@router.delete("/{reservation_id}", response_model=schemas.Item[schemas.ReservationOut])
def cancel(
    reservation_id: int,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    """
    Cancel one of the caller's reservations before it starts.

    Raises
    ------
    HTTPException
        - 403 if the reservation belongs to someone else.
        - 404 if the reservation does not exist.
    """
    reservation = db.get(models.Reservation, reservation_id)
    if not reservation:
        raise HTTPException(status_code=404, detail="Reservation not found")
    if reservation.user_id != current_user.id:
        raise HTTPException(status_code=403, detail="Not allowed to cancel this reservation")

    reservation = cancel_reservation(db, reservation)
    return schemas.Item[schemas.ReservationOut](data=schemas.ReservationOut.model_validate(reservation))
