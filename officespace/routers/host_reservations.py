from typing import Optional

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from .. import models, schemas
from ..config import Settings, get_settings
from ..deps import get_current_user, get_db
from ..pagination import page_param, paginate
from .reservations import ReservationFilters, apply_filters, reservation_filters

router = APIRouter(prefix="/host/reservations", tags=["host"])


@router.get("/", response_model=schemas.Page[schemas.ReservationOut])
def list_host_reservations(
    request: Request,
    page: int = Depends(page_param),
    user_id: Optional[int] = None,
    filters: ReservationFilters = Depends(reservation_filters),
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
    settings: Settings = Depends(get_settings),
):
    """
    List reservations made on the caller's offices.

    Accepts the same filters as ``GET /reservations`` plus ``user_id`` to
    narrow down to a single visitor.
    """
    query = db.query(models.Reservation).filter(
        models.Reservation.office.has(models.Office.user_id == current_user.id)
    )
    if user_id is not None:
        query = query.filter(models.Reservation.user_id == user_id)

    return paginate(
        apply_filters(query, filters),
        page=page,
        per_page=settings.reservations_per_page,
        request=request,
        schema=schemas.ReservationOut,
    )
