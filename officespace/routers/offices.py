import logging
from datetime import datetime
from typing import Iterable, List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, Request
from sqlalchemy import func, select
from sqlalchemy.orm import Session, joinedload, selectinload

from .. import models, schemas
from ..config import Settings, get_settings
from ..deps import get_current_user, get_db, get_notifier, get_optional_user
from ..exceptions import ValidationFailed
from ..notifications import Notifier, OfficePendingApproval, admin_ids
from ..pagination import page_param, paginate

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/offices", tags=["offices"])

# Changing any of these sends an approved office back to review.
REVIEW_FIELDS = ("lat", "lng", "address_line1", "price_per_day")
NULLABLE_FIELDS = ("address_line2", "featured_image_id")


def active_reservations_count():
    """Correlated subquery counting the active reservations of each office."""
    return (
        select(func.count(models.Reservation.id))
        .where(
            models.Reservation.office_id == models.Office.id,
            models.Reservation.status == models.Reservation.STATUS_ACTIVE,
        )
        .correlate(models.Office)
        .scalar_subquery()
    )


def squared_distance(lat: float, lng: float):
    """
    Squared straight-line distance (in miles) between each office and a point,
    using the flat-earth approximation with a latitude correction. Ordering
    by it is the same as ordering by the distance itself.
    """
    lat_diff = 69.1 * (models.Office.lat - lat)
    lng_diff = 69.1 * (lng - models.Office.lng) * func.cos(models.Office.lat / 57.3)
    return lat_diff * lat_diff + lng_diff * lng_diff


def with_relations(query):
    return query.options(
        joinedload(models.Office.user),
        joinedload(models.Office.featured_image),
        selectinload(models.Office.images),
        selectinload(models.Office.tags),
    )


def _attach_count(row):
    office, count = row
    office.reservations_count = count
    return office


def load_office(db: Session, office_id: int) -> models.Office:
    office = (
        db.query(models.Office)
        .filter(models.Office.id == office_id, models.Office.deleted_at.is_(None))
        .first()
    )
    if not office:
        raise HTTPException(status_code=404, detail="Office not found")
    return office


def load_owned_office(db: Session, office_id: int, user: models.User) -> models.Office:
    office = load_office(db, office_id)
    if office.user_id != user.id:
        raise HTTPException(status_code=403, detail="This action is unauthorized")
    return office


def validate_tags(db: Session, tag_ids: Iterable[int]) -> List[models.Tag]:
    tag_ids = list(dict.fromkeys(tag_ids))
    tags = db.query(models.Tag).filter(models.Tag.id.in_(tag_ids)).all() if tag_ids else []
    known = {tag.id for tag in tags}
    errors = {
        f"tags.{index}": "The selected tag is invalid."
        for index, tag_id in enumerate(tag_ids)
        if tag_id not in known
    }
    if errors:
        raise ValidationFailed(errors)
    return sorted(tags, key=lambda tag: tag.id)


def office_out(db: Session, office: models.Office) -> schemas.Item[schemas.OfficeOut]:
    office.reservations_count = (
        db.query(func.count(models.Reservation.id))
        .filter(
            models.Reservation.office_id == office.id,
            models.Reservation.status == models.Reservation.STATUS_ACTIVE,
        )
        .scalar()
    )
    return schemas.Item[schemas.OfficeOut](data=schemas.OfficeOut.model_validate(office))


@router.get("/", response_model=schemas.Page[schemas.OfficeOut])
def list_offices(
    request: Request,
    page: int = Depends(page_param),
    user_id: Optional[int] = None,
    visitor_id: Optional[int] = None,
    tags: Optional[List[int]] = Query(None),
    lat: Optional[float] = Query(None, ge=-90, le=90),
    lng: Optional[float] = Query(None, ge=-180, le=180),
    db: Session = Depends(get_db),
    current_user: Optional[models.User] = Depends(get_optional_user),
    settings: Settings = Depends(get_settings),
):
    """
    Search offices.

    Parameters
    ----------
    user_id : int, optional
        Only offices owned by this user. When it is the caller's own id their
        hidden and pending offices are included too.
    visitor_id : int, optional
        Only offices this user has a reservation on.
    tags : list of int, optional
        Only offices carrying **all** of these tags.
    lat, lng : float, optional
        When both are given, results are ordered by distance to this point;
        otherwise by ascending id.
    """
    query = db.query(models.Office, active_reservations_count()).filter(
        models.Office.deleted_at.is_(None)
    )

    own_listing = current_user is not None and user_id is not None and current_user.id == user_id
    if not own_listing:
        query = query.filter(
            models.Office.approval_status == models.Office.APPROVAL_APPROVED,
            models.Office.hidden.is_(False),
        )

    if user_id is not None:
        query = query.filter(models.Office.user_id == user_id)
    if visitor_id is not None:
        query = query.filter(
            models.Office.reservations.any(models.Reservation.user_id == visitor_id)
        )
    for tag_id in dict.fromkeys(tags or []):
        query = query.filter(models.Office.tags.any(models.Tag.id == tag_id))

    if lat is not None and lng is not None:
        query = query.order_by(squared_distance(lat, lng).asc(), models.Office.id.asc())
    else:
        query = query.order_by(models.Office.id.asc())

    return paginate(
        with_relations(query),
        page=page,
        per_page=settings.offices_per_page,
        request=request,
        schema=schemas.OfficeOut,
        transform=_attach_count,
    )


@router.get("/{office_id}", response_model=schemas.Item[schemas.OfficeOut])
def get_office(office_id: int, db: Session = Depends(get_db)):
    """
    Retrieve a single office with its owner, images, tags and the number of
    active reservations. Raises a 404 error if the office does not exist or
    was deleted.
    """
    return office_out(db, load_office(db, office_id))


@router.post("/", response_model=schemas.Item[schemas.OfficeOut], status_code=201)
def create_office(
    office_in: schemas.OfficeCreate,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
    notifier: Notifier = Depends(get_notifier),
):
    """
    Create an office owned by the caller.

    New offices start as pending and every admin is notified so they can
    review the listing.
    """
    data = office_in.model_dump(exclude={"tags"})
    tags = validate_tags(db, office_in.tags or [])

    office = models.Office(
        **data,
        user_id=current_user.id,
        approval_status=models.Office.APPROVAL_PENDING,
    )
    office.tags = tags
    db.add(office)
    db.commit()
    db.refresh(office)

    logger.info("Office %s created by user %s, pending approval", office.id, current_user.id)
    background_tasks.add_task(notifier.send, admin_ids(db), OfficePendingApproval(office))

    return office_out(db, office)


@router.put("/{office_id}", response_model=schemas.Item[schemas.OfficeOut])
def update_office(
    office_id: int,
    office_in: schemas.OfficeUpdate,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
    notifier: Notifier = Depends(get_notifier),
):
    """
    Update an office. *(Owner only)*

    Tags are replaced when given. Changing the location, address or price
    puts the office back into review and notifies the admins again.
    """
    office = load_owned_office(db, office_id, current_user)

    null_fields = sorted(
        field
        for field in office_in.model_fields_set
        if getattr(office_in, field) is None and field not in NULLABLE_FIELDS
    )
    if null_fields:
        raise ValidationFailed(
            {field: f"The {field.replace('_', ' ')} field cannot be null." for field in null_fields}
        )

    data = office_in.model_dump(exclude_unset=True, exclude={"tags"})

    featured_image_id = data.get("featured_image_id")
    if featured_image_id is not None and featured_image_id not in {image.id for image in office.images}:
        raise ValidationFailed({"featured_image_id": "The selected featured image id is invalid."})

    tags = validate_tags(db, office_in.tags) if office_in.tags is not None else None

    before = {field: getattr(office, field) for field in REVIEW_FIELDS}
    for field, value in data.items():
        setattr(office, field, value)
    requires_review = any(getattr(office, field) != before[field] for field in REVIEW_FIELDS)
    if requires_review:
        office.approval_status = models.Office.APPROVAL_PENDING

    if tags is not None:
        office.tags = tags

    db.commit()
    db.refresh(office)

    if requires_review:
        logger.info("Office %s changed and was sent back to review", office.id)
        background_tasks.add_task(notifier.send, admin_ids(db), OfficePendingApproval(office))

    return office_out(db, office)


@router.delete("/{office_id}")
def delete_office(
    office_id: int,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    """
    Soft-delete an office. *(Owner only)*

    Offices with active reservations cannot be deleted.
    """
    office = load_owned_office(db, office_id, current_user)

    has_active = db.query(
        db.query(models.Reservation.id)
        .filter(
            models.Reservation.office_id == office.id,
            models.Reservation.status == models.Reservation.STATUS_ACTIVE,
        )
        .exists()
    ).scalar()
    if has_active:
        raise ValidationFailed({"office": "Cannot delete this office!"})

    office.deleted_at = datetime.utcnow()
    db.commit()
    logger.info("Office %s deleted by user %s", office.id, current_user.id)
    return {"detail": "Office deleted"}
