import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from .. import models
from ..deps import get_current_user, get_db
from ..exceptions import ValidationFailed
from .offices import load_owned_office

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/offices/{office_id}/images", tags=["images"])


@router.delete("/{image_id}")
def delete_image(
    office_id: int,
    image_id: int,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    """
    Remove an image from an office. *(Owner only)*

    The only image of an office and its featured image cannot be removed.

    Raises
    ------
    HTTPException
        - 403 if the caller does not own the office.
        - 404 if the office or the image does not exist.
    """
    office = load_owned_office(db, office_id, current_user)

    image = (
        db.query(models.Image)
        .filter(models.Image.id == image_id, models.Image.office_id == office.id)
        .first()
    )
    if not image:
        raise HTTPException(status_code=404, detail="Image not found")

    if len(office.images) == 1:
        raise ValidationFailed({"image": "Cannot delete the only image."})

    if office.featured_image_id == image.id:
        raise ValidationFailed({"image": "Cannot delete the featured image."})

    db.delete(image)
    db.commit()
    logger.info("Image %s removed from office %s", image_id, office.id)
    return {"detail": "Image deleted"}
