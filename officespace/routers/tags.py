from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from .. import models, schemas
from ..deps import get_db

router = APIRouter(prefix="/tags", tags=["tags"])


@router.get("/", response_model=schemas.Collection[schemas.TagOut])
def list_tags(db: Session = Depends(get_db)):
    """List every tag an office can carry."""
    tags = db.query(models.Tag).order_by(models.Tag.id).all()
    return {"data": tags}
