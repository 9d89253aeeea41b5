import math
from typing import Callable, Optional, Type

from fastapi import Query, Request
from pydantic import BaseModel
from sqlalchemy.orm import Query as SAQuery

from . import schemas


def page_param(page: int = Query(1, ge=1)) -> int:
    return page


def paginate(
    query: SAQuery,
    *,
    page: int,
    per_page: int,
    request: Request,
    schema: Type[BaseModel],
    transform: Optional[Callable] = None,
) -> schemas.Page:
    """
    Run ``query`` for one page and wrap it in the ``data``/``meta``/``links``
    envelope.

    ``transform`` maps each row before validation, for queries that select
    extra columns next to the entity.
    """
    total = query.order_by(None).count()
    last_page = max(1, math.ceil(total / per_page))
    offset = (page - 1) * per_page

    rows = query.offset(offset).limit(per_page).all()
    if transform is not None:
        rows = [transform(row) for row in rows]
    data = [schema.model_validate(row) for row in rows]

    def link(number: int) -> str:
        return str(request.url.include_query_params(page=number))

    return schemas.Page(
        data=data,
        meta=schemas.PageMeta(
            current_page=page,
            last_page=last_page,
            per_page=per_page,
            total=total,
            from_=offset + 1 if data else None,
            to=offset + len(data) if data else None,
            path=str(request.url.replace(query="")),
        ),
        links=schemas.PageLinks(
            first=link(1),
            last=link(last_page),
            prev=link(page - 1) if page > 1 else None,
            next=link(page + 1) if page < last_page else None,
        ),
    )
