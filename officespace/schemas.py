from datetime import date, datetime
from typing import Any, Dict, Generic, List, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, EmailStr, Field

T = TypeVar("T")


# ----- Users -----
class UserBase(BaseModel):
    name: str
    email: EmailStr


class UserCreate(UserBase):
    password: str = Field(min_length=8)


class UserOut(UserBase):
    id: int
    is_admin: bool = False

    model_config = ConfigDict(from_attributes=True)


# ----- Tags / images -----
class TagOut(BaseModel):
    id: int
    name: str

    model_config = ConfigDict(from_attributes=True)


class ImageOut(BaseModel):
    id: int
    path: str

    model_config = ConfigDict(from_attributes=True)


# ----- Offices -----
class OfficeCreate(BaseModel):
    title: str
    description: str
    lat: float = Field(ge=-90, le=90)
    lng: float = Field(ge=-180, le=180)
    address_line1: str
    address_line2: Optional[str] = None
    hidden: bool = False
    price_per_day: int = Field(ge=100)
    monthly_discount: int = Field(default=0, ge=0, le=90)
    tags: Optional[List[int]] = None


class OfficeUpdate(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    lat: Optional[float] = Field(default=None, ge=-90, le=90)
    lng: Optional[float] = Field(default=None, ge=-180, le=180)
    address_line1: Optional[str] = None
    address_line2: Optional[str] = None
    hidden: Optional[bool] = None
    price_per_day: Optional[int] = Field(default=None, ge=100)
    monthly_discount: Optional[int] = Field(default=None, ge=0, le=90)
    featured_image_id: Optional[int] = None
    tags: Optional[List[int]] = None


class OfficeSummaryOut(BaseModel):
    id: int
    title: str
    address_line1: str
    price_per_day: int
    featured_image: Optional[ImageOut] = None

    model_config = ConfigDict(from_attributes=True)


class OfficeOut(OfficeSummaryOut):
    description: str
    lat: float
    lng: float
    address_line2: Optional[str] = None
    approval_status: int
    hidden: bool
    monthly_discount: int
    reservations_count: int = 0
    user: UserOut
    images: List[ImageOut] = []
    tags: List[TagOut] = []


# ----- Reservations -----
class ReservationCreate(BaseModel):
    office_id: int
    start_date: date
    end_date: date


class ReservationOut(BaseModel):
    id: int
    user_id: int
    office_id: int
    start_date: date
    end_date: date
    status: int
    price: int
    office: Optional[OfficeSummaryOut] = None

    model_config = ConfigDict(from_attributes=True)


# ----- Notifications -----
class NotificationOut(BaseModel):
    id: int
    type: str
    data: Dict[str, Any]
    read_at: Optional[datetime] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


# ----- Envelopes -----
class PageMeta(BaseModel):
    current_page: int
    last_page: int
    per_page: int
    total: int
    from_: Optional[int] = Field(default=None, alias="from")
    to: Optional[int] = None
    path: str

    model_config = ConfigDict(populate_by_name=True)


class PageLinks(BaseModel):
    first: str
    last: str
    prev: Optional[str] = None
    next: Optional[str] = None


class Page(BaseModel, Generic[T]):
    data: List[T]
    meta: PageMeta
    links: PageLinks


class Item(BaseModel, Generic[T]):
    data: T


class Collection(BaseModel, Generic[T]):
    data: List[T]


# ----- Auth -----
class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"
