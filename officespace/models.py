from datetime import datetime

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Table,
    Text,
)
from sqlalchemy.orm import relationship

from .database import Base


offices_tags = Table(
    "offices_tags",
    Base.metadata,
    Column("office_id", Integer, ForeignKey("offices.id", ondelete="CASCADE"), primary_key=True),
    Column("tag_id", Integer, ForeignKey("tags.id", ondelete="CASCADE"), primary_key=True),
)


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    email = Column(String, unique=True, index=True, nullable=False)
    hashed_password = Column(String, nullable=False)
    is_admin = Column(Boolean, nullable=False, default=False)

    offices = relationship("Office", back_populates="user")
    reservations = relationship("Reservation", back_populates="user")
    notifications = relationship("Notification", back_populates="user")


class Tag(Base):
    __tablename__ = "tags"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, unique=True, nullable=False)


class Office(Base):
    __tablename__ = "offices"

    APPROVAL_PENDING = 1
    APPROVAL_APPROVED = 2

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    title = Column(String, nullable=False)
    description = Column(Text, nullable=False)
    lat = Column(Float, nullable=False)
    lng = Column(Float, nullable=False)
    address_line1 = Column(String, nullable=False)
    address_line2 = Column(String, nullable=True)
    approval_status = Column(Integer, nullable=False, default=APPROVAL_PENDING)
    hidden = Column(Boolean, nullable=False, default=False)
    price_per_day = Column(Integer, nullable=False)
    monthly_discount = Column(Integer, nullable=False, default=0)
    # plain column, images already point back at offices
    featured_image_id = Column(Integer, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)
    deleted_at = Column(DateTime, nullable=True)

    user = relationship("User", back_populates="offices")
    tags = relationship("Tag", secondary=offices_tags, order_by="Tag.id")
    images = relationship(
        "Image",
        back_populates="office",
        order_by="Image.id",
        cascade="all, delete-orphan",
    )
    featured_image = relationship(
        "Image",
        primaryjoin="foreign(Office.featured_image_id) == Image.id",
        uselist=False,
        viewonly=True,
    )
    reservations = relationship("Reservation", back_populates="office")

    # filled in by the listing queries
    reservations_count = 0


class Image(Base):
    __tablename__ = "images"

    id = Column(Integer, primary_key=True, index=True)
    office_id = Column(Integer, ForeignKey("offices.id"), nullable=False, index=True)
    path = Column(String, nullable=False)

    office = relationship("Office", back_populates="images")


class Reservation(Base):
    __tablename__ = "reservations"

    STATUS_ACTIVE = 1
    STATUS_CANCEL = 2

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    office_id = Column(Integer, ForeignKey("offices.id"), nullable=False, index=True)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)
    status = Column(Integer, nullable=False, default=STATUS_ACTIVE)
    price = Column(Integer, nullable=False)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    user = relationship("User", back_populates="reservations")
    office = relationship("Office", back_populates="reservations")


class Notification(Base):
    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    type = Column(String, nullable=False)
    data = Column(JSON, nullable=False, default=dict)
    read_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    user = relationship("User", back_populates="notifications")
