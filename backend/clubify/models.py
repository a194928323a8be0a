import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from .db import Base

USER_ROLES = ("member", "clubManager", "admin")
CLUB_STATUSES = ("pending", "approved", "rejected")
MEMBERSHIP_STATUSES = ("active", "expired", "pendingPayment", "cancelled")
REGISTRATION_STATUSES = ("registered", "cancelled")
PAYMENT_TYPES = ("membership", "event")
PAYMENT_STATUSES = ("pending", "completed", "failed", "refunded")


def new_id() -> str:
    return uuid.uuid4().hex


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class User(Base):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(200), default="")
    photo_url: Mapped[str] = mapped_column(String(500), default="")
    role: Mapped[str] = mapped_column(String(20), default="member", index=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), default=utcnow)


class Club(Base):
    __tablename__ = "clubs"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    club_name: Mapped[str] = mapped_column(String(200))
    description: Mapped[str] = mapped_column(Text, default="")
    category: Mapped[str] = mapped_column(String(50), default="")
    location: Mapped[str] = mapped_column(String(200), default="")
    banner_image: Mapped[str] = mapped_column(String(500), default="")
    membership_fee: Mapped[float] = mapped_column(Float, default=0)
    status: Mapped[str] = mapped_column(String(20), default="pending", index=True)
    manager_email: Mapped[str] = mapped_column(String(255), index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), default=utcnow)


class Membership(Base):
    __tablename__ = "memberships"
    __table_args__ = (UniqueConstraint("user_email", "club_id", name="uq_membership_user_club"),)

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    user_email: Mapped[str] = mapped_column(String(255), index=True)
    club_id: Mapped[str] = mapped_column(ForeignKey("clubs.id", ondelete="CASCADE"), index=True)
    status: Mapped[str] = mapped_column(String(20), default="active")
    payment_id: Mapped[Optional[str]] = mapped_column(String(255), default=None)
    joined_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), default=utcnow)
    expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=False), default=None)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), default=utcnow)


class Event(Base):
    __tablename__ = "events"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    club_id: Mapped[str] = mapped_column(ForeignKey("clubs.id", ondelete="CASCADE"), index=True)
    title: Mapped[str] = mapped_column(String(200))
    description: Mapped[str] = mapped_column(Text, default="")
    event_date: Mapped[datetime] = mapped_column(DateTime(timezone=False))
    location: Mapped[str] = mapped_column(String(200), default="")
    is_paid: Mapped[bool] = mapped_column(Boolean, default=False)
    event_fee: Mapped[float] = mapped_column(Float, default=0)
    max_attendees: Mapped[Optional[int]] = mapped_column(Integer, default=None)
    image_url: Mapped[Optional[str]] = mapped_column(String(500), default=None)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), default=utcnow)


class EventRegistration(Base):
    __tablename__ = "event_registrations"
    __table_args__ = (
        # one live registration per (event, user); cancelled rows stay as history
        Index(
            "uq_registration_active",
            "event_id",
            "user_email",
            unique=True,
            sqlite_where=text("status = 'registered'"),
            postgresql_where=text("status = 'registered'"),
        ),
    )

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    event_id: Mapped[str] = mapped_column(ForeignKey("events.id", ondelete="CASCADE"), index=True)
    user_email: Mapped[str] = mapped_column(String(255), index=True)
    club_id: Mapped[str] = mapped_column(String(32), index=True)
    status: Mapped[str] = mapped_column(String(20), default="registered")
    payment_id: Mapped[Optional[str]] = mapped_column(String(255), default=None)
    registered_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), default=utcnow)


class Payment(Base):
    __tablename__ = "payments"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    user_email: Mapped[str] = mapped_column(String(255), index=True)
    amount: Mapped[float] = mapped_column(Float)
    type: Mapped[str] = mapped_column(String(20))
    club_id: Mapped[Optional[str]] = mapped_column(String(32), default=None, index=True)
    event_id: Mapped[Optional[str]] = mapped_column(String(32), default=None, index=True)
    external_intent_id: Mapped[str] = mapped_column(String(255), unique=True)
    status: Mapped[str] = mapped_column(String(20), default="pending")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), default=utcnow)
