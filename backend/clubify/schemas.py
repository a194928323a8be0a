from datetime import datetime, timezone
from typing import Literal, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

Role = Literal["member", "clubManager", "admin"]
ClubStatus = Literal["pending", "approved", "rejected"]
MembershipStatus = Literal["active", "expired", "pendingPayment", "cancelled"]
RegistrationStatus = Literal["registered", "cancelled"]
PaymentType = Literal["membership", "event"]
PaymentStatus = Literal["pending", "completed", "failed", "refunded"]


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class InputModel(CamelModel):
    """Request body: unknown fields are rejected instead of reaching storage."""

    model_config = ConfigDict(extra="forbid")


class OutputModel(CamelModel):
    model_config = ConfigDict(from_attributes=True)


def normalize_email(value: str) -> str:
    cleaned = value.strip().lower() if isinstance(value, str) else ""
    if "@" not in cleaned or cleaned.startswith("@") or cleaned.endswith("@"):
        raise ValueError("must be a valid email address")
    return cleaned


def to_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def _not_empty(value: str) -> str:
    cleaned = value.strip() if isinstance(value, str) else ""
    if not cleaned:
        raise ValueError("must not be empty")
    return cleaned


# Users


class UserCreate(InputModel):
    email: str
    name: str = ""
    photo_url: str = Field(default="", alias="photoURL")

    @field_validator("email")
    @classmethod
    def validate_email(cls, value: str):
        return normalize_email(value)


class RoleUpdate(InputModel):
    new_role: Role


class ActiveUpdate(InputModel):
    is_active: bool


class UserOut(OutputModel):
    id: str
    email: str
    name: str
    photo_url: str = Field(alias="photoURL")
    role: str
    is_active: bool
    created_at: datetime
    updated_at: datetime


# Clubs


class ClubCreate(InputModel):
    club_name: str
    description: str = ""
    category: str = ""
    location: str = ""
    banner_image: str = ""
    membership_fee: float = Field(default=0, ge=0)

    @field_validator("club_name")
    @classmethod
    def must_not_be_empty(cls, value: str):
        return _not_empty(value)


class ClubUpdate(InputModel):
    club_name: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None
    location: Optional[str] = None
    banner_image: Optional[str] = None
    membership_fee: Optional[float] = Field(default=None, ge=0)

    @field_validator("club_name")
    @classmethod
    def must_not_be_empty(cls, value: Optional[str]):
        return _not_empty(value) if value is not None else value


class ClubStatusUpdate(InputModel):
    status: ClubStatus


class ClubOut(OutputModel):
    id: str
    club_name: str
    description: str
    category: str
    location: str
    banner_image: str
    membership_fee: float
    status: str
    manager_email: str
    created_at: datetime
    updated_at: datetime


# Events


class EventCreate(InputModel):
    club_id: str
    title: str
    description: str = ""
    event_date: datetime = Field(validation_alias=AliasChoices("eventDate", "date", "event_date"))
    location: str = ""
    is_paid: bool = False
    event_fee: float = Field(default=0, ge=0)
    max_attendees: Optional[int] = Field(default=None, ge=1)
    image_url: Optional[str] = None

    @field_validator("title")
    @classmethod
    def must_not_be_empty(cls, value: str):
        return _not_empty(value)

    @field_validator("event_date")
    @classmethod
    def store_as_utc(cls, value: datetime):
        return to_naive_utc(value)

    @model_validator(mode="after")
    def paid_events_have_fee(self):
        if self.is_paid and self.event_fee <= 0:
            raise ValueError("paid events need an eventFee greater than 0")
        return self


class EventUpdate(InputModel):
    title: Optional[str] = None
    description: Optional[str] = None
    event_date: Optional[datetime] = Field(
        default=None, validation_alias=AliasChoices("eventDate", "date", "event_date")
    )
    location: Optional[str] = None
    is_paid: Optional[bool] = None
    event_fee: Optional[float] = Field(default=None, ge=0)
    max_attendees: Optional[int] = Field(default=None, ge=1)
    image_url: Optional[str] = None

    @field_validator("event_date")
    @classmethod
    def store_as_utc(cls, value: Optional[datetime]):
        return to_naive_utc(value) if value is not None else value


class EventOut(OutputModel):
    id: str
    club_id: str
    title: str
    description: str
    event_date: datetime
    location: str
    is_paid: bool
    event_fee: float
    max_attendees: Optional[int] = None
    image_url: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class EventPage(OutputModel):
    events: list[EventOut]
    total: int
    total_pages: int
    current_page: int


# Memberships


class MembershipCreate(InputModel):
    club_id: str
    user_email: Optional[str] = None
    payment_id: Optional[str] = None
    status: Optional[MembershipStatus] = None

    @field_validator("user_email")
    @classmethod
    def validate_email(cls, value: Optional[str]):
        return normalize_email(value) if value is not None else value


class MembershipStatusUpdate(InputModel):
    status: MembershipStatus


class MembershipOut(OutputModel):
    id: str
    user_email: str
    club_id: str
    status: str
    payment_id: Optional[str] = None
    joined_at: datetime
    expires_at: Optional[datetime] = None


class MembershipWithClub(MembershipOut):
    club_name: str
    description: str
    category: str
    location: str
    membership_fee: float


class MembershipWithUser(MembershipOut):
    user_name: str
    user_photo: str


# Event registrations


class RegistrationCreate(InputModel):
    event_id: str
    user_email: Optional[str] = None
    payment_id: Optional[str] = None

    @field_validator("user_email")
    @classmethod
    def validate_email(cls, value: Optional[str]):
        return normalize_email(value) if value is not None else value


class RegistrationStatusUpdate(InputModel):
    status: RegistrationStatus


class RegistrationOut(OutputModel):
    id: str
    event_id: str
    user_email: str
    club_id: str
    status: str
    payment_id: Optional[str] = None
    registered_at: datetime


class RegistrationWithEvent(RegistrationOut):
    event_name: str
    event_date: datetime
    event_location: str
    club_name: str


class RegistrationWithUser(RegistrationOut):
    user_name: str
    user_photo: str


class RegistrationWithEventAndUser(RegistrationWithUser):
    event_name: str


# Payments


class PaymentCreate(InputModel):
    user_email: str
    amount: float = Field(gt=0)
    type: PaymentType
    club_id: Optional[str] = None
    event_id: Optional[str] = None
    external_intent_id: str = Field(
        validation_alias=AliasChoices("externalIntentId", "stripePaymentIntentId", "external_intent_id")
    )
    status: PaymentStatus = "pending"

    @field_validator("user_email")
    @classmethod
    def validate_email(cls, value: str):
        return normalize_email(value)

    @field_validator("external_intent_id")
    @classmethod
    def must_not_be_empty(cls, value: str):
        return _not_empty(value)

    @model_validator(mode="after")
    def one_target_per_type(self):
        if self.type == "membership" and (not self.club_id or self.event_id):
            raise ValueError("membership payments need clubId and no eventId")
        if self.type == "event" and (not self.event_id or self.club_id):
            raise ValueError("event payments need eventId and no clubId")
        return self


class PaymentStatusUpdate(InputModel):
    status: PaymentStatus


class PaymentOut(OutputModel):
    id: str
    user_email: str
    amount: float
    type: str
    club_id: Optional[str] = None
    event_id: Optional[str] = None
    external_intent_id: str
    status: str
    created_at: datetime
    updated_at: datetime


class PaymentWithNames(PaymentOut):
    club_name: Optional[str] = None
    event_name: Optional[str] = None
    user_name: Optional[str] = None


# Payment intents


class EventIntentRequest(InputModel):
    event_id: str
    user_email: str
    amount: float = Field(gt=0)

    @field_validator("user_email")
    @classmethod
    def validate_email(cls, value: str):
        return normalize_email(value)


class MembershipIntentRequest(InputModel):
    club_id: str
    user_email: str
    amount: float = Field(gt=0)

    @field_validator("user_email")
    @classmethod
    def validate_email(cls, value: str):
        return normalize_email(value)


class IntentOut(OutputModel):
    client_secret: str
    payment_intent_id: str
