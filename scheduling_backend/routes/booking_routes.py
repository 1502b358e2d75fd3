from datetime import datetime

from fastapi import APIRouter, BackgroundTasks, Depends, Query
from pydantic import AliasChoices, Field, field_validator
from sqlalchemy.orm import Session

from scheduling_backend.auth.dependencies import get_current_user
from scheduling_backend.core import config
from scheduling_backend.core.schemas import CamelModel
from scheduling_backend.database import SessionLocal, ensure_database_ready, get_db
from scheduling_backend.models.user import User
from scheduling_backend.services.booking_manager import BookingManager
from scheduling_backend.services.notifications import BackgroundNotificationDispatcher, NotificationDispatcher

router = APIRouter(tags=['bookings'])

# 'sheikh' is the provider role name older clients still send.
BOOKING_ROLE_ALIASES = {
    'provider': 'provider',
    'sheikh': 'provider',
    'client': 'client',
}


def _normalize_notes(value: str | None) -> str | None:
    if value is None:
        return None

    normalized = value.strip()
    if not normalized:
        return None

    if len(normalized) > config.MAX_BOOKING_NOTES_LENGTH:
        raise ValueError(f'Notes must be {config.MAX_BOOKING_NOTES_LENGTH} characters or fewer.')

    return normalized


class CreateBookingRequest(CamelModel):
    provider_id: int | None = Field(
        default=None,
        validation_alias=AliasChoices('providerId', 'sheikhId', 'provider_id'),
    )
    slot_id: int | None = Field(
        default=None,
        validation_alias=AliasChoices('eventId', 'slotId', 'slot_id'),
    )
    service_type: str | None = None
    start_time: datetime | None = None
    end_time: datetime | None = None
    location: str | None = None
    description: str | None = None
    notes: str | None = None
    price: float | None = Field(default=None, ge=0)

    @field_validator('service_type')
    @classmethod
    def validate_service_type(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return value.strip() or None

    @field_validator('notes')
    @classmethod
    def validate_notes(cls, value: str | None) -> str | None:
        return _normalize_notes(value)


class UpdateBookingStatusRequest(CamelModel):
    booking_id: int | None = None
    status: str | None = None
    notes: str | None = None

    @field_validator('status')
    @classmethod
    def validate_status(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return value.strip().upper() or None

    @field_validator('notes')
    @classmethod
    def validate_notes(cls, value: str | None) -> str | None:
        return _normalize_notes(value)


class BookingResponse(CamelModel):
    id: int
    provider_id: int
    client_id: int
    slot_id: int | None = None
    service_type: str
    start_time: datetime
    end_time: datetime
    location: str | None = None
    description: str | None = None
    notes: str | None = None
    price: float | None = None
    meeting_url: str | None = None
    status: str
    created_at: datetime


class BookingListResponse(CamelModel):
    bookings: list[BookingResponse]


class BookingEnvelopeResponse(CamelModel):
    booking: BookingResponse


def get_notification_dispatcher(background_tasks: BackgroundTasks) -> BackgroundNotificationDispatcher:
    return BackgroundNotificationDispatcher(background_tasks, NotificationDispatcher(SessionLocal))


@router.get('', response_model=BookingListResponse)
def list_bookings(
    type: str | None = Query(default=None),
    status: str | None = Query(default=None),
    start: datetime | None = Query(default=None),
    end: datetime | None = Query(default=None),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    role = None
    if type:
        role = BOOKING_ROLE_ALIASES.get(type.strip().lower(), type)

    bookings = BookingManager(db, dispatcher=None).list_bookings(
        current_user.id,
        role=role,
        status=status,
        start=start,
        end=end,
    )
    return {'bookings': bookings}


@router.post('', response_model=BookingEnvelopeResponse)
def create_booking(
    data: CreateBookingRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    dispatcher=Depends(get_notification_dispatcher),
):
    ensure_database_ready()

    booking = BookingManager(db, dispatcher).create_booking(
        client_id=current_user.id,
        provider_id=data.provider_id,
        slot_id=data.slot_id,
        service_type=data.service_type,
        start_time=data.start_time,
        end_time=data.end_time,
        location=data.location,
        description=data.description,
        notes=data.notes,
        price=data.price,
    )
    return {'booking': booking}


@router.patch('', response_model=BookingEnvelopeResponse)
def update_booking_status(
    data: UpdateBookingStatusRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    dispatcher=Depends(get_notification_dispatcher),
):
    ensure_database_ready()

    booking = BookingManager(db, dispatcher).update_booking_status(
        current_user.id,
        data.booking_id,
        data.status,
        notes=data.notes,
    )
    return {'booking': booking}
