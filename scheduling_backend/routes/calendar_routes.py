from datetime import date, datetime, time, timedelta

from fastapi import APIRouter, Depends, Query
from pydantic import AliasChoices, Field, TypeAdapter, field_validator
from sqlalchemy.orm import Session

from scheduling_backend.auth.dependencies import get_current_user
from scheduling_backend.core.errors import ValidationError
from scheduling_backend.core.schemas import CamelModel
from scheduling_backend.database import ensure_database_ready, get_db
from scheduling_backend.models.user import User
from scheduling_backend.services.calendar_view import CalendarDay, build_calendar
from scheduling_backend.services.slot_store import AvailabilitySlotStore

router = APIRouter(tags=['calendar'])

RECURRENCE_ALIASES = AliasChoices('recurrence', 'recurrenceRule', 'recurrence_rule')
DATETIME_ADAPTER = TypeAdapter(datetime)


def _parse_view_bound(value: str, inclusive_end: bool = False) -> datetime:
    """Parse a view bound; a plain date covers that whole day when used as the end."""
    value = value.strip()
    try:
        if len(value) == 10:
            day = date.fromisoformat(value)
            if inclusive_end:
                day += timedelta(days=1)
            return datetime.combine(day, time.min)
        return DATETIME_ADAPTER.validate_python(value)
    except ValueError as exc:
        raise ValidationError('Invalid start or end time.') from exc


def _blank_to_none(value: str | None) -> str | None:
    if value is None:
        return None
    normalized = value.strip()
    return normalized or None


class CreateSlotRequest(CamelModel):
    title: str | None = None
    description: str | None = None
    start_time: datetime | None = None
    end_time: datetime | None = None
    event_type: str | None = None
    service_type: str | None = None
    location: str | None = None
    meeting_url: str | None = None
    is_recurring: bool = False
    recurrence_rule: dict | None = Field(default=None, validation_alias=RECURRENCE_ALIASES)

    @field_validator('title', 'event_type')
    @classmethod
    def strip_required_text(cls, value: str | None) -> str | None:
        return _blank_to_none(value)


class UpdateSlotRequest(CamelModel):
    event_id: int | None = Field(default=None, validation_alias=AliasChoices('eventId', 'slotId', 'event_id'))
    title: str | None = None
    description: str | None = None
    start_time: datetime | None = None
    end_time: datetime | None = None
    event_type: str | None = None
    service_type: str | None = None
    location: str | None = None
    meeting_url: str | None = None
    is_recurring: bool | None = None
    recurrence_rule: dict | None = Field(default=None, validation_alias=RECURRENCE_ALIASES)

    @field_validator('title')
    @classmethod
    def strip_title(cls, value: str | None) -> str | None:
        return _blank_to_none(value)

    def patch(self) -> dict:
        return self.model_dump(exclude_unset=True, exclude={'event_id'})


class SlotResponse(CamelModel):
    id: int
    owner_id: int
    title: str
    description: str | None = None
    start_time: datetime
    end_time: datetime
    event_type: str
    service_type: str | None = None
    location: str | None = None
    meeting_url: str | None = None
    is_recurring: bool
    recurrence_rule: dict | None = None
    is_booked: bool
    booked_by_user_id: int | None = None
    status: str


class SlotListResponse(CamelModel):
    events: list[SlotResponse]


class SlotEnvelopeResponse(CamelModel):
    event: SlotResponse


class SuccessResponse(CamelModel):
    success: bool


class CalendarViewResponse(CamelModel):
    days: list[CalendarDay]


@router.get('', response_model=SlotListResponse)
def list_calendar_events(
    start: datetime | None = Query(default=None),
    end: datetime | None = Query(default=None),
    user_id: int | None = Query(default=None, alias='userId'),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    owner_id = user_id if user_id is not None else current_user.id
    events = AvailabilitySlotStore(db).list_slots(owner_id, start, end)
    return {'events': events}


@router.post('', response_model=SlotEnvelopeResponse)
def create_calendar_event(
    data: CreateSlotRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    event = AvailabilitySlotStore(db).create_slot(
        owner_id=current_user.id,
        title=data.title,
        start_time=data.start_time,
        end_time=data.end_time,
        event_type=data.event_type,
        description=data.description,
        service_type=data.service_type,
        location=data.location,
        meeting_url=data.meeting_url,
        is_recurring=data.is_recurring,
        recurrence_rule=data.recurrence_rule,
    )
    return {'event': event}


@router.put('', response_model=SlotEnvelopeResponse)
def update_calendar_event(
    data: UpdateSlotRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    if not data.event_id:
        raise ValidationError('Event ID is required')

    ensure_database_ready()

    event = AvailabilitySlotStore(db).update_slot(data.event_id, current_user.id, data.patch())
    return {'event': event}


@router.delete('', response_model=SuccessResponse)
def delete_calendar_event(
    event_id: int | None = Query(default=None, alias='eventId'),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    if not event_id:
        raise ValidationError('Event ID is required')

    ensure_database_ready()

    AvailabilitySlotStore(db).delete_slot(event_id, current_user.id)
    return {'success': True}


@router.get('/view', response_model=CalendarViewResponse)
def view_calendar(
    start: str = Query(...),
    end: str = Query(...),
    user_id: int | None = Query(default=None, alias='userId'),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    start_time = _parse_view_bound(start)
    end_time = _parse_view_bound(end, inclusive_end=True)

    owner_id = user_id if user_id is not None else current_user.id
    days = build_calendar(db, owner_id, start_time, end_time, viewer_id=current_user.id)
    return {'days': days}
