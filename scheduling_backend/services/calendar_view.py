"""Read-only calendar composition of slots and bookings, grouped by day."""

from datetime import date, datetime, time, timedelta

from pydantic import Field
from sqlalchemy import or_
from sqlalchemy.orm import Session

from scheduling_backend.core import config
from scheduling_backend.core.errors import ValidationError
from scheduling_backend.core.schemas import CamelModel
from scheduling_backend.core.timeutils import to_utc_naive
from scheduling_backend.models.availability import AvailabilitySlot, EventType, SlotStatus
from scheduling_backend.models.booking import Booking, BookingStatus
from scheduling_backend.services.slot_store import AvailabilitySlotStore

SLOT_EVENT_CATEGORIES = {
    EventType.BREAK.value: 'break',
    EventType.PERSONAL.value: 'personal',
    EventType.BOOKING.value: 'booking',
}


class CalendarEntry(CamelModel):
    id: int
    kind: str
    category: str
    title: str
    status: str
    start_time: datetime
    end_time: datetime
    is_bookable: bool


class CalendarDay(CamelModel):
    day: date = Field(alias='date')
    entries: list[CalendarEntry]


def classify_slot(slot: AvailabilitySlot) -> str:
    if slot.status == SlotStatus.CANCELLED.value:
        return 'cancelled'
    if slot.status == SlotStatus.COMPLETED.value:
        return 'completed'
    if slot.event_type in SLOT_EVENT_CATEGORIES:
        return SLOT_EVENT_CATEGORIES[slot.event_type]
    if slot.is_booked or slot.status == SlotStatus.BOOKED.value:
        return 'booked'
    return 'availability'


def classify_booking(booking: Booking) -> str:
    if booking.status == BookingStatus.CANCELLED.value:
        return 'cancelled'
    if booking.status == BookingStatus.COMPLETED.value:
        return 'completed'
    return 'booking'


def is_slot_bookable(slot: AvailabilitySlot) -> bool:
    return (
        slot.event_type == EventType.AVAILABILITY.value
        and slot.status == SlotStatus.AVAILABLE.value
        and not slot.is_booked
    )


def slot_entry(slot: AvailabilitySlot) -> CalendarEntry:
    return CalendarEntry(
        id=slot.id,
        kind='slot',
        category=classify_slot(slot),
        title=slot.title,
        status=slot.status,
        start_time=slot.start_time,
        end_time=slot.end_time,
        is_bookable=is_slot_bookable(slot),
    )


def booking_entry(booking: Booking) -> CalendarEntry:
    return CalendarEntry(
        id=booking.id,
        kind='booking',
        category=classify_booking(booking),
        title=booking.service_type,
        status=booking.status,
        start_time=booking.start_time,
        end_time=booking.end_time,
        is_bookable=False,
    )


def overlaps(start_time: datetime, end_time: datetime, range_start: datetime, range_end: datetime) -> bool:
    return start_time < range_end and end_time > range_start


def build_calendar(
    db: Session,
    owner_id: int,
    start: datetime,
    end: datetime,
    viewer_id: int,
) -> list[CalendarDay]:
    """Return one ``CalendarDay`` per UTC day touched by ``[start, end)``.

    Entries are the owner's slots plus the bookings between the owner and the
    viewer that overlap the day, ordered by start time. A multi-day entry is
    listed on every day it touches.
    """
    start = to_utc_naive(start)
    end = to_utc_naive(end)
    if end <= start:
        raise ValidationError('End time must be after start time.')
    last_day = (end - timedelta(microseconds=1)).date()
    if (last_day - start.date()).days + 1 > config.MAX_CALENDAR_VIEW_DAYS:
        raise ValidationError(f'Calendar range cannot exceed {config.MAX_CALENDAR_VIEW_DAYS} days.')

    slots = AvailabilitySlotStore(db).list_slots(owner_id, start, end)
    bookings = db.query(Booking).filter(
        or_(Booking.provider_id == viewer_id, Booking.client_id == viewer_id),
        or_(Booking.provider_id == owner_id, Booking.client_id == owner_id),
        Booking.start_time < end,
        Booking.end_time > start,
    ).all()

    entries = [slot_entry(slot) for slot in slots] + [booking_entry(booking) for booking in bookings]
    entries.sort(key=lambda entry: (entry.start_time, entry.kind, entry.id))

    days: list[CalendarDay] = []
    current_day = start.date()
    while current_day <= last_day:
        day_start = max(datetime.combine(current_day, time.min), start)
        day_end = min(datetime.combine(current_day + timedelta(days=1), time.min), end)
        days.append(
            CalendarDay(
                day=current_day,
                entries=[
                    entry for entry in entries
                    if overlaps(entry.start_time, entry.end_time, day_start, day_end)
                ],
            )
        )
        current_day += timedelta(days=1)

    return days
