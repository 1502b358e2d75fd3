"""Availability slot storage and per-slot reservation exclusivity.

``reserve`` and ``release`` are the only code paths that write
``is_booked``, ``booked_by_user_id`` or ``status`` on a slot. ``reserve`` is a
single ``UPDATE ... WHERE is_booked = false AND status = 'AVAILABLE'``, so the
database decides which of several concurrent callers wins.
"""

import logging
from datetime import datetime

from sqlalchemy import delete, or_, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from scheduling_backend.core.errors import (
    AuthorizationError,
    InternalError,
    SlotBookedError,
    SlotUnavailableError,
    ValidationError,
)
from scheduling_backend.core.timeutils import to_utc_naive
from scheduling_backend.models.availability import AvailabilitySlot, EventType, SlotStatus
from scheduling_backend.models.booking import Booking

logger = logging.getLogger(__name__)

EDITABLE_SLOT_FIELDS = {
    'title',
    'description',
    'start_time',
    'end_time',
    'event_type',
    'service_type',
    'location',
    'meeting_url',
    'is_recurring',
    'recurrence_rule',
}
TIME_FIELDS = ('start_time', 'end_time')


def normalize_event_type(value) -> str:
    if isinstance(value, EventType):
        return value.value
    normalized = str(value).strip().upper()
    if normalized not in EventType.__members__:
        raise ValidationError('Invalid event type.')
    return normalized


def validate_recurrence_rule(value):
    if value is None:
        return None
    if not isinstance(value, dict):
        raise ValidationError('Recurrence must be an object.')
    return value


def validate_time_range(start_time: datetime, end_time: datetime) -> None:
    if end_time <= start_time:
        raise ValidationError('End time must be after start time.')


class AvailabilitySlotStore:
    def __init__(self, db: Session):
        self.db = db

    def create_slot(
        self,
        owner_id: int,
        title: str | None,
        start_time: datetime | None,
        end_time: datetime | None,
        event_type: str | None,
        description: str | None = None,
        service_type: str | None = None,
        location: str | None = None,
        meeting_url: str | None = None,
        is_recurring: bool = False,
        recurrence_rule: dict | None = None,
    ) -> AvailabilitySlot:
        if not title or not start_time or not end_time or not event_type:
            raise ValidationError('Missing required fields')

        start_time = to_utc_naive(start_time)
        end_time = to_utc_naive(end_time)
        validate_time_range(start_time, end_time)

        slot = AvailabilitySlot(
            owner_id=owner_id,
            title=title,
            description=description,
            start_time=start_time,
            end_time=end_time,
            event_type=normalize_event_type(event_type),
            service_type=service_type,
            location=location,
            meeting_url=meeting_url,
            is_recurring=bool(is_recurring),
            recurrence_rule=validate_recurrence_rule(recurrence_rule),
            is_booked=False,
            booked_by_user_id=None,
            status=SlotStatus.AVAILABLE.value,
        )

        try:
            self.db.add(slot)
            self.db.commit()
            self.db.refresh(slot)
        except SQLAlchemyError as exc:
            self._fail('Slot creation failed', exc)

        return slot

    def get_slot(self, slot_id: int) -> AvailabilitySlot | None:
        return self.db.get(AvailabilitySlot, slot_id)

    def list_slots(
        self,
        owner_id: int | None = None,
        start_range: datetime | None = None,
        end_range: datetime | None = None,
    ) -> list[AvailabilitySlot]:
        query = self.db.query(AvailabilitySlot)

        if owner_id is not None:
            query = query.filter(AvailabilitySlot.owner_id == owner_id)
        if start_range is not None:
            query = query.filter(AvailabilitySlot.end_time > to_utc_naive(start_range))
        if end_range is not None:
            query = query.filter(AvailabilitySlot.start_time < to_utc_naive(end_range))

        try:
            return query.order_by(AvailabilitySlot.start_time.asc(), AvailabilitySlot.id.asc()).all()
        except SQLAlchemyError as exc:
            self._fail('Slot listing failed', exc)

    def update_slot(self, slot_id: int, caller_id: int, patch: dict) -> AvailabilitySlot:
        slot = self._get_owned_slot(slot_id, caller_id)

        changes = {key: value for key, value in patch.items() if key in EDITABLE_SLOT_FIELDS}
        for field in TIME_FIELDS:
            if field in changes:
                if changes[field] is None:
                    raise ValidationError('Missing required fields')
                changes[field] = to_utc_naive(changes[field])
        if 'title' in changes and not changes['title']:
            raise ValidationError('Missing required fields')
        if 'event_type' in changes:
            changes['event_type'] = normalize_event_type(changes['event_type'])
        if 'recurrence_rule' in changes:
            changes['recurrence_rule'] = validate_recurrence_rule(changes['recurrence_rule'])
        if 'is_recurring' in changes:
            changes['is_recurring'] = bool(changes['is_recurring'])

        validate_time_range(
            changes.get('start_time', slot.start_time),
            changes.get('end_time', slot.end_time),
        )

        try:
            for field, value in changes.items():
                setattr(slot, field, value)
            self.db.commit()
            self.db.refresh(slot)
        except SQLAlchemyError as exc:
            self._fail('Slot update failed', exc)

        return slot

    def delete_slot(self, slot_id: int, caller_id: int) -> None:
        try:
            result = self.db.execute(
                delete(AvailabilitySlot)
                .where(
                    AvailabilitySlot.id == slot_id,
                    AvailabilitySlot.owner_id == caller_id,
                    AvailabilitySlot.is_booked.is_(False),
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 1:
                # Cancelled bookings keep their history without the slot.
                self.db.execute(
                    update(Booking)
                    .where(Booking.slot_id == slot_id)
                    .values(slot_id=None)
                    .execution_options(synchronize_session=False)
                )
            self.db.commit()
        except SQLAlchemyError as exc:
            self._fail('Slot deletion failed', exc)

        if result.rowcount == 1:
            return

        # Nothing deleted: either not the caller's slot or it is held by a booking.
        self._get_owned_slot(slot_id, caller_id)
        raise SlotBookedError()

    def reserve(self, slot_id: int, owner_id: int, client_id: int) -> AvailabilitySlot:
        try:
            result = self.db.execute(
                update(AvailabilitySlot)
                .where(
                    AvailabilitySlot.id == slot_id,
                    AvailabilitySlot.owner_id == owner_id,
                    AvailabilitySlot.is_booked.is_(False),
                    AvailabilitySlot.status == SlotStatus.AVAILABLE.value,
                )
                .values(
                    is_booked=True,
                    booked_by_user_id=client_id,
                    status=SlotStatus.BOOKED.value,
                )
                .execution_options(synchronize_session=False)
            )
            self.db.commit()
        except SQLAlchemyError as exc:
            self._fail('Slot reservation failed', exc)

        if result.rowcount != 1:
            logger.info('Reservation of slot %s for client %s rejected', slot_id, client_id)
            raise SlotUnavailableError()

        return self.get_slot(slot_id)

    def release(self, slot_id: int, commit: bool = True) -> None:
        try:
            self.db.execute(
                update(AvailabilitySlot)
                .where(
                    AvailabilitySlot.id == slot_id,
                    or_(
                        AvailabilitySlot.is_booked.is_(True),
                        AvailabilitySlot.status != SlotStatus.AVAILABLE.value,
                    ),
                )
                .values(
                    is_booked=False,
                    booked_by_user_id=None,
                    status=SlotStatus.AVAILABLE.value,
                )
                .execution_options(synchronize_session=False)
            )
            if commit:
                self.db.commit()
        except SQLAlchemyError as exc:
            self._fail('Slot release failed', exc)

    def _get_owned_slot(self, slot_id: int, caller_id: int) -> AvailabilitySlot:
        try:
            slot = self.db.query(AvailabilitySlot).filter(
                AvailabilitySlot.id == slot_id,
                AvailabilitySlot.owner_id == caller_id,
            ).first()
        except SQLAlchemyError as exc:
            self._fail('Slot lookup failed', exc)

        if slot is None:
            raise AuthorizationError('Event not found or unauthorized')
        return slot

    def _fail(self, message: str, exc: SQLAlchemyError):
        self.db.rollback()
        logger.exception(message)
        raise InternalError() from exc
