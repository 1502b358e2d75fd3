"""Booking reservation and status transitions.

A booking only ever exists on top of a successful slot reservation, and the
slot goes back to AVAILABLE whenever its booking is cancelled. The two rows
are written separately, so ``create_booking`` releases the slot again if the
booking row cannot be stored.
"""

import logging
from datetime import datetime, timezone

from sqlalchemy import or_, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from scheduling_backend.core import config
from scheduling_backend.core.errors import (
    AuthorizationError,
    InternalError,
    InvalidTransitionError,
    SchedulingError,
    SlotUnavailableError,
    ValidationError,
)
from scheduling_backend.core.timeutils import to_utc_naive
from scheduling_backend.models.booking import ACTIVE_BOOKING_STATUSES, Booking, BookingStatus
from scheduling_backend.models.user import User
from scheduling_backend.services.slot_store import AvailabilitySlotStore, validate_time_range

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS = {
    BookingStatus.PENDING.value: {
        BookingStatus.CONFIRMED.value,
        BookingStatus.CANCELLED.value,
        BookingStatus.COMPLETED.value,
    },
    BookingStatus.CONFIRMED.value: {
        BookingStatus.CANCELLED.value,
        BookingStatus.COMPLETED.value,
    },
    BookingStatus.CANCELLED.value: set(),
    BookingStatus.COMPLETED.value: set(),
}

STATUS_NOTIFICATION_TITLES = {
    BookingStatus.CONFIRMED.value: 'Booking Confirmed',
    BookingStatus.CANCELLED.value: 'Booking Cancelled',
}

BOOKING_ROLES = ('provider', 'client')


def is_transition_allowed(current_status: str, new_status: str) -> bool:
    return new_status in ALLOWED_TRANSITIONS.get(current_status, set())


def normalize_booking_status(value) -> str:
    if isinstance(value, BookingStatus):
        return value.value
    normalized = str(value).strip().upper()
    if normalized not in BookingStatus.__members__:
        raise ValidationError('Invalid booking status.')
    return normalized


def build_meeting_url(slot_id: int, now: datetime | None = None) -> str:
    now = now or datetime.now(timezone.utc)
    return f'{config.MEETING_BASE_URL}/{slot_id}-{int(now.timestamp() * 1000)}'


class BookingManager:
    def __init__(self, db: Session, dispatcher, slot_store: AvailabilitySlotStore | None = None):
        self.db = db
        self.dispatcher = dispatcher
        self.slot_store = slot_store or AvailabilitySlotStore(db)

    def create_booking(
        self,
        client_id: int,
        provider_id: int | None,
        slot_id: int | None,
        service_type: str | None,
        start_time: datetime | None,
        end_time: datetime | None,
        location: str | None = None,
        description: str | None = None,
        notes: str | None = None,
        price: float | None = None,
    ) -> Booking:
        if not provider_id or not slot_id or not service_type or not start_time or not end_time:
            raise ValidationError('Missing required fields')

        start_time = to_utc_naive(start_time)
        end_time = to_utc_naive(end_time)
        validate_time_range(start_time, end_time)

        self.slot_store.reserve(slot_id, provider_id, client_id)

        booking = Booking(
            provider_id=provider_id,
            client_id=client_id,
            slot_id=slot_id,
            service_type=service_type,
            start_time=start_time,
            end_time=end_time,
            location=location,
            description=description,
            notes=notes,
            price=price,
            meeting_url=build_meeting_url(slot_id),
            status=BookingStatus.PENDING.value,
        )

        try:
            self._persist_booking(booking)
        except IntegrityError as exc:
            self.db.rollback()
            if self._has_active_booking(slot_id):
                # The slot is legitimately held by another booking; leave it booked.
                logger.warning('Slot %s already has an active booking', slot_id)
                raise SlotUnavailableError() from exc
            logger.exception('Booking insert for slot %s violated a constraint', slot_id)
            self._release_reservation(slot_id)
            raise InternalError() from exc
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.exception('Booking insert for slot %s failed', slot_id)
            self._release_reservation(slot_id)
            raise InternalError() from exc

        self._dispatch(
            provider_id,
            'New Booking Request',
            f'{self._display_name(client_id)} has requested to book your time for {service_type}',
            'BOOKING_REQUEST',
            {'bookingId': booking.id},
        )
        return booking

    def update_booking_status(
        self,
        caller_id: int,
        booking_id: int | None,
        new_status,
        notes: str | None = None,
    ) -> Booking:
        if not booking_id or not new_status:
            raise ValidationError('Booking ID and status are required')

        new_status = normalize_booking_status(new_status)
        booking = self.get_booking(caller_id, booking_id)
        current_status = booking.status

        if not is_transition_allowed(current_status, new_status):
            raise InvalidTransitionError(current_status, new_status)

        values = {'status': new_status}
        if notes is not None:
            values['notes'] = notes

        try:
            result = self.db.execute(
                update(Booking)
                .where(Booking.id == booking.id, Booking.status == current_status)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                # Another request moved the booking on since it was loaded.
                self.db.rollback()
                raise InvalidTransitionError(current_status, new_status)

            if new_status == BookingStatus.CANCELLED.value and booking.slot_id is not None:
                self.slot_store.release(booking.slot_id, commit=False)

            self.db.commit()
            self.db.refresh(booking)
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.exception('Status update of booking %s failed', booking_id)
            raise InternalError() from exc

        recipient_id = booking.client_id if caller_id == booking.provider_id else booking.provider_id
        self._dispatch(
            recipient_id,
            STATUS_NOTIFICATION_TITLES.get(new_status, 'Booking Updated'),
            f'Your booking for {booking.service_type} has been {new_status.lower()}',
            f'BOOKING_{new_status}',
            {'bookingId': booking.id},
        )
        return booking

    def get_booking(self, caller_id: int, booking_id: int) -> Booking:
        try:
            booking = self.db.query(Booking).filter(
                Booking.id == booking_id,
                or_(Booking.provider_id == caller_id, Booking.client_id == caller_id),
            ).first()
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.exception('Lookup of booking %s failed', booking_id)
            raise InternalError() from exc

        if booking is None:
            raise AuthorizationError('Booking not found or unauthorized')
        return booking

    def list_bookings(
        self,
        caller_id: int,
        role: str | None = None,
        status: str | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> list[Booking]:
        query = self.db.query(Booking)

        if role == 'provider':
            query = query.filter(Booking.provider_id == caller_id)
        elif role == 'client':
            query = query.filter(Booking.client_id == caller_id)
        else:
            query = query.filter(or_(Booking.provider_id == caller_id, Booking.client_id == caller_id))

        if status:
            # Unknown statuses match nothing.
            query = query.filter(Booking.status == str(status).strip().upper())
        if start is not None:
            query = query.filter(Booking.start_time >= to_utc_naive(start))
        if end is not None:
            query = query.filter(Booking.start_time <= to_utc_naive(end))

        try:
            return query.order_by(Booking.start_time.desc(), Booking.id.desc()).all()
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.exception('Booking listing for user %s failed', caller_id)
            raise InternalError() from exc

    def _persist_booking(self, booking: Booking) -> None:
        self.db.add(booking)
        self.db.commit()
        self.db.refresh(booking)

    def _has_active_booking(self, slot_id: int) -> bool:
        try:
            return self.db.query(Booking.id).filter(
                Booking.slot_id == slot_id,
                Booking.status.in_(ACTIVE_BOOKING_STATUSES),
            ).first() is not None
        except SQLAlchemyError:
            self.db.rollback()
            logger.exception('Active booking lookup for slot %s failed', slot_id)
            return True

    def _release_reservation(self, slot_id: int) -> None:
        try:
            self.slot_store.release(slot_id)
        except SchedulingError:
            logger.error('Slot %s stays reserved without a booking; release it manually', slot_id)
        else:
            logger.info('Reservation of slot %s rolled back', slot_id)

    def _display_name(self, user_id: int) -> str:
        try:
            user = self.db.get(User, user_id)
        except SQLAlchemyError:
            self.db.rollback()
            logger.exception('Lookup of user %s failed', user_id)
            return 'Someone'
        if user is not None and user.name:
            return user.name
        return 'Someone'

    def _dispatch(self, user_id: int, title: str, message: str, type: str, payload: dict) -> None:
        try:
            self.dispatcher.notify(user_id, title, message, type, payload)
        except Exception:
            logger.exception('Dispatch of %s to user %s failed', type, user_id)
