"""Availability slot model definitions."""

import enum

from sqlalchemy import JSON, Boolean, Column, DateTime, ForeignKey, Integer, String, Text
from scheduling_backend.database import Base


class EventType(str, enum.Enum):
    AVAILABILITY = "AVAILABILITY"
    BOOKING = "BOOKING"
    BREAK = "BREAK"
    PERSONAL = "PERSONAL"


class SlotStatus(str, enum.Enum):
    AVAILABLE = "AVAILABLE"
    BOOKED = "BOOKED"
    CANCELLED = "CANCELLED"
    COMPLETED = "COMPLETED"


class AvailabilitySlot(Base):
    """A provider-published time window that clients can reserve.

    ``is_booked``, ``booked_by_user_id`` and ``status`` are only written by
    ``AvailabilitySlotStore.reserve`` and ``AvailabilitySlotStore.release``.
    """
    __tablename__ = "availability_slots"

    id = Column(Integer, primary_key=True)
    owner_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    title = Column(String, nullable=False)
    description = Column(Text)
    start_time = Column(DateTime, nullable=False)
    end_time = Column(DateTime, nullable=False)
    event_type = Column(String, nullable=False, default=EventType.AVAILABILITY.value)
    service_type = Column(String)
    location = Column(String)
    meeting_url = Column(String)
    is_recurring = Column(Boolean, nullable=False, default=False)
    recurrence_rule = Column(JSON)
    is_booked = Column(Boolean, nullable=False, default=False)
    booked_by_user_id = Column(Integer, ForeignKey("users.id"))
    status = Column(String, nullable=False, default=SlotStatus.AVAILABLE.value)
