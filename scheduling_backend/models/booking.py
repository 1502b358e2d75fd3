"""Booking model definitions."""

import enum

from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, Numeric, String, Text, text
from scheduling_backend.core.timeutils import utcnow
from scheduling_backend.database import Base


class BookingStatus(str, enum.Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    CANCELLED = "CANCELLED"
    COMPLETED = "COMPLETED"


ACTIVE_BOOKING_STATUSES = (
    BookingStatus.PENDING.value,
    BookingStatus.CONFIRMED.value,
    BookingStatus.COMPLETED.value,
)


class Booking(Base):
    """A client's reservation of one availability slot."""
    __tablename__ = "bookings"
    __table_args__ = (
        Index(
            "uq_bookings_active_slot",
            "slot_id",
            unique=True,
            postgresql_where=text("status IN ('PENDING', 'CONFIRMED', 'COMPLETED')"),
            sqlite_where=text("status IN ('PENDING', 'CONFIRMED', 'COMPLETED')"),
        ),
    )

    id = Column(Integer, primary_key=True)
    provider_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    client_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    slot_id = Column(Integer, ForeignKey("availability_slots.id", ondelete="SET NULL"))
    service_type = Column(String, nullable=False)
    start_time = Column(DateTime, nullable=False)
    end_time = Column(DateTime, nullable=False)
    location = Column(String)
    description = Column(Text)
    notes = Column(String)
    price = Column(Numeric(10, 2, asdecimal=False))
    meeting_url = Column(String)
    status = Column(String, nullable=False, default=BookingStatus.PENDING.value)
    created_at = Column(DateTime, nullable=False, default=utcnow)
