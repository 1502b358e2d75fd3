import os
from datetime import datetime
from types import SimpleNamespace

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

os.environ.setdefault('DATABASE_URL', 'sqlite:///./test.db')

from scheduling_backend.database import Base  # noqa: E402
from scheduling_backend.models.availability import AvailabilitySlot  # noqa: E402
from scheduling_backend.models.booking import Booking  # noqa: E402
from scheduling_backend.models.notification import Notification  # noqa: E402
from scheduling_backend.models.user import User  # noqa: E402

TABLES = [User.__table__, AvailabilitySlot.__table__, Booking.__table__, Notification.__table__]


class RecordingDispatcher:
    def __init__(self):
        self.sent = []

    def notify(self, user_id, title, message, type, payload=None):
        self.sent.append(
            {'user_id': user_id, 'title': title, 'message': message, 'type': type, 'payload': payload}
        )


class FailingDispatcher:
    def notify(self, user_id, title, message, type, payload=None):
        raise RuntimeError('notification backend down')


@pytest.fixture
def session_factory(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'scheduling.db'}",
        connect_args={'check_same_thread': False, 'timeout': 30},
    )
    Base.metadata.create_all(bind=engine, tables=TABLES)
    try:
        yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    finally:
        engine.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def users(db):
    provider = User(email='provider@example.com', name='Provider P', role='provider')
    client = User(email='client@example.com', name='Client C', role='client')
    second_client = User(email='client2@example.com', name='Client C2', role='client')
    stranger = User(email='stranger@example.com', name='Unrelated U', role='client')
    db.add_all([provider, client, second_client, stranger])
    db.commit()
    for user in (provider, client, second_client, stranger):
        db.refresh(user)
    return SimpleNamespace(provider=provider, client=client, second_client=second_client, stranger=stranger)


@pytest.fixture
def dispatcher():
    return RecordingDispatcher()


@pytest.fixture
def failing_dispatcher():
    return FailingDispatcher()


@pytest.fixture
def make_slot(db):
    def _make_slot(owner, start=datetime(2024, 1, 5, 13, 0), end=datetime(2024, 1, 5, 14, 0), **fields):
        slot = AvailabilitySlot(
            owner_id=owner.id,
            title=fields.pop('title', 'Consultation'),
            start_time=start,
            end_time=end,
            event_type=fields.pop('event_type', 'AVAILABILITY'),
            is_recurring=fields.pop('is_recurring', False),
            is_booked=fields.pop('is_booked', False),
            status=fields.pop('status', 'AVAILABLE'),
            **fields,
        )
        db.add(slot)
        db.commit()
        db.refresh(slot)
        return slot

    return _make_slot
