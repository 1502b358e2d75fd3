import pytest
from fastapi import BackgroundTasks
from fastapi.testclient import TestClient

from scheduling_backend.auth.jwt_handler import create_access_token
from scheduling_backend.database import get_db
from scheduling_backend.main import app
from scheduling_backend.routes.booking_routes import get_notification_dispatcher
from scheduling_backend.services.notifications import BackgroundNotificationDispatcher, NotificationDispatcher

SLOT_PAYLOAD = {
    'title': 'Consultation',
    'startTime': '2024-01-05T13:00:00Z',
    'endTime': '2024-01-05T14:00:00Z',
    'eventType': 'AVAILABILITY',
    'serviceType': 'counseling',
}


@pytest.fixture
def api(session_factory, monkeypatch: pytest.MonkeyPatch):
    for module in ('calendar_routes', 'booking_routes', 'notification_routes'):
        monkeypatch.setattr(f'scheduling_backend.routes.{module}.ensure_database_ready', lambda: None)

    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    def override_dispatcher(background_tasks: BackgroundTasks) -> BackgroundNotificationDispatcher:
        return BackgroundNotificationDispatcher(background_tasks, NotificationDispatcher(session_factory))

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_notification_dispatcher] = override_dispatcher
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


def _auth(user) -> dict:
    return {'Authorization': f'Bearer {create_access_token(user.email)}'}


def _booking_payload(provider_id: int, slot_id: int) -> dict:
    return {
        'sheikhId': provider_id,
        'eventId': slot_id,
        'serviceType': 'counseling',
        'startTime': '2024-01-05T13:00:00Z',
        'endTime': '2024-01-05T14:00:00Z',
    }


def test_root_reports_health(api) -> None:
    assert api.get('/').json() == {'status': 'Scheduling API Running'}


def test_requests_without_credentials_are_unauthorized(api) -> None:
    response = api.get('/calendar')

    assert response.status_code == 401
    assert response.json() == {'error': 'Unauthorized'}


def test_requests_with_invalid_token_are_unauthorized(api) -> None:
    response = api.get('/bookings', headers={'Authorization': 'Bearer not-a-token'})

    assert response.status_code == 401
    assert response.json() == {'error': 'Unauthorized'}


def test_malformed_body_maps_to_bad_request(api, users) -> None:
    response = api.post(
        '/calendar',
        json={**SLOT_PAYLOAD, 'startTime': 'tomorrow-ish'},
        headers=_auth(users.provider),
    )

    assert response.status_code == 400
    assert 'startTime' in response.json()['error']


def test_booking_lifecycle_over_http(api, users) -> None:
    created = api.post('/calendar', json=SLOT_PAYLOAD, headers=_auth(users.provider))
    assert created.status_code == 200
    slot = created.json()['event']
    assert slot['status'] == 'AVAILABLE'
    assert slot['isBooked'] is False

    first = api.post('/bookings', json=_booking_payload(users.provider.id, slot['id']), headers=_auth(users.client))
    assert first.status_code == 200
    booking = first.json()['booking']
    assert booking['status'] == 'PENDING'
    assert booking['slotId'] == slot['id']

    events = api.get('/calendar', headers=_auth(users.provider)).json()['events']
    assert events[0]['status'] == 'BOOKED'
    assert events[0]['bookedByUserId'] == users.client.id

    second = api.post(
        '/bookings',
        json=_booking_payload(users.provider.id, slot['id']),
        headers=_auth(users.second_client),
    )
    assert second.status_code == 400
    assert second.json() == {'error': 'Event not available for booking'}

    stranger = api.patch(
        '/bookings',
        json={'bookingId': booking['id'], 'status': 'CONFIRMED'},
        headers=_auth(users.stranger),
    )
    assert stranger.status_code == 404
    assert stranger.json() == {'error': 'Booking not found or unauthorized'}

    cancelled = api.patch(
        '/bookings',
        json={'bookingId': booking['id'], 'status': 'CANCELLED'},
        headers=_auth(users.provider),
    )
    assert cancelled.status_code == 200
    assert cancelled.json()['booking']['status'] == 'CANCELLED'

    events = api.get('/calendar', headers=_auth(users.provider)).json()['events']
    assert events[0]['status'] == 'AVAILABLE'
    assert events[0]['isBooked'] is False
    assert events[0]['bookedByUserId'] is None

    retry = api.post(
        '/bookings',
        json=_booking_payload(users.provider.id, slot['id']),
        headers=_auth(users.second_client),
    )
    assert retry.status_code == 200
    assert retry.json()['booking']['id'] != booking['id']

    notifications = api.get('/notifications', headers=_auth(users.client)).json()
    assert [item['title'] for item in notifications['notifications']] == ['Booking Cancelled']
    assert notifications['pagination'] == {'page': 1, 'limit': 20, 'total': 1, 'pages': 1}


def test_create_booking_without_start_time_is_bad_request(api, users) -> None:
    slot = api.post('/calendar', json=SLOT_PAYLOAD, headers=_auth(users.provider)).json()['event']
    payload = _booking_payload(users.provider.id, slot['id'])
    del payload['startTime']

    response = api.post('/bookings', json=payload, headers=_auth(users.client))

    assert response.status_code == 400
    assert response.json() == {'error': 'Missing required fields'}


def test_invalid_transition_is_bad_request(api, users) -> None:
    slot = api.post('/calendar', json=SLOT_PAYLOAD, headers=_auth(users.provider)).json()['event']
    booking = api.post(
        '/bookings',
        json=_booking_payload(users.provider.id, slot['id']),
        headers=_auth(users.client),
    ).json()['booking']
    api.patch('/bookings', json={'bookingId': booking['id'], 'status': 'CANCELLED'}, headers=_auth(users.client))

    response = api.patch(
        '/bookings',
        json={'bookingId': booking['id'], 'status': 'CONFIRMED'},
        headers=_auth(users.provider),
    )

    assert response.status_code == 400
    assert response.json() == {'error': 'Cannot change booking status from CANCELLED to CONFIRMED'}


def test_deleting_booked_slot_is_conflict(api, users) -> None:
    slot = api.post('/calendar', json=SLOT_PAYLOAD, headers=_auth(users.provider)).json()['event']
    api.post('/bookings', json=_booking_payload(users.provider.id, slot['id']), headers=_auth(users.client))

    response = api.delete(f"/calendar?eventId={slot['id']}", headers=_auth(users.provider))

    assert response.status_code == 409
    assert response.json() == {'error': 'Cannot delete an event that has an active booking'}


def test_deleting_someone_elses_slot_is_not_found(api, users) -> None:
    slot = api.post('/calendar', json=SLOT_PAYLOAD, headers=_auth(users.provider)).json()['event']

    response = api.delete(f"/calendar?eventId={slot['id']}", headers=_auth(users.client))

    assert response.status_code == 404
    assert response.json() == {'error': 'Event not found or unauthorized'}


def test_provider_notifications_can_be_marked_read(api, users) -> None:
    slot = api.post('/calendar', json=SLOT_PAYLOAD, headers=_auth(users.provider)).json()['event']
    api.post('/bookings', json=_booking_payload(users.provider.id, slot['id']), headers=_auth(users.client))

    unread = api.get('/notifications?isRead=false', headers=_auth(users.provider)).json()['notifications']
    assert [item['type'] for item in unread] == ['BOOKING_REQUEST']

    marked = api.patch('/notifications', json={'markAllAsRead': True}, headers=_auth(users.provider))
    assert marked.json() == {'success': True}
    assert api.get('/notifications?isRead=false', headers=_auth(users.provider)).json()['notifications'] == []

    invalid = api.patch('/notifications', json={}, headers=_auth(users.provider))
    assert invalid.status_code == 400
    assert invalid.json() == {'error': 'Invalid request'}


def test_notifications_can_be_deleted_only_by_their_owner(api, users) -> None:
    slot = api.post('/calendar', json=SLOT_PAYLOAD, headers=_auth(users.provider)).json()['event']
    api.post('/bookings', json=_booking_payload(users.provider.id, slot['id']), headers=_auth(users.client))
    notification_id = api.get('/notifications', headers=_auth(users.provider)).json()['notifications'][0]['id']

    foreign = api.request(
        'DELETE', '/notifications', json={'notificationIds': [notification_id]}, headers=_auth(users.stranger)
    )
    assert foreign.json() == {'success': True}
    assert api.get('/notifications', headers=_auth(users.provider)).json()['pagination']['total'] == 1

    invalid = api.request('DELETE', '/notifications', json={}, headers=_auth(users.provider))
    assert invalid.status_code == 400

    deleted = api.request('DELETE', '/notifications', json={'deleteAll': True}, headers=_auth(users.provider))
    assert deleted.json() == {'success': True}
    assert api.get('/notifications', headers=_auth(users.provider)).json()['notifications'] == []


def test_calendar_view_groups_by_day(api, users) -> None:
    api.post('/calendar', json=SLOT_PAYLOAD, headers=_auth(users.provider))

    response = api.get(
        '/calendar/view?start=2024-01-05T00:00:00&end=2024-01-07T00:00:00',
        headers=_auth(users.provider),
    )

    assert response.status_code == 200
    days = response.json()['days']
    assert [day['date'] for day in days] == ['2024-01-05', '2024-01-06']
    assert days[0]['entries'][0]['category'] == 'availability'
    assert days[0]['entries'][0]['isBookable'] is True


def test_calendar_view_includes_a_plain_end_date(api, users) -> None:
    api.post('/calendar', json=SLOT_PAYLOAD, headers=_auth(users.provider))

    response = api.get('/calendar/view?start=2024-01-05&end=2024-01-05', headers=_auth(users.provider))

    assert response.status_code == 200
    days = response.json()['days']
    assert [day['date'] for day in days] == ['2024-01-05']
    assert len(days[0]['entries']) == 1
