"""Best-effort notification delivery.

Dispatch never raises: a failed notification is logged and dropped so it
cannot undo a booking change that is already committed.
"""

import json
import logging

from fastapi import BackgroundTasks
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from scheduling_backend.models.notification import Notification

logger = logging.getLogger(__name__)


class NotificationDispatcher:
    """Persists notifications in a session of its own."""

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    def notify(self, user_id: int, title: str, message: str, type: str, payload: dict | None = None) -> None:
        db: Session = self.session_factory()
        try:
            db.add(
                Notification(
                    user_id=user_id,
                    title=title,
                    message=message,
                    type=type,
                    data=json.dumps(payload) if payload is not None else None,
                )
            )
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            logger.exception('Notification %s for user %s could not be stored', type, user_id)
        finally:
            db.close()


class BackgroundNotificationDispatcher:
    """Defers delivery until after the response has been sent."""

    def __init__(self, background_tasks: BackgroundTasks, dispatcher: NotificationDispatcher):
        self.background_tasks = background_tasks
        self.dispatcher = dispatcher

    def notify(self, user_id: int, title: str, message: str, type: str, payload: dict | None = None) -> None:
        self.background_tasks.add_task(self.dispatcher.notify, user_id, title, message, type, payload)
