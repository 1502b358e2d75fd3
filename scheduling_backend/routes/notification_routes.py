import logging
import math
from datetime import datetime

from fastapi import APIRouter, Depends, Query
from sqlalchemy import delete, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from scheduling_backend.auth.dependencies import get_current_user
from scheduling_backend.core.errors import InternalError, ValidationError
from scheduling_backend.core.schemas import CamelModel
from scheduling_backend.database import ensure_database_ready, get_db
from scheduling_backend.models.notification import Notification
from scheduling_backend.models.user import User

logger = logging.getLogger(__name__)

router = APIRouter(tags=['notifications'])

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100


class NotificationResponse(CamelModel):
    id: int
    user_id: int
    title: str
    message: str
    type: str
    data: str | None = None
    is_read: bool
    created_at: datetime


class PaginationResponse(CamelModel):
    page: int
    limit: int
    total: int
    pages: int


class NotificationListResponse(CamelModel):
    notifications: list[NotificationResponse]
    pagination: PaginationResponse


class MarkNotificationsRequest(CamelModel):
    notification_ids: list[int] | None = None
    mark_all_as_read: bool = False


class DeleteNotificationsRequest(CamelModel):
    notification_ids: list[int] | None = None
    delete_all: bool = False


class SuccessResponse(CamelModel):
    success: bool


@router.get('', response_model=NotificationListResponse)
def list_notifications(
    type: str | None = Query(default=None),
    is_read: bool | None = Query(default=None, alias='isRead'),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    query = db.query(Notification).filter(Notification.user_id == current_user.id)
    if type:
        query = query.filter(Notification.type == type)
    if is_read is not None:
        query = query.filter(Notification.is_read.is_(is_read))

    try:
        total = query.count()
        notifications = query.order_by(
            Notification.created_at.desc(),
            Notification.id.desc(),
        ).offset((page - 1) * limit).limit(limit).all()
    except SQLAlchemyError as exc:
        logger.exception('Notification listing for user %s failed', current_user.id)
        raise InternalError() from exc

    return {
        'notifications': notifications,
        'pagination': {
            'page': page,
            'limit': limit,
            'total': total,
            'pages': math.ceil(total / limit),
        },
    }


@router.patch('', response_model=SuccessResponse)
def mark_notifications_read(
    data: MarkNotificationsRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    if data.mark_all_as_read:
        criteria = [Notification.is_read.is_(False)]
    elif data.notification_ids is not None:
        criteria = [Notification.id.in_(data.notification_ids)]
    else:
        raise ValidationError('Invalid request')

    ensure_database_ready()

    try:
        db.execute(
            update(Notification)
            .where(Notification.user_id == current_user.id, *criteria)
            .values(is_read=True)
            .execution_options(synchronize_session=False)
        )
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception('Marking notifications read for user %s failed', current_user.id)
        raise InternalError() from exc

    return {'success': True}


@router.delete('', response_model=SuccessResponse)
def delete_notifications(
    data: DeleteNotificationsRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    if data.delete_all:
        criteria = []
    elif data.notification_ids is not None:
        criteria = [Notification.id.in_(data.notification_ids)]
    else:
        raise ValidationError('Invalid request')

    ensure_database_ready()

    try:
        db.execute(
            delete(Notification)
            .where(Notification.user_id == current_user.id, *criteria)
            .execution_options(synchronize_session=False)
        )
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception('Deleting notifications for user %s failed', current_user.id)
        raise InternalError() from exc

    return {'success': True}
