import logging

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jwt import PyJWTError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from scheduling_backend.auth import jwt_handler
from scheduling_backend.core.errors import AuthenticationError, InternalError
from scheduling_backend.database import get_db
from scheduling_backend.models.user import User

logger = logging.getLogger(__name__)

security = HTTPBearer(auto_error=False)


def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
    db: Session = Depends(get_db),
) -> User:
    if credentials is None or not credentials.credentials:
        raise AuthenticationError()

    try:
        payload = jwt_handler.decode_access_token(credentials.credentials)
    except PyJWTError as exc:
        raise AuthenticationError() from exc

    email = payload.get("sub")
    if not email:
        raise AuthenticationError()

    try:
        user = db.query(User).filter(User.email == email).first()
    except SQLAlchemyError as exc:
        logger.exception("User lookup during authentication failed")
        raise InternalError() from exc
    if user is None:
        raise AuthenticationError()
    return user
