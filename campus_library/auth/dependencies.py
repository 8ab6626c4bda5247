import logging
from collections.abc import Iterable
from dataclasses import dataclass

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from campus_library.auth import jwt_handler
from campus_library.database import get_db
from campus_library.models.user import User

logger = logging.getLogger(__name__)

security = HTTPBearer(auto_error=False)


@dataclass
class AuthSession:
    """The identity behind the current request, if any."""
    user: User | None = None


def get_session(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
    db: Session = Depends(get_db),
) -> AuthSession:
    if credentials is None:
        return AuthSession()

    try:
        payload = jwt_handler.decode_access_token(credentials.credentials)
    except jwt.PyJWTError:
        logger.debug("Rejected bearer token", exc_info=True)
        return AuthSession()

    try:
        user_id = int(payload.get("sub", ""))
    except (TypeError, ValueError):
        return AuthSession()

    user = db.get(User, user_id)
    if user is None or user.status != "active":
        return AuthSession()
    return AuthSession(user=user)


def require_role(session: AuthSession, roles: Iterable[str]) -> User:
    """Return the session user when their role is allowed, otherwise raise."""
    if session.user is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
    allowed = set(roles)
    if session.user.role not in allowed:
        logger.info("User %s with role %s denied; requires %s", session.user.id, session.user.role, sorted(allowed))
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Unauthorized")
    return session.user


def get_current_user(session: AuthSession = Depends(get_session)) -> User:
    if session.user is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
    return session.user
