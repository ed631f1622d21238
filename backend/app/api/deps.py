"""FastAPI dependencies for the API layer."""

from fastapi import Depends, Query
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.orm import Session

from app.config import get_settings
from app.core.errors import AuthError
from app.core.security import decode_access_token
from app.database import get_db
from app.models import User

settings = get_settings()

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login")


def get_current_user(
    token: str = Depends(oauth2_scheme),
    db: Session = Depends(get_db),
) -> User:
    """Retrieve the current user from the JWT token."""

    return get_user_from_token(token, db)


def get_user_from_token(token: str, db: Session) -> User:
    """Resolve a user from a JWT token or raise :class:`AuthError`."""

    payload = decode_access_token(token)
    sub = payload.get("sub")
    if sub is None:
        raise AuthError()

    try:
        user_id = int(sub)
    except (TypeError, ValueError):
        raise AuthError() from None

    user = db.get(User, user_id)
    if user is None:
        raise AuthError()
    return user


class Pagination:
    """``page``/``limit`` query parameters clamped to the configured bounds."""

    def __init__(
        self,
        page: int = Query(default=1, ge=1),
        limit: int | None = Query(default=None, ge=1),
    ) -> None:
        self.page = page
        self.limit = min(limit or settings.chat_history_default_limit, settings.chat_history_max_limit)

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit
