"""Shared FastAPI dependencies."""

from uuid import UUID

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from .database.base import get_db
from .scheduler.service import Scheduler
from .users.models import User, UserRole


class AuthRequired(Exception):
    """Raised when user is not authenticated. Handled by exception handler in main.py."""

    pass


class AdminRequired(Exception):
    """Raised when a non-admin calls an admin endpoint."""

    pass


def get_scheduler(request: Request) -> Scheduler:
    """Get the scheduler from app state."""
    return request.app.state.scheduler


def get_current_user(request: Request, db: Session = Depends(get_db)) -> User:
    """Get the user the auth layer stored in the session."""
    user_id_str = request.session.get("user_id")
    if not user_id_str:
        raise AuthRequired()
    try:
        user_id = UUID(user_id_str)
    except (ValueError, AttributeError):
        request.session.clear()
        raise AuthRequired()
    user = db.query(User).filter(User.id == user_id).first()
    if not user or not user.is_active:
        request.session.clear()
        raise AuthRequired()
    return user


def require_admin(user: User = Depends(get_current_user)) -> User:
    if user.role != UserRole.ADMIN:
        raise AdminRequired()
    return user
