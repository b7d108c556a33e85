"""
Authentication and authorization dependencies.

Provides FastAPI dependencies for:
- Resolving the caller from the session cookie (or the guest demo identity)
- Admin-only access, checked against the stored per-user flag
"""
from dataclasses import dataclass
from typing import Optional
from uuid import UUID

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from core.config import settings
from core.database import get_db
from core.exceptions import ForbiddenError, UnauthorizedError
from core.security import get_user_id_from_token
from models import UserProfile

DEMO_USER_ID = UUID(settings.DEMO_USER_ID)


@dataclass(frozen=True)
class CallerIdentity:
    user_id: UUID
    is_demo: bool = False


def _session_user_id(request: Request) -> Optional[UUID]:
    token = request.cookies.get(settings.SESSION_COOKIE_NAME)
    if not token:
        return None
    user_id = get_user_id_from_token(token)
    if not user_id:
        return None
    try:
        return UUID(user_id)
    except ValueError:
        return None


def get_caller(request: Request) -> CallerIdentity:
    """
    Session user when the cookie verifies; the demo identity when the
    guest-mode cookie is set; otherwise 401.
    """
    user_id = _session_user_id(request)
    if user_id is not None:
        return CallerIdentity(user_id=user_id, is_demo=user_id == DEMO_USER_ID)

    if request.cookies.get(settings.GUEST_MODE_COOKIE_NAME) == "true":
        return CallerIdentity(user_id=DEMO_USER_ID, is_demo=True)

    raise UnauthorizedError()


def require_admin(
    caller: CallerIdentity = Depends(get_caller),
    db: Session = Depends(get_db),
) -> CallerIdentity:
    """Require the stored admin flag. The demo identity is never an admin."""
    if caller.is_demo:
        raise ForbiddenError("Admin access required")
    profile = db.query(UserProfile).filter(UserProfile.id == caller.user_id).first()
    if not profile or not profile.is_admin:
        raise ForbiddenError("Admin access required")
    return caller
