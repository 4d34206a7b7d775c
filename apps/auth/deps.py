from typing import Optional
from fastapi import Depends, HTTPException, status, Request
from sqlmodel import Session
from database import get_session
from apps.auth.models import User

def get_current_user(request: Request, session: Session = Depends(get_session)) -> Optional[User]:
    """The signed-in user from the session cookie, or None (also for deactivated accounts)."""
    user_id = request.session.get("user_id")
    if not user_id:
        return None

    user = session.get(User, user_id)
    if not user or not user.is_active:
        # Stale cookie for a user that is gone
        request.session.clear()
        return None
    return user

def require_user(user: Optional[User] = Depends(get_current_user)) -> User:
    """JSON views answer 401 instead of redirecting to a login page."""
    if user is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="login required")
    return user
