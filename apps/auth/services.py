import logging
from typing import Optional
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from apps.auth.models import User
from apps.auth.utils import hash_password, verify_password

logger = logging.getLogger(__name__)

class AuthError(Exception):
    """Identity failure carrying a message that can be shown to the user as-is."""

    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.message = message
        self.status_code = status_code

class AuthService:
    def __init__(self, session: Session):
        self.session = session

    def get_user_by_email(self, email: str) -> Optional[User]:
        return self.session.exec(select(User).where(User.email == email)).first()

    def get_user_by_username(self, username: str) -> Optional[User]:
        return self.session.exec(select(User).where(User.username == username)).first()

    def register(self, name: str, email: str, password: str) -> User:
        name = (name or "").strip()
        email = (email or "").strip().lower()

        if not name:
            raise AuthError("name is required")
        if not email or "@" not in email:
            raise AuthError("valid email is required")
        if len(password or "") < 6:
            raise AuthError("password must have at least 6 characters")
        if self.get_user_by_email(email):
            raise AuthError("email already registered", 409)

        user = User(name=name, email=email, hashed_password=hash_password(password))
        try:
            self.session.add(user)
            self.session.commit()
        except IntegrityError:
            self.session.rollback()
            raise AuthError("email already registered", 409)
        self.session.refresh(user)

        logger.info(f"Registered user {user.id}")
        return user

    def authenticate(self, email: str, password: str) -> User:
        email = (email or "").strip().lower()
        if not email or not password:
            raise AuthError("email and password are required")

        user = self.get_user_by_email(email)
        if not user or not user.is_active or not verify_password(password, user.hashed_password):
            raise AuthError("invalid credentials", 401)
        return user

    # --- PROFILE MANAGEMENT ---

    def update_profile(self, user_id: int, name: str, username: str, photo_url: Optional[str] = None) -> User:
        user = self.session.get(User, user_id)
        if not user:
            raise AuthError("user not found", 404)

        name = (name or "").strip()
        username = (username or "").strip().lstrip("@").lower()
        if not name:
            raise AuthError("name is required")
        if not username:
            raise AuthError("username is required")

        owner = self.get_user_by_username(username)
        if owner and owner.id != user.id:
            raise AuthError("username already taken", 409)

        user.name = name
        user.username = username
        user.photo_url = (photo_url or "").strip() or None

        self.session.add(user)
        self.session.commit()
        self.session.refresh(user)
        return user
