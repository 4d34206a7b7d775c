from typing import Optional
from sqlmodel import SQLModel, Field
from datetime import datetime, timezone

class User(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    email: str = Field(unique=True, index=True)
    hashed_password: str
    is_active: bool = Field(default=True)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    # Profile Fields
    name: str
    username: Optional[str] = Field(default=None, unique=True, index=True)
    photo_url: Optional[str] = None

    def to_public(self) -> "UserPublic":
        return UserPublic(
            id=self.id,
            name=self.name,
            email=self.email,
            username=self.username,
            photo_url=self.photo_url,
        )

# Request / response shapes of the identity endpoints

class UserPublic(SQLModel):
    id: int
    name: str
    email: str
    username: Optional[str] = None
    photo_url: Optional[str] = None

class RegisterInput(SQLModel):
    name: str = ""
    email: str = ""
    password: str = ""

class LoginInput(SQLModel):
    email: str = ""
    password: str = ""

class ProfileInput(SQLModel):
    user_id: int
    name: str = ""
    username: str = ""
    photo_url: str = ""
