from pydantic import BaseModel
from typing import Optional


class UserProfile(BaseModel):
    id: str
    username: str
    fullName: str = ""
    city: str = ""
    state: str = ""


class AuthenticatedUser(UserProfile):
    token: str
    token_type: str = "bearer"


def profile_from_record(user) -> UserProfile:
    return UserProfile(
        id=user.id,
        username=user.username,
        fullName=user.fullName,
        city=user.city,
        state=user.state,
    )


class OwnerSummary(BaseModel):
    id: str
    username: Optional[str] = None
    fullName: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
