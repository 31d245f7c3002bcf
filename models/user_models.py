from pydantic import BaseModel
from typing import Optional
from datetime import datetime


class UserRecord(BaseModel):
    id: str
    username: str
    password: str  # bcrypt hash, never returned to clients
    fullName: str = ""
    city: str = ""
    state: str = ""
    created_at: datetime
    updated_at: datetime


class CallerContext(BaseModel):
    """Identity of the authenticated caller, passed explicitly into every engine call."""
    user_id: str
    username: Optional[str] = None
