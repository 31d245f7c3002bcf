from pydantic import BaseModel
from typing import Optional


class UpdateUserProfile(BaseModel):
    fullName: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
