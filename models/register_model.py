from pydantic import BaseModel, Field


class RegisterUser(BaseModel):
    username: str = Field(min_length=3)
    password: str = Field(min_length=6)
    fullName: str = ""
    city: str = ""
    state: str = ""
