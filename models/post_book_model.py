from pydantic import BaseModel
from typing import Optional


class PostBookModel(BaseModel):
    title: str
    author: str
    imageUrl: Optional[str] = ""
