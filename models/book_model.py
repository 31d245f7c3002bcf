from pydantic import BaseModel
from typing import Optional
from datetime import datetime
from models.profile_model import OwnerSummary


class BookRecord(BaseModel):
    id: str
    title: str
    author: str
    owner: str  # user id of the single current owner
    imageUrl: str = ""
    created_at: datetime
    updated_at: datetime


class BookDetails(BaseModel):
    id: str
    title: str
    author: str
    imageUrl: str = ""
    owner: OwnerSummary
    createdAt: datetime
    updatedAt: datetime


#get books serialization method
def serialize_book(book: BookRecord, owner=None) -> BookDetails:
    if owner is not None:
        owner_summary = OwnerSummary(
            id=owner.id,
            username=owner.username,
            fullName=owner.fullName,
            city=owner.city,
            state=owner.state,
        )
    else:
        owner_summary = OwnerSummary(id=book.owner)
    return BookDetails(
        id=book.id,
        title=book.title,
        author=book.author,
        imageUrl=book.imageUrl or "",
        owner=owner_summary,
        createdAt=book.created_at,
        updatedAt=book.updated_at,
    )
