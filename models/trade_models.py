from pydantic import BaseModel
from typing import Any, List, Optional
from datetime import datetime
from enum import Enum


class TradeStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


# The only outcomes a recipient may choose; cancellation is system driven
RESPONSE_DECISIONS = frozenset({TradeStatus.ACCEPTED, TradeStatus.REJECTED})


# Loosely typed so the engine, not the schema, reports malformed requests
class TradeProposal(BaseModel):
    targetBookId: Any = None
    offeredBookIds: Any = None


class TradeResponse(BaseModel):
    status: Any = None


class TradeRecord(BaseModel):
    id: str
    proposer: str
    recipient: str
    target_book: str
    offered_books: List[str]
    status: TradeStatus = TradeStatus.PENDING
    created_at: datetime
    updated_at: datetime

    @property
    def book_ids(self) -> List[str]:
        return [self.target_book, *self.offered_books]


class TradeParty(BaseModel):
    id: str
    username: Optional[str] = None
    fullName: Optional[str] = None


class TradeBook(BaseModel):
    id: str
    title: Optional[str] = None
    author: Optional[str] = None


class TradeDetails(BaseModel):
    id: str
    proposer: TradeParty
    recipient: TradeParty
    targetBook: TradeBook
    offeredBooks: List[TradeBook]
    status: TradeStatus
    createdAt: datetime
    updatedAt: datetime
