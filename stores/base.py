"""Storage interfaces consumed by the routes and the trade engine.

Two backends implement them: ``MongoStore`` (Motor) and ``MemoryStore``.
Every lookup takes ids as ObjectId hex strings; an id that is not a valid
ObjectId simply does not resolve.
"""
from abc import ABC, abstractmethod
from typing import AsyncContextManager, Dict, Iterable, List, Optional

from models.book_model import BookRecord
from models.trade_models import TradeRecord, TradeStatus
from models.user_models import UserRecord


class DuplicateRecordError(Exception):
    """An insert violated a uniqueness rule (username, pending trade)."""


class OwnershipConflict(Exception):
    """An owner compare-and-swap found a book whose owner already changed."""


class TransactionConflict(Exception):
    """The backend aborted a transaction because of a concurrent write."""


class UserDirectory(ABC):
    @abstractmethod
    async def find_by_id(self, user_id: str) -> Optional[UserRecord]: ...

    @abstractmethod
    async def find_by_ids(self, user_ids: Iterable[str]) -> List[UserRecord]: ...

    @abstractmethod
    async def find_by_username(self, username: str) -> Optional[UserRecord]: ...

    @abstractmethod
    async def insert(self, username: str, password_hash: str, fullName: str = "",
                     city: str = "", state: str = "") -> UserRecord: ...

    @abstractmethod
    async def update_profile(self, user_id: str, fields: Dict[str, str]) -> Optional[UserRecord]: ...


class BookCatalog(ABC):
    @abstractmethod
    async def find_by_id(self, book_id: str) -> Optional[BookRecord]: ...

    @abstractmethod
    async def find_by_ids(self, book_ids: Iterable[str]) -> List[BookRecord]: ...

    @abstractmethod
    async def find_by_owner(self, owner_id: str) -> List[BookRecord]: ...

    @abstractmethod
    async def list_all(self) -> List[BookRecord]: ...

    @abstractmethod
    async def insert(self, title: str, author: str, owner_id: str, imageUrl: str = "") -> BookRecord: ...

    @abstractmethod
    async def update_owner(self, book_id: str, new_owner_id: str,
                           expected_owner_id: Optional[str] = None) -> bool:
        """Reassign one book. Returns False when the book is missing or,
        with ``expected_owner_id``, when its owner no longer matches."""

    @abstractmethod
    async def update_owner_batch(self, book_ids: Iterable[str], new_owner_id: str,
                                 expected_owner_id: Optional[str] = None) -> int:
        """Reassign several books, returning how many were modified."""


class TradeLedger(ABC):
    @abstractmethod
    async def find_by_id(self, trade_id: str) -> Optional[TradeRecord]: ...

    @abstractmethod
    async def find_by_recipient(self, user_id: str) -> List[TradeRecord]:
        """Newest first."""

    @abstractmethod
    async def find_by_proposer(self, user_id: str) -> List[TradeRecord]:
        """Newest first."""

    @abstractmethod
    async def find_pending(self, proposer_id: str, target_book_id: str) -> Optional[TradeRecord]: ...

    @abstractmethod
    async def find_pending_referencing_books(self, book_ids: Iterable[str],
                                             exclude_trade_id: Optional[str] = None) -> List[TradeRecord]: ...

    @abstractmethod
    async def insert(self, proposer_id: str, recipient_id: str, target_book_id: str,
                     offered_book_ids: List[str]) -> TradeRecord:
        """Store a new pending trade. Raises DuplicateRecordError when the
        proposer already has a pending trade for the same target."""

    @abstractmethod
    async def update_status(self, trade_id: str, status: TradeStatus,
                            expected_status: Optional[TradeStatus] = None) -> bool:
        """Set the status. With ``expected_status`` this is a compare-and-set
        and returns False when the stored status differs."""


class UnitOfWork:
    """Catalog and ledger views bound to one transaction."""

    def __init__(self, books: BookCatalog, trades: TradeLedger):
        self.books = books
        self.trades = trades


class Store(ABC):
    users: UserDirectory
    books: BookCatalog
    trades: TradeLedger

    @abstractmethod
    def transaction(self, book_ids: Iterable[str]) -> AsyncContextManager[UnitOfWork]:
        """Serialize work touching ``book_ids``.

        Writes made through the yielded unit of work become visible together
        when the block exits normally and are discarded when it raises.
        """

    async def ensure_indexes(self) -> None:
        return None

    async def close(self) -> None:
        return None
