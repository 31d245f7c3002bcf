"""In-process store.

Used by the test suite and by ``STORAGE_BACKEND=memory`` for local runs.
Acceptance work is serialized with one ``asyncio.Lock`` per book, always
taken in sorted id order so overlapping transactions cannot deadlock.
Writes inside a transaction go through a journal that undoes them if the
block raises.
"""
import asyncio
import logging
from contextlib import AsyncExitStack, asynccontextmanager
from typing import Dict, Iterable, List, Optional

from bson import ObjectId

from models.book_model import BookRecord
from models.trade_models import TradeRecord, TradeStatus
from models.user_models import UserRecord
from stores.base import (
    BookCatalog,
    DuplicateRecordError,
    Store,
    TradeLedger,
    UnitOfWork,
    UserDirectory,
)
from utils import utc_now

logger = logging.getLogger(__name__)


def _new_id() -> str:
    return str(ObjectId())


def _valid_ids(ids: Iterable[str]) -> List[str]:
    return [i for i in ids if isinstance(i, str) and ObjectId.is_valid(i)]


def _newest_first(trades: Iterable[TradeRecord]) -> List[TradeRecord]:
    return sorted(trades, key=lambda t: (t.created_at, t.id), reverse=True)


def _newest_books(books: Iterable[BookRecord]) -> List[BookRecord]:
    return sorted(books, key=lambda b: (b.created_at, b.id), reverse=True)


async def _io():
    # Give other tasks a chance to run, like a real driver round trip would
    await asyncio.sleep(0)


class _Journal:
    def __init__(self):
        self._entries = []

    def record(self, table: dict, key: str, before, after) -> None:
        self._entries.append((table, key, before, after))

    def rollback(self) -> None:
        for table, key, before, after in reversed(self._entries):
            # Leave the key alone if something outside the transaction replaced it since
            if table.get(key) is not after:
                continue
            if before is None:
                table.pop(key, None)
            else:
                table[key] = before
        self._entries.clear()


class _MemoryCollection:
    def __init__(self, store: "MemoryStore", journal: Optional[_Journal] = None):
        self._store = store
        self._journal = journal

    def _write(self, table: dict, key: str, record) -> None:
        before = table.get(key)
        table[key] = record
        if self._journal is not None:
            self._journal.record(table, key, before, record)


class MemoryUserDirectory(_MemoryCollection, UserDirectory):
    async def find_by_id(self, user_id: str) -> Optional[UserRecord]:
        await _io()
        return self._store._users.get(user_id)

    async def find_by_ids(self, user_ids: Iterable[str]) -> List[UserRecord]:
        await _io()
        users = self._store._users
        return [users[i] for i in dict.fromkeys(_valid_ids(user_ids)) if i in users]

    async def find_by_username(self, username: str) -> Optional[UserRecord]:
        await _io()
        for user in self._store._users.values():
            if user.username == username:
                return user
        return None

    async def insert(self, username: str, password_hash: str, fullName: str = "",
                     city: str = "", state: str = "") -> UserRecord:
        await _io()
        if any(u.username == username for u in self._store._users.values()):
            raise DuplicateRecordError(f"username {username!r} already exists")
        now = utc_now()
        user = UserRecord(
            id=_new_id(),
            username=username,
            password=password_hash,
            fullName=fullName,
            city=city,
            state=state,
            created_at=now,
            updated_at=now,
        )
        self._write(self._store._users, user.id, user)
        return user

    async def update_profile(self, user_id: str, fields: Dict[str, str]) -> Optional[UserRecord]:
        await _io()
        user = self._store._users.get(user_id)
        if user is None:
            return None
        updated = user.model_copy(update={**fields, "updated_at": utc_now()})
        self._write(self._store._users, user_id, updated)
        return updated


class MemoryBookCatalog(_MemoryCollection, BookCatalog):
    async def find_by_id(self, book_id: str) -> Optional[BookRecord]:
        await _io()
        return self._store._books.get(book_id)

    async def find_by_ids(self, book_ids: Iterable[str]) -> List[BookRecord]:
        await _io()
        books = self._store._books
        return [books[i] for i in dict.fromkeys(_valid_ids(book_ids)) if i in books]

    async def find_by_owner(self, owner_id: str) -> List[BookRecord]:
        await _io()
        return _newest_books(b for b in self._store._books.values() if b.owner == owner_id)

    async def list_all(self) -> List[BookRecord]:
        await _io()
        return _newest_books(self._store._books.values())

    async def insert(self, title: str, author: str, owner_id: str, imageUrl: str = "") -> BookRecord:
        await _io()
        now = utc_now()
        book = BookRecord(
            id=_new_id(),
            title=title,
            author=author,
            owner=owner_id,
            imageUrl=imageUrl or "",
            created_at=now,
            updated_at=now,
        )
        self._write(self._store._books, book.id, book)
        return book

    def _reassign(self, book_id: str, new_owner_id: str, expected_owner_id: Optional[str]) -> bool:
        book = self._store._books.get(book_id)
        if book is None:
            return False
        if expected_owner_id is not None and book.owner != expected_owner_id:
            return False
        updated = book.model_copy(update={"owner": new_owner_id, "updated_at": utc_now()})
        self._write(self._store._books, book_id, updated)
        return True

    async def update_owner(self, book_id: str, new_owner_id: str,
                           expected_owner_id: Optional[str] = None) -> bool:
        await _io()
        return self._reassign(book_id, new_owner_id, expected_owner_id)

    async def update_owner_batch(self, book_ids: Iterable[str], new_owner_id: str,
                                 expected_owner_id: Optional[str] = None) -> int:
        await _io()
        return sum(
            1 for book_id in dict.fromkeys(book_ids)
            if self._reassign(book_id, new_owner_id, expected_owner_id)
        )


class MemoryTradeLedger(_MemoryCollection, TradeLedger):
    async def find_by_id(self, trade_id: str) -> Optional[TradeRecord]:
        await _io()
        return self._store._trades.get(trade_id)

    async def find_by_recipient(self, user_id: str) -> List[TradeRecord]:
        await _io()
        return _newest_first(t for t in self._store._trades.values() if t.recipient == user_id)

    async def find_by_proposer(self, user_id: str) -> List[TradeRecord]:
        await _io()
        return _newest_first(t for t in self._store._trades.values() if t.proposer == user_id)

    def _pending_for(self, proposer_id: str, target_book_id: str) -> Optional[TradeRecord]:
        for trade in self._store._trades.values():
            if (trade.proposer == proposer_id and trade.target_book == target_book_id
                    and trade.status == TradeStatus.PENDING):
                return trade
        return None

    async def find_pending(self, proposer_id: str, target_book_id: str) -> Optional[TradeRecord]:
        await _io()
        return self._pending_for(proposer_id, target_book_id)

    async def find_pending_referencing_books(self, book_ids: Iterable[str],
                                             exclude_trade_id: Optional[str] = None) -> List[TradeRecord]:
        await _io()
        wanted = set(book_ids)
        return [
            t for t in self._store._trades.values()
            if t.status == TradeStatus.PENDING
            and t.id != exclude_trade_id
            and wanted.intersection(t.book_ids)
        ]

    async def insert(self, proposer_id: str, recipient_id: str, target_book_id: str,
                     offered_book_ids: List[str]) -> TradeRecord:
        await _io()
        if self._pending_for(proposer_id, target_book_id) is not None:
            raise DuplicateRecordError("a pending trade for this proposer and target already exists")
        now = utc_now()
        trade = TradeRecord(
            id=_new_id(),
            proposer=proposer_id,
            recipient=recipient_id,
            target_book=target_book_id,
            offered_books=list(offered_book_ids),
            status=TradeStatus.PENDING,
            created_at=now,
            updated_at=now,
        )
        self._write(self._store._trades, trade.id, trade)
        return trade

    async def update_status(self, trade_id: str, status: TradeStatus,
                            expected_status: Optional[TradeStatus] = None) -> bool:
        await _io()
        trade = self._store._trades.get(trade_id)
        if trade is None:
            return False
        if expected_status is not None and trade.status != expected_status:
            return False
        updated = trade.model_copy(update={"status": TradeStatus(status), "updated_at": utc_now()})
        self._write(self._store._trades, trade_id, updated)
        return True


class MemoryStore(Store):
    def __init__(self):
        self._users: Dict[str, UserRecord] = {}
        self._books: Dict[str, BookRecord] = {}
        self._trades: Dict[str, TradeRecord] = {}
        self._book_locks: Dict[str, asyncio.Lock] = {}
        self.users = MemoryUserDirectory(self)
        self.books = MemoryBookCatalog(self)
        self.trades = MemoryTradeLedger(self)

    def _lock_for(self, book_id: str) -> asyncio.Lock:
        lock = self._book_locks.get(book_id)
        if lock is None:
            lock = self._book_locks[book_id] = asyncio.Lock()
        return lock

    @asynccontextmanager
    async def transaction(self, book_ids: Iterable[str]):
        async with AsyncExitStack() as stack:
            for book_id in sorted(set(book_ids)):
                await stack.enter_async_context(self._lock_for(book_id))
            journal = _Journal()
            try:
                yield UnitOfWork(MemoryBookCatalog(self, journal), MemoryTradeLedger(self, journal))
            except BaseException:
                logger.debug("Rolling back in-memory transaction")
                journal.rollback()
                raise
