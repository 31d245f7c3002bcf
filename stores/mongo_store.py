"""MongoDB store on Motor.

Acceptance runs in a multi-document transaction, so the server must be a
replica set (a single-node ``rs0`` is enough for development).
"""
import logging
from contextlib import asynccontextmanager
from typing import Dict, Iterable, List, Optional

import motor.motor_asyncio
from bson import ObjectId
from pymongo import ASCENDING, DESCENDING
from pymongo.errors import DuplicateKeyError, PyMongoError

from models.book_model import BookRecord
from models.trade_models import TradeRecord, TradeStatus
from models.user_models import UserRecord
from stores.base import (
    BookCatalog,
    DuplicateRecordError,
    Store,
    TradeLedger,
    TransactionConflict,
    UnitOfWork,
    UserDirectory,
)
from utils import utc_now

logger = logging.getLogger(__name__)

NEWEST_FIRST = [("created_at", DESCENDING), ("_id", DESCENDING)]


def _oid(value) -> Optional[ObjectId]:
    if isinstance(value, ObjectId):
        return value
    if isinstance(value, str) and ObjectId.is_valid(value):
        return ObjectId(value)
    return None


def _oids(values: Iterable[str]) -> List[ObjectId]:
    return [oid for oid in (_oid(v) for v in values) if oid is not None]


def _user_from_doc(doc: dict) -> UserRecord:
    return UserRecord(
        id=str(doc["_id"]),
        username=doc["username"],
        password=doc["password"],
        fullName=doc.get("fullName", ""),
        city=doc.get("city", ""),
        state=doc.get("state", ""),
        created_at=doc["created_at"],
        updated_at=doc.get("updated_at", doc["created_at"]),
    )


def _book_from_doc(doc: dict) -> BookRecord:
    return BookRecord(
        id=str(doc["_id"]),
        title=doc["title"],
        author=doc["author"],
        owner=str(doc["owner"]),
        imageUrl=doc.get("imageUrl", ""),
        created_at=doc["created_at"],
        updated_at=doc.get("updated_at", doc["created_at"]),
    )


def _trade_from_doc(doc: dict) -> TradeRecord:
    return TradeRecord(
        id=str(doc["_id"]),
        proposer=str(doc["proposer"]),
        recipient=str(doc["recipient"]),
        target_book=str(doc["targetBook"]),
        offered_books=[str(b) for b in doc.get("offeredBooks", [])],
        status=doc["status"],
        created_at=doc["created_at"],
        updated_at=doc.get("updated_at", doc["created_at"]),
    )


class _MongoCollection:
    def __init__(self, db, session=None):
        self._db = db
        self._session = session


class MongoUserDirectory(_MongoCollection, UserDirectory):
    async def find_by_id(self, user_id: str) -> Optional[UserRecord]:
        oid = _oid(user_id)
        if oid is None:
            return None
        doc = await self._db.users.find_one({"_id": oid}, session=self._session)
        return _user_from_doc(doc) if doc else None

    async def find_by_ids(self, user_ids: Iterable[str]) -> List[UserRecord]:
        cursor = self._db.users.find({"_id": {"$in": _oids(user_ids)}}, session=self._session)
        return [_user_from_doc(doc) async for doc in cursor]

    async def find_by_username(self, username: str) -> Optional[UserRecord]:
        doc = await self._db.users.find_one({"username": username}, session=self._session)
        return _user_from_doc(doc) if doc else None

    async def insert(self, username: str, password_hash: str, fullName: str = "",
                     city: str = "", state: str = "") -> UserRecord:
        now = utc_now()
        user_dict = {
            "username": username,
            "password": password_hash,
            "fullName": fullName,
            "city": city,
            "state": state,
            "created_at": now,
            "updated_at": now,
        }
        try:
            result = await self._db.users.insert_one(user_dict, session=self._session)
        except DuplicateKeyError as exc:
            raise DuplicateRecordError(f"username {username!r} already exists") from exc
        user_dict["_id"] = result.inserted_id
        return _user_from_doc(user_dict)

    async def update_profile(self, user_id: str, fields: Dict[str, str]) -> Optional[UserRecord]:
        oid = _oid(user_id)
        if oid is None:
            return None
        result = await self._db.users.update_one(
            {"_id": oid},
            {"$set": {**fields, "updated_at": utc_now()}},
            session=self._session,
        )
        if result.matched_count == 0:
            return None
        return await self.find_by_id(user_id)


class MongoBookCatalog(_MongoCollection, BookCatalog):
    async def find_by_id(self, book_id: str) -> Optional[BookRecord]:
        oid = _oid(book_id)
        if oid is None:
            return None
        doc = await self._db.books.find_one({"_id": oid}, session=self._session)
        return _book_from_doc(doc) if doc else None

    async def find_by_ids(self, book_ids: Iterable[str]) -> List[BookRecord]:
        cursor = self._db.books.find({"_id": {"$in": _oids(book_ids)}}, session=self._session)
        return [_book_from_doc(doc) async for doc in cursor]

    async def find_by_owner(self, owner_id: str) -> List[BookRecord]:
        oid = _oid(owner_id)
        if oid is None:
            return []
        cursor = self._db.books.find({"owner": oid}, session=self._session).sort("created_at", DESCENDING)
        return [_book_from_doc(doc) async for doc in cursor]

    async def list_all(self) -> List[BookRecord]:
        cursor = self._db.books.find({}, session=self._session).sort("created_at", DESCENDING)
        return [_book_from_doc(doc) async for doc in cursor]

    async def insert(self, title: str, author: str, owner_id: str, imageUrl: str = "") -> BookRecord:
        now = utc_now()
        book_dict = {
            "title": title,
            "author": author,
            "owner": _oid(owner_id),
            "imageUrl": imageUrl or "",
            "created_at": now,
            "updated_at": now,
        }
        result = await self._db.books.insert_one(book_dict, session=self._session)
        book_dict["_id"] = result.inserted_id
        return _book_from_doc(book_dict)

    async def update_owner(self, book_id: str, new_owner_id: str,
                           expected_owner_id: Optional[str] = None) -> bool:
        oid = _oid(book_id)
        if oid is None:
            return False
        query = {"_id": oid}
        if expected_owner_id is not None:
            query["owner"] = _oid(expected_owner_id)
        result = await self._db.books.update_one(
            query,
            {"$set": {"owner": _oid(new_owner_id), "updated_at": utc_now()}},
            session=self._session,
        )
        return result.matched_count == 1

    async def update_owner_batch(self, book_ids: Iterable[str], new_owner_id: str,
                                 expected_owner_id: Optional[str] = None) -> int:
        query = {"_id": {"$in": _oids(book_ids)}}
        if expected_owner_id is not None:
            query["owner"] = _oid(expected_owner_id)
        result = await self._db.books.update_many(
            query,
            {"$set": {"owner": _oid(new_owner_id), "updated_at": utc_now()}},
            session=self._session,
        )
        return result.matched_count


class MongoTradeLedger(_MongoCollection, TradeLedger):
    async def find_by_id(self, trade_id: str) -> Optional[TradeRecord]:
        oid = _oid(trade_id)
        if oid is None:
            return None
        doc = await self._db.trades.find_one({"_id": oid}, session=self._session)
        return _trade_from_doc(doc) if doc else None

    async def _find(self, query: dict) -> List[TradeRecord]:
        cursor = self._db.trades.find(query, session=self._session).sort(NEWEST_FIRST)
        return [_trade_from_doc(doc) async for doc in cursor]

    async def find_by_recipient(self, user_id: str) -> List[TradeRecord]:
        oid = _oid(user_id)
        return await self._find({"recipient": oid}) if oid else []

    async def find_by_proposer(self, user_id: str) -> List[TradeRecord]:
        oid = _oid(user_id)
        return await self._find({"proposer": oid}) if oid else []

    async def find_pending(self, proposer_id: str, target_book_id: str) -> Optional[TradeRecord]:
        doc = await self._db.trades.find_one(
            {
                "proposer": _oid(proposer_id),
                "targetBook": _oid(target_book_id),
                "status": TradeStatus.PENDING.value,
            },
            session=self._session,
        )
        return _trade_from_doc(doc) if doc else None

    async def find_pending_referencing_books(self, book_ids: Iterable[str],
                                             exclude_trade_id: Optional[str] = None) -> List[TradeRecord]:
        oids = _oids(book_ids)
        query = {
            "status": TradeStatus.PENDING.value,
            "$or": [
                {"targetBook": {"$in": oids}},
                {"offeredBooks": {"$in": oids}},
            ],
        }
        exclude = _oid(exclude_trade_id)
        if exclude is not None:
            query["_id"] = {"$ne": exclude}
        return await self._find(query)

    async def insert(self, proposer_id: str, recipient_id: str, target_book_id: str,
                     offered_book_ids: List[str]) -> TradeRecord:
        now = utc_now()
        trade_dict = {
            "proposer": _oid(proposer_id),
            "recipient": _oid(recipient_id),
            "targetBook": _oid(target_book_id),
            "offeredBooks": _oids(offered_book_ids),
            "status": TradeStatus.PENDING.value,
            "created_at": now,
            "updated_at": now,
        }
        try:
            result = await self._db.trades.insert_one(trade_dict, session=self._session)
        except DuplicateKeyError as exc:
            raise DuplicateRecordError("a pending trade for this proposer and target already exists") from exc
        trade_dict["_id"] = result.inserted_id
        return _trade_from_doc(trade_dict)

    async def update_status(self, trade_id: str, status: TradeStatus,
                            expected_status: Optional[TradeStatus] = None) -> bool:
        oid = _oid(trade_id)
        if oid is None:
            return False
        query = {"_id": oid}
        if expected_status is not None:
            query["status"] = TradeStatus(expected_status).value
        result = await self._db.trades.update_one(
            query,
            {"$set": {"status": TradeStatus(status).value, "updated_at": utc_now()}},
            session=self._session,
        )
        return result.matched_count == 1


class MongoStore(Store):
    def __init__(self, client: motor.motor_asyncio.AsyncIOMotorClient, db_name: str):
        self._client = client
        self._db = client[db_name]
        self.users = MongoUserDirectory(self._db)
        self.books = MongoBookCatalog(self._db)
        self.trades = MongoTradeLedger(self._db)

    @asynccontextmanager
    async def transaction(self, book_ids: Iterable[str]):
        # Locking is left to the server: concurrent writes to the same book
        # documents make one of the transactions abort.
        try:
            async with await self._client.start_session() as session:
                async with session.start_transaction():
                    yield UnitOfWork(
                        MongoBookCatalog(self._db, session),
                        MongoTradeLedger(self._db, session),
                    )
        except PyMongoError as exc:
            if exc.has_error_label("TransientTransactionError"):
                logger.warning("Transaction on books %s aborted by a concurrent write", list(book_ids))
                raise TransactionConflict(str(exc)) from exc
            raise

    async def ensure_indexes(self) -> None:
        await self._db.users.create_index("username", unique=True)
        await self._db.books.create_index("owner")
        await self._db.trades.create_index([("recipient", ASCENDING), ("created_at", DESCENDING)])
        await self._db.trades.create_index([("proposer", ASCENDING), ("created_at", DESCENDING)])
        await self._db.trades.create_index("targetBook")
        await self._db.trades.create_index("offeredBooks")
        # At most one pending proposal per proposer and target book
        await self._db.trades.create_index(
            [("proposer", ASCENDING), ("targetBook", ASCENDING)],
            unique=True,
            partialFilterExpression={"status": TradeStatus.PENDING.value},
            name="one_pending_trade_per_target",
        )
        logger.info("MongoDB indexes ensured")

    async def close(self) -> None:
        self._client.close()
