"""Trade proposals, responses and the ownership swap.

A trade moves pending -> accepted | rejected | cancelled and never leaves a
terminal status. Ownership only changes when the recipient accepts, and only
if every book involved still sits with the owner recorded at proposal time.
"""
import logging
from typing import Dict, Iterable, List, Optional

from errors import (
    ConflictError,
    ForbiddenError,
    InternalError,
    InvalidOperationError,
    InvalidStateError,
    NotFoundError,
    TradeCancelledError,
    TradeError,
)
from models.trade_models import (
    RESPONSE_DECISIONS,
    TradeBook,
    TradeDetails,
    TradeParty,
    TradeRecord,
    TradeStatus,
)
from models.user_models import CallerContext
from stores.base import (
    DuplicateRecordError,
    OwnershipConflict,
    Store,
    TransactionConflict,
    UnitOfWork,
)

logger = logging.getLogger(__name__)

MISSING_BOOKS = "missing-books"
OWNERSHIP_CHANGED = "ownership-changed"

CANCEL_MESSAGES = {
    MISSING_BOOKS: "One or more books involved in the trade are missing. Trade cancelled.",
    OWNERSHIP_CHANGED: "Ownership of books involved in the trade has changed. Trade cancelled.",
}


def _not_pending(status: Optional[TradeStatus]) -> InvalidStateError:
    label = TradeStatus(status).value if status is not None else "gone"
    return InvalidStateError(f"Trade is already {label}. Cannot respond.", "not-pending")


class TradeEngine:
    def __init__(self, store: Store):
        self.store = store

    # ------------------------------------------------------------------
    # Proposals
    # ------------------------------------------------------------------

    async def propose_trade(self, caller: CallerContext, target_book_id: Optional[str],
                            offered_book_ids: Optional[List[str]]) -> TradeDetails:
        """Validate and store a new pending trade.

        Checks run in a fixed order and the first failure wins: target
        exists, target not owned by the caller, every offered book exists,
        every offered book owned by the caller, no pending duplicate.
        """
        self._check_proposal_shape(target_book_id, offered_book_ids)
        try:
            trade = await self._create_trade(caller, target_book_id, offered_book_ids)
            logger.info(
                "Trade %s proposed by %s for book %s offering %s",
                trade.id, caller.user_id, trade.target_book, trade.offered_books,
            )
            return await self.populate_one(trade)
        except TradeError:
            raise
        except Exception as e:
            logger.exception("Unexpected error proposing trade for %s", caller.user_id)
            raise InternalError("Server Error proposing trade.", "internal") from e

    @staticmethod
    def _check_proposal_shape(target_book_id, offered_book_ids) -> None:
        if (
            not isinstance(target_book_id, str)
            or not target_book_id
            or not isinstance(offered_book_ids, list)
            or not offered_book_ids
            or not all(isinstance(i, str) and i for i in offered_book_ids)
        ):
            raise InvalidOperationError(
                "Please provide a target book ID and at least one offered book ID.",
                "malformed-request",
            )
        if len(set(offered_book_ids)) != len(offered_book_ids):
            raise InvalidOperationError("Each offered book may only be listed once.", "malformed-request")

    async def _create_trade(self, caller: CallerContext, target_book_id: str,
                            offered_book_ids: List[str]) -> TradeRecord:
        books = self.store.books

        target = await books.find_by_id(target_book_id)
        if target is None:
            raise NotFoundError("Target book not found.", "target-not-found")
        if target.owner == caller.user_id:
            raise InvalidOperationError("You cannot propose a trade for your own book.", "self-trade")

        offered = await books.find_by_ids(offered_book_ids)
        if len(offered) != len(offered_book_ids):
            raise NotFoundError("One or more offered books not found.", "offered-not-found")
        if any(book.owner != caller.user_id for book in offered):
            raise InvalidOperationError("You can only offer books you own.", "not-owner")

        if await self.store.trades.find_pending(caller.user_id, target.id) is not None:
            raise ConflictError("A pending trade proposal for this book already exists.", "duplicate-pending")

        try:
            # recipient is a snapshot of the owner right now; acceptance re-checks it
            return await self.store.trades.insert(
                caller.user_id, target.owner, target.id, list(offered_book_ids)
            )
        except DuplicateRecordError as e:
            raise ConflictError(
                "A pending trade proposal for this book already exists.", "duplicate-pending"
            ) from e

    # ------------------------------------------------------------------
    # Responses
    # ------------------------------------------------------------------

    async def respond_to_trade(self, caller: CallerContext, trade_id: str, decision) -> TradeDetails:
        """Accept or reject a pending trade addressed to the caller.

        A failed acceptance re-check cancels the trade and raises
        TradeCancelledError. Any other unexpected failure leaves the trade
        and every book untouched and raises InternalError.
        """
        status = self._parse_decision(decision)
        try:
            trade = await self.store.trades.find_by_id(trade_id)
            if trade is None:
                raise NotFoundError("Trade proposal not found.", "trade-not-found")
            if trade.recipient != caller.user_id:
                raise ForbiddenError("You are not authorized to respond to this trade.", "not-recipient")
            if trade.status != TradeStatus.PENDING:
                raise _not_pending(trade.status)

            if status == TradeStatus.REJECTED:
                updated = await self._reject(trade)
            else:
                updated = await self._accept(trade)
            logger.info("Trade %s %s by %s", trade.id, updated.status.value, caller.user_id)
            return await self.populate_one(updated)
        except TradeError:
            raise
        except Exception as e:
            logger.exception("Unexpected error responding to trade %s", trade_id)
            raise InternalError("Server Error updating trade status.", "internal") from e

    @staticmethod
    def _parse_decision(decision) -> TradeStatus:
        try:
            status = TradeStatus(decision)
        except (TypeError, ValueError):
            status = None
        if status not in RESPONSE_DECISIONS:
            raise InvalidOperationError(
                'Invalid status provided. Must be "accepted" or "rejected".', "invalid-status"
            )
        return status

    async def _reject(self, trade: TradeRecord) -> TradeRecord:
        trades = self.store.trades
        if not await trades.update_status(trade.id, TradeStatus.REJECTED, expected_status=TradeStatus.PENDING):
            current = await trades.find_by_id(trade.id)
            raise _not_pending(current.status if current else None)
        return await trades.find_by_id(trade.id)

    async def _accept(self, trade: TradeRecord) -> TradeRecord:
        try:
            async with self.store.transaction(trade.book_ids) as uow:
                cancel_reason = await self._transfer(uow, trade)
        except OwnershipConflict:
            # The transfer was rolled back; record the cancellation on its own
            logger.warning("Trade %s lost an ownership race during transfer", trade.id)
            await self.store.trades.update_status(
                trade.id, TradeStatus.CANCELLED, expected_status=TradeStatus.PENDING
            )
            cancel_reason = OWNERSHIP_CHANGED
        except TransactionConflict as e:
            raise ConflictError(
                "The trade could not be completed because of a concurrent update. Please try again.",
                "concurrent-update",
                status_code=409,
            ) from e

        if cancel_reason is not None:
            raise TradeCancelledError(CANCEL_MESSAGES[cancel_reason], cancel_reason)
        return await self.store.trades.find_by_id(trade.id)

    async def _transfer(self, uow: UnitOfWork, trade: TradeRecord) -> Optional[str]:
        """Swap the books of ``trade`` inside a transaction.

        Returns a cancel reason when the re-check fails; the cancellation is
        committed with the transaction. Returns None once the trade is
        accepted.
        """
        current = await uow.trades.find_by_id(trade.id)
        if current is None or current.status != TradeStatus.PENDING:
            raise _not_pending(current.status if current else None)

        book_ids = current.book_ids
        found = await uow.books.find_by_ids(book_ids)
        if len(found) != len(book_ids):
            logger.warning("Trade %s cancelled: books missing", current.id)
            await uow.trades.update_status(current.id, TradeStatus.CANCELLED, expected_status=TradeStatus.PENDING)
            return MISSING_BOOKS

        owners = {book.id: book.owner for book in found}
        target_ok = owners.get(current.target_book) == current.recipient
        offered_ok = all(owners.get(b) == current.proposer for b in current.offered_books)
        if not (target_ok and offered_ok):
            logger.warning("Trade %s cancelled: ownership changed since proposal", current.id)
            await uow.trades.update_status(current.id, TradeStatus.CANCELLED, expected_status=TradeStatus.PENDING)
            return OWNERSHIP_CHANGED

        moved_target = await uow.books.update_owner(
            current.target_book, current.proposer, expected_owner_id=current.recipient
        )
        moved_offered = await uow.books.update_owner_batch(
            current.offered_books, current.recipient, expected_owner_id=current.proposer
        )
        if not moved_target or moved_offered != len(current.offered_books):
            raise OwnershipConflict(current.id)

        stale = await uow.trades.find_pending_referencing_books(book_ids, exclude_trade_id=current.id)
        for other in stale:
            if await uow.trades.update_status(other.id, TradeStatus.CANCELLED, expected_status=TradeStatus.PENDING):
                logger.info("Trade %s cancelled: its books moved with trade %s", other.id, current.id)

        if not await uow.trades.update_status(current.id, TradeStatus.ACCEPTED, expected_status=TradeStatus.PENDING):
            # Rejected concurrently; raising undoes the transfer
            latest = await uow.trades.find_by_id(current.id)
            raise _not_pending(latest.status if latest else None)
        return None

    # ------------------------------------------------------------------
    # Listings
    # ------------------------------------------------------------------

    async def incoming_trades(self, caller: CallerContext) -> List[TradeDetails]:
        try:
            return await self.populate(await self.store.trades.find_by_recipient(caller.user_id))
        except Exception as e:
            logger.exception("Error fetching incoming trades for %s", caller.user_id)
            raise InternalError("Server Error fetching incoming trades.", "internal") from e

    async def outgoing_trades(self, caller: CallerContext) -> List[TradeDetails]:
        try:
            return await self.populate(await self.store.trades.find_by_proposer(caller.user_id))
        except Exception as e:
            logger.exception("Error fetching outgoing trades for %s", caller.user_id)
            raise InternalError("Server Error fetching outgoing trades.", "internal") from e

    # ------------------------------------------------------------------
    # Population
    # ------------------------------------------------------------------

    async def populate_one(self, trade: TradeRecord) -> TradeDetails:
        return (await self.populate([trade]))[0]

    async def populate(self, trades: Iterable[TradeRecord]) -> List[TradeDetails]:
        """Expand user and book references with their display fields."""
        trades = list(trades)
        if not trades:
            return []

        user_ids = {uid for t in trades for uid in (t.proposer, t.recipient)}
        book_ids = {bid for t in trades for bid in t.book_ids}
        users = {u.id: u for u in await self.store.users.find_by_ids(user_ids)}
        books = {b.id: b for b in await self.store.books.find_by_ids(book_ids)}

        return [
            TradeDetails(
                id=t.id,
                proposer=self._party(t.proposer, users),
                recipient=self._party(t.recipient, users),
                targetBook=self._book(t.target_book, books),
                offeredBooks=[self._book(b, books) for b in t.offered_books],
                status=t.status,
                createdAt=t.created_at,
                updatedAt=t.updated_at,
            )
            for t in trades
        ]

    @staticmethod
    def _party(user_id: str, users: Dict) -> TradeParty:
        user = users.get(user_id)
        if user is None:
            return TradeParty(id=user_id)
        return TradeParty(id=user.id, username=user.username, fullName=user.fullName)

    @staticmethod
    def _book(book_id: str, books: Dict) -> TradeBook:
        book = books.get(book_id)
        if book is None:
            return TradeBook(id=book_id)
        return TradeBook(id=book.id, title=book.title, author=book.author)
