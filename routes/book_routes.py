import logging
from typing import List
from fastapi import APIRouter, Depends, HTTPException
from models.book_model import BookDetails, serialize_book
from models.post_book_model import PostBookModel
from models.user_models import CallerContext
from stores import Store
from dependencies import get_current_user, get_store

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/books", tags=["books"])


async def _with_owners(store: Store, books) -> List[BookDetails]:
    owners = {u.id: u for u in await store.users.find_by_ids({b.owner for b in books})}
    return [serialize_book(book, owners.get(book.owner)) for book in books]


@router.get("", response_model=List[BookDetails])
async def get_all_books(store: Store = Depends(get_store)):
    try:
        return await _with_owners(store, await store.books.list_all())
    except Exception:
        logger.exception("Error fetching books")
        raise HTTPException(status_code=500, detail="Server Error fetching books.")


@router.post("", response_model=BookDetails, status_code=201)
async def add_new_book(
    book: PostBookModel,
    caller: CallerContext = Depends(get_current_user),
    store: Store = Depends(get_store),
):
    title, author = book.title.strip(), book.author.strip()
    if not title or not author:
        raise HTTPException(status_code=400, detail="Please include a title and author")
    try:
        # The creator is always the first owner
        created = await store.books.insert(title, author, caller.user_id, (book.imageUrl or "").strip())
        logger.info("Book %s listed by %s", created.id, caller.user_id)
        return (await _with_owners(store, [created]))[0]
    except Exception:
        logger.exception("Error adding book for %s", caller.user_id)
        raise HTTPException(status_code=500, detail="Server Error adding book.")


@router.get("/user/{user_id}", response_model=List[BookDetails])
async def get_user_books(user_id: str, store: Store = Depends(get_store)):
    try:
        return await _with_owners(store, await store.books.find_by_owner(user_id))
    except Exception:
        logger.exception("Error fetching books for user %s", user_id)
        raise HTTPException(status_code=500, detail="Server Error fetching user books.")


@router.get("/{book_id}", response_model=BookDetails)
async def get_book_details(book_id: str, store: Store = Depends(get_store)):
    try:
        book = await store.books.find_by_id(book_id)
        if not book:
            raise HTTPException(status_code=404, detail="Book not found")
        return (await _with_owners(store, [book]))[0]
    except HTTPException:
        raise
    except Exception:
        logger.exception("Error fetching book %s", book_id)
        raise HTTPException(status_code=500, detail="Server Error fetching book detail.")
