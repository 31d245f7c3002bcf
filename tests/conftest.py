import os

# Must be set before config is imported anywhere
os.environ["STORAGE_BACKEND"] = "memory"
os.environ.setdefault("BCRYPT_ROUNDS", "4")

from types import SimpleNamespace

import pytest
import pytest_asyncio
from fastapi.testclient import TestClient

from main import create_app
from models.user_models import CallerContext
from stores import MemoryStore
from trade_engine import TradeEngine


async def add_user(store, username):
    user = await store.users.insert(username, "not-a-real-hash", fullName=username.title())
    return CallerContext(user_id=user.id, username=user.username)


async def add_book(store, owner, title, author="Someone"):
    return await store.books.insert(title, author, owner.user_id)


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def engine(store):
    return TradeEngine(store)


@pytest_asyncio.fixture
async def world(store):
    """alice owns x, bob owns y and z, carol owns w."""
    alice = await add_user(store, "alice")
    bob = await add_user(store, "bob")
    carol = await add_user(store, "carol")
    return SimpleNamespace(
        alice=alice,
        bob=bob,
        carol=carol,
        x=await add_book(store, alice, "Dune", "Frank Herbert"),
        y=await add_book(store, bob, "Emma", "Jane Austen"),
        z=await add_book(store, bob, "Ulysses", "James Joyce"),
        w=await add_book(store, carol, "Beloved", "Toni Morrison"),
    )


@pytest.fixture
def client(store):
    app = create_app(store=store)
    with TestClient(app) as test_client:
        yield test_client
