from stores.memory_store import MemoryBookCatalog


MISSING_ID = "64b7f0c2a1b2c3d4e5f60718"


def register(client, username, password="secret123", **extra):
    response = client.post("/auth/register", json={"username": username, "password": password, **extra})
    assert response.status_code == 201, response.text
    body = response.json()
    return {"Authorization": f"Bearer {body['token']}"}, body["id"]


def add_book(client, headers, title, author="Someone"):
    response = client.post("/books", headers=headers, json={"title": title, "author": author})
    assert response.status_code == 201, response.text
    return response.json()["id"]


def owner_of(client, book_id):
    return client.get(f"/books/{book_id}").json()["owner"]["id"]


# ---------------------------------------------------------------- auth & users

def test_register_then_login(client):
    register(client, "alice", fullName="Alice A", city="Leeds")

    response = client.post("/auth/login", json={"username": "alice", "password": "secret123"})

    assert response.status_code == 200
    body = response.json()
    assert body["username"] == "alice"
    assert body["fullName"] == "Alice A"
    assert body["token"]
    assert "password" not in body


def test_duplicate_username_is_rejected(client):
    register(client, "alice")
    response = client.post("/auth/register", json={"username": "alice", "password": "another1"})
    assert response.status_code == 400
    assert response.json()["detail"] == "User already exists"


def test_short_username_fails_validation(client):
    response = client.post("/auth/register", json={"username": "al", "password": "secret123"})
    assert response.status_code == 422


def test_wrong_password_is_unauthorized(client):
    register(client, "alice")
    response = client.post("/auth/login", json={"username": "alice", "password": "wrong-password"})
    assert response.status_code == 401


def test_profile_requires_token(client):
    assert client.get("/users/me").status_code == 401
    response = client.get("/users/me", headers={"Authorization": "Bearer garbage"})
    assert response.status_code == 401
    assert response.json()["detail"] == "Not authorized, token failed"


def test_profile_read_and_update(client):
    headers, user_id = register(client, "alice")

    response = client.put("/users/me", headers=headers, json={"city": " York ", "state": "NY"})
    assert response.status_code == 200

    profile = client.get("/users/me", headers=headers).json()
    assert profile == {"id": user_id, "username": "alice", "fullName": "", "city": "York", "state": "NY"}


# ---------------------------------------------------------------- books

def test_book_listing_and_lookup(client):
    alice, alice_id = register(client, "alice", fullName="Alice A")
    bob, bob_id = register(client, "bob")
    dune = add_book(client, alice, "Dune", "Frank Herbert")
    add_book(client, bob, "Emma", "Jane Austen")

    books = client.get("/books").json()
    assert {b["title"] for b in books} == {"Dune", "Emma"}

    mine = client.get(f"/books/user/{alice_id}").json()
    assert [b["id"] for b in mine] == [dune]
    assert mine[0]["owner"]["fullName"] == "Alice A"

    assert client.get(f"/books/{MISSING_ID}").status_code == 404


def test_adding_a_book_requires_token_and_fields(client):
    assert client.post("/books", json={"title": "Dune", "author": "Herbert"}).status_code == 401
    headers, _ = register(client, "alice")
    response = client.post("/books", headers=headers, json={"title": "  ", "author": "Herbert"})
    assert response.status_code == 400


def test_book_lookup_failure_is_a_server_error(client, monkeypatch):
    headers, _ = register(client, "alice")
    dune = add_book(client, headers, "Dune")

    async def broken(self, book_id):
        raise RuntimeError("connection reset")

    monkeypatch.setattr(MemoryBookCatalog, "find_by_id", broken)

    response = client.get(f"/books/{dune}")
    assert response.status_code == 500
    assert response.json()["detail"] == "Server Error fetching book detail."


# ---------------------------------------------------------------- trades

def test_trade_round_trip(client):
    alice, alice_id = register(client, "alice")
    bob, bob_id = register(client, "bob")
    x = add_book(client, alice, "Dune", "Frank Herbert")
    y = add_book(client, bob, "Emma", "Jane Austen")

    response = client.post("/trades", headers=bob, json={"targetBookId": x, "offeredBookIds": [y]})
    assert response.status_code == 201
    trade = response.json()
    assert trade["status"] == "pending"
    assert trade["recipient"] == {"id": alice_id, "username": "alice", "fullName": ""}
    assert trade["targetBook"] == {"id": x, "title": "Dune", "author": "Frank Herbert"}
    assert trade["offeredBooks"] == [{"id": y, "title": "Emma", "author": "Jane Austen"}]

    assert [t["id"] for t in client.get("/trades/incoming", headers=alice).json()] == [trade["id"]]
    assert [t["id"] for t in client.get("/trades/outgoing", headers=bob).json()] == [trade["id"]]
    assert client.get("/trades/incoming", headers=bob).json() == []

    response = client.put(f"/trades/{trade['id']}", headers=alice, json={"status": "accepted"})
    assert response.status_code == 200
    assert response.json()["status"] == "accepted"
    assert owner_of(client, x) == bob_id
    assert owner_of(client, y) == alice_id


def test_trade_routes_require_token(client):
    assert client.post("/trades", json={"targetBookId": MISSING_ID, "offeredBookIds": [MISSING_ID]}).status_code == 401
    assert client.get("/trades/incoming").status_code == 401
    assert client.put(f"/trades/{MISSING_ID}", json={"status": "accepted"}).status_code == 401


def test_proposal_failures_map_to_status_codes(client):
    alice, _ = register(client, "alice")
    bob, _ = register(client, "bob")
    x = add_book(client, alice, "Dune")
    y = add_book(client, bob, "Emma")

    def propose(target, offered):
        return client.post("/trades", headers=bob, json={"targetBookId": target, "offeredBookIds": offered})

    cases = [
        (propose(x, []), 400, "malformed-request"),
        (propose(MISSING_ID, [y]), 404, "target-not-found"),
        (propose(y, [y]), 400, "self-trade"),
        (propose(x, [MISSING_ID]), 404, "offered-not-found"),
        (propose(x, [x]), 400, "not-owner"),
    ]
    for response, status_code, reason in cases:
        assert response.status_code == status_code
        assert response.json()["reason"] == reason

    assert propose(x, [y]).status_code == 201
    duplicate = propose(x, [y])
    assert duplicate.status_code == 400
    assert duplicate.json()["reason"] == "duplicate-pending"


def test_response_failures_map_to_status_codes(client):
    alice, _ = register(client, "alice")
    bob, _ = register(client, "bob")
    x = add_book(client, alice, "Dune")
    y = add_book(client, bob, "Emma")
    trade_id = client.post("/trades", headers=bob, json={"targetBookId": x, "offeredBookIds": [y]}).json()["id"]

    response = client.put(f"/trades/{trade_id}", headers=bob, json={"status": "accepted"})
    assert response.status_code == 403

    response = client.put(f"/trades/{trade_id}", headers=alice, json={"status": "cancelled"})
    assert response.status_code == 400
    assert response.json()["reason"] == "invalid-status"

    assert client.put(f"/trades/{MISSING_ID}", headers=alice, json={"status": "accepted"}).status_code == 404

    assert client.put(f"/trades/{trade_id}", headers=alice, json={"status": "rejected"}).status_code == 200
    response = client.put(f"/trades/{trade_id}", headers=alice, json={"status": "accepted"})
    assert response.status_code == 400
    assert response.json()["message"] == "Trade is already rejected. Cannot respond."
    assert owner_of(client, x) != owner_of(client, y)


def test_book_traded_elsewhere_cancels_stale_trade(client):
    alice, alice_id = register(client, "alice")
    bob, bob_id = register(client, "bob")
    carol, carol_id = register(client, "carol")
    x = add_book(client, alice, "Dune")
    y = add_book(client, bob, "Emma")
    w = add_book(client, carol, "Beloved")

    stale = client.post("/trades", headers=bob, json={"targetBookId": x, "offeredBookIds": [y]}).json()
    winner = client.post("/trades", headers=carol, json={"targetBookId": x, "offeredBookIds": [w]}).json()
    assert client.put(f"/trades/{winner['id']}", headers=alice, json={"status": "accepted"}).status_code == 200

    response = client.put(f"/trades/{stale['id']}", headers=alice, json={"status": "accepted"})
    assert response.status_code == 400

    outgoing = client.get("/trades/outgoing", headers=bob).json()
    assert outgoing[0]["status"] == "cancelled"
    assert owner_of(client, x) == carol_id
    assert owner_of(client, y) == bob_id


def test_malformed_trade_bodies_are_bad_requests(client):
    alice, _ = register(client, "alice")
    bob, _ = register(client, "bob")
    x = add_book(client, alice, "Dune")
    y = add_book(client, bob, "Emma")

    proposals = [
        {"targetBookId": x, "offeredBookIds": y},
        {"targetBookId": 5, "offeredBookIds": [y]},
        {"targetBookId": x, "offeredBookIds": [y, 7]},
    ]
    for body in proposals:
        response = client.post("/trades", headers=bob, json=body)
        assert response.status_code == 400, body
        assert response.json()["reason"] == "malformed-request"

    response = client.post("/trades", headers=bob)
    assert response.status_code == 400
    assert response.json()["reason"] == "malformed-request"

    trade_id = client.post("/trades", headers=bob, json={"targetBookId": x, "offeredBookIds": [y]}).json()["id"]

    for body in ({"status": 1}, {"status": ["accepted"]}, {}):
        response = client.put(f"/trades/{trade_id}", headers=alice, json=body)
        assert response.status_code == 400, body
        assert response.json()["reason"] == "invalid-status"

    response = client.put(f"/trades/{trade_id}", headers=alice)
    assert response.status_code == 400
    assert response.json()["reason"] == "invalid-status"

    assert client.get("/trades/incoming", headers=alice).json()[0]["status"] == "pending"


def test_accepting_after_owner_changed_is_a_conflict(client, store):
    alice, _ = register(client, "alice")
    bob, bob_id = register(client, "bob")
    _, carol_id = register(client, "carol")
    x = add_book(client, alice, "Dune")
    y = add_book(client, bob, "Emma")
    trade_id = client.post("/trades", headers=bob, json={"targetBookId": x, "offeredBookIds": [y]}).json()["id"]

    # bob's book changes hands behind the trade's back
    store._books[y] = store._books[y].model_copy(update={"owner": carol_id})

    response = client.put(f"/trades/{trade_id}", headers=alice, json={"status": "accepted"})
    assert response.status_code == 409
    body = response.json()
    assert body["reason"] == "ownership-changed"
    assert body["message"] == "Ownership of books involved in the trade has changed. Trade cancelled."

    assert client.get("/trades/outgoing", headers=bob).json()[0]["status"] == "cancelled"
    assert owner_of(client, x) != bob_id
    assert owner_of(client, y) == carol_id


def test_accepting_with_a_deleted_book_is_a_conflict(client, store):
    alice, _ = register(client, "alice")
    bob, _ = register(client, "bob")
    x = add_book(client, alice, "Dune")
    y = add_book(client, bob, "Emma")
    trade_id = client.post("/trades", headers=bob, json={"targetBookId": x, "offeredBookIds": [y]}).json()["id"]

    del store._books[y]

    response = client.put(f"/trades/{trade_id}", headers=alice, json={"status": "accepted"})
    assert response.status_code == 409
    assert response.json()["reason"] == "missing-books"
    assert client.get("/trades/incoming", headers=alice).json()[0]["status"] == "cancelled"
