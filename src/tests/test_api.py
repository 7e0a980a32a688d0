import httpx
import pytest
import pytest_asyncio
from readify.db import init_db
from readify.main import create_app

pytestmark = pytest.mark.asyncio

@pytest_asyncio.fixture
async def client(db_url):
    app = create_app(db_url)
    await init_db(app.state.engine)
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
    await app.state.engine.dispose()

async def _signup(client, username, user_type="student"):
    r = await client.post("/api/auth/register", json={
        "username": username, "email": f"{username}@readify.com", "password": "pa55word",
        "full_name": username.title(), "user_type": user_type,
    })
    assert r.status_code == 201, r.text
    r = await client.post("/api/auth/login", json={"username": username, "password": "pa55word"})
    assert r.status_code == 200, r.text
    return {"Authorization": f"Bearer {r.json()['token']}"}

async def test_auth_flow(client):
    headers = await _signup(client, "student1")
    r = await client.get("/api/auth/profile", headers=headers)
    assert r.status_code == 200
    assert r.json()["username"] == "student1"
    assert (await client.get("/api/auth/profile")).status_code == 401
    assert (await client.get("/api/auth/profile", headers={"Authorization": "Bearer nope"})).status_code == 401
    r = await client.post("/api/auth/login", json={"username": "student1", "password": "wrong"})
    assert r.status_code == 401
    r = await client.post("/api/auth/register", json={
        "username": "student1", "email": "x@readify.com", "password": "p",
        "full_name": "X", "user_type": "student",
    })
    assert r.status_code == 409

async def test_librarian_only_routes(client):
    student = await _signup(client, "student1")
    book = {"title": "1984", "author": "George Orwell", "genre": "Fiction", "total_copies": 2}
    assert (await client.post("/api/books", json=book, headers=student)).status_code == 403
    assert (await client.get("/api/admin/users", headers=student)).status_code == 403
    assert (await client.post("/api/books", json=book)).status_code == 401

async def test_borrow_return_over_http(client):
    librarian = await _signup(client, "librarian1", "librarian")
    alice = await _signup(client, "alice")
    bob = await _signup(client, "bob")

    r = await client.post("/api/books", headers=librarian, json={
        "title": "Clean Code", "author": "Robert C. Martin", "genre": "Technology",
        "isbn": "978-0-13-235088-4", "total_copies": 1,
    })
    assert r.status_code == 201, r.text
    book_id = r.json()["book_id"]

    r = await client.post("/api/borrow", json={"book_id": book_id}, headers=alice)
    assert r.status_code == 200, r.text
    assert "due_date" in r.json()

    r = await client.post("/api/borrow", json={"book_id": book_id}, headers=alice)
    assert r.status_code == 409
    r = await client.post("/api/borrow", json={"book_id": book_id}, headers=bob)
    assert r.status_code == 409
    r = await client.post("/api/borrow", json={"book_id": 999}, headers=bob)
    assert r.status_code == 404

    r = await client.get(f"/api/books/{book_id}")
    assert r.json()["available_copies"] == 0

    r = await client.post("/api/reservations", json={"book_id": book_id}, headers=bob)
    assert r.status_code == 201, r.text
    assert len((await client.get("/api/reservations", headers=bob)).json()) == 1

    current = (await client.get("/api/borrowing/current", headers=alice)).json()
    assert [c["title"] for c in current] == ["Clean Code"]
    assert current[0]["status"] == "BORROWED"

    r = await client.post("/api/return", json={"book_id": book_id}, headers=alice)
    assert r.status_code == 200, r.text
    assert r.json()["days_overdue"] == 0
    assert float(r.json()["fine"]) == 0
    r = await client.post("/api/return", json={"book_id": book_id}, headers=alice)
    assert r.status_code == 404

    history = (await client.get("/api/borrowing/history", headers=alice)).json()
    assert history[0]["status"] == "RETURNED"

    r = await client.post("/api/reviews", json={"book_id": book_id, "rating": 5, "review_text": "Must read"}, headers=alice)
    assert r.status_code == 201, r.text
    r = await client.post("/api/reviews", json={"book_id": book_id, "rating": 4}, headers=bob)
    assert r.status_code == 403
    reviews = (await client.get(f"/api/reviews/{book_id}")).json()
    assert [rv["username"] for rv in reviews] == ["alice"]

    records = (await client.get("/api/admin/borrowing", params={"status": "returned"}, headers=librarian)).json()
    assert [rec["username"] for rec in records] == ["alice"]
    assert (await client.get("/api/admin/borrowing", params={"status": "lost"}, headers=librarian)).status_code == 400

async def test_book_admin_over_http(client):
    librarian = await _signup(client, "librarian1", "librarian")
    student = await _signup(client, "student1")
    r = await client.post("/api/books", headers=librarian, json={"title": "Dune", "author": "Frank Herbert", "genre": "Fiction", "total_copies": 2})
    book_id = r.json()["book_id"]
    assert (await client.post("/api/borrow", json={"book_id": book_id}, headers=student)).status_code == 200

    r = await client.put(f"/api/books/{book_id}", json={"total_copies": 0}, headers=librarian)
    assert r.status_code == 409
    r = await client.put(f"/api/books/{book_id}", json={"total_copies": 4}, headers=librarian)
    assert r.status_code == 200
    assert r.json()["available_copies"] == 3

    users = (await client.get("/api/admin/users", headers=librarian)).json()
    student_id = next(u["user_id"] for u in users if u["username"] == "student1")
    r = await client.patch(f"/api/admin/users/{student_id}/status", json={"status": "suspended"}, headers=librarian)
    assert r.status_code == 200
    assert (await client.get("/api/auth/profile", headers=student)).status_code == 401

    assert (await client.delete(f"/api/books/{book_id}", headers=librarian)).status_code == 200
    assert (await client.get(f"/api/books/{book_id}")).status_code == 404
    assert (await client.get("/api/books")).json() == []

async def test_delete_user_over_http(client):
    librarian = await _signup(client, "librarian1", "librarian")
    student = await _signup(client, "student1")
    r = await client.post("/api/books", headers=librarian, json={"title": "Emma", "author": "Jane Austen", "genre": "Fiction", "total_copies": 1})
    book_id = r.json()["book_id"]
    assert (await client.post("/api/borrow", json={"book_id": book_id}, headers=student)).status_code == 200
    assert (await client.get(f"/api/books/{book_id}")).json()["available_copies"] == 0

    users = (await client.get("/api/admin/users", headers=librarian)).json()
    student_id = next(u["user_id"] for u in users if u["username"] == "student1")
    assert (await client.delete(f"/api/admin/users/{student_id}", headers=student)).status_code == 403
    r = await client.delete(f"/api/admin/users/{student_id}", headers=librarian)
    assert r.status_code == 200
    assert r.json()["released_books"] == [book_id]
    assert (await client.get(f"/api/books/{book_id}")).json()["available_copies"] == 1
    assert (await client.delete(f"/api/admin/users/{student_id}", headers=librarian)).status_code == 404
