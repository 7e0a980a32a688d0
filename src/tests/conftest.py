import pytest
import pytest_asyncio
from readify.db import build_engine, build_sessionmaker, init_db
from readify import accounts, catalog

@pytest.fixture
def db_url(tmp_path):
    # file database: concurrent sessions need separate connections
    return f"sqlite+aiosqlite:///{tmp_path / 'readify-test.db'}"

@pytest_asyncio.fixture
async def async_engine(db_url):
    engine = build_engine(db_url)
    await init_db(engine)
    try:
        yield engine
    finally:
        await engine.dispose()

@pytest_asyncio.fixture
async def store(async_engine):
    return build_sessionmaker(async_engine)

@pytest_asyncio.fixture
async def session(store):
    async with store() as s:
        try:
            yield s
        finally:
            await s.rollback()

@pytest_asyncio.fixture
async def make_user(store):
    counter = {"n": 0}

    async def _make(username=None, *, user_type="student", password="secret"):
        counter["n"] += 1
        username = username or f"reader{counter['n']}"
        async with store() as s:
            r = await accounts.register_user(
                s, username=username, email=f"{username}@readify.test", password=password,
                full_name=username.title(), user_type=user_type,
            )
        assert r["ok"] is True, r
        return r["data"]["user_id"]
    return _make

@pytest_asyncio.fixture
async def make_book(store):
    async def _make(title="Clean Code", *, total_copies=1, isbn=None, author="Robert C. Martin", genre="Technology"):
        async with store() as s:
            r = await catalog.add_book(s, title=title, author=author, genre=genre, isbn=isbn, total_copies=total_copies)
        assert r["ok"] is True, r
        return r["data"]["book_id"]
    return _make
