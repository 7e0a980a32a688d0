from datetime import datetime, timezone
from sqlalchemy import event
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession, AsyncEngine
from sqlalchemy.orm import DeclarativeBase
from readify.config import settings

class Base(DeclarativeBase):
    pass

def _setup_sqlite(engine: AsyncEngine) -> None:
    # SQLite has no row locks: every transaction takes the write lock up front,
    # which serializes borrow/return the way SELECT ... FOR UPDATE does elsewhere.
    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

def build_engine(url: str | None = None) -> AsyncEngine:
    url = url or settings.DATABASE_URL
    parsed = make_url(url)
    backend = parsed.get_backend_name()
    kwargs = {"echo": False, "pool_pre_ping": True}
    if parsed.get_driver_name() == "asyncpg":
        lock_ms = int(settings.LOCK_TIMEOUT_SECONDS * 1000)
        kwargs["pool_recycle"] = 1800
        kwargs["connect_args"] = {"server_settings": {"lock_timeout": str(lock_ms)}}
    elif backend == "sqlite":
        kwargs["connect_args"] = {"timeout": settings.LOCK_TIMEOUT_SECONDS}
    engine = create_async_engine(url, **kwargs)
    if backend == "sqlite":
        _setup_sqlite(engine)
    return engine

def build_sessionmaker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)

async def init_db(engine: AsyncEngine):
    from readify import models
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

def utcnow() -> datetime:
    return datetime.now(timezone.utc)

def as_utc(value: datetime | None) -> datetime | None:
    # SQLite hands DateTime(timezone=True) columns back as naive UTC values.
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)
