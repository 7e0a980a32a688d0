"""Borrow and return: the only writes that touch both the ledger and the catalog.

Each operation is one unit of work opened on the injected store (an
``async_sessionmaker``): the book row (or the active ledger record, for a
return) is locked first, the business checks run under that lock, and the
ledger write plus the ``available_copies`` adjustment commit together or not
at all.  Business failures raise a :class:`~readify.errors.CirculationError`
subclass before anything is written.
"""
from __future__ import annotations
import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Optional

from sqlalchemy import update
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from readify.catalog import lock_book, adjust_available
from readify.config import settings
from readify.db import as_utc, utcnow
from readify.errors import BookNotFound, BookUnavailable, DuplicateLoan, NoActiveLoan, StoreBusy, CirculationError
from readify.ledger import find_active_loan, open_loan, close_loan
from readify.models import Reservation, ReservationStatus

logger = logging.getLogger(__name__)

LOAN_PERIOD = timedelta(days=settings.LOAN_PERIOD_DAYS)
FINE_RATE_PER_DAY = Decimal(settings.FINE_RATE_PER_DAY)
ONE_DAY = timedelta(days=1)

# lock_not_available, deadlock_detected, serialization_failure
_BUSY_SQLSTATES = {"55P03", "40P01", "40001"}

@dataclass(frozen=True)
class LoanReceipt:
    record_id: int
    book_id: int
    borrowed_at: datetime
    due_date: datetime

@dataclass(frozen=True)
class ReturnReceipt:
    record_id: int
    book_id: int
    returned_at: datetime
    days_overdue: int
    fine: Decimal

def days_overdue(due_date: datetime, returned_at: datetime) -> int:
    """Whole days late, any started day counts as a full one."""
    late = as_utc(returned_at) - as_utc(due_date)
    if late <= timedelta(0):
        return 0
    days, rest = divmod(late, ONE_DAY)
    return days + (1 if rest else 0)

def compute_fine(days: int, rate: Optional[Decimal] = None) -> Decimal:
    rate = FINE_RATE_PER_DAY if rate is None else Decimal(rate)
    return (rate * max(0, days)).quantize(Decimal("0.01"))

def _is_busy(exc: DBAPIError) -> bool:
    orig = exc.orig
    code = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if code in _BUSY_SQLSTATES:
        return True
    return "database is locked" in str(orig).lower()

async def _run(store: async_sessionmaker[AsyncSession], work, **kwargs):
    try:
        async with store() as session:
            async with session.begin():
                return await work(session, **kwargs)
    except CirculationError as exc:
        logger.debug("%s rejected (%s): %s", work.__name__, exc.code, exc.message)
        raise
    except DBAPIError as exc:
        if isinstance(exc, IntegrityError) or not _is_busy(exc):
            raise
        logger.warning("%s hit a lock timeout: %s", work.__name__, exc.orig)
        raise StoreBusy("The library store is busy, please retry.") from exc

def _collect(task: asyncio.Task) -> None:
    # the caller may be gone (cancelled); read the outcome so asyncio does not report it as lost
    if not task.cancelled() and task.exception() is not None:
        logger.debug("shielded %s finished with %r", task.get_name(), task.exception())

async def _shielded(coro):
    task = asyncio.ensure_future(coro)
    task.add_done_callback(_collect)
    return await asyncio.shield(task)

async def _borrow(session: AsyncSession, *, user_id: int, book_id: int, now: datetime) -> LoanReceipt:
    book = await lock_book(session, book_id)
    if book is None:
        raise BookNotFound("Book not found.", book_id=book_id)
    if book.available_copies <= 0:
        raise BookUnavailable("Book is not available.", book_id=book_id)
    if await find_active_loan(session, user_id, book_id) is not None:
        raise DuplicateLoan("You have already borrowed this book.", book_id=book_id)

    due = now + LOAN_PERIOD
    try:
        record = await open_loan(session, user_id=user_id, book_id=book_id, borrowed_at=now, due_at=due)
    except IntegrityError as exc:
        if "unique" not in str(exc.orig).lower():
            raise
        raise DuplicateLoan("You have already borrowed this book.", book_id=book_id) from exc
    if not await adjust_available(session, book_id, -1):
        raise BookUnavailable("Book is not available.", book_id=book_id)

    await session.execute(
        update(Reservation)
        .where(
            Reservation.user_id == user_id,
            Reservation.book_id == book_id,
            Reservation.status == ReservationStatus.PENDING,
        )
        .values(status=ReservationStatus.FULFILLED)
        .execution_options(synchronize_session=False)
    )
    return LoanReceipt(record_id=record.id, book_id=book_id, borrowed_at=now, due_date=due)

async def _return(session: AsyncSession, *, user_id: int, book_id: int, now: datetime) -> ReturnReceipt:
    record = await find_active_loan(session, user_id, book_id, lock=True)
    if record is None:
        raise NoActiveLoan("No active borrowing record found.", book_id=book_id)

    days = days_overdue(record.due_date, now)
    fine = compute_fine(days)
    close_loan(record, returned_at=now, fine=fine)
    await session.flush()
    if not await adjust_available(session, book_id, +1):
        logger.warning("book %s already at total_copies on return of record %s", book_id, record.id)
    return ReturnReceipt(record_id=record.id, book_id=book_id, returned_at=now, days_overdue=days, fine=fine)

async def borrow(
    store: async_sessionmaker[AsyncSession], *, user_id: int, book_id: int, now: Optional[datetime] = None
) -> LoanReceipt:
    """Lend one copy of ``book_id`` to ``user_id`` for the loan period.

    Raises BookNotFound, BookUnavailable, DuplicateLoan or StoreBusy.  The
    transaction runs shielded: a cancelled caller does not cut it in half.
    """
    now = as_utc(now) if now else utcnow()
    receipt = await _shielded(_run(store, _borrow, user_id=user_id, book_id=book_id, now=now))
    logger.info("user %s borrowed book %s (record %s, due %s)", user_id, book_id, receipt.record_id, receipt.due_date.isoformat())
    return receipt

async def return_book(
    store: async_sessionmaker[AsyncSession], *, user_id: int, book_id: int, now: Optional[datetime] = None
) -> ReturnReceipt:
    """Close the caller's active loan of ``book_id`` and freeze its fine.

    Raises NoActiveLoan (also for a second return of the same loan) or StoreBusy.
    """
    now = as_utc(now) if now else utcnow()
    receipt = await _shielded(_run(store, _return, user_id=user_id, book_id=book_id, now=now))
    logger.info(
        "user %s returned book %s (record %s, %s days overdue, fine %s)",
        user_id, book_id, receipt.record_id, receipt.days_overdue, receipt.fine,
    )
    return receipt
