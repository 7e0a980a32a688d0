"""Borrowing ledger: the authoritative record of who holds which book.

The stored status only ever moves ``BORROWED -> RETURNED``.  "Overdue" is a
read-time predicate (``status = BORROWED AND due_date < now``) exposed through
:func:`overdue_clause` and :func:`display_status`; nothing here writes it.
"""
from __future__ import annotations
from typing import Optional, Dict, Any, List
from datetime import datetime
from decimal import Decimal

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func, and_

from readify.db import as_utc
from readify.models import Book, BorrowingRecord, LoanStatus, User

def overdue_clause(now: datetime):
    return and_(BorrowingRecord.status == LoanStatus.BORROWED, BorrowingRecord.due_date < now)

def is_overdue(record: BorrowingRecord, now: datetime) -> bool:
    return record.status == LoanStatus.BORROWED and as_utc(record.due_date) < now

def display_status(record: BorrowingRecord, now: datetime) -> LoanStatus:
    return LoanStatus.OVERDUE if is_overdue(record, now) else record.status

async def find_active_loan(
    session: AsyncSession, user_id: int, book_id: int, *, lock: bool = False
) -> Optional[BorrowingRecord]:
    q = select(BorrowingRecord).where(
        BorrowingRecord.user_id == user_id,
        BorrowingRecord.book_id == book_id,
        BorrowingRecord.status == LoanStatus.BORROWED,
    )
    if lock:
        q = q.with_for_update().execution_options(populate_existing=True)
    return (await session.execute(q)).scalar_one_or_none()

async def count_active_loans(session: AsyncSession, book_id: int) -> int:
    r = await session.execute(
        select(func.count(BorrowingRecord.id)).where(
            BorrowingRecord.book_id == book_id,
            BorrowingRecord.status == LoanStatus.BORROWED,
        )
    )
    return int(r.scalar_one())

async def open_loan(
    session: AsyncSession, *, user_id: int, book_id: int, borrowed_at: datetime, due_at: datetime
) -> BorrowingRecord:
    record = BorrowingRecord(
        user_id=user_id, book_id=book_id,
        borrow_date=borrowed_at, due_date=due_at,
        status=LoanStatus.BORROWED, fine_amount=Decimal("0.00"),
    )
    session.add(record)
    await session.flush()
    return record

def close_loan(record: BorrowingRecord, *, returned_at: datetime, fine: Decimal) -> None:
    if record.status != LoanStatus.BORROWED:
        raise ValueError(f"borrowing record {record.id} is already closed")
    record.status = LoanStatus.RETURNED
    record.return_date = returned_at
    record.fine_amount = fine

def record_to_dict(record: BorrowingRecord, now: datetime, **extra) -> Dict[str, Any]:
    return {
        "record_id": record.id,
        "user_id": record.user_id,
        "book_id": record.book_id,
        "borrow_date": as_utc(record.borrow_date),
        "due_date": as_utc(record.due_date),
        "return_date": as_utc(record.return_date),
        "status": display_status(record, now).value,
        "fine_amount": record.fine_amount,
        **extra,
    }

async def user_history(session: AsyncSession, user_id: int, now: datetime) -> List[Dict[str, Any]]:
    rows = await session.execute(
        select(BorrowingRecord, Book.title, Book.author, Book.genre, Book.image_url)
        .join(Book, Book.id == BorrowingRecord.book_id)
        .where(BorrowingRecord.user_id == user_id)
        .order_by(BorrowingRecord.borrow_date.desc(), BorrowingRecord.id.desc())
    )
    return [
        record_to_dict(rec, now, title=title, author=author, genre=genre, image_url=image_url)
        for rec, title, author, genre, image_url in rows
    ]

async def user_current_loans(session: AsyncSession, user_id: int, now: datetime) -> List[Dict[str, Any]]:
    rows = await session.execute(
        select(BorrowingRecord, Book.title, Book.author, Book.genre, Book.image_url)
        .join(Book, Book.id == BorrowingRecord.book_id)
        .where(BorrowingRecord.user_id == user_id, BorrowingRecord.status == LoanStatus.BORROWED)
        .order_by(BorrowingRecord.due_date.asc())
    )
    return [
        record_to_dict(rec, now, title=title, author=author, genre=genre, image_url=image_url)
        for rec, title, author, genre, image_url in rows
    ]

async def all_records(
    session: AsyncSession, now: datetime, status: Optional[LoanStatus] = None
) -> List[Dict[str, Any]]:
    q = (
        select(BorrowingRecord, Book.title, Book.author, User.username, User.full_name, User.email)
        .join(Book, Book.id == BorrowingRecord.book_id)
        .join(User, User.id == BorrowingRecord.user_id)
    )
    if status == LoanStatus.OVERDUE:
        q = q.where(overdue_clause(now))
    elif status == LoanStatus.BORROWED:
        # past-due loans are listed under OVERDUE only
        q = q.where(BorrowingRecord.status == LoanStatus.BORROWED, BorrowingRecord.due_date >= now)
    elif status is not None:
        q = q.where(BorrowingRecord.status == status)
    q = q.order_by(BorrowingRecord.borrow_date.desc(), BorrowingRecord.id.desc())
    rows = await session.execute(q)
    return [
        record_to_dict(
            rec, now, title=title, author=author,
            username=username, full_name=full_name, email=email,
        )
        for rec, title, author, username, full_name, email in rows
    ]
