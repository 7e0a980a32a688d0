from __future__ import annotations
from typing import Optional, Dict, Any
from datetime import datetime, timedelta

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from readify.config import settings
from readify.db import as_utc, utcnow
from readify.models import Book, Reservation, ReservationStatus
from readify.results import ok, err

def reservation_to_dict(res: Reservation, **extra) -> Dict[str, Any]:
    return {
        "reservation_id": res.id,
        "book_id": res.book_id,
        "status": res.status.value,
        "reservation_date": as_utc(res.reservation_date),
        "expiry_date": as_utc(res.expiry_date),
        **extra,
    }

async def create_reservation(session: AsyncSession, *, user_id: int, book_id: int, now: Optional[datetime] = None) -> Dict[str, Any]:
    """Queue the user for a book that has no copy on the shelf."""
    now = now or utcnow()
    book = await session.get(Book, book_id)
    if not book:
        return err("Book not found.", code="BOOK_NOT_FOUND")
    if book.available_copies > 0:
        return err("Book is available. Please borrow directly.", code="BOOK_AVAILABLE")
    r = await session.execute(
        select(Reservation.id).where(
            Reservation.user_id == user_id,
            Reservation.book_id == book_id,
            Reservation.status == ReservationStatus.PENDING,
        )
    )
    if r.first():
        await session.rollback()
        return err("You already have a pending reservation for this book.", code="DUPLICATE_RESERVATION")
    res = Reservation(
        user_id=user_id, book_id=book_id, status=ReservationStatus.PENDING,
        reservation_date=now, expiry_date=now + timedelta(days=settings.RESERVATION_HOLD_DAYS),
    )
    session.add(res)
    await session.commit()
    await session.refresh(res)
    return ok("Reservation created successfully.", **reservation_to_dict(res))

async def list_reservations(session: AsyncSession, *, user_id: int) -> Dict[str, Any]:
    rows = await session.execute(
        select(Reservation, Book.title, Book.author, Book.genre)
        .join(Book, Book.id == Reservation.book_id)
        .where(Reservation.user_id == user_id, Reservation.status == ReservationStatus.PENDING)
        .order_by(Reservation.reservation_date.desc(), Reservation.id.desc())
    )
    items = [
        reservation_to_dict(res, title=title, author=author, genre=genre)
        for res, title, author, genre in rows
    ]
    return ok("Reservations listed.", items=items)

async def cancel_reservation(session: AsyncSession, *, user_id: int, reservation_id: int) -> Dict[str, Any]:
    r = await session.execute(
        select(Reservation).where(
            Reservation.id == reservation_id,
            Reservation.user_id == user_id,
            Reservation.status == ReservationStatus.PENDING,
        )
    )
    res = r.scalar_one_or_none()
    if not res:
        await session.rollback()
        return err("No pending reservation found.", code="RESERVATION_NOT_FOUND")
    res.status = ReservationStatus.CANCELLED
    await session.commit()
    return ok("Reservation cancelled successfully.", reservation_id=res.id)
