from __future__ import annotations
from typing import Optional, Dict, Any

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from readify.db import as_utc, utcnow
from readify.models import BorrowingRecord, Review, User
from readify.results import ok, err

async def add_review(
    session: AsyncSession, *, user_id: int, book_id: int, rating: Optional[int], review_text: Optional[str]
) -> Dict[str, Any]:
    """Create or replace the user's review; only readers who borrowed the book may review it."""
    if not rating or rating < 1 or rating > 5:
        return err("Rating must be between 1 and 5.", code="INVALID_RATING")
    borrowed = await session.execute(
        select(BorrowingRecord.id).where(BorrowingRecord.user_id == user_id, BorrowingRecord.book_id == book_id).limit(1)
    )
    if not borrowed.first():
        await session.rollback()
        return err("You can only review books you have borrowed.", code="NOT_BORROWED")
    r = await session.execute(select(Review).where(Review.user_id == user_id, Review.book_id == book_id))
    review = r.scalar_one_or_none()
    if review:
        review.rating = rating
        review.review_text = review_text
        review.review_date = utcnow()
    else:
        review = Review(user_id=user_id, book_id=book_id, rating=rating, review_text=review_text, review_date=utcnow())
        session.add(review)
    await session.commit()
    await session.refresh(review)
    return ok("Review added successfully.", review_id=review.id, rating=review.rating)

async def list_reviews(session: AsyncSession, *, book_id: int) -> Dict[str, Any]:
    rows = await session.execute(
        select(Review, User.username, User.full_name)
        .join(User, User.id == Review.user_id)
        .where(Review.book_id == book_id)
        .order_by(Review.review_date.desc(), Review.id.desc())
    )
    items = [{
        "review_id": rev.id,
        "user_id": rev.user_id,
        "book_id": rev.book_id,
        "rating": rev.rating,
        "review_text": rev.review_text,
        "review_date": as_utc(rev.review_date),
        "username": username,
        "full_name": full_name,
    } for rev, username, full_name in rows]
    return ok("Reviews listed.", items=items)
