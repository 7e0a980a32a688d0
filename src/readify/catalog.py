from __future__ import annotations
from typing import Optional, Dict, Any, List

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func, update, delete

from readify.models import Book, Review
from readify.ledger import count_active_loans
from readify.results import ok, err

BOOK_FIELDS = (
    "title", "author", "isbn", "genre", "publication_year", "publisher",
    "total_copies", "description", "image_url",
)

def book_to_dict(b: Book) -> Dict[str, Any]:
    return {
        "book_id": b.id,
        "title": b.title,
        "author": b.author,
        "isbn": b.isbn,
        "genre": b.genre,
        "publication_year": b.publication_year,
        "publisher": b.publisher,
        "total_copies": b.total_copies,
        "available_copies": b.available_copies,
        "description": b.description,
        "image_url": b.image_url,
    }

async def lock_book(session: AsyncSession, book_id: int) -> Optional[Book]:
    """Load a book row and hold it exclusively until the transaction ends."""
    r = await session.execute(
        select(Book)
        .where(Book.id == book_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return r.scalar_one_or_none()

async def adjust_available(session: AsyncSession, book_id: int, delta: int) -> bool:
    """Shift ``available_copies`` by ``delta`` unless that leaves [0, total_copies].

    Returns False (and changes nothing) when the bound would be crossed.
    """
    new_value = Book.available_copies + delta
    r = await session.execute(
        update(Book)
        .where(Book.id == book_id, new_value >= 0, new_value <= Book.total_copies)
        .values(available_copies=new_value)
        .execution_options(synchronize_session=False)
    )
    return r.rowcount == 1

def _clean_isbn(isbn: Optional[str]) -> Optional[str]:
    # blank means "no ISBN"; only real values take part in the unique index
    return (isbn or "").strip() or None

async def _isbn_taken(session: AsyncSession, isbn: Optional[str], exclude_id: Optional[int] = None) -> bool:
    if not isbn:
        return False
    q = select(Book.id).where(Book.isbn == isbn)
    if exclude_id is not None:
        q = q.where(Book.id != exclude_id)
    return (await session.execute(q)).first() is not None

async def list_books(session: AsyncSession) -> Dict[str, Any]:
    books: List[Book] = (await session.execute(select(Book).order_by(Book.title.asc()))).scalars().all()
    return ok("Books listed.", items=[book_to_dict(b) for b in books])

async def get_book(session: AsyncSession, *, book_id: int) -> Dict[str, Any]:
    book = await session.get(Book, book_id)
    if not book:
        return err("Book not found.", code="BOOK_NOT_FOUND")
    row = (await session.execute(
        select(func.avg(Review.rating).label("avg_rating"), func.count(Review.id).label("review_count"))
        .where(Review.book_id == book_id)
    )).one()
    return ok(
        "Book found.",
        **book_to_dict(book),
        avg_rating=float(row.avg_rating or 0),
        review_count=int(row.review_count),
    )

async def add_book(session: AsyncSession, **fields) -> Dict[str, Any]:
    if not (fields.get("title") and fields.get("author") and fields.get("genre")):
        return err("Title, author and genre are required.", code="MISSING_FIELDS")
    total = fields.get("total_copies")
    total = 1 if total is None else total
    if total < 0:
        return err("Total copies cannot be negative.", code="INVALID_COPIES")
    isbn = _clean_isbn(fields.get("isbn"))
    if await _isbn_taken(session, isbn):
        return err("ISBN already exists.", code="ISBN_EXISTS")
    data = {k: v for k, v in fields.items() if k in BOOK_FIELDS}
    data["isbn"] = isbn
    data["total_copies"] = total
    b = Book(**data, available_copies=total)
    session.add(b)
    await session.commit()
    await session.refresh(b)
    return ok("Book added successfully.", **book_to_dict(b))

async def update_book(session: AsyncSession, *, book_id: int, **fields) -> Dict[str, Any]:
    """Edit catalog fields; a new ``total_copies`` re-derives availability from the ledger."""
    book = await lock_book(session, book_id)
    if not book:
        await session.rollback()
        return err("Book not found.", code="BOOK_NOT_FOUND")
    if "isbn" in fields:
        isbn = _clean_isbn(fields.pop("isbn"))
        if await _isbn_taken(session, isbn, exclude_id=book_id):
            await session.rollback()
            return err("ISBN already exists.", code="ISBN_EXISTS")
        book.isbn = isbn
    if fields.get("total_copies") is not None:
        total = fields["total_copies"]
        active = await count_active_loans(session, book_id)
        if total < active:
            await session.rollback()
            return err(
                "Total copies cannot be lower than the copies currently on loan.",
                code="TOTAL_BELOW_ACTIVE_LOANS", active_loans=active,
            )
        book.total_copies = total
        book.available_copies = total - active
    for k, v in fields.items():
        if k in BOOK_FIELDS and k != "total_copies" and v is not None:
            setattr(book, k, v)
    await session.commit()
    await session.refresh(book)
    return ok("Book updated successfully.", **book_to_dict(book))

async def delete_book(session: AsyncSession, *, book_id: int) -> Dict[str, Any]:
    # borrowing records, reservations and reviews go with it (ON DELETE CASCADE)
    r = await session.execute(delete(Book).where(Book.id == book_id))
    if r.rowcount == 0:
        await session.rollback()
        return err("Book not found.", code="BOOK_NOT_FOUND")
    await session.commit()
    return ok("Book deleted successfully.", book_id=book_id)
