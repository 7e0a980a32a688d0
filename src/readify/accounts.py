from __future__ import annotations
import logging
from typing import Optional, Dict, Any, List
from datetime import datetime, timedelta

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, delete, or_
from werkzeug.security import generate_password_hash, check_password_hash

from readify.config import settings
from readify.db import as_utc, utcnow
from readify.catalog import lock_book, adjust_available
from readify.models import User, UserType, UserStatus, AuthToken, BorrowingRecord, LoanStatus
from readify.results import ok, err

logger = logging.getLogger(__name__)

def user_to_dict(u: User) -> Dict[str, Any]:
    return {
        "user_id": u.id,
        "username": u.username,
        "email": u.email,
        "full_name": u.full_name,
        "user_type": u.user_type.value,
        "phone": u.phone,
        "address": u.address,
        "status": u.status.value,
        "created_at": as_utc(u.created_at),
        "last_login": as_utc(u.last_login),
    }

async def register_user(
    session: AsyncSession, *, username: str, email: str, password: str, full_name: str,
    user_type: str, phone: Optional[str] = None, address: Optional[str] = None,
) -> Dict[str, Any]:
    if not (username and email and password and full_name and user_type):
        return err("All required fields must be provided.", code="MISSING_FIELDS")
    try:
        kind = UserType(user_type.strip().upper())
    except ValueError:
        return err("Unknown user type.", code="INVALID_USER_TYPE")
    username = username.strip()
    email_norm = email.strip().lower()
    r = await session.execute(select(User.id).where(or_(User.username == username, User.email == email_norm)))
    if r.first():
        await session.rollback()
        return err("Username or email already exists.", code="USER_EXISTS")
    u = User(
        username=username, email=email_norm, full_name=full_name.strip(),
        password_hash=generate_password_hash(password), user_type=kind,
        phone=phone or None, address=address or None,
    )
    session.add(u)
    await session.commit()
    await session.refresh(u)
    logger.info("registered %s user %s (%s)", kind.value.lower(), u.id, u.username)
    return ok("User registered successfully.", user_id=u.id)

async def login(session: AsyncSession, *, username: str, password: str, now: Optional[datetime] = None) -> Dict[str, Any]:
    """Check credentials and issue a bearer token; ``username`` may also be the email."""
    now = now or utcnow()
    ident = (username or "").strip()
    r = await session.execute(select(User).where(or_(User.username == ident, User.email == ident.lower())))
    user = r.scalars().first()
    if not user or not check_password_hash(user.password_hash, password or ""):
        await session.rollback()
        return err("Invalid credentials.", code="INVALID_CREDENTIALS")
    if user.status != UserStatus.ACTIVE:
        await session.rollback()
        return err("Account is inactive or suspended.", code="ACCOUNT_INACTIVE")
    user.last_login = now
    token = AuthToken(user_id=user.id, expires_at=now + timedelta(hours=settings.TOKEN_TTL_HOURS))
    session.add(token)
    await session.commit()
    await session.refresh(user)
    return ok("Login successful.", token=token.token, user=user_to_dict(user))

async def get_user_by_token(session: AsyncSession, token: str, now: Optional[datetime] = None) -> Optional[User]:
    if not token:
        return None
    now = now or utcnow()
    r = await session.execute(
        select(User, AuthToken.expires_at).join(AuthToken, AuthToken.user_id == User.id).where(AuthToken.token == token)
    )
    row = r.one_or_none()
    if row is None:
        return None
    user, expires_at = row
    if as_utc(expires_at) <= now or user.status != UserStatus.ACTIVE:
        return None
    return user

async def get_profile(session: AsyncSession, *, user_id: int) -> Dict[str, Any]:
    user = await session.get(User, user_id)
    if not user:
        return err("User not found.", code="USER_NOT_FOUND")
    return ok("Profile found.", **user_to_dict(user))

async def list_users(session: AsyncSession) -> Dict[str, Any]:
    users: List[User] = (await session.execute(select(User).order_by(User.created_at.desc(), User.id.desc()))).scalars().all()
    return ok("Users listed.", items=[user_to_dict(u) for u in users])

async def set_user_status(session: AsyncSession, *, user_id: int, status: str) -> Dict[str, Any]:
    try:
        new_status = UserStatus((status or "").strip().upper())
    except ValueError:
        return err("Invalid status.", code="INVALID_STATUS")
    user = await session.get(User, user_id)
    if not user:
        return err("User not found.", code="USER_NOT_FOUND")
    user.status = new_status
    await session.commit()
    logger.info("user %s status set to %s", user_id, new_status.value)
    return ok("User status updated successfully.", user_id=user_id, status=new_status.value)

async def delete_user(session: AsyncSession, *, user_id: int) -> Dict[str, Any]:
    """Remove a user and everything they own (ON DELETE CASCADE).

    Copies still out on loan go back on the shelf first, under the book lock,
    so ``available_copies`` keeps matching the ledger once the records are gone.
    """
    user = await session.get(User, user_id)
    if not user:
        return err("User not found.", code="USER_NOT_FOUND")
    r = await session.execute(
        select(BorrowingRecord.book_id)
        .where(BorrowingRecord.user_id == user_id, BorrowingRecord.status == LoanStatus.BORROWED)
        .order_by(BorrowingRecord.book_id)
    )
    book_ids = list(r.scalars().all())
    for book_id in book_ids:
        await lock_book(session, book_id)
        if not await adjust_available(session, book_id, +1):
            logger.warning("book %s already at total_copies while deleting user %s", book_id, user_id)
    await session.execute(delete(User).where(User.id == user_id))
    await session.commit()
    logger.info("deleted user %s, %d open loan(s) put back on the shelf", user_id, len(book_ids))
    return ok("User deleted successfully.", user_id=user_id, released_books=book_ids)
