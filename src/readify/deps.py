from typing import AsyncGenerator
from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from readify.accounts import get_user_by_token
from readify.models import User, UserType

bearer = HTTPBearer(auto_error=False)

def get_store(request: Request) -> async_sessionmaker[AsyncSession]:
    return request.app.state.sessionmaker

async def get_session(store: async_sessionmaker[AsyncSession] = Depends(get_store)) -> AsyncGenerator[AsyncSession, None]:
    async with store() as session:
        yield session

async def get_current_user(
    creds: HTTPAuthorizationCredentials | None = Depends(bearer),
    store: async_sessionmaker[AsyncSession] = Depends(get_store),
) -> User:
    if creds is None or not creds.credentials:
        raise HTTPException(status_code=401, detail="Access token required")
    # own short session: the lookup must not keep a transaction open across the request
    async with store() as session:
        user = await get_user_by_token(session, creds.credentials)
    if user is None:
        raise HTTPException(status_code=401, detail="Invalid or expired token")
    return user

async def require_librarian(user: User = Depends(get_current_user)) -> User:
    if user.user_type != UserType.LIBRARIAN:
        raise HTTPException(status_code=403, detail="Access denied. Librarian privileges required.")
    return user
