from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from readify.deps import get_session, get_store, get_current_user, require_librarian
from readify.models import User, LoanStatus
from readify.db import utcnow
from readify.errors import CirculationError

from readify.schemas import (
    RegisterIn, RegisterOut, LoginIn, LoginOut, UserOut, UserStatusIn,
    BookIn, BookUpdate, BookOut, BookDetail,
    LoanIn, BorrowOut, ReturnOut, BorrowingRecordOut,
    ReviewIn, ReviewOut,
    ReservationIn, ReservationOut,
)

from readify import accounts, catalog, circulation, ledger, reservations, reviews

router = APIRouter(prefix="/api")

NOT_FOUND_CODES = {
    "BOOK_NOT_FOUND", "USER_NOT_FOUND", "NO_ACTIVE_LOAN", "RESERVATION_NOT_FOUND",
}
CONFLICT_CODES = {
    "USER_EXISTS", "ISBN_EXISTS", "BOOK_UNAVAILABLE", "DUPLICATE_LOAN",
    "BOOK_AVAILABLE", "DUPLICATE_RESERVATION", "TOTAL_BELOW_ACTIVE_LOANS",
}

def _raise_for(r: dict):
    code = r.get("code")
    status = (
        404 if code in NOT_FOUND_CODES
        else 409 if code in CONFLICT_CODES
        else 401 if code == "INVALID_CREDENTIALS"
        else 403 if code in {"ACCOUNT_INACTIVE", "NOT_BORROWED"}
        else 400
    )
    raise HTTPException(status_code=status, detail=r["message"])

def _raise_circulation(exc: CirculationError):
    status = (
        404 if exc.code in NOT_FOUND_CODES
        else 409 if exc.code in CONFLICT_CODES
        else 503 if exc.retryable
        else 400
    )
    headers = {"Retry-After": "1"} if exc.retryable else None
    raise HTTPException(status_code=status, detail=exc.message, headers=headers) from exc

# ---- auth ----

@router.post("/auth/register", response_model=RegisterOut, status_code=201)
async def http_register(payload: RegisterIn, session: AsyncSession = Depends(get_session)):
    r = await accounts.register_user(session, **payload.model_dump())
    if not r["ok"]:
        _raise_for(r)
    return RegisterOut(message=r["message"], user_id=r["data"]["user_id"])

@router.post("/auth/login", response_model=LoginOut)
async def http_login(payload: LoginIn, session: AsyncSession = Depends(get_session)):
    r = await accounts.login(session, username=payload.username, password=payload.password)
    if not r["ok"]:
        _raise_for(r)
    d = r["data"]
    return LoginOut(message=r["message"], token=d["token"], user=UserOut(**d["user"]))

@router.get("/auth/profile", response_model=UserOut)
async def http_profile(user: User = Depends(get_current_user), session: AsyncSession = Depends(get_session)):
    r = await accounts.get_profile(session, user_id=user.id)
    if not r["ok"]:
        _raise_for(r)
    return UserOut(**r["data"])

# ---- books ----

@router.get("/books", response_model=list[BookOut])
async def http_list_books(session: AsyncSession = Depends(get_session)):
    r = await catalog.list_books(session)
    items = (r.get("data") or {}).get("items") or []
    return [BookOut(**it) for it in items]

@router.get("/books/{book_id}", response_model=BookDetail)
async def http_get_book(book_id: int, session: AsyncSession = Depends(get_session)):
    r = await catalog.get_book(session, book_id=book_id)
    if not r["ok"]:
        _raise_for(r)
    return BookDetail(**r["data"])

@router.post("/books", response_model=BookOut, status_code=201)
async def http_add_book(payload: BookIn, _: User = Depends(require_librarian), session: AsyncSession = Depends(get_session)):
    r = await catalog.add_book(session, **payload.model_dump())
    if not r["ok"]:
        _raise_for(r)
    return BookOut(**r["data"])

@router.put("/books/{book_id}", response_model=BookOut)
async def http_update_book(book_id: int, payload: BookUpdate, _: User = Depends(require_librarian), session: AsyncSession = Depends(get_session)):
    r = await catalog.update_book(session, book_id=book_id, **payload.model_dump(exclude_unset=True))
    if not r["ok"]:
        _raise_for(r)
    return BookOut(**r["data"])

@router.delete("/books/{book_id}")
async def http_delete_book(book_id: int, _: User = Depends(require_librarian), session: AsyncSession = Depends(get_session)):
    r = await catalog.delete_book(session, book_id=book_id)
    if not r["ok"]:
        _raise_for(r)
    return {"detail": r["message"], **(r.get("data") or {})}

# ---- circulation ----

@router.post("/borrow", response_model=BorrowOut)
async def http_borrow(payload: LoanIn, user: User = Depends(get_current_user), store: async_sessionmaker[AsyncSession] = Depends(get_store)):
    try:
        receipt = await circulation.borrow(store, user_id=user.id, book_id=payload.book_id)
    except CirculationError as exc:
        _raise_circulation(exc)
    return BorrowOut(message="Book borrowed successfully.", record_id=receipt.record_id, due_date=receipt.due_date)

@router.post("/return", response_model=ReturnOut)
async def http_return(payload: LoanIn, user: User = Depends(get_current_user), store: async_sessionmaker[AsyncSession] = Depends(get_store)):
    try:
        receipt = await circulation.return_book(store, user_id=user.id, book_id=payload.book_id)
    except CirculationError as exc:
        _raise_circulation(exc)
    return ReturnOut(
        message="Book returned successfully.",
        record_id=receipt.record_id, fine=receipt.fine, days_overdue=receipt.days_overdue,
    )

@router.get("/borrowing/history", response_model=list[BorrowingRecordOut])
async def http_history(user: User = Depends(get_current_user), session: AsyncSession = Depends(get_session)):
    return await ledger.user_history(session, user.id, utcnow())

@router.get("/borrowing/current", response_model=list[BorrowingRecordOut])
async def http_current(user: User = Depends(get_current_user), session: AsyncSession = Depends(get_session)):
    return await ledger.user_current_loans(session, user.id, utcnow())

# ---- librarian ----

@router.get("/admin/borrowing", response_model=list[BorrowingRecordOut])
async def http_admin_borrowing(status: str | None = None, _: User = Depends(require_librarian), session: AsyncSession = Depends(get_session)):
    loan_status = None
    if status:
        try:
            loan_status = LoanStatus(status.strip().upper())
        except ValueError:
            raise HTTPException(status_code=400, detail="Invalid status")
    return await ledger.all_records(session, utcnow(), status=loan_status)

@router.get("/admin/users", response_model=list[UserOut])
async def http_admin_users(_: User = Depends(require_librarian), session: AsyncSession = Depends(get_session)):
    r = await accounts.list_users(session)
    return [UserOut(**it) for it in r["data"]["items"]]

@router.patch("/admin/users/{user_id}/status")
async def http_admin_user_status(user_id: int, payload: UserStatusIn, _: User = Depends(require_librarian), session: AsyncSession = Depends(get_session)):
    r = await accounts.set_user_status(session, user_id=user_id, status=payload.status)
    if not r["ok"]:
        _raise_for(r)
    return {"detail": r["message"], **(r.get("data") or {})}

@router.delete("/admin/users/{user_id}")
async def http_admin_delete_user(user_id: int, _: User = Depends(require_librarian), session: AsyncSession = Depends(get_session)):
    r = await accounts.delete_user(session, user_id=user_id)
    if not r["ok"]:
        _raise_for(r)
    return {"detail": r["message"], **(r.get("data") or {})}

# ---- reviews ----

@router.post("/reviews", status_code=201)
async def http_add_review(payload: ReviewIn, user: User = Depends(get_current_user), session: AsyncSession = Depends(get_session)):
    r = await reviews.add_review(session, user_id=user.id, book_id=payload.book_id, rating=payload.rating, review_text=payload.review_text)
    if not r["ok"]:
        _raise_for(r)
    return {"detail": r["message"], **(r.get("data") or {})}

@router.get("/reviews/{book_id}", response_model=list[ReviewOut])
async def http_list_reviews(book_id: int, session: AsyncSession = Depends(get_session)):
    r = await reviews.list_reviews(session, book_id=book_id)
    return [ReviewOut(**it) for it in r["data"]["items"]]

# ---- reservations ----

@router.post("/reservations", response_model=ReservationOut, status_code=201)
async def http_create_reservation(payload: ReservationIn, user: User = Depends(get_current_user), session: AsyncSession = Depends(get_session)):
    r = await reservations.create_reservation(session, user_id=user.id, book_id=payload.book_id)
    if not r["ok"]:
        _raise_for(r)
    return ReservationOut(**r["data"])

@router.get("/reservations", response_model=list[ReservationOut])
async def http_list_reservations(user: User = Depends(get_current_user), session: AsyncSession = Depends(get_session)):
    r = await reservations.list_reservations(session, user_id=user.id)
    return [ReservationOut(**it) for it in r["data"]["items"]]

@router.post("/reservations/{reservation_id}/cancel")
async def http_cancel_reservation(reservation_id: int, user: User = Depends(get_current_user), session: AsyncSession = Depends(get_session)):
    r = await reservations.cancel_reservation(session, user_id=user.id, reservation_id=reservation_id)
    if not r["ok"]:
        _raise_for(r)
    return {"detail": r["message"], **(r.get("data") or {})}
