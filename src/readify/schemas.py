from pydantic import BaseModel, Field, constr
from datetime import datetime
from decimal import Decimal

class RegisterIn(BaseModel):
    username: constr(min_length=1, max_length=50)
    email: constr(min_length=3, max_length=100)
    password: constr(min_length=1)
    full_name: constr(min_length=1, max_length=100)
    user_type: str
    phone: str | None = None
    address: str | None = None

class RegisterOut(BaseModel):
    message: str
    user_id: int

class LoginIn(BaseModel):
    username: str
    password: str

class UserOut(BaseModel):
    user_id: int
    username: str
    email: str
    full_name: str
    user_type: str
    phone: str | None = None
    address: str | None = None
    status: str
    created_at: datetime | None = None
    last_login: datetime | None = None

class LoginOut(BaseModel):
    message: str
    token: str
    user: UserOut

class UserStatusIn(BaseModel):
    status: str

class BookIn(BaseModel):
    title: str
    author: str
    isbn: str | None = None
    genre: str
    publication_year: int | None = None
    publisher: str | None = None
    total_copies: int = Field(default=1, ge=0)
    description: str | None = None
    image_url: str | None = None

class BookUpdate(BaseModel):
    title: str | None = None
    author: str | None = None
    isbn: str | None = None
    genre: str | None = None
    publication_year: int | None = None
    publisher: str | None = None
    total_copies: int | None = Field(default=None, ge=0)
    description: str | None = None
    image_url: str | None = None

class BookOut(BaseModel):
    book_id: int
    title: str
    author: str
    isbn: str | None
    genre: str
    publication_year: int | None
    publisher: str | None
    total_copies: int
    available_copies: int
    description: str | None
    image_url: str | None

class BookDetail(BookOut):
    avg_rating: float
    review_count: int

class LoanIn(BaseModel):
    book_id: int

class BorrowOut(BaseModel):
    message: str
    record_id: int
    due_date: datetime

class ReturnOut(BaseModel):
    message: str
    record_id: int
    fine: Decimal
    days_overdue: int

class BorrowingRecordOut(BaseModel):
    record_id: int
    user_id: int
    book_id: int
    borrow_date: datetime
    due_date: datetime
    return_date: datetime | None
    status: str
    fine_amount: Decimal
    title: str | None = None
    author: str | None = None
    genre: str | None = None
    image_url: str | None = None
    username: str | None = None
    full_name: str | None = None
    email: str | None = None

class ReviewIn(BaseModel):
    book_id: int
    rating: int = Field(ge=1, le=5)
    review_text: str | None = None

class ReviewOut(BaseModel):
    review_id: int
    user_id: int
    book_id: int
    rating: int
    review_text: str | None
    review_date: datetime | None
    username: str
    full_name: str

class ReservationIn(BaseModel):
    book_id: int

class ReservationOut(BaseModel):
    reservation_id: int
    book_id: int
    status: str
    reservation_date: datetime | None
    expiry_date: datetime | None
    title: str | None = None
    author: str | None = None
    genre: str | None = None
