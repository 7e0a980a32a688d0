from datetime import datetime, timedelta, timezone

import pytest
from readify import models
from readify.accounts import (
    register_user, login, get_user_by_token, get_profile, list_users, set_user_status,
)

pytestmark = pytest.mark.asyncio

async def _register(session, username="student1", **kw):
    data = dict(
        username=username, email=f"{username}@readify.com", password="pa55word",
        full_name="John Doe", user_type="student",
    )
    data.update(kw)
    return await register_user(session, **data)

async def test_register_and_login(session):
    r = await _register(session, phone="9876543210")
    assert r["ok"] is True
    user_id = r["data"]["user_id"]
    r2 = await login(session, username="student1", password="pa55word")
    assert r2["ok"] is True
    assert r2["data"]["user"]["user_id"] == user_id
    assert r2["data"]["user"]["user_type"] == "STUDENT"
    assert r2["data"]["user"]["last_login"] is not None
    user = await get_user_by_token(session, r2["data"]["token"])
    assert user is not None and user.id == user_id

async def test_login_by_email_is_case_insensitive(session):
    await _register(session, email="Jane.Smith@Readify.com")
    r = await login(session, username="jane.smith@readify.com", password="pa55word")
    assert r["ok"] is True

async def test_password_is_hashed(session):
    r = await _register(session)
    user = await session.get(models.User, r["data"]["user_id"])
    assert user.password_hash != "pa55word"

async def test_register_rejects_duplicates_and_bad_input(session):
    assert (await _register(session))["ok"] is True
    dup = await _register(session, email="other@readify.com")
    assert dup["code"] == "USER_EXISTS"
    assert (await _register(session, username="x", password=""))["code"] == "MISSING_FIELDS"
    assert (await _register(session, username="y", user_type="admin"))["code"] == "INVALID_USER_TYPE"

async def test_login_failures(session):
    await _register(session)
    assert (await login(session, username="student1", password="nope"))["code"] == "INVALID_CREDENTIALS"
    assert (await login(session, username="ghost", password="pa55word"))["code"] == "INVALID_CREDENTIALS"

async def test_suspended_user_cannot_login_and_loses_token(session):
    user_id = (await _register(session))["data"]["user_id"]
    token = (await login(session, username="student1", password="pa55word"))["data"]["token"]
    r = await set_user_status(session, user_id=user_id, status="suspended")
    assert r["ok"] is True
    assert r["data"]["status"] == "SUSPENDED"
    assert (await login(session, username="student1", password="pa55word"))["code"] == "ACCOUNT_INACTIVE"
    assert await get_user_by_token(session, token) is None

async def test_token_expiry(session):
    await _register(session)
    issued = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
    token = (await login(session, username="student1", password="pa55word", now=issued))["data"]["token"]
    assert await get_user_by_token(session, token, now=issued + timedelta(hours=23)) is not None
    assert await get_user_by_token(session, token, now=issued + timedelta(hours=24)) is None
    assert await get_user_by_token(session, "not-a-token") is None
    assert await get_user_by_token(session, "") is None

async def test_profile_and_listing(session):
    a = (await _register(session, "student1"))["data"]["user_id"]
    await _register(session, "librarian1", user_type="librarian", full_name="Admin User")
    p = await get_profile(session, user_id=a)
    assert p["ok"] is True
    assert p["data"]["email"] == "student1@readify.com"
    assert (await get_profile(session, user_id=999))["code"] == "USER_NOT_FOUND"
    users = (await list_users(session))["data"]["items"]
    assert {u["username"] for u in users} == {"student1", "librarian1"}

async def test_set_user_status_errors(session):
    assert (await set_user_status(session, user_id=1, status="banned"))["code"] == "INVALID_STATUS"
    assert (await set_user_status(session, user_id=999, status="active"))["code"] == "USER_NOT_FOUND"
