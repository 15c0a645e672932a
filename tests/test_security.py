"""
Tests for wardround.utils.security and wardround.services.auth_service.
"""

from datetime import datetime, timedelta

import pytest
from fastapi import HTTPException
from fastapi.security import HTTPAuthorizationCredentials

from wardround.config import settings
from wardround.models.user import PinSet, ProfileUpdate, UserCreate
from wardround.services.auth_service import auth_service
from wardround.utils.security import (
    create_access_token,
    decode_token,
    get_current_user,
    hash_password,
    require_roles,
    verify_password,
)


def bearer(token):
    return HTTPAuthorizationCredentials(scheme="Bearer", credentials=token)


class TestPasswords:

    def test_hash_and_verify(self):
        hashed = hash_password("correct horse")
        assert hashed != "correct horse"
        assert verify_password("correct horse", hashed)
        assert not verify_password("wrong", hashed)

    def test_missing_hash_never_verifies(self):
        assert not verify_password("anything", None)

    def test_long_secrets_are_truncated_consistently(self):
        secret = "x" * 100
        assert verify_password(secret, hash_password(secret))


class TestTokens:

    def test_round_trip(self):
        payload = decode_token(create_access_token({"sub": "user-1"}))
        assert payload["sub"] == "user-1"

    def test_expired_token_is_rejected(self):
        token = create_access_token({"sub": "user-1"}, expires_delta=timedelta(seconds=-1))
        with pytest.raises(HTTPException) as exc:
            decode_token(token)
        assert exc.value.status_code == 401


class TestCurrentUser:

    @pytest.mark.asyncio
    async def test_no_credentials(self, fake_db):
        with pytest.raises(HTTPException) as exc:
            await get_current_user(None)
        assert exc.value.status_code == 401

    @pytest.mark.asyncio
    async def test_active_user(self, fake_db, resident):
        await fake_db.users.insert_one(resident)
        user = await get_current_user(bearer(create_access_token({"sub": resident["_id"]})))
        assert user["email"] == resident["email"]

    @pytest.mark.asyncio
    async def test_inactive_user_is_forbidden(self, fake_db, resident):
        await fake_db.users.insert_one({**resident, "status": "Inactive"})
        with pytest.raises(HTTPException) as exc:
            await get_current_user(bearer(create_access_token({"sub": resident["_id"]})))
        assert exc.value.status_code == 403

    @pytest.mark.asyncio
    async def test_role_check(self, resident, attending):
        checker = require_roles("Admin", "Attending")
        assert await checker(current_user=attending) == attending
        with pytest.raises(HTTPException) as exc:
            await checker(current_user=resident)
        assert exc.value.status_code == 403


class TestAuthService:

    @pytest.mark.asyncio
    async def test_register_then_login(self, fake_db):
        token = await auth_service.register_user(
            UserCreate(email="New@Hospital.org", name=" Dr. New ", password="password123")
        )
        assert token.user.email == "new@hospital.org"
        assert token.user.name == "Dr. New"

        login = await auth_service.login_user("new@hospital.org", "password123")
        assert decode_token(login.access_token)["sub"] == token.user.id

    @pytest.mark.asyncio
    async def test_duplicate_email(self, fake_db):
        data = UserCreate(email="dup@hospital.org", name="Dup", password="password123")
        await auth_service.register_user(data)
        with pytest.raises(HTTPException) as exc:
            await auth_service.register_user(data)
        assert exc.value.status_code == 400

    @pytest.mark.asyncio
    async def test_lockout_after_repeated_failures(self, fake_db):
        await auth_service.register_user(UserCreate(email="lock@hospital.org", name="L", password="password123"))

        for _ in range(settings.MAX_LOGIN_ATTEMPTS):
            with pytest.raises(HTTPException) as exc:
                await auth_service.login_user("lock@hospital.org", "wrong-password")
            assert exc.value.status_code == 401

        with pytest.raises(HTTPException) as exc:
            await auth_service.login_user("lock@hospital.org", "password123")
        assert exc.value.status_code == 423

        stored = await fake_db.users.find_one({"email": "lock@hospital.org"})
        assert stored["lock_until"] > datetime.utcnow()

    @pytest.mark.asyncio
    async def test_pins(self, fake_db):
        token = await auth_service.register_user(UserCreate(email="pin@hospital.org", name="P", password="password123"))
        user = await fake_db.users.find_one({"_id": token.user.id})

        with pytest.raises(HTTPException) as exc:
            await auth_service.verify_pin(user, "1234")
        assert exc.value.status_code == 400

        await auth_service.set_pin(user, PinSet(pin="1234", night_pin="987654"))
        stored = await fake_db.users.find_one({"_id": token.user.id})
        assert stored["pin"] != "1234"
        assert (await auth_service.verify_pin(user, "1234"))["verified"] is True

        with pytest.raises(HTTPException) as exc:
            await auth_service.verify_pin(user, "0000")
        assert exc.value.status_code == 401

    @pytest.mark.asyncio
    async def test_update_profile(self, fake_db):
        token = await auth_service.register_user(UserCreate(email="p@hospital.org", name="Old", password="password123"))
        user = await fake_db.users.find_one({"_id": token.user.id})
        profile = await auth_service.update_profile(user, ProfileUpdate(name="New"))
        assert profile.name == "New"
        assert (await fake_db.users.find_one({"_id": token.user.id}))["name"] == "New"
