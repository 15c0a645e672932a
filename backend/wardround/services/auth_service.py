import uuid
import logging
from datetime import datetime, timedelta
from fastapi import HTTPException, status
from wardround.config import settings
from wardround.database import get_database
from wardround.models.user import (
    PinSet,
    ProfileUpdate,
    Token,
    UserCreate,
    UserInDB,
    UserList,
    UserResponse,
    UserStatus,
)
from wardround.utils.security import (
    create_access_token,
    hash_password,
    hash_pin,
    verify_password,
    verify_pin,
)

logger = logging.getLogger(__name__)


class AuthService:
    """Authentication service for user management"""

    @staticmethod
    def _token_for(user: UserInDB) -> Token:
        access_token = create_access_token(
            data={"sub": user.id}
        )
        return Token(access_token=access_token, user=user.to_response())

    @staticmethod
    async def register_user(user_data: UserCreate) -> Token:
        db = get_database()
        email = user_data.email.lower()

        if await db.users.find_one({"email": email}):
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="User already exists"
            )

        user_dict = {
            "_id": str(uuid.uuid4()),
            "email": email,
            "name": user_data.name.strip(),
            "role": user_data.role.value,
            "status": UserStatus.ACTIVE.value,
            "hashed_password": hash_password(user_data.password),
            "login_attempts": 0,
            "lock_until": None,
            "created_at": datetime.utcnow()
        }

        await db.users.insert_one(user_dict)
        logger.info(f"Registered user {user_dict['_id']} as {user_dict['role']}")

        return AuthService._token_for(UserInDB(**user_dict))

    @staticmethod
    async def login_user(email: str, password: str) -> Token:
        db = get_database()

        document = await db.users.find_one({"email": email.lower()})
        if not document:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid credentials"
            )

        user = UserInDB(**document)
        now = datetime.utcnow()

        if user.lock_until and user.lock_until > now:
            raise HTTPException(
                status_code=status.HTTP_423_LOCKED,
                detail="Account is locked. Please try again later."
            )

        if not verify_password(password, user.hashed_password):
            attempts = user.login_attempts + 1
            changes = {"login_attempts": attempts}
            if attempts >= settings.MAX_LOGIN_ATTEMPTS:
                changes["lock_until"] = now + timedelta(minutes=settings.LOCKOUT_MINUTES)
                logger.warning(f"Locking user {user.id} after {attempts} failed logins")
            await db.users.update_one({"_id": user.id}, {"$set": changes})
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid credentials"
            )

        if user.status != UserStatus.ACTIVE:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="User account is not active"
            )

        await db.users.update_one(
            {"_id": user.id},
            {"$set": {"login_attempts": 0, "lock_until": None, "last_active": now}}
        )
        user = user.model_copy(update={"login_attempts": 0, "lock_until": None, "last_active": now})

        return AuthService._token_for(user)

    @staticmethod
    def get_profile(current_user: dict) -> UserResponse:
        return UserInDB(**current_user).to_response()

    @staticmethod
    async def update_profile(current_user: dict, profile: ProfileUpdate) -> UserResponse:
        db = get_database()
        changes = {
            key: value for key, value in profile.model_dump(exclude_unset=True).items()
            if value
        }
        if changes:
            await db.users.update_one({"_id": current_user["_id"]}, {"$set": changes})

        return UserInDB(**{**current_user, **changes}).to_response()

    @staticmethod
    async def set_pin(current_user: dict, pins: PinSet) -> dict:
        if not pins.pin and not pins.night_pin:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="pin or nightPin is required"
            )

        changes = {}
        if pins.pin:
            changes["pin"] = hash_pin(pins.pin)
        if pins.night_pin:
            changes["night_pin"] = hash_pin(pins.night_pin)

        db = get_database()
        await db.users.update_one({"_id": current_user["_id"]}, {"$set": changes})
        return {"message": "PIN(s) set successfully"}

    @staticmethod
    async def verify_pin(current_user: dict, pin: str) -> dict:
        db = get_database()
        document = await db.users.find_one({"_id": current_user["_id"]})
        hashed = (document or {}).get("pin")

        if not hashed:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="PIN not set"
            )

        if not verify_pin(pin, hashed):
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid PIN"
            )

        return {"message": "PIN verified", "verified": True}

    @staticmethod
    async def list_users() -> UserList:
        db = get_database()
        documents = await db.users.find({}).sort("created_at", -1).to_list(length=None)
        return UserList(users=[UserInDB(**document).to_response() for document in documents])


auth_service = AuthService()
