# /backend/wardround/models/user.py

from pydantic import BaseModel, ConfigDict, EmailStr, Field
from typing import Optional, List
from datetime import datetime
from enum import Enum


class UserRole(str, Enum):
    ADMIN = "Admin"
    ATTENDING = "Attending"
    RESIDENT = "Resident"
    NURSE = "Nurse"
    NIGHT_SHIFT = "Night Shift"


class UserStatus(str, Enum):
    ACTIVE = "Active"
    INACTIVE = "Inactive"
    ON_LEAVE = "On Leave"


class UserCreate(BaseModel):
    email: EmailStr
    name: str = Field(..., min_length=1, max_length=100)
    password: str = Field(..., min_length=8)
    role: UserRole = UserRole.RESIDENT


class UserLogin(BaseModel):
    email: EmailStr
    password: str


class UserResponse(BaseModel):
    id: str
    email: str
    name: str
    role: UserRole
    status: UserStatus = UserStatus.ACTIVE
    avatar: Optional[str] = None
    last_active: Optional[datetime] = None
    created_at: datetime


class UserInDB(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(alias="_id")
    email: EmailStr
    name: str
    role: UserRole
    status: UserStatus = UserStatus.ACTIVE
    hashed_password: str
    pin: Optional[str] = None
    night_pin: Optional[str] = None
    avatar: Optional[str] = None
    login_attempts: int = 0
    lock_until: Optional[datetime] = None
    last_active: Optional[datetime] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)

    def to_response(self) -> UserResponse:
        return UserResponse(
            id=self.id,
            email=self.email,
            name=self.name,
            role=self.role,
            status=self.status,
            avatar=self.avatar,
            last_active=self.last_active,
            created_at=self.created_at,
        )


class ProfileUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    avatar: Optional[str] = None


class PinSet(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    pin: Optional[str] = Field(default=None, pattern=r"^\d{4,8}$")
    night_pin: Optional[str] = Field(default=None, alias="nightPin", pattern=r"^\d{4,8}$")


class PinVerify(BaseModel):
    pin: str


class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: UserResponse


class UserList(BaseModel):
    users: List[UserResponse]
