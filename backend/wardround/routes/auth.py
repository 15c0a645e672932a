# /backend/wardround/routes/auth.py

from fastapi import APIRouter, Depends, Request
from wardround.models.audit import AuditAction, AuditResource
from wardround.models.user import (
    PinSet,
    PinVerify,
    ProfileUpdate,
    Token,
    UserCreate,
    UserList,
    UserLogin,
    UserResponse,
)
from wardround.services.auth_service import auth_service
from wardround.utils.audit import audited
from wardround.utils.security import get_current_user, require_roles

router = APIRouter(prefix="/auth", tags=["Authentication"])

@router.post("/register", response_model=Token, status_code=201)
@audited(AuditAction.CREATE, AuditResource.USER)
async def register(user_data: UserCreate, request: Request):
    """
    Register a new user

    - **email**: Valid email address
    - **name**: Display name
    - **password**: Minimum 8 characters
    - **role**: Admin, Attending, Resident, Nurse or Night Shift
    """
    return await auth_service.register_user(user_data)

@router.post("/login", response_model=Token)
@audited(AuditAction.LOGIN, AuditResource.SYSTEM)
async def login(user_data: UserLogin, request: Request):
    """
    Login with email and password

    The account is locked for a while after repeated failures.
    """
    return await auth_service.login_user(user_data.email, user_data.password)

@router.get("/me", response_model=UserResponse)
async def get_current_user_info(current_user: dict = Depends(get_current_user)):
    """Get current user information"""
    return auth_service.get_profile(current_user)

@router.get("/profile", response_model=UserResponse)
async def get_profile(current_user: dict = Depends(get_current_user)):
    return auth_service.get_profile(current_user)

@router.put("/profile", response_model=UserResponse)
@audited(AuditAction.UPDATE, AuditResource.USER)
async def update_profile(
    profile: ProfileUpdate,
    request: Request,
    current_user: dict = Depends(get_current_user)
):
    return await auth_service.update_profile(current_user, profile)

@router.post("/set-pin")
@audited(AuditAction.UPDATE, AuditResource.USER)
async def set_pin(
    pins: PinSet,
    request: Request,
    current_user: dict = Depends(get_current_user)
):
    """Set the day PIN and/or the night-shift PIN used for quick unlock"""
    return await auth_service.set_pin(current_user, pins)

@router.post("/verify-pin")
async def verify_pin(pin_data: PinVerify, current_user: dict = Depends(get_current_user)):
    return await auth_service.verify_pin(current_user, pin_data.pin)

@router.get("/users", response_model=UserList)
async def list_users(current_user: dict = Depends(require_roles("Admin"))):
    """List all users (Admin only)"""
    return await auth_service.list_users()

@router.post("/logout")
@audited(AuditAction.LOGOUT, AuditResource.SYSTEM)
async def logout(request: Request, current_user: dict = Depends(get_current_user)):
    """
    Logout current user

    Note: Since we use JWT, the token will remain valid until expiration.
    Client should discard the token.
    """
    return {"message": "Logged out successfully"}
