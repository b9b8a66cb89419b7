"""
Carbon Registry - Authentication Router
Handles registration, login and session verification.
"""
from datetime import datetime
from typing import List, Optional
import logging

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, EmailStr, field_validator
from sqlalchemy.orm import Session

from ..database import get_db
from ..models.db_models import UserDB, UserRole
from ..auth import create_access_token, get_current_user
from ..services.errors import ServiceError
from ..services.users import UserService
from .errors import http_error

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])


# =============================================================================
# PYDANTIC MODELS
# =============================================================================

class RegisterRequest(BaseModel):
    email: EmailStr
    name: str
    password: str
    role: UserRole = UserRole.PROJECT_AUTHORITY

    # Officers only
    jurisdiction: Optional[str] = None
    specializations: Optional[List[str]] = None

    @field_validator('password')
    @classmethod
    def validate_password_strength(cls, v):
        if len(v) < 8:
            raise ValueError('Password must be at least 8 characters')
        return v


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    role: UserRole


class UserResponse(BaseModel):
    """Public view of a user."""
    id: str
    email: str
    name: str
    role: UserRole
    jurisdiction: Optional[str] = None
    specializations: List[str] = []
    created_at: Optional[datetime] = None


def to_user_response(user: UserDB) -> UserResponse:
    return UserResponse(
        id=user.id,
        email=user.email,
        name=user.name,
        role=user.role,
        jurisdiction=user.jurisdiction,
        specializations=user.specializations or [],
        created_at=user.created_at,
    )


# =============================================================================
# API ENDPOINTS
# =============================================================================

@router.post("/register", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
async def register(request: RegisterRequest, db: Session = Depends(get_db)):
    """
    Register a project authority or officer account.
    Administrators are provisioned by an existing admin.
    """
    try:
        user = UserService(db).register(
            email=request.email,
            name=request.name,
            password=request.password,
            role=request.role,
            jurisdiction=request.jurisdiction,
            specializations=request.specializations,
        )
    except ServiceError as e:
        raise http_error(e)
    return to_user_response(user)


@router.post("/login", response_model=TokenResponse)
async def login(request: LoginRequest, db: Session = Depends(get_db)):
    """
    Authenticate user and return JWT token.
    """
    user = UserService(db).authenticate(request.email, request.password)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid email or password",
            headers={"WWW-Authenticate": "Bearer"},
        )

    access_token = create_access_token(user.id, user.email, user.role)

    logger.info(f"User logged in: {user.email}")
    return TokenResponse(access_token=access_token, role=user.role)


@router.get("/me", response_model=UserResponse)
async def get_me(current_user: UserDB = Depends(get_current_user)):
    """
    Get current authenticated user info.
    """
    return to_user_response(current_user)
