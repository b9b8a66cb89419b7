"""
Carbon Registry - User Administration Router
Admin-only user directory, provisioning and role counts.
"""
from typing import List, Optional
import logging

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, EmailStr
from sqlalchemy.orm import Session

from ..database import get_db
from ..models.db_models import UserDB, UserRole
from ..auth import require_admin
from ..services.errors import IncompleteData, ServiceError
from ..services.statistics import StatisticsAggregator
from ..services.users import UserService
from .auth import UserResponse, to_user_response
from .errors import http_error

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/users", tags=["users"])


# =============================================================================
# PYDANTIC MODELS
# =============================================================================

class CreateUserRequest(BaseModel):
    email: EmailStr
    name: str
    password: str
    role: UserRole
    jurisdiction: Optional[str] = None
    specializations: Optional[List[str]] = None


class UpdateUserRequest(BaseModel):
    """Role is not accepted here: it is immutable."""
    name: Optional[str] = None
    email: Optional[EmailStr] = None
    password: Optional[str] = None
    jurisdiction: Optional[str] = None
    specializations: Optional[List[str]] = None


class UserListResponse(BaseModel):
    """Paginated user list response."""
    users: List[UserResponse]
    total: int
    page: int
    page_size: int
    total_pages: int


class UserStatsResponse(BaseModel):
    total: int
    admin: int
    officer: int
    project_authority: int


# =============================================================================
# API ENDPOINTS
# =============================================================================

@router.get("", response_model=UserListResponse)
async def list_users(
    page: int = Query(1, ge=1),
    page_size: int = Query(10, ge=1, le=100),
    role: Optional[str] = None,
    search: Optional[str] = None,
    db: Session = Depends(get_db),
    admin: UserDB = Depends(require_admin)
):
    """
    Get paginated list of users, optionally filtered by role or name/email.
    """
    try:
        users, meta = UserService(db).list_users(role=role, search=search, page=page, page_size=page_size)
    except ValueError:
        raise http_error(IncompleteData("Unknown role filter", {"role": f"'{role}' is not a role"}))
    return UserListResponse(users=[to_user_response(u) for u in users], **meta)


@router.post("", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
async def create_user(
    request: CreateUserRequest,
    db: Session = Depends(get_db),
    admin: UserDB = Depends(require_admin)
):
    """Provision a user with any role, including admin."""
    try:
        user = UserService(db).provision(
            admin,
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


@router.get("/stats", response_model=UserStatsResponse)
async def get_user_stats(
    db: Session = Depends(get_db),
    admin: UserDB = Depends(require_admin)
):
    """User counts by role; every role is present."""
    return UserStatsResponse(**StatisticsAggregator(db).user_stats())


@router.get("/officers", response_model=List[UserResponse])
async def list_officers(
    db: Session = Depends(get_db),
    admin: UserDB = Depends(require_admin)
):
    """Officer directory in registration order."""
    return [to_user_response(u) for u in UserService(db).officers()]


@router.patch("/{user_id}", response_model=UserResponse)
async def update_user(
    user_id: str,
    request: UpdateUserRequest,
    db: Session = Depends(get_db),
    admin: UserDB = Depends(require_admin)
):
    try:
        user = UserService(db).update_user(user_id, request.model_dump(exclude_unset=True), admin)
    except ServiceError as e:
        raise http_error(e)
    return to_user_response(user)
