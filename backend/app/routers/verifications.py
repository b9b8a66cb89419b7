"""
Carbon Registry - Verification Router
Officer verification queue and its status counts.
"""
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy.orm import Session

from ..database import get_db
from ..models.db_models import UserDB, UserRole
from ..auth import require_roles
from ..services.errors import IncompleteData, ServiceError
from ..services.statistics import StatisticsAggregator
from ..services.workflow import ProjectService
from .errors import http_error
from .projects import ProjectListResponse, to_project_response

router = APIRouter(prefix="/verifications", tags=["verifications"])


class VerificationStatsResponse(BaseModel):
    pending: int
    verified: int
    rejected: int
    inProgress: int


@router.get("/stats", response_model=VerificationStatsResponse)
async def get_verification_stats(
    db: Session = Depends(get_db),
    current_user: UserDB = Depends(require_roles(UserRole.OFFICER, UserRole.ADMIN))
):
    """
    Counts by verification status. Officers count their own projects plus
    the unassigned pool; `inProgress` is pending projects with an officer.
    """
    return VerificationStatsResponse(**StatisticsAggregator(db).verification_stats(current_user))


@router.get("/projects", response_model=ProjectListResponse)
async def get_verification_queue(
    page: int = Query(1, ge=1),
    page_size: int = Query(10, ge=1, le=100),
    status: Optional[str] = None,
    db: Session = Depends(get_db),
    current_user: UserDB = Depends(require_roles(UserRole.OFFICER, UserRole.ADMIN))
):
    """Projects assigned to the caller or still unclaimed."""
    try:
        projects, meta = ProjectService(db).verification_queue(
            current_user, status=status, page=page, page_size=page_size
        )
    except ValueError:
        raise http_error(IncompleteData("Unknown status filter", {"status": f"'{status}' is not a verification status"}))
    except ServiceError as e:
        raise http_error(e)
    return ProjectListResponse(projects=[to_project_response(p) for p in projects], **meta)
