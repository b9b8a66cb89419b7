"""
Carbon Registry - Distributions Router
Opening, finalizing and listing credit distributions.
"""
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel
from sqlalchemy.orm import Session

from ..database import get_db
from ..dependencies import get_settlement_gateway
from ..models.db_models import CreditDistributionDB, DistributionStatus, UserDB, UserRole
from ..auth import get_current_user, require_roles
from ..services.credits import DistributionService, SettlementGateway, distribution_shares
from ..services.errors import IncompleteData, ServiceError
from .errors import http_error

router = APIRouter(prefix="/distributions", tags=["distributions"])


# =============================================================================
# PYDANTIC MODELS
# =============================================================================

class CreateDistributionRequest(BaseModel):
    project_id: str
    total_credits: Optional[float] = None  # Defaults to the report's recommendation
    officer_share_pct: Optional[float] = None
    authority_share_pct: Optional[float] = None
    officer_wallet: Optional[str] = None
    authority_wallet: Optional[str] = None


class DistributionResponse(BaseModel):
    id: str
    project_id: str
    officer_id: str
    authority_id: str
    total_credits: float
    officer_share_pct: float
    authority_share_pct: float
    officer_credits: float
    authority_credits: float
    officer_wallet: Optional[str] = None
    authority_wallet: Optional[str] = None
    status: DistributionStatus
    settlement_reference: Optional[str] = None
    created_by: Optional[str] = None
    created_at: Optional[datetime] = None
    distributed_at: Optional[datetime] = None


class FinalizeResponse(BaseModel):
    distribution: DistributionResponse
    applied: bool  # False when the distribution was already finalized


class DistributionListResponse(BaseModel):
    distributions: List[DistributionResponse]
    total: int
    page: int
    page_size: int
    total_pages: int


def to_distribution_response(distribution: CreditDistributionDB) -> DistributionResponse:
    officer_credits, authority_credits = distribution_shares(distribution)
    return DistributionResponse(
        id=distribution.id,
        project_id=distribution.project_id,
        officer_id=distribution.officer_id,
        authority_id=distribution.authority_id,
        total_credits=distribution.total_credits,
        officer_share_pct=distribution.officer_share_pct,
        authority_share_pct=distribution.authority_share_pct,
        officer_credits=officer_credits,
        authority_credits=authority_credits,
        officer_wallet=distribution.officer_wallet,
        authority_wallet=distribution.authority_wallet,
        status=distribution.status,
        settlement_reference=distribution.settlement_reference,
        created_by=distribution.created_by,
        created_at=distribution.created_at,
        distributed_at=distribution.distributed_at,
    )


# =============================================================================
# API ENDPOINTS
# =============================================================================

@router.get("", response_model=DistributionListResponse)
async def list_distributions(
    page: int = Query(1, ge=1),
    page_size: int = Query(10, ge=1, le=100),
    status: Optional[str] = None,
    db: Session = Depends(get_db),
    current_user: UserDB = Depends(get_current_user)
):
    """Officers see their distributions, authorities theirs, admins all."""
    try:
        distributions, meta = DistributionService(db).list_distributions(
            current_user, page=page, page_size=page_size, status=status
        )
    except ValueError:
        raise http_error(IncompleteData("Unknown status filter", {"status": f"'{status}' is not a distribution status"}))
    return DistributionListResponse(
        distributions=[to_distribution_response(d) for d in distributions], **meta
    )


@router.post("", response_model=DistributionResponse, status_code=status.HTTP_201_CREATED)
async def create_distribution(
    request: CreateDistributionRequest,
    db: Session = Depends(get_db),
    current_user: UserDB = Depends(require_roles(UserRole.ADMIN, UserRole.OFFICER))
):
    try:
        distribution = DistributionService(db).create_distribution(
            request.project_id,
            current_user,
            total_credits=request.total_credits,
            officer_share_pct=request.officer_share_pct,
            authority_share_pct=request.authority_share_pct,
            officer_wallet=request.officer_wallet,
            authority_wallet=request.authority_wallet,
        )
    except ServiceError as e:
        raise http_error(e)
    return to_distribution_response(distribution)


@router.get("/{distribution_id}", response_model=DistributionResponse)
async def get_distribution(
    distribution_id: str,
    db: Session = Depends(get_db),
    current_user: UserDB = Depends(get_current_user)
):
    try:
        distribution = DistributionService(db).get_distribution(distribution_id, current_user)
    except ServiceError as e:
        raise http_error(e)
    return to_distribution_response(distribution)


@router.post("/{distribution_id}/finalize", response_model=FinalizeResponse)
async def finalize_distribution(
    distribution_id: str,
    db: Session = Depends(get_db),
    gateway: SettlementGateway = Depends(get_settlement_gateway),
    current_user: UserDB = Depends(require_roles(UserRole.ADMIN, UserRole.OFFICER))
):
    """
    Mark the distribution as distributed. Repeating the call changes
    nothing and reports applied=false.
    """
    try:
        distribution, applied = DistributionService(db, gateway=gateway).finalize_distribution(
            distribution_id, current_user
        )
    except ServiceError as e:
        raise http_error(e)
    return FinalizeResponse(distribution=to_distribution_response(distribution), applied=applied)
