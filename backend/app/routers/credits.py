"""
Carbon Registry - Credits Router
Per-role credit figures and admin management of issued credit lots.
"""
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel
from sqlalchemy.orm import Session

from ..database import get_db
from ..models.db_models import CarbonCreditDB, CreditStatus, UserDB
from ..auth import get_current_user, require_admin
from ..services.credits import CreditAggregator, CreditLedgerService
from ..services.errors import IncompleteData, ServiceError
from .errors import http_error

router = APIRouter(prefix="/credits", tags=["credits"])


# =============================================================================
# PYDANTIC MODELS
# =============================================================================

class CreditStatsResponse(BaseModel):
    totalCredits: float
    availableCredits: float


class IssueCreditsRequest(BaseModel):
    project_id: str
    amount: float
    vintage: Optional[int] = None


class CreditLotResponse(BaseModel):
    id: str
    project_id: str
    distribution_id: Optional[str] = None
    serial_number: str
    vintage: int
    amount: float
    status: CreditStatus
    issued_at: Optional[datetime] = None
    retired_at: Optional[datetime] = None


class CreditLotListResponse(BaseModel):
    credits: List[CreditLotResponse]
    total: int
    page: int
    page_size: int
    total_pages: int


def to_lot_response(lot: CarbonCreditDB) -> CreditLotResponse:
    return CreditLotResponse(
        id=lot.id,
        project_id=lot.project_id,
        distribution_id=lot.distribution_id,
        serial_number=lot.serial_number,
        vintage=lot.vintage,
        amount=lot.amount,
        status=lot.status,
        issued_at=lot.issued_at,
        retired_at=lot.retired_at,
    )


# =============================================================================
# API ENDPOINTS
# =============================================================================

@router.get("/stats", response_model=CreditStatsResponse)
async def get_credit_stats(
    db: Session = Depends(get_db),
    current_user: UserDB = Depends(get_current_user)
):
    """
    Admins see ledger supply; officers and authorities see their share of
    distributed credits.
    """
    return CreditStatsResponse(**CreditAggregator(db).aggregate_for_role(current_user.role, current_user.id))


@router.get("", response_model=CreditLotListResponse)
async def list_credit_lots(
    page: int = Query(1, ge=1),
    page_size: int = Query(10, ge=1, le=100),
    project_id: Optional[str] = None,
    status: Optional[str] = None,
    db: Session = Depends(get_db),
    admin: UserDB = Depends(require_admin)
):
    try:
        lots, meta = CreditLedgerService(db).list_lots(
            project_id=project_id, status=status, page=page, page_size=page_size
        )
    except ValueError:
        raise http_error(IncompleteData("Unknown status filter", {"status": f"'{status}' is not a credit status"}))
    return CreditLotListResponse(credits=[to_lot_response(lot) for lot in lots], **meta)


@router.post("/issue", response_model=CreditLotResponse, status_code=status.HTTP_201_CREATED)
async def issue_credits(
    request: IssueCreditsRequest,
    db: Session = Depends(get_db),
    admin: UserDB = Depends(require_admin)
):
    """Mint an available credit lot for a verified project."""
    try:
        lot = CreditLedgerService(db).issue(request.project_id, request.amount, admin, vintage=request.vintage)
    except ServiceError as e:
        raise http_error(e)
    return to_lot_response(lot)


@router.post("/{credit_id}/retire", response_model=CreditLotResponse)
async def retire_credits(
    credit_id: str,
    db: Session = Depends(get_db),
    admin: UserDB = Depends(require_admin)
):
    try:
        lot = CreditLedgerService(db).retire(credit_id, admin)
    except ServiceError as e:
        raise http_error(e)
    return to_lot_response(lot)
