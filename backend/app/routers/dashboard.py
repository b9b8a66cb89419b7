"""
Carbon Registry - Dashboard Router
Role-filtered summary figures and the latest project activity.
"""
from datetime import datetime
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from ..database import get_db
from ..models.db_models import ProjectEventDB, UserDB
from ..auth import get_current_user
from ..services.statistics import StatisticsAggregator

router = APIRouter(prefix="/dashboard", tags=["dashboard"])


# =============================================================================
# PYDANTIC MODELS
# =============================================================================

class ActivityResponse(BaseModel):
    id: str
    project_id: str
    type: str
    description: str
    userName: str
    createdAt: Optional[datetime] = None


class DashboardResponse(BaseModel):
    stats: Dict[str, float]
    recentActivity: List[ActivityResponse]


def to_activity_response(event: ProjectEventDB, actor_name: Optional[str]) -> ActivityResponse:
    return ActivityResponse(
        id=event.id,
        project_id=event.project_id,
        type=event.event_type,
        description=event.description,
        userName=actor_name or "System",
        createdAt=event.created_at,
    )


# =============================================================================
# API ENDPOINTS
# =============================================================================

@router.get("", response_model=DashboardResponse)
async def get_dashboard(
    db: Session = Depends(get_db),
    current_user: UserDB = Depends(get_current_user)
):
    """
    Admins see every figure. Officers see credits, verified projects and
    their pending reviews; authorities see their project count and credits.
    """
    stats, activity = StatisticsAggregator(db).dashboard(current_user)
    return DashboardResponse(
        stats=stats,
        recentActivity=[to_activity_response(event, name) for event, name in activity],
    )
