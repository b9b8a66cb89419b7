"""
Carbon Registry - Projects Router
Project submission, listing, editing, attachments, officer assignment and
the verification actions performed on a single project.
"""
from datetime import date, datetime
from typing import Any, Dict, List, Optional
import logging

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile, status
from pydantic import BaseModel
from sqlalchemy.orm import Session

from ..database import get_db
from ..dependencies import get_storage
from ..models.db_models import (
    ProjectCategory, ProjectDB, ProjectEventDB, ProjectState, ReportDecision, UserDB, UserRole,
    LifecycleStatus, VerificationReportDB, VerificationStatus,
)
from ..auth import get_current_user, require_roles
from ..services.errors import IncompleteData, NotFound, ServiceError
from ..services.statistics import StatisticsAggregator
from ..services.storage import ObjectStorage
from ..services.workflow import (
    OfficerAssignmentResolver, ProjectService, ProjectStateMachine,
    ReportMeasurements, VerificationReportProcessor,
)
from .errors import http_error

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/projects", tags=["projects"])


# =============================================================================
# PYDANTIC MODELS
# =============================================================================

class ProjectCreateRequest(BaseModel):
    name: str
    description: str
    category: ProjectCategory
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    address: Optional[str] = None
    city: Optional[str] = None
    region: Optional[str] = None  # State / province
    country: Optional[str] = None
    land_area: Optional[float] = None
    land_area_unit: Optional[str] = None
    estimated_credits: Optional[float] = None

    # Admin submissions name the owning project authority
    authority_id: Optional[str] = None


class ProjectUpdateRequest(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    category: Optional[ProjectCategory] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    address: Optional[str] = None
    city: Optional[str] = None
    region: Optional[str] = None
    country: Optional[str] = None
    land_area: Optional[float] = None
    land_area_unit: Optional[str] = None
    estimated_credits: Optional[float] = None


class Attachment(BaseModel):
    name: str
    url: str
    uploaded_at: Optional[str] = None


class ProjectResponse(BaseModel):
    id: str
    name: str
    description: str
    category: ProjectCategory
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    address: Optional[str] = None
    city: Optional[str] = None
    region: Optional[str] = None
    country: Optional[str] = None
    land_area: Optional[float] = None
    land_area_unit: Optional[str] = None
    estimated_credits: Optional[float] = None
    documents: List[Attachment] = []
    images: List[Attachment] = []

    authority_id: str
    assigned_officer_id: Optional[str] = None

    state: ProjectState
    lifecycle_status: LifecycleStatus
    verification_status: VerificationStatus
    verification_started_at: Optional[datetime] = None
    decided_by: Optional[str] = None
    decided_at: Optional[datetime] = None

    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class ProjectListResponse(BaseModel):
    """Paginated project list response."""
    projects: List[ProjectResponse]
    total: int
    page: int
    page_size: int
    total_pages: int


class ProjectStatsResponse(BaseModel):
    total: int
    pending: int
    approved: int
    rejected: int


class AssignRequest(BaseModel):
    """Admins name the officer; officers assign themselves and send nothing."""
    officer_id: Optional[str] = None


class ReportRequest(BaseModel):
    # Left loosely typed so completeness problems come back field by field
    measured_area: Optional[Any] = None
    plot_count: Optional[Any] = None
    sampling_flights: Optional[Any] = None
    measured_biomass: Optional[Any] = None
    uncertainty_pct: Optional[Any] = None
    recommended_credits: Optional[Any] = None
    decision: Optional[str] = None
    notes: Optional[str] = None


class ReportResponse(BaseModel):
    id: str
    project_id: str
    officer_id: str
    measured_area: float
    plot_count: int
    sampling_flights: int
    measured_biomass: float
    uncertainty_pct: float
    recommended_credits: float
    decision: ReportDecision
    notes: Optional[str] = None
    submitted_at: Optional[datetime] = None


class ReportSubmitResponse(BaseModel):
    report: ReportResponse
    project: ProjectResponse


class ProjectEventResponse(BaseModel):
    id: str
    event_type: str
    actor_id: Optional[str] = None
    from_state: Optional[ProjectState] = None
    to_state: Optional[ProjectState] = None
    description: str
    metadata: Optional[Dict[str, Any]] = None
    created_at: Optional[datetime] = None


class DeleteResponse(BaseModel):
    message: str
    deleted: Dict[str, int]


def to_project_response(project: ProjectDB) -> ProjectResponse:
    return ProjectResponse(
        id=project.id,
        name=project.name,
        description=project.description,
        category=project.category,
        start_date=project.start_date,
        end_date=project.end_date,
        address=project.address,
        city=project.city,
        region=project.region,
        country=project.country,
        land_area=project.land_area,
        land_area_unit=project.land_area_unit,
        estimated_credits=project.estimated_credits,
        documents=project.documents or [],
        images=project.images or [],
        authority_id=project.authority_id,
        assigned_officer_id=project.assigned_officer_id,
        state=project.state,
        lifecycle_status=project.lifecycle_status,
        verification_status=project.verification_status,
        verification_started_at=project.verification_started_at,
        decided_by=project.decided_by,
        decided_at=project.decided_at,
        created_at=project.created_at,
        updated_at=project.updated_at,
    )


def to_report_response(report: VerificationReportDB) -> ReportResponse:
    return ReportResponse(
        id=report.id,
        project_id=report.project_id,
        officer_id=report.officer_id,
        measured_area=report.measured_area,
        plot_count=report.plot_count,
        sampling_flights=report.sampling_flights,
        measured_biomass=report.measured_biomass,
        uncertainty_pct=report.uncertainty_pct,
        recommended_credits=report.recommended_credits,
        decision=report.decision,
        notes=report.notes,
        submitted_at=report.submitted_at,
    )


def to_event_response(event: ProjectEventDB) -> ProjectEventResponse:
    return ProjectEventResponse(
        id=event.id,
        event_type=event.event_type,
        actor_id=event.actor_id,
        from_state=event.from_state,
        to_state=event.to_state,
        description=event.description,
        metadata=event.event_metadata,
        created_at=event.created_at,
    )


def _load_project(db: Session, project_id: str) -> ProjectDB:
    project = db.query(ProjectDB).filter(ProjectDB.id == project_id).first()
    if project is None:
        raise NotFound("Project not found")
    return project


# =============================================================================
# COLLECTION ENDPOINTS
# =============================================================================

@router.post("", response_model=ProjectResponse, status_code=status.HTTP_201_CREATED)
async def create_project(
    request: ProjectCreateRequest,
    db: Session = Depends(get_db),
    current_user: UserDB = Depends(require_roles(UserRole.PROJECT_AUTHORITY, UserRole.ADMIN))
):
    """
    Submit a project. An officer is assigned automatically when one is
    available; otherwise the project waits for manual assignment.
    """
    try:
        project = ProjectService(db).create_project(request.model_dump(exclude_none=True), current_user)
    except ServiceError as e:
        raise http_error(e)
    return to_project_response(project)


@router.get("", response_model=ProjectListResponse)
async def list_projects(
    page: int = Query(1, ge=1),
    page_size: int = Query(10, ge=1, le=100),
    status: Optional[str] = None,
    category: Optional[str] = None,
    search: Optional[str] = None,
    db: Session = Depends(get_db),
    current_user: UserDB = Depends(get_current_user)
):
    """
    Role-scoped project list: authorities see their own projects, officers
    their assigned ones, admins everything.
    """
    try:
        projects, meta = ProjectService(db).list_projects(
            current_user, page=page, page_size=page_size,
            status=status, category=category, search=search,
        )
    except ValueError:
        raise http_error(IncompleteData("Unknown filter value", {"status": "invalid filter", "category": "invalid filter"}))
    return ProjectListResponse(projects=[to_project_response(p) for p in projects], **meta)


@router.get("/stats", response_model=ProjectStatsResponse)
async def get_project_stats(
    db: Session = Depends(get_db),
    current_user: UserDB = Depends(get_current_user)
):
    """Project counts by lifecycle status within the caller's scope."""
    return ProjectStatsResponse(**StatisticsAggregator(db).project_stats(current_user))


# =============================================================================
# SINGLE PROJECT
# =============================================================================

@router.get("/{project_id}", response_model=ProjectResponse)
async def get_project(
    project_id: str,
    db: Session = Depends(get_db),
    current_user: UserDB = Depends(get_current_user)
):
    try:
        project = ProjectService(db).get_project(project_id, current_user)
    except ServiceError as e:
        raise http_error(e)
    return to_project_response(project)


@router.patch("/{project_id}", response_model=ProjectResponse)
async def update_project(
    project_id: str,
    request: ProjectUpdateRequest,
    db: Session = Depends(get_db),
    current_user: UserDB = Depends(require_roles(UserRole.PROJECT_AUTHORITY, UserRole.ADMIN))
):
    """Owners may edit until an officer is assigned; admins any time."""
    try:
        project = ProjectService(db).update_project(
            project_id, request.model_dump(exclude_unset=True), current_user
        )
    except ServiceError as e:
        raise http_error(e)
    return to_project_response(project)


@router.delete("/{project_id}", response_model=DeleteResponse)
async def delete_project(
    project_id: str,
    db: Session = Depends(get_db),
    current_user: UserDB = Depends(require_roles(UserRole.PROJECT_AUTHORITY, UserRole.ADMIN))
):
    """Hard delete of a project that has not been verified."""
    try:
        cascade = ProjectService(db).delete_project(project_id, current_user)
    except ServiceError as e:
        raise http_error(e)
    return DeleteResponse(message="Project deleted", deleted=cascade)


@router.post("/{project_id}/attachments", response_model=ProjectResponse, status_code=status.HTTP_201_CREATED)
async def upload_attachment(
    project_id: str,
    file: UploadFile = File(...),
    kind: str = Form("document"),
    db: Session = Depends(get_db),
    storage: ObjectStorage = Depends(get_storage),
    current_user: UserDB = Depends(require_roles(UserRole.PROJECT_AUTHORITY, UserRole.ADMIN))
):
    """Upload a project document or land image."""
    content = await file.read()
    try:
        project = ProjectService(db, storage=storage).add_attachment(
            project_id, current_user, kind, file.filename, content
        )
    except ServiceError as e:
        raise http_error(e)
    return to_project_response(project)


@router.get("/{project_id}/events", response_model=List[ProjectEventResponse])
async def get_project_events(
    project_id: str,
    db: Session = Depends(get_db),
    current_user: UserDB = Depends(get_current_user)
):
    """Workflow history, oldest first."""
    try:
        events = ProjectService(db).project_events(project_id, current_user)
    except ServiceError as e:
        raise http_error(e)
    return [to_event_response(e) for e in events]


# =============================================================================
# ASSIGNMENT & VERIFICATION
# =============================================================================

@router.patch("/{project_id}/assign", response_model=ProjectResponse)
async def assign_officer(
    project_id: str,
    request: Optional[AssignRequest] = None,
    db: Session = Depends(get_db),
    current_user: UserDB = Depends(require_roles(UserRole.OFFICER, UserRole.ADMIN))
):
    """
    Officers claim an unassigned project; admins assign a named officer.
    Losing a concurrent claim returns 409.
    """
    resolver = OfficerAssignmentResolver(db)
    try:
        if current_user.role == UserRole.ADMIN:
            if request is None or not request.officer_id:
                raise IncompleteData("Admins must name the officer", {"officer_id": "required"})
            project = resolver.admin_assign(project_id, request.officer_id, current_user)
        else:
            project = resolver.self_assign(project_id, current_user)
    except ServiceError as e:
        raise http_error(e)
    return to_project_response(project)


@router.delete("/{project_id}/assign", response_model=ProjectResponse)
async def clear_assignment(
    project_id: str,
    db: Session = Depends(get_db),
    current_user: UserDB = Depends(require_roles(UserRole.ADMIN))
):
    """Remove the officer from a project that has not started verification."""
    try:
        project = OfficerAssignmentResolver(db).clear_assignment(project_id, current_user)
    except ServiceError as e:
        raise http_error(e)
    return to_project_response(project)


@router.post("/{project_id}/start-verification", response_model=ProjectResponse)
async def start_verification(
    project_id: str,
    db: Session = Depends(get_db),
    current_user: UserDB = Depends(require_roles(UserRole.OFFICER))
):
    """Assigned officer moves the project into field verification."""
    try:
        project = _load_project(db, project_id)
        project = ProjectStateMachine(db).start_verification(project, current_user)
    except ServiceError as e:
        raise http_error(e)
    return to_project_response(project)


@router.post("/{project_id}/report", response_model=ReportSubmitResponse, status_code=status.HTTP_201_CREATED)
async def submit_report(
    project_id: str,
    request: ReportRequest,
    db: Session = Depends(get_db),
    current_user: UserDB = Depends(require_roles(UserRole.OFFICER))
):
    """
    Submit the field report. Its decision approves or rejects the project
    in the same transaction.
    """
    measurements = ReportMeasurements(
        measured_area=request.measured_area,
        plot_count=request.plot_count,
        sampling_flights=request.sampling_flights,
        measured_biomass=request.measured_biomass,
        uncertainty_pct=request.uncertainty_pct,
        recommended_credits=request.recommended_credits,
    )
    try:
        report = VerificationReportProcessor(db).submit(
            project_id, current_user, measurements, request.decision, notes=request.notes
        )
        project = _load_project(db, project_id)
    except ServiceError as e:
        raise http_error(e)
    return ReportSubmitResponse(report=to_report_response(report), project=to_project_response(project))


@router.get("/{project_id}/report", response_model=ReportResponse)
async def get_report(
    project_id: str,
    db: Session = Depends(get_db),
    current_user: UserDB = Depends(get_current_user)
):
    try:
        ProjectService(db).get_project(project_id, current_user)
        report = VerificationReportProcessor(db).get_report(project_id)
        if report is None:
            raise NotFound("No report has been submitted for this project")
    except ServiceError as e:
        raise http_error(e)
    return to_report_response(report)
