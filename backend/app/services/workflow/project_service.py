"""
Project Service

Project submission, listing, editing, attachments and deletion.

AUTHORITY MODEL:
- Project authorities create projects they own, and may edit them only
  until an officer is assigned
- Admins create on behalf of an authority and may edit or delete any
  project that is not yet verified
- Officers read their assigned projects and the unassigned pool
"""
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Tuple
from uuid import uuid4
import logging

from sqlalchemy import or_
from sqlalchemy.orm import Session

from ...models.db_models import (
    ProjectDB, ProjectEventDB, ProjectCategory, ProjectState, UserDB, UserRole,
    LifecycleStatus, VerificationStatus,
    states_for_lifecycle_status, states_for_verification_status,
)
from ..access import (
    Scope, apply_scope, can_view_project, ensure_authorized, ensure_owner_or_admin,
)
from ..errors import Conflict, IncompleteData, InvalidState, NotFound, Unauthorized
from ..hard_delete_service import HardDeleteService
from ..pagination import paginate
from ..storage import ObjectStorage
from ..unit_of_work import unit_of_work
from .assignment import OfficerAssignmentResolver
from .events import ProjectEventLog

logger = logging.getLogger(__name__)

# Fields a project authority or admin may set directly
EDITABLE_FIELDS = (
    "name", "description", "category", "start_date", "end_date",
    "address", "city", "region", "country",
    "land_area", "land_area_unit", "estimated_credits",
)

ATTACHMENT_FIELDS = {"document": "documents", "image": "images"}


class ProjectService:
    """Project CRUD built on the assignment resolver and the event log."""

    def __init__(self, db: Session, storage: Optional[ObjectStorage] = None):
        self.db = db
        self.storage = storage
        self.resolver = OfficerAssignmentResolver(db)
        self.events = ProjectEventLog(db)

    # =========================================================================
    # CREATE
    # =========================================================================

    def create_project(self, data: Dict[str, Any], caller: UserDB) -> ProjectDB:
        """
        Submit a project and run officer assignment in the same unit of work.

        Admins must name the owning authority in `authority_id`.
        """
        ensure_authorized(caller.role, [UserRole.ADMIN, UserRole.PROJECT_AUTHORITY], "create projects")

        values = self._clean_values(data, require_core=True)
        authority_id = self._resolve_owner(data, caller)

        project = ProjectDB(
            id=str(uuid4()),
            authority_id=authority_id,
            state=ProjectState.PENDING,
            documents=[],
            images=[],
            **values,
        )

        with unit_of_work(self.db, "create project"):
            self.db.add(project)
            self.db.flush()
            self.events.record(
                project_id=project.id,
                event_type="project_created",
                description=f"Project '{project.name}' submitted",
                actor_id=caller.id,
                to_state=ProjectState.PENDING,
            )
            self.resolver.auto_assign(project)

        self.db.refresh(project)
        logger.info(
            f"Project created: {project.id} owner={authority_id} "
            f"officer={project.assigned_officer_id or 'unassigned'}"
        )
        return project

    def _resolve_owner(self, data: Dict[str, Any], caller: UserDB) -> str:
        if caller.role == UserRole.PROJECT_AUTHORITY:
            return caller.id

        authority_id = data.get("authority_id")
        if not authority_id:
            raise IncompleteData(
                "Admins must name the owning project authority",
                {"authority_id": "required"},
            )
        owner = self.db.query(UserDB).filter(UserDB.id == authority_id).first()
        if owner is None:
            raise NotFound("Project authority not found")
        if owner.role != UserRole.PROJECT_AUTHORITY:
            raise IncompleteData(
                "Projects must be owned by a project authority",
                {"authority_id": "user is not a project authority"},
            )
        return owner.id

    def _clean_values(self, data: Dict[str, Any], require_core: bool, current: Optional[ProjectDB] = None) -> Dict[str, Any]:
        """Pick editable fields out of `data` and check them."""
        unknown = [k for k in data if k not in EDITABLE_FIELDS and k != "authority_id"]
        errors = {k: "field cannot be set" for k in unknown}
        values = {k: data[k] for k in EDITABLE_FIELDS if k in data}

        # Core fields are non-nullable: required on create, never clearable on edit
        for required in ("name", "description", "category"):
            if (require_core or required in values) and not values.get(required):
                errors[required] = "required"

        if values.get("category") is not None:
            try:
                values["category"] = ProjectCategory(values["category"])
            except ValueError:
                errors["category"] = "must be one of: " + ", ".join(c.value for c in ProjectCategory)

        for numeric in ("land_area", "estimated_credits"):
            value = values.get(numeric)
            if value is not None and value < 0:
                errors[numeric] = "must be non-negative"

        start = values.get("start_date", current.start_date if current else None)
        end = values.get("end_date", current.end_date if current else None)
        if isinstance(start, date) and isinstance(end, date) and end < start:
            errors["end_date"] = "must not be before start_date"

        if errors:
            raise IncompleteData("Project data is invalid", errors)
        return values

    # =========================================================================
    # READ
    # =========================================================================

    def get_project(self, project_id: str, caller: UserDB) -> ProjectDB:
        project = self.db.query(ProjectDB).filter(ProjectDB.id == project_id).first()
        if project is None:
            raise NotFound("Project not found")
        if not can_view_project(project, caller.role, caller.id):
            raise Unauthorized("You do not have access to this project")
        return project

    def list_projects(
        self,
        caller: UserDB,
        page: int = 1,
        page_size: int = 10,
        status: Optional[str] = None,
        category: Optional[str] = None,
        search: Optional[str] = None,
    ) -> Tuple[List[ProjectDB], Dict[str, int]]:
        """Role-scoped project list, newest first."""
        query = apply_scope(self.db.query(ProjectDB), Scope.PROJECTS, caller.role, caller.id)

        if status and status != "all":
            query = query.filter(ProjectDB.state.in_(states_for_lifecycle_status(LifecycleStatus(status))))
        if category and category != "all":
            query = query.filter(ProjectDB.category == ProjectCategory(category))
        if search:
            term = f"%{search}%"
            query = query.filter(or_(
                ProjectDB.name.ilike(term),
                ProjectDB.city.ilike(term),
                ProjectDB.region.ilike(term),
            ))

        query = query.order_by(ProjectDB.created_at.desc(), ProjectDB.id)
        return paginate(query, page, page_size)

    def verification_queue(
        self,
        caller: UserDB,
        status: Optional[str] = None,
        page: int = 1,
        page_size: int = 10,
    ) -> Tuple[List[ProjectDB], Dict[str, int]]:
        """Projects an officer can act on: assigned to them or unclaimed."""
        ensure_authorized(caller.role, [UserRole.ADMIN, UserRole.OFFICER], "view the verification queue")
        query = apply_scope(self.db.query(ProjectDB), Scope.VERIFICATION, caller.role, caller.id)
        if status and status != "all":
            query = query.filter(
                ProjectDB.state.in_(states_for_verification_status(VerificationStatus(status)))
            )
        query = query.order_by(ProjectDB.created_at.desc(), ProjectDB.id)
        return paginate(query, page, page_size)

    def project_events(self, project_id: str, caller: UserDB) -> List[ProjectEventDB]:
        self.get_project(project_id, caller)
        return self.events.for_project(project_id)

    # =========================================================================
    # UPDATE
    # =========================================================================

    def update_project(self, project_id: str, changes: Dict[str, Any], caller: UserDB) -> ProjectDB:
        """
        Edit descriptive fields.

        Owners may edit only while the project is unassigned and pending;
        the check and the write are one conditional update.
        """
        ensure_authorized(caller.role, [UserRole.ADMIN, UserRole.PROJECT_AUTHORITY], "update projects")
        project = self._get(project_id)
        ensure_owner_or_admin(caller.role, caller.id, project.authority_id, "update this project")

        if "authority_id" in changes:
            raise IncompleteData("Project ownership cannot change", {"authority_id": "field cannot be set"})
        values = self._clean_values(changes, require_core=False, current=project)
        if not values:
            return project

        query = self.db.query(ProjectDB).filter(ProjectDB.id == project.id)
        if caller.role != UserRole.ADMIN:
            query = query.filter(
                ProjectDB.authority_id == caller.id,
                ProjectDB.assigned_officer_id.is_(None),
                ProjectDB.state == ProjectState.PENDING,
            )

        with unit_of_work(self.db, "update project"):
            rowcount = query.update(
                {**values, "updated_at": datetime.utcnow()}, synchronize_session=False
            )
            if rowcount != 1:
                raise InvalidState("Project can no longer be edited once an officer is assigned")
            self.events.record(
                project_id=project.id,
                event_type="project_updated",
                description=f"Updated fields: {', '.join(sorted(values))}",
                actor_id=caller.id,
                metadata={"fields": sorted(values)},
            )

        self.db.refresh(project)
        logger.info(f"Project {project.id} updated by {caller.id}: {sorted(values)}")
        return project

    def add_attachment(self, project_id: str, caller: UserDB, kind: str, filename: str, content: bytes) -> ProjectDB:
        """
        Store a document or land image and append its reference.

        The append is guarded on the row's `updated_at` so concurrent uploads
        cannot overwrite each other's list.
        """
        ensure_authorized(caller.role, [UserRole.ADMIN, UserRole.PROJECT_AUTHORITY], "upload project files")
        if kind not in ATTACHMENT_FIELDS:
            raise IncompleteData("Unknown attachment kind", {"kind": "must be 'document' or 'image'"})
        if self.storage is None:
            raise InvalidState("File storage is not configured")

        project = self._get(project_id)
        ensure_owner_or_admin(caller.role, caller.id, project.authority_id, "upload files to this project")
        if project.state == ProjectState.APPROVED:
            raise InvalidState("Verified projects cannot receive new files")

        column = ATTACHMENT_FIELDS[kind]
        url = self.storage.save(filename, content)
        entries = list(getattr(project, column) or [])
        entries.append({"name": filename, "url": url, "uploaded_at": datetime.utcnow().isoformat()})

        try:
            with unit_of_work(self.db, "attach file"):
                rowcount = self.db.query(ProjectDB).filter(
                    ProjectDB.id == project.id,
                    ProjectDB.updated_at == project.updated_at,
                ).update({column: entries, "updated_at": datetime.utcnow()}, synchronize_session=False)
                if rowcount != 1:
                    raise Conflict("Project changed while uploading; re-fetch and retry")
        except Exception:
            self.storage.delete(url)
            raise

        self.db.refresh(project)
        logger.info(f"Attached {kind} '{filename}' to project {project.id}")
        return project

    # =========================================================================
    # DELETE
    # =========================================================================

    def delete_project(self, project_id: str, caller: UserDB) -> Dict[str, int]:
        ensure_authorized(caller.role, [UserRole.ADMIN, UserRole.PROJECT_AUTHORITY], "delete projects")
        project = self._get(project_id)
        ensure_owner_or_admin(caller.role, caller.id, project.authority_id, "delete this project")
        if project.state == ProjectState.APPROVED:
            raise InvalidState("Verified projects cannot be deleted")

        with unit_of_work(self.db, "delete project"):
            cascade = HardDeleteService(self.db).delete_project(project.id)

        self.db.expunge(project)
        logger.info(f"Project {project_id} deleted by {caller.id}: {cascade}")
        return cascade

    def _get(self, project_id: str) -> ProjectDB:
        project = self.db.query(ProjectDB).filter(ProjectDB.id == project_id).first()
        if project is None:
            raise NotFound("Project not found")
        return project
