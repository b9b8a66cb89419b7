"""
Officer Assignment Resolver

Selects a verification officer for a project and records the assignment.

Priority (first match wins):
1. Officers whose jurisdiction is the project's city
2. Officers whose jurisdiction is the project's state/region
3. Any officer
Within levels 1 and 2 an officer specialised in the project's category is
preferred; ties resolve by registration order. No officer at all is a
valid outcome: the project stays unassigned for manual assignment.
"""
from datetime import datetime
from enum import Enum
from typing import Optional, Sequence
import logging

from sqlalchemy.orm import Session

from ...models.db_models import ProjectDB, ProjectState, UserDB, UserRole
from ..errors import AlreadyAssigned, IncompleteData, InvalidState, NotFound
from ..unit_of_work import unit_of_work
from .events import ProjectEventLog

logger = logging.getLogger(__name__)


def _normalize(value: Optional[str]) -> str:
    return (value or "").strip().casefold()


def pick_in_jurisdiction(officers: Sequence[UserDB], jurisdiction: Optional[str], category) -> Optional[UserDB]:
    """Specialist in `jurisdiction` if any, else the first officer there."""
    key = _normalize(jurisdiction)
    if not key:
        return None

    local = [o for o in officers if _normalize(o.jurisdiction) == key]
    if not local:
        return None

    category_value = category.value if isinstance(category, Enum) else category
    for officer in local:
        if category_value in (officer.specializations or []):
            return officer
    return local[0]


def select_officer(
    officers: Sequence[UserDB],
    city: Optional[str],
    region: Optional[str],
    category,
) -> Optional[UserDB]:
    """
    Apply the priority rules to `officers`, which must be in registration order.

    Returns None when there are no officers at all.
    """
    for jurisdiction in (city, region):
        officer = pick_in_jurisdiction(officers, jurisdiction, category)
        if officer is not None:
            return officer
    return officers[0] if officers else None


class OfficerAssignmentResolver:
    """
    Resolves and records officer assignments.

    The write is always a conditional update guarded by "no officer yet and
    still PENDING", so concurrent assignment attempts cannot both win.
    """

    def __init__(self, db: Session):
        self.db = db
        self.events = ProjectEventLog(db)

    def load_officers(self) -> Sequence[UserDB]:
        """All officers in registration order."""
        return (
            self.db.query(UserDB)
            .filter(UserDB.role == UserRole.OFFICER)
            .order_by(UserDB.created_at, UserDB.id)
            .all()
        )

    def resolve(self, city: Optional[str], region: Optional[str], category) -> Optional[str]:
        """Return the chosen officer id, or None when no officer is available."""
        officer = select_officer(self.load_officers(), city, region, category)
        return officer.id if officer else None

    # =========================================================================
    # ASSIGNMENT WRITES
    # =========================================================================

    def assign(self, project: ProjectDB, officer_id: str, actor_id: Optional[str], method: str) -> None:
        """
        Record `officer_id` on the project. Does not commit.

        Raises:
            AlreadyAssigned: the project already has an officer
            InvalidState: verification has moved past PENDING
        """
        rowcount = (
            self.db.query(ProjectDB)
            .filter(
                ProjectDB.id == project.id,
                ProjectDB.assigned_officer_id.is_(None),
                ProjectDB.state == ProjectState.PENDING,
            )
            .update(
                {"assigned_officer_id": officer_id, "updated_at": datetime.utcnow()},
                synchronize_session=False,
            )
        )
        if rowcount != 1:
            current = (
                self.db.query(ProjectDB.assigned_officer_id, ProjectDB.state)
                .filter(ProjectDB.id == project.id)
                .first()
            )
            if current is None:
                raise NotFound("Project not found")
            if current.assigned_officer_id is not None:
                logger.warning(f"Assignment of project {project.id} to {officer_id} lost: already assigned")
                raise AlreadyAssigned("Project is already assigned to an officer")
            raise InvalidState(f"Project cannot be assigned in state {current.state.value}")

        self.events.record(
            project_id=project.id,
            event_type="officer_assigned",
            description=f"Officer {officer_id} assigned ({method})",
            actor_id=actor_id,
            metadata={"officer_id": officer_id, "method": method},
        )

    def auto_assign(self, project: ProjectDB) -> Optional[str]:
        """
        Resolve and assign inside the caller's unit of work.

        Returns the officer id, or None when the project stays unassigned.
        """
        officer_id = self.resolve(project.city, project.region, project.category)
        if officer_id is None:
            logger.info(f"No officer available for project {project.id}; left unassigned")
            self.events.record(
                project_id=project.id,
                event_type="assignment_pending",
                description="No officer available; awaiting manual assignment",
            )
            return None

        self.assign(project, officer_id, actor_id=None, method="auto")
        logger.info(f"Project {project.id} auto-assigned to officer {officer_id}")
        return officer_id

    def self_assign(self, project_id: str, officer: UserDB) -> ProjectDB:
        """An officer claims an unassigned project."""
        project = self._get_project(project_id)
        with unit_of_work(self.db, "assign officer"):
            self.assign(project, officer.id, actor_id=officer.id, method="self")
        self.db.refresh(project)
        logger.info(f"Project {project.id} claimed by officer {officer.id}")
        return project

    def admin_assign(self, project_id: str, officer_id: str, admin: UserDB) -> ProjectDB:
        """An admin assigns a named officer."""
        project = self._get_project(project_id)
        officer = self.db.query(UserDB).filter(UserDB.id == officer_id).first()
        if officer is None:
            raise NotFound("Officer not found")
        if officer.role != UserRole.OFFICER:
            raise IncompleteData("Assignee must be an officer", {"officer_id": "user is not an officer"})

        with unit_of_work(self.db, "assign officer"):
            self.assign(project, officer.id, actor_id=admin.id, method="admin")
        self.db.refresh(project)
        logger.info(f"Project {project.id} assigned to officer {officer.id} by admin {admin.id}")
        return project

    def clear_assignment(self, project_id: str, admin: UserDB) -> ProjectDB:
        """Admin removes the officer so the project can be reassigned. PENDING only."""
        project = self._get_project(project_id)
        if project.state != ProjectState.PENDING:
            raise InvalidState("Assignment can only be cleared before verification starts")
        previous = project.assigned_officer_id

        with unit_of_work(self.db, "clear assignment"):
            rowcount = (
                self.db.query(ProjectDB)
                .filter(ProjectDB.id == project.id, ProjectDB.state == ProjectState.PENDING)
                .update(
                    {"assigned_officer_id": None, "updated_at": datetime.utcnow()},
                    synchronize_session=False,
                )
            )
            if rowcount != 1:
                raise InvalidState("Verification started before the assignment could be cleared")
            self.events.record(
                project_id=project.id,
                event_type="assignment_cleared",
                description=f"Officer {previous} unassigned by admin",
                actor_id=admin.id,
                metadata={"previous_officer_id": previous},
            )

        self.db.refresh(project)
        logger.info(f"Assignment cleared on project {project.id} by admin {admin.id}")
        return project

    def _get_project(self, project_id: str) -> ProjectDB:
        project = self.db.query(ProjectDB).filter(ProjectDB.id == project_id).first()
        if project is None:
            raise NotFound("Project not found")
        return project
