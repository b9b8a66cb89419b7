"""
Project Lifecycle State Machine

Deterministic state machine for field verification.
    PENDING → IN_VERIFICATION → APPROVED | REJECTED

APPROVED and REJECTED are terminal. Every transition is a conditional
update keyed on the expected current state, so two concurrent callers can
never both move the same project. All transitions are logged immutably.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple
import logging

from sqlalchemy.orm import Session

from ...models.db_models import ProjectDB, ProjectState, ReportDecision, UserDB
from ..errors import (
    AlreadyStarted, InvalidState, NotAssigned, NotInProgress, ReportAlreadyExists,
)
from ..unit_of_work import unit_of_work
from .events import ProjectEventLog

logger = logging.getLogger(__name__)


# =============================================================================
# STATE CONFIGURATION
# =============================================================================
#
# entry_authority names who may move a project INTO the state:
# - AUTHORITY: project authority (or admin) submission
# - OFFICER: the assigned officer, explicitly
# - REPORT: only an accepted verification report
#
# =============================================================================

STATE_CONFIG = {
    ProjectState.PENDING: {
        "description": "Submitted, awaiting field verification",
        "allowed_transitions": [ProjectState.IN_VERIFICATION],
        "entry_authority": "AUTHORITY",
    },
    ProjectState.IN_VERIFICATION: {
        "description": "Assigned officer is verifying in the field",
        "allowed_transitions": [ProjectState.APPROVED, ProjectState.REJECTED],
        "entry_authority": "OFFICER",
    },
    ProjectState.APPROVED: {
        "description": "Verified and approved",
        "allowed_transitions": [],  # Terminal state
        "entry_authority": "REPORT",
    },
    ProjectState.REJECTED: {
        "description": "Verification rejected the project",
        "allowed_transitions": [],  # Terminal state
        "entry_authority": "REPORT",
    },
}

DECISION_TARGETS = {
    ReportDecision.APPROVE: ProjectState.APPROVED,
    ReportDecision.REJECT: ProjectState.REJECTED,
}


class ProjectStateMachine:
    """
    Owns ProjectDB.state. No other component writes it.

    - start_verification: PENDING → IN_VERIFICATION, by the assigned officer
    - record_decision: IN_VERIFICATION → APPROVED | REJECTED, only from the
      report processor and inside its unit of work
    """

    def __init__(self, db_session: Session):
        """Initialize with database session."""
        self.db = db_session
        self.events = ProjectEventLog(db_session)

    def get_state_config(self, state: ProjectState) -> Dict[str, Any]:
        return STATE_CONFIG.get(state, {})

    def can_transition(self, from_state: ProjectState, to_state: ProjectState) -> Tuple[bool, str]:
        """
        Check if a state transition is allowed.

        Returns (allowed, reason)
        """
        allowed_transitions = self.get_state_config(from_state).get("allowed_transitions", [])
        if to_state in allowed_transitions:
            return True, "Transition allowed"
        return False, f"Cannot transition from {from_state.value} to {to_state.value}"

    def is_terminal_state(self, state: ProjectState) -> bool:
        return len(self.get_state_config(state).get("allowed_transitions", [])) == 0

    def get_next_states(self, state: ProjectState) -> List[ProjectState]:
        return self.get_state_config(state).get("allowed_transitions", [])

    # =========================================================================
    # TRANSITIONS
    # =========================================================================

    def start_verification(self, project: ProjectDB, officer: UserDB) -> ProjectDB:
        """
        Assigned officer begins field verification.

        Raises:
            NotAssigned: caller is not the project's assigned officer
            AlreadyStarted: project is no longer PENDING
        """
        if project.assigned_officer_id is None or project.assigned_officer_id != officer.id:
            raise NotAssigned("Only the assigned officer can start verification")
        if project.state != ProjectState.PENDING:
            raise AlreadyStarted(f"Verification already started (state: {project.state.value})")

        with unit_of_work(self.db, "start verification"):
            moved = self._transition(
                project,
                from_state=ProjectState.PENDING,
                to_state=ProjectState.IN_VERIFICATION,
                trigger="verification_started",
                actor_id=officer.id,
                values={"verification_started_at": datetime.utcnow()},
                guards=[ProjectDB.assigned_officer_id == officer.id],
            )
            if not moved:
                raise AlreadyStarted("Verification was started concurrently")

        self.db.refresh(project)
        logger.info(f"Verification started on project {project.id} by officer {officer.id}")
        return project

    def record_decision(self, project: ProjectDB, decision: ReportDecision, actor_id: str) -> ProjectState:
        """
        Apply a report decision. Does not commit: the caller's unit of work
        also holds the report insert.

        Raises:
            NotInProgress: project is not IN_VERIFICATION
            ReportAlreadyExists: another decision won the conditional update
        """
        if project.state != ProjectState.IN_VERIFICATION:
            raise NotInProgress(f"Project is not under verification (state: {project.state.value})")

        to_state = DECISION_TARGETS[decision]
        moved = self._transition(
            project,
            from_state=ProjectState.IN_VERIFICATION,
            to_state=to_state,
            trigger=f"report_{decision.value}",
            actor_id=actor_id,
            values={"decided_by": actor_id, "decided_at": datetime.utcnow()},
        )
        if not moved:
            raise ReportAlreadyExists("A decision has already been recorded for this project")
        return to_state

    def _transition(
        self,
        project: ProjectDB,
        from_state: ProjectState,
        to_state: ProjectState,
        trigger: str,
        actor_id: Optional[str],
        values: Optional[Dict[str, Any]] = None,
        guards=(),
    ) -> bool:
        """
        Conditional update: UPDATE projects SET state = to_state
        WHERE id = :id AND state = from_state [AND guards].

        Returns False when no row matched (someone else moved it first).
        """
        allowed, reason = self.can_transition(from_state, to_state)
        if not allowed:
            raise InvalidState(reason)

        update = {"state": to_state, "updated_at": datetime.utcnow()}
        update.update(values or {})

        rowcount = (
            self.db.query(ProjectDB)
            .filter(ProjectDB.id == project.id, ProjectDB.state == from_state, *guards)
            .update(update, synchronize_session=False)
        )
        if rowcount != 1:
            return False

        self.events.record(
            project_id=project.id,
            event_type="state_transition",
            description=f"State changed from {from_state.value} to {to_state.value}. Trigger: {trigger}",
            actor_id=actor_id,
            from_state=from_state,
            to_state=to_state,
            metadata={"trigger": trigger},
        )
        return True
