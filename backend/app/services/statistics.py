"""
Statistics Aggregator

Role-scoped counts over projects and users. Every known key is always
present, defaulting to zero.
"""
from typing import Dict, List, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.orm import Session

from ..models.db_models import (
    ProjectDB, ProjectState, UserDB, UserRole,
    ProjectEventDB, LifecycleStatus, VERIFICATION_STATUS_BY_STATE, LIFECYCLE_STATUS_BY_STATE, VerificationStatus,
    states_for_lifecycle_status,
)
from .access import Scope, apply_scope, as_role
from .credits.calculator import CreditAggregator
from .workflow.events import ProjectEventLog

# verification status -> response key
VERIFICATION_STAT_KEYS = {
    VerificationStatus.PENDING: "pending",
    VerificationStatus.VERIFIED: "verified",
    VerificationStatus.REJECTED: "rejected",
}

# Dashboard figures shown to each role
DASHBOARD_STATS_BY_ROLE = {
    UserRole.ADMIN: ("totalProjects", "activeCredits", "verifiedProjects", "pendingReviews"),
    UserRole.OFFICER: ("activeCredits", "verifiedProjects", "pendingReviews"),
    UserRole.PROJECT_AUTHORITY: ("totalProjects", "activeCredits"),
}


class StatisticsAggregator:

    def __init__(self, db: Session):
        self.db = db

    def _count_by_state(self, scope: Scope, caller: UserDB) -> Dict[ProjectState, int]:
        query = self.db.query(ProjectDB.state, func.count(ProjectDB.id)).group_by(ProjectDB.state)
        query = apply_scope(query, scope, caller.role, caller.id)
        return {state: count for state, count in query.all()}

    def verification_stats(self, caller: UserDB) -> Dict[str, int]:
        """
        {pending, verified, rejected, inProgress} for the caller's queue.

        `inProgress` is derived: pending projects that already have an
        officer. Projects in active field verification are not one of the
        four reported buckets.
        """
        stats = {"pending": 0, "verified": 0, "rejected": 0, "inProgress": 0}
        for state, count in self._count_by_state(Scope.VERIFICATION, caller).items():
            key = VERIFICATION_STAT_KEYS.get(VERIFICATION_STATUS_BY_STATE[state])
            if key:
                stats[key] += count

        in_progress = self.db.query(func.count(ProjectDB.id)).filter(
            ProjectDB.state == ProjectState.PENDING,
            ProjectDB.assigned_officer_id.isnot(None),
        )
        stats["inProgress"] = apply_scope(in_progress, Scope.VERIFICATION, caller.role, caller.id).scalar() or 0
        return stats

    def project_stats(self, caller: UserDB) -> Dict[str, int]:
        """{total, pending, approved, rejected} by lifecycle status."""
        stats = {"total": 0}
        stats.update({status.value: 0 for status in LifecycleStatus})
        for state, count in self._count_by_state(Scope.PROJECTS, caller).items():
            stats[LIFECYCLE_STATUS_BY_STATE[state].value] += count
            stats["total"] += count
        return stats

    def user_stats(self) -> Dict[str, int]:
        """{total, admin, officer, project_authority}."""
        rows = self.db.query(UserDB.role, func.count(UserDB.id)).group_by(UserDB.role).all()
        stats = {"total": 0}
        stats.update({role.value: 0 for role in UserRole})
        for role, count in rows:
            stats[role.value] = count
            stats["total"] += count
        return stats

    def dashboard(
        self, caller: UserDB, activity_limit: int = 5
    ) -> Tuple[Dict[str, float], List[Tuple[ProjectEventDB, Optional[str]]]]:
        """
        Summary figures for the caller's role plus their latest activity.

        Project figures use the caller's project scope: authorities count
        their own projects, officers the projects assigned to them.
        `activeCredits` is the role's available credit figure.
        """
        role = as_role(caller.role)
        by_state = self._count_by_state(Scope.PROJECTS, caller)
        pending_states = states_for_lifecycle_status(LifecycleStatus.PENDING)

        figures = {
            "totalProjects": lambda: sum(by_state.values()),
            "activeCredits": lambda: CreditAggregator(self.db).aggregate_for_role(role, caller.id)["availableCredits"],
            "verifiedProjects": lambda: by_state.get(ProjectState.APPROVED, 0),
            "pendingReviews": lambda: sum(by_state.get(s, 0) for s in pending_states),
        }
        stats = {key: figures[key]() for key in DASHBOARD_STATS_BY_ROLE[role]}
        activity = ProjectEventLog(self.db).recent(role, caller.id, limit=activity_limit)
        return stats, activity
