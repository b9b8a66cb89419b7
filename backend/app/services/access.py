"""
Role Authorization Gate

Pure role checks plus the scope predicates every list and aggregate query
applies, so project lists, verification queues, statistics and
distribution views all filter the same way for the same caller.
"""
from enum import Enum
from typing import Iterable, Optional
import logging

from sqlalchemy import or_

from ..models.db_models import UserRole, ProjectDB, CreditDistributionDB
from .errors import Unauthorized, NotOwner

logger = logging.getLogger(__name__)


class Scope(str, Enum):
    """Record sets a caller can be scoped to."""
    PROJECTS = "projects"            # Project list / project stats
    VERIFICATION = "verification"    # Verification queue / verification stats
    DISTRIBUTIONS = "distributions"  # Distribution list / credit aggregates


def as_role(role) -> UserRole:
    return role if isinstance(role, UserRole) else UserRole(role)


def authorize(caller_role, required_roles: Iterable) -> bool:
    """
    Decide whether a role may perform an action.

    Returns True (allow) or False (deny). No side effects.
    """
    required = {as_role(r) for r in required_roles}
    return as_role(caller_role) in required


def ensure_authorized(caller_role, required_roles: Iterable, action: str = "perform this action") -> None:
    """Raise Unauthorized when `authorize` denies."""
    required = [as_role(r) for r in required_roles]
    if not authorize(caller_role, required):
        logger.warning(f"Role {as_role(caller_role).value} denied: {action}")
        raise Unauthorized(
            f"Role {as_role(caller_role).value} is not allowed to {action}"
        )


def ensure_owner_or_admin(caller_role, caller_id: str, owner_id: Optional[str], action: str) -> None:
    """Second-layer check: admins pass, everyone else must own the resource."""
    if as_role(caller_role) == UserRole.ADMIN:
        return
    if owner_id is None or owner_id != caller_id:
        logger.warning(f"User {caller_id} denied ownership check: {action}")
        raise NotOwner(f"Only the owner or an admin may {action}")


def scope_predicate(scope: Scope, caller_role, caller_id: str):
    """
    Build the SQL filter restricting `scope` to what the caller may see.

    Returns None when the caller is unrestricted (admin).
    """
    role = as_role(caller_role)
    if role == UserRole.ADMIN:
        return None

    if scope == Scope.PROJECTS:
        if role == UserRole.PROJECT_AUTHORITY:
            return ProjectDB.authority_id == caller_id
        return ProjectDB.assigned_officer_id == caller_id

    if scope == Scope.VERIFICATION:
        if role == UserRole.PROJECT_AUTHORITY:
            return ProjectDB.authority_id == caller_id
        # Officers see their own work plus the unclaimed pool
        return or_(
            ProjectDB.assigned_officer_id == caller_id,
            ProjectDB.assigned_officer_id.is_(None),
        )

    if scope == Scope.DISTRIBUTIONS:
        if role == UserRole.OFFICER:
            return CreditDistributionDB.officer_id == caller_id
        return CreditDistributionDB.authority_id == caller_id

    raise ValueError(f"Unknown scope: {scope}")


def apply_scope(query, scope: Scope, caller_role, caller_id: str):
    """Apply `scope_predicate` to a SQLAlchemy query."""
    predicate = scope_predicate(scope, caller_role, caller_id)
    if predicate is None:
        return query
    return query.filter(predicate)


def can_view_project(project: ProjectDB, caller_role, caller_id: str) -> bool:
    """In-memory counterpart of the PROJECTS/VERIFICATION scopes for a single record."""
    role = as_role(caller_role)
    if role == UserRole.ADMIN:
        return True
    if role == UserRole.PROJECT_AUTHORITY:
        return project.authority_id == caller_id
    return project.assigned_officer_id in (None, caller_id)
