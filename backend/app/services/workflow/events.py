"""
Project Event Log

Append-only record of assignments and state changes. Entries are added to
the caller's unit of work and are never updated.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple
from uuid import uuid4

from sqlalchemy.orm import Session

from ...models.db_models import ProjectDB, ProjectEventDB, ProjectState, UserDB
from ..access import Scope, apply_scope


class ProjectEventLog:
    """Writes and reads ProjectEventDB rows."""

    def __init__(self, db: Session):
        self.db = db

    def record(
        self,
        project_id: str,
        event_type: str,
        description: str,
        actor_id: Optional[str] = None,
        from_state: Optional[ProjectState] = None,
        to_state: Optional[ProjectState] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> ProjectEventDB:
        event = ProjectEventDB(
            id=str(uuid4()),
            project_id=project_id,
            event_type=event_type,
            actor_id=actor_id,
            from_state=from_state,
            to_state=to_state,
            description=description,
            event_metadata=metadata or {},
            created_at=datetime.utcnow(),
        )
        self.db.add(event)
        return event

    def for_project(self, project_id: str) -> List[ProjectEventDB]:
        return (
            self.db.query(ProjectEventDB)
            .filter(ProjectEventDB.project_id == project_id)
            .order_by(ProjectEventDB.created_at, ProjectEventDB.id)
            .all()
        )

    def recent(self, caller_role, caller_id: str, limit: int = 5) -> List[Tuple[ProjectEventDB, Optional[str]]]:
        """
        Latest events on projects the caller can see, newest first.

        Returns (event, actor name) pairs; the name is None for system actions.
        """
        query = (
            self.db.query(ProjectEventDB, UserDB.name)
            .select_from(ProjectEventDB)
            .join(ProjectDB, ProjectDB.id == ProjectEventDB.project_id)
            .outerjoin(UserDB, UserDB.id == ProjectEventDB.actor_id)
        )
        query = apply_scope(query, Scope.PROJECTS, caller_role, caller_id)
        rows = query.order_by(ProjectEventDB.created_at.desc(), ProjectEventDB.id.desc()).limit(limit).all()
        return [(event, name) for event, name in rows]
