"""
Hard Delete Service

Transactional deletion of a project with full dependency teardown.
No soft-delete, no status flags, no archival.
"""
from datetime import datetime
from typing import Dict

from sqlalchemy.orm import Session

from ..models.db_models import (
    ProjectDB, ProjectEventDB, ProjectState, VerificationReportDB,
)
from .errors import InvalidState


class HardDeleteService:
    """
    Centralized hard delete service.
    Single source of truth for dependency discovery and ordered deletion.
    """

    def __init__(self, db: Session):
        self.db = db

    def delete_project(self, project_id: str) -> Dict[str, int]:
        """
        Hard delete a project and all dependent records. Does not commit.

        Deletion order:
        1. Claim the project row with a conditional update on "not verified"
        2. Delete the verification report
        3. Delete the event log
        4. Delete the project

        Verified projects can carry distributions and issued credits and are
        never deleted.

        Returns cascade counts for confirmation.
        """
        # Step 1: the row lock taken here serialises against a concurrent approval
        claimed = self.db.query(ProjectDB).filter(
            ProjectDB.id == project_id,
            ProjectDB.state != ProjectState.APPROVED,
        ).update({"updated_at": datetime.utcnow()}, synchronize_session=False)
        if claimed != 1:
            raise InvalidState("Verified projects cannot be deleted")

        cascade = {}

        # Step 2: report
        cascade["verification_reports"] = self.db.query(VerificationReportDB).filter(
            VerificationReportDB.project_id == project_id
        ).delete(synchronize_session=False)

        # Step 3: event log
        cascade["project_events"] = self.db.query(ProjectEventDB).filter(
            ProjectEventDB.project_id == project_id
        ).delete(synchronize_session=False)

        # Step 4: the project itself
        cascade["projects"] = self.db.query(ProjectDB).filter(
            ProjectDB.id == project_id
        ).delete(synchronize_session=False)

        return cascade
