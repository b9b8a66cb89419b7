"""
Verification Report Processor

Accepts an officer's field report and drives the approve/reject transition.

Validation order:
    (a) caller is the assigned officer          → Unauthorized
    (b) project is under verification            → InvalidState
    (c) measurements complete and in range       → IncompleteData
    (d) no decision-bearing report exists yet    → DuplicateReport

The report insert and the state transition share one unit of work: either
both are committed or neither is.
"""
from dataclasses import dataclass, fields
from typing import Dict, Optional, Union
from uuid import uuid4
import logging
import math

from sqlalchemy.orm import Session

from ...models.db_models import (
    ProjectDB, ProjectState, ReportDecision, UserDB, VerificationReportDB,
)
from ..errors import DuplicateReport, IncompleteData, InvalidState, NotFound, Unauthorized
from ..unit_of_work import unit_of_work
from .state_machine import ProjectStateMachine

logger = logging.getLogger(__name__)

INTEGER_MEASUREMENTS = ("plot_count", "sampling_flights")


@dataclass
class ReportMeasurements:
    """Officer-supplied field data. Recommended credits are computed by the officer."""
    measured_area: Optional[float] = None
    plot_count: Optional[int] = None
    sampling_flights: Optional[int] = None
    measured_biomass: Optional[float] = None
    uncertainty_pct: Optional[float] = None
    recommended_credits: Optional[float] = None

    def validate(self) -> Dict[str, str]:
        """Return {field: problem} for every invalid measurement."""
        errors = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if value is None:
                errors[f.name] = "required"
            elif isinstance(value, bool) or not isinstance(value, (int, float)):
                errors[f.name] = "must be a number"
            elif math.isnan(value) or math.isinf(value):
                errors[f.name] = "must be a finite number"
            elif f.name in INTEGER_MEASUREMENTS and not float(value).is_integer():
                errors[f.name] = "must be a whole number"
            elif value < 0:
                errors[f.name] = "must be non-negative"

        if "uncertainty_pct" not in errors and self.uncertainty_pct > 100:
            errors["uncertainty_pct"] = "must be between 0 and 100"
        return errors


class VerificationReportProcessor:
    """Intake for verification reports."""

    def __init__(self, db: Session):
        self.db = db
        self.state_machine = ProjectStateMachine(db)

    def submit(
        self,
        project_id: str,
        officer: UserDB,
        measurements: ReportMeasurements,
        decision: Union[ReportDecision, str],
        notes: Optional[str] = None,
    ) -> VerificationReportDB:
        project = self.db.query(ProjectDB).filter(ProjectDB.id == project_id).first()
        if project is None:
            raise NotFound("Project not found")

        # (a) Only the assigned officer may report
        if project.assigned_officer_id is None or project.assigned_officer_id != officer.id:
            raise Unauthorized("User is not assigned to this project")

        # (b) State check. A terminal state reached through a report means the
        # caller lost to an earlier decision, which is reported as a duplicate.
        if project.state != ProjectState.IN_VERIFICATION:
            if self._has_report(project.id):
                logger.warning(f"Duplicate report for project {project.id} rejected")
                raise DuplicateReport("A decision has already been recorded for this project")
            raise InvalidState(f"Project is not under verification (state: {project.state.value})")

        # (c) Data completeness
        errors = measurements.validate()
        try:
            decision = ReportDecision(decision)
        except ValueError:
            errors["decision"] = "must be one of: " + ", ".join(d.value for d in ReportDecision)
        if errors:
            raise IncompleteData("Verification report is incomplete", errors)

        # (d) One-shot report
        if self._has_report(project.id):
            logger.warning(f"Duplicate report for project {project.id} rejected")
            raise DuplicateReport("A decision has already been recorded for this project")

        report = VerificationReportDB(
            id=str(uuid4()),
            project_id=project.id,
            officer_id=officer.id,
            measured_area=float(measurements.measured_area),
            plot_count=int(measurements.plot_count),
            sampling_flights=int(measurements.sampling_flights),
            measured_biomass=float(measurements.measured_biomass),
            uncertainty_pct=float(measurements.uncertainty_pct),
            recommended_credits=float(measurements.recommended_credits),
            decision=decision,
            notes=notes,
        )

        conflict = DuplicateReport("A decision has already been recorded for this project")
        with unit_of_work(self.db, "submit verification report", conflict=conflict):
            # Conditional update first: the loser of a race stops here
            new_state = self.state_machine.record_decision(project, decision, officer.id)
            self.db.add(report)
            self.db.flush()

        self.db.refresh(report)
        logger.info(
            f"Report {report.id} accepted for project {project_id}: "
            f"{decision.value} → {new_state.value}, {report.recommended_credits} credits recommended"
        )
        return report

    def get_report(self, project_id: str) -> Optional[VerificationReportDB]:
        return (
            self.db.query(VerificationReportDB)
            .filter(VerificationReportDB.project_id == project_id)
            .first()
        )

    def _has_report(self, project_id: str) -> bool:
        return self.get_report(project_id) is not None
