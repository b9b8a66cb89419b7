"""
Project Workflow Services

Submission → Officer Assignment → Field Verification → Decision

- OfficerAssignmentResolver: jurisdiction/specialization matching and assignment writes
- ProjectStateMachine: PENDING → IN_VERIFICATION → APPROVED | REJECTED
- VerificationReportProcessor: report intake driving the decision transition
- ProjectService: project CRUD, attachments and the verification queue
- ProjectEventLog: append-only workflow history
"""

from .assignment import OfficerAssignmentResolver, select_officer
from .events import ProjectEventLog
from .state_machine import ProjectStateMachine, STATE_CONFIG
from .report_processor import ReportMeasurements, VerificationReportProcessor
from .project_service import ProjectService

__all__ = [
    'OfficerAssignmentResolver',
    'select_officer',
    'ProjectEventLog',
    'ProjectStateMachine',
    'STATE_CONFIG',
    'ReportMeasurements',
    'VerificationReportProcessor',
    'ProjectService',
]
