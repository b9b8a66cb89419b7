"""Carbon Registry - Data Models"""
from .db_models import (
    # Enums
    UserRole, ProjectCategory, ProjectState, VerificationStatus, LifecycleStatus,
    ReportDecision, DistributionStatus, CreditStatus,
    # Entities
    UserDB, ProjectDB, VerificationReportDB, ProjectEventDB,
    CreditDistributionDB, CarbonCreditDB,
)

__all__ = [
    "UserRole", "ProjectCategory", "ProjectState", "VerificationStatus", "LifecycleStatus",
    "ReportDecision", "DistributionStatus", "CreditStatus",
    "UserDB", "ProjectDB", "VerificationReportDB", "ProjectEventDB",
    "CreditDistributionDB", "CarbonCreditDB",
]
