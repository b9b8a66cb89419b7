"""
Carbon Registry - SQLAlchemy ORM Models
Persistent storage for users, projects, verification reports, distributions
and the issued-credit ledger
"""
from datetime import datetime
from enum import Enum
from sqlalchemy import Column, String, Integer, Float, DateTime, Date, Text, JSON, ForeignKey, Enum as SQLEnum
from sqlalchemy.orm import relationship
from ..database import Base


# =============================================================================
# ENUMS
# =============================================================================

class UserRole(str, Enum):
    """Mutually exclusive user roles."""
    ADMIN = "admin"
    OFFICER = "officer"
    PROJECT_AUTHORITY = "project_authority"


class ProjectCategory(str, Enum):
    """Carbon project categories; officers specialise in these."""
    FORESTRY = "forestry"
    RENEWABLE_ENERGY = "renewable_energy"
    ENERGY_EFFICIENCY = "energy_efficiency"
    METHANE_CAPTURE = "methane_capture"
    OTHER = "other"


class ProjectState(str, Enum):
    """
    Single source of truth for a project's position in the workflow.

    The lifecycle and verification statuses exposed to clients are derived
    from this value, so they can never disagree.
    """
    PENDING = "pending"
    IN_VERIFICATION = "in_verification"
    APPROVED = "approved"
    REJECTED = "rejected"


class VerificationStatus(str, Enum):
    """Field-verification status (derived)."""
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    VERIFIED = "verified"
    REJECTED = "rejected"


class LifecycleStatus(str, Enum):
    """Administrative status (derived)."""
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class ReportDecision(str, Enum):
    """Officer's recommendation recorded on a verification report."""
    APPROVE = "approve"
    REJECT = "reject"


class DistributionStatus(str, Enum):
    PENDING = "pending"
    DISTRIBUTED = "distributed"


class CreditStatus(str, Enum):
    """Status of an issued credit lot in the ledger."""
    AVAILABLE = "available"
    DISTRIBUTED = "distributed"
    RETIRED = "retired"


VERIFICATION_STATUS_BY_STATE = {
    ProjectState.PENDING: VerificationStatus.PENDING,
    ProjectState.IN_VERIFICATION: VerificationStatus.IN_PROGRESS,
    ProjectState.APPROVED: VerificationStatus.VERIFIED,
    ProjectState.REJECTED: VerificationStatus.REJECTED,
}

LIFECYCLE_STATUS_BY_STATE = {
    ProjectState.PENDING: LifecycleStatus.PENDING,
    ProjectState.IN_VERIFICATION: LifecycleStatus.PENDING,
    ProjectState.APPROVED: LifecycleStatus.APPROVED,
    ProjectState.REJECTED: LifecycleStatus.REJECTED,
}


def states_for_verification_status(status: VerificationStatus):
    """Project states that present the given verification status."""
    return [s for s, v in VERIFICATION_STATUS_BY_STATE.items() if v == status]


def states_for_lifecycle_status(status: LifecycleStatus):
    """Project states that present the given lifecycle status."""
    return [s for s, v in LIFECYCLE_STATUS_BY_STATE.items() if v == status]


# =============================================================================
# USERS
# =============================================================================

class UserDB(Base):
    """User account. Role is fixed at creation."""
    __tablename__ = "users"

    id = Column(String(36), primary_key=True)  # UUID
    email = Column(String(255), unique=True, nullable=False, index=True)
    name = Column(String(255), nullable=False)
    password_hash = Column(String(255), nullable=False)
    role = Column(SQLEnum(UserRole), nullable=False, index=True)

    # Officer-only fields
    jurisdiction = Column(String(100), nullable=True, index=True)  # City or state/region served
    specializations = Column(JSON, nullable=True, default=list)    # List of ProjectCategory values

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    owned_projects = relationship(
        "ProjectDB", back_populates="authority", foreign_keys="ProjectDB.authority_id"
    )
    assigned_projects = relationship(
        "ProjectDB", back_populates="assigned_officer", foreign_keys="ProjectDB.assigned_officer_id"
    )


# =============================================================================
# PROJECTS
# =============================================================================

class ProjectDB(Base):
    """
    A carbon-credit project submitted by a project authority.

    `state` is only written through conditional updates issued by the
    workflow services (assignment resolver, state machine).
    """
    __tablename__ = "projects"

    id = Column(String(36), primary_key=True)  # UUID
    name = Column(String(255), nullable=False, index=True)
    description = Column(Text, nullable=False)
    category = Column(SQLEnum(ProjectCategory), nullable=False, index=True)
    start_date = Column(Date, nullable=True)
    end_date = Column(Date, nullable=True)

    # Location
    address = Column(String(255), nullable=True)
    city = Column(String(100), nullable=True, index=True)
    region = Column(String(100), nullable=True, index=True)  # State / province
    country = Column(String(100), nullable=True)

    land_area = Column(Float, nullable=True)
    land_area_unit = Column(String(20), nullable=True)
    estimated_credits = Column(Float, default=0)

    # Ordered [{"name": ..., "url": ...}] references returned by object storage
    documents = Column(JSON, nullable=False, default=list)
    images = Column(JSON, nullable=False, default=list)

    # Ownership / assignment
    authority_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    assigned_officer_id = Column(String(36), ForeignKey("users.id"), nullable=True, index=True)

    # Workflow
    state = Column(SQLEnum(ProjectState), nullable=False, default=ProjectState.PENDING, index=True)
    verification_started_at = Column(DateTime, nullable=True)
    decided_by = Column(String(36), ForeignKey("users.id"), nullable=True)  # Set on APPROVED / REJECTED
    decided_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    authority = relationship("UserDB", back_populates="owned_projects", foreign_keys=[authority_id])
    assigned_officer = relationship("UserDB", back_populates="assigned_projects", foreign_keys=[assigned_officer_id])
    report = relationship("VerificationReportDB", back_populates="project", uselist=False)
    distribution = relationship("CreditDistributionDB", back_populates="project", uselist=False)
    events = relationship("ProjectEventDB", back_populates="project", order_by="ProjectEventDB.created_at")

    @property
    def verification_status(self) -> VerificationStatus:
        return VERIFICATION_STATUS_BY_STATE[self.state or ProjectState.PENDING]

    @property
    def lifecycle_status(self) -> LifecycleStatus:
        return LIFECYCLE_STATUS_BY_STATE[self.state or ProjectState.PENDING]


class VerificationReportDB(Base):
    """
    Officer field report. One per project; immutable once written because
    the decision is recorded in the same unit of work.
    """
    __tablename__ = "verification_reports"

    id = Column(String(36), primary_key=True)  # UUID
    project_id = Column(String(36), ForeignKey("projects.id"), nullable=False, unique=True, index=True)
    officer_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)

    # Field measurements
    measured_area = Column(Float, nullable=False)
    plot_count = Column(Integer, nullable=False)
    sampling_flights = Column(Integer, nullable=False)
    measured_biomass = Column(Float, nullable=False)
    uncertainty_pct = Column(Float, nullable=False)
    recommended_credits = Column(Float, nullable=False)

    decision = Column(SQLEnum(ReportDecision), nullable=False)
    notes = Column(Text, nullable=True)

    submitted_at = Column(DateTime, default=datetime.utcnow)

    # Relationships
    project = relationship("ProjectDB", back_populates="report")


class ProjectEventDB(Base):
    """
    Immutable log of project workflow events.
    Append-only - records every assignment and state change.
    """
    __tablename__ = "project_events"

    id = Column(String(36), primary_key=True)  # UUID
    project_id = Column(String(36), ForeignKey("projects.id"), nullable=False, index=True)

    event_type = Column(String(50), nullable=False)  # project_created, officer_assigned, verification_started, ...
    actor_id = Column(String(36), nullable=True)      # NULL for system actions (auto-assignment)
    from_state = Column(SQLEnum(ProjectState), nullable=True)
    to_state = Column(SQLEnum(ProjectState), nullable=True)
    description = Column(Text, nullable=False)
    event_metadata = Column(JSON, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)

    # Relationships
    project = relationship("ProjectDB", back_populates="events")


# =============================================================================
# CREDITS
# =============================================================================

class CreditDistributionDB(Base):
    """
    Split of a verified project's credits between its officer and authority.
    Immutable once DISTRIBUTED.
    """
    __tablename__ = "credit_distributions"

    id = Column(String(36), primary_key=True)  # UUID
    project_id = Column(String(36), ForeignKey("projects.id"), nullable=False, unique=True, index=True)
    officer_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    authority_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)

    total_credits = Column(Float, nullable=False)
    officer_share_pct = Column(Float, nullable=False)
    authority_share_pct = Column(Float, nullable=False)

    officer_wallet = Column(String(255), nullable=True)
    authority_wallet = Column(String(255), nullable=True)

    status = Column(SQLEnum(DistributionStatus), nullable=False, default=DistributionStatus.PENDING, index=True)
    settlement_reference = Column(String(255), nullable=True)  # Opaque id returned by the settlement gateway

    created_by = Column(String(36), ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    distributed_at = Column(DateTime, nullable=True, index=True)

    # Relationships
    project = relationship("ProjectDB", back_populates="distribution")


class CarbonCreditDB(Base):
    """
    Issued credit lot. The admin-facing supply figures are sums over this table.
    """
    __tablename__ = "carbon_credits"

    id = Column(String(36), primary_key=True)  # UUID
    project_id = Column(String(36), ForeignKey("projects.id"), nullable=False, index=True)
    distribution_id = Column(String(36), ForeignKey("credit_distributions.id"), nullable=True)

    serial_number = Column(String(64), unique=True, nullable=False)
    vintage = Column(Integer, nullable=False)  # Year the credits were generated
    amount = Column(Float, nullable=False)
    status = Column(SQLEnum(CreditStatus), nullable=False, default=CreditStatus.AVAILABLE, index=True)

    issued_at = Column(DateTime, default=datetime.utcnow)
    retired_at = Column(DateTime, nullable=True)
