"""
Distribution Service

Creates and finalizes the officer/authority split of a verified project's
credits.

    PENDING → DISTRIBUTED   (terminal, immutable)

Finalization is a conditional update on status = PENDING, so repeating it
never double-counts. The optional settlement gateway is the opaque
external chain call: it either returns a reference or raises, and a raise
rolls the whole finalization back.
"""
from uuid import uuid4
from datetime import datetime
from typing import Dict, List, Optional, Tuple
import logging

from sqlalchemy.orm import Session

from ...config import AUTHORITY_SHARE_PCT, OFFICER_SHARE_PCT
from ...models.db_models import (
    CreditDistributionDB, DistributionStatus, ProjectDB, ProjectState, UserDB, UserRole,
    VerificationReportDB,
)
from ..access import Scope, apply_scope, ensure_authorized
from ..errors import (
    DependencyFailure, DistributionExists, IncompleteData, InvalidState, NotAssigned, NotFound, Unauthorized,
)
from ..pagination import paginate
from ..unit_of_work import unit_of_work
from ..workflow.events import ProjectEventLog
from .calculator import compute_shares
from .ledger import CreditLedgerService

logger = logging.getLogger(__name__)


class SettlementGateway:
    """External settlement collaborator. Returns an opaque reference or raises."""

    def settle(self, distribution: CreditDistributionDB, officer_credits: float, authority_credits: float) -> Optional[str]:
        raise NotImplementedError


class NullSettlementGateway(SettlementGateway):
    """No external settlement; finalization is recorded locally only."""

    def settle(self, distribution, officer_credits, authority_credits):
        return None


def distribution_shares(distribution: CreditDistributionDB) -> Tuple[float, float]:
    return compute_shares(
        distribution.total_credits,
        distribution.officer_share_pct,
        distribution.authority_share_pct,
    )


class DistributionService:
    """Distribution records, scoped reads and idempotent finalization."""

    def __init__(self, db: Session, gateway: Optional[SettlementGateway] = None):
        self.db = db
        self.gateway = gateway or NullSettlementGateway()
        self.ledger = CreditLedgerService(db)
        self.events = ProjectEventLog(db)

    # =========================================================================
    # CREATE
    # =========================================================================

    def create_distribution(
        self,
        project_id: str,
        caller: UserDB,
        total_credits: Optional[float] = None,
        officer_share_pct: Optional[float] = None,
        authority_share_pct: Optional[float] = None,
        officer_wallet: Optional[str] = None,
        authority_wallet: Optional[str] = None,
    ) -> CreditDistributionDB:
        """
        Open a PENDING distribution for a verified project.

        Total defaults to the report's recommended credits and shares to
        the configured policy. Only admins may override either.
        """
        ensure_authorized(caller.role, [UserRole.ADMIN, UserRole.OFFICER], "create distributions")

        project = self.db.query(ProjectDB).filter(ProjectDB.id == project_id).first()
        if project is None:
            raise NotFound("Project not found")
        if caller.role == UserRole.OFFICER and project.assigned_officer_id != caller.id:
            raise NotAssigned("Only the assigned officer can distribute this project's credits")
        overrides = {
            "total_credits": total_credits,
            "officer_share_pct": officer_share_pct,
            "authority_share_pct": authority_share_pct,
        }
        if caller.role != UserRole.ADMIN and any(v is not None for v in overrides.values()):
            logger.warning(f"Officer {caller.id} tried to override distribution terms for project {project.id}")
            raise Unauthorized("Only admins may override the distribution total or shares")
        if project.state != ProjectState.APPROVED:
            raise InvalidState("Credits can only be distributed for verified projects")

        if total_credits is None:
            report = (
                self.db.query(VerificationReportDB)
                .filter(VerificationReportDB.project_id == project.id)
                .first()
            )
            if report is None:
                raise IncompleteData("No recommended total to distribute", {"total_credits": "required"})
            total_credits = report.recommended_credits

        officer_share_pct = OFFICER_SHARE_PCT if officer_share_pct is None else officer_share_pct
        authority_share_pct = AUTHORITY_SHARE_PCT if authority_share_pct is None else authority_share_pct
        officer_credits, authority_credits = compute_shares(total_credits, officer_share_pct, authority_share_pct)

        if self._for_project(project.id) is not None:
            raise DistributionExists("A distribution already exists for this project")

        distribution = CreditDistributionDB(
            id=str(uuid4()),
            project_id=project.id,
            officer_id=project.assigned_officer_id,
            authority_id=project.authority_id,
            total_credits=float(total_credits),
            officer_share_pct=float(officer_share_pct),
            authority_share_pct=float(authority_share_pct),
            officer_wallet=officer_wallet,
            authority_wallet=authority_wallet,
            status=DistributionStatus.PENDING,
            created_by=caller.id,
        )

        conflict = DistributionExists("A distribution already exists for this project")
        with unit_of_work(self.db, "create distribution", conflict=conflict):
            self.db.add(distribution)
            self.db.flush()
            self.events.record(
                project_id=project.id,
                event_type="distribution_created",
                description=(
                    f"Distribution of {distribution.total_credits:g} credits opened "
                    f"(officer {officer_credits:g}, authority {authority_credits:g})"
                ),
                actor_id=caller.id,
                metadata={"distribution_id": distribution.id},
            )

        self.db.refresh(distribution)
        logger.info(
            f"Distribution {distribution.id} created for project {project.id}: "
            f"{distribution.total_credits} credits at {officer_share_pct}/{authority_share_pct}"
        )
        return distribution

    # =========================================================================
    # FINALIZE
    # =========================================================================

    def finalize_distribution(self, distribution_id: str, caller: UserDB) -> Tuple[CreditDistributionDB, bool]:
        """
        PENDING → DISTRIBUTED.

        Returns (distribution, applied). `applied` is False when the record
        was already distributed, in which case nothing changes.
        """
        ensure_authorized(caller.role, [UserRole.ADMIN, UserRole.OFFICER], "finalize distributions")
        distribution = self._get(distribution_id)
        if caller.role == UserRole.OFFICER and distribution.officer_id != caller.id:
            raise NotAssigned("Only the distribution's officer can finalize it")

        if distribution.status == DistributionStatus.DISTRIBUTED:
            logger.warning(f"Distribution {distribution.id} already finalized; nothing applied")
            return distribution, False

        officer_credits, authority_credits = distribution_shares(distribution)
        applied = False

        with unit_of_work(self.db, "finalize distribution"):
            rowcount = (
                self.db.query(CreditDistributionDB)
                .filter(
                    CreditDistributionDB.id == distribution.id,
                    CreditDistributionDB.status == DistributionStatus.PENDING,
                )
                .update(
                    {"status": DistributionStatus.DISTRIBUTED, "distributed_at": datetime.utcnow()},
                    synchronize_session=False,
                )
            )
            if rowcount == 1:
                applied = True
                reference = self._settle(distribution, officer_credits, authority_credits)
                if reference:
                    self.db.query(CreditDistributionDB).filter(
                        CreditDistributionDB.id == distribution.id
                    ).update({"settlement_reference": reference}, synchronize_session=False)
                self.ledger.record_distribution(distribution)
                self.events.record(
                    project_id=distribution.project_id,
                    event_type="distribution_finalized",
                    description=(
                        f"Distributed {officer_credits:g} credits to officer and "
                        f"{authority_credits:g} to authority"
                    ),
                    actor_id=caller.id,
                    metadata={"distribution_id": distribution.id, "settlement_reference": reference},
                )

        self.db.refresh(distribution)
        if applied:
            logger.info(
                f"Distribution {distribution.id} finalized by {caller.id}: "
                f"officer {officer_credits}, authority {authority_credits}"
            )
        else:
            logger.warning(f"Distribution {distribution.id} was finalized concurrently; nothing applied")
        return distribution, applied

    def _settle(self, distribution: CreditDistributionDB, officer_credits: float, authority_credits: float) -> Optional[str]:
        try:
            return self.gateway.settle(distribution, officer_credits, authority_credits)
        except Exception as e:
            logger.exception(f"Settlement failed for distribution {distribution.id}")
            raise DependencyFailure("Settlement failed; distribution left pending") from e

    # =========================================================================
    # READS
    # =========================================================================

    def get_distribution(self, distribution_id: str, caller: UserDB) -> CreditDistributionDB:
        distribution = self._get(distribution_id)
        if caller.role != UserRole.ADMIN and caller.id not in (distribution.officer_id, distribution.authority_id):
            raise Unauthorized("You do not have access to this distribution")
        return distribution

    def list_distributions(
        self,
        caller: UserDB,
        page: int = 1,
        page_size: int = 10,
        status: Optional[str] = None,
    ) -> Tuple[List[CreditDistributionDB], Dict[str, int]]:
        """Role-scoped distribution list, most recently distributed first; pending records last."""
        query = apply_scope(self.db.query(CreditDistributionDB), Scope.DISTRIBUTIONS, caller.role, caller.id)
        if status and status != "all":
            query = query.filter(CreditDistributionDB.status == DistributionStatus(status))
        query = query.order_by(
            CreditDistributionDB.distributed_at.is_(None),
            CreditDistributionDB.distributed_at.desc(),
            CreditDistributionDB.created_at.desc(),
            CreditDistributionDB.id,
        )
        return paginate(query, page, page_size)

    def _get(self, distribution_id: str) -> CreditDistributionDB:
        distribution = (
            self.db.query(CreditDistributionDB)
            .filter(CreditDistributionDB.id == distribution_id)
            .first()
        )
        if distribution is None:
            raise NotFound("Distribution not found")
        return distribution

    def _for_project(self, project_id: str) -> Optional[CreditDistributionDB]:
        return (
            self.db.query(CreditDistributionDB)
            .filter(CreditDistributionDB.project_id == project_id)
            .first()
        )
