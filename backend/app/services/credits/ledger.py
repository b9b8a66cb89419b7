"""
Credit Ledger Service

Append-mostly register of issued credit lots. Admin supply figures are
sums over this table.

Lot lifecycle:
    AVAILABLE → RETIRED        (admin retirement)
    DISTRIBUTED                (recorded by distribution finalization, terminal)
"""
from uuid import uuid4
from datetime import datetime
from typing import Dict, List, Optional, Tuple
import logging
import math

from sqlalchemy import func
from sqlalchemy.orm import Session

from ...models.db_models import (
    CarbonCreditDB, CreditDistributionDB, CreditStatus, ProjectDB, ProjectState, UserDB, UserRole,
)
from ..access import ensure_authorized
from ..errors import IncompleteData, InvalidState, NotFound
from ..pagination import paginate
from ..unit_of_work import unit_of_work

logger = logging.getLogger(__name__)


def make_serial_number(project_id: str, vintage: int) -> str:
    return f"CC-{vintage}-{project_id[:8].upper()}-{uuid4().hex[:12].upper()}"


class CreditLedgerService:
    """Issues, retires and sums credit lots."""

    def __init__(self, db: Session):
        self.db = db

    # =========================================================================
    # WRITES
    # =========================================================================

    def issue(self, project_id: str, amount: float, admin: UserDB, vintage: Optional[int] = None) -> CarbonCreditDB:
        """Mint an AVAILABLE lot for a verified project."""
        ensure_authorized(admin.role, [UserRole.ADMIN], "issue credits")
        if amount is None or not math.isfinite(amount) or amount <= 0:
            raise IncompleteData("Invalid credit amount", {"amount": "must be a positive number"})

        project = self.db.query(ProjectDB).filter(ProjectDB.id == project_id).first()
        if project is None:
            raise NotFound("Project not found")
        if project.state != ProjectState.APPROVED:
            raise InvalidState("Credits can only be issued for verified projects")

        with unit_of_work(self.db, "issue credits"):
            lot = self._add_lot(project.id, amount, CreditStatus.AVAILABLE, vintage)

        self.db.refresh(lot)
        logger.info(f"Issued {amount} credits ({lot.serial_number}) for project {project.id} by {admin.id}")
        return lot

    def record_distribution(self, distribution: CreditDistributionDB) -> CarbonCreditDB:
        """Record a DISTRIBUTED lot for a finalized distribution. Does not commit."""
        return self._add_lot(
            distribution.project_id,
            distribution.total_credits,
            CreditStatus.DISTRIBUTED,
            distribution_id=distribution.id,
        )

    def retire(self, credit_id: str, admin: UserDB) -> CarbonCreditDB:
        """Retire an AVAILABLE lot. Conditional on the lot still being available."""
        ensure_authorized(admin.role, [UserRole.ADMIN], "retire credits")
        lot = self.db.query(CarbonCreditDB).filter(CarbonCreditDB.id == credit_id).first()
        if lot is None:
            raise NotFound("Credit lot not found")

        with unit_of_work(self.db, "retire credits"):
            rowcount = (
                self.db.query(CarbonCreditDB)
                .filter(CarbonCreditDB.id == lot.id, CarbonCreditDB.status == CreditStatus.AVAILABLE)
                .update(
                    {"status": CreditStatus.RETIRED, "retired_at": datetime.utcnow()},
                    synchronize_session=False,
                )
            )
            if rowcount != 1:
                raise InvalidState(f"Only available credits can be retired (status: {lot.status.value})")

        self.db.refresh(lot)
        logger.info(f"Retired credit lot {lot.serial_number} ({lot.amount}) by {admin.id}")
        return lot

    def _add_lot(
        self,
        project_id: str,
        amount: float,
        status: CreditStatus,
        vintage: Optional[int] = None,
        distribution_id: Optional[str] = None,
    ) -> CarbonCreditDB:
        vintage = vintage or datetime.utcnow().year
        lot = CarbonCreditDB(
            id=str(uuid4()),
            project_id=project_id,
            distribution_id=distribution_id,
            serial_number=make_serial_number(project_id, vintage),
            vintage=vintage,
            amount=float(amount),
            status=status,
        )
        self.db.add(lot)
        self.db.flush()  # Get ID without committing
        return lot

    # =========================================================================
    # READS
    # =========================================================================

    def totals(self) -> Dict[str, float]:
        """Sum of lot amounts per status, every status present."""
        rows = (
            self.db.query(CarbonCreditDB.status, func.sum(CarbonCreditDB.amount))
            .group_by(CarbonCreditDB.status)
            .all()
        )
        totals = {status.value: 0.0 for status in CreditStatus}
        for status, amount in rows:
            totals[status.value] = float(amount or 0.0)
        return totals

    def list_lots(
        self,
        project_id: Optional[str] = None,
        status: Optional[str] = None,
        page: int = 1,
        page_size: int = 10,
    ) -> Tuple[List[CarbonCreditDB], Dict[str, int]]:
        query = self.db.query(CarbonCreditDB)
        if project_id:
            query = query.filter(CarbonCreditDB.project_id == project_id)
        if status and status != "all":
            query = query.filter(CarbonCreditDB.status == CreditStatus(status))
        query = query.order_by(CarbonCreditDB.issued_at.desc(), CarbonCreditDB.id)
        return paginate(query, page, page_size)
