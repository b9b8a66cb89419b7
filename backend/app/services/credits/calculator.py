"""
Credit Distribution Calculator

Share arithmetic and role-scoped credit aggregates.

Admins read absolute supply figures from the issued-credit ledger.
Officers and project authorities read their contractual share of
distributed totals.
"""
from typing import Dict, Tuple
import math

from sqlalchemy import func
from sqlalchemy.orm import Session

from ...models.db_models import (
    CarbonCreditDB, CreditDistributionDB, CreditStatus, DistributionStatus, UserRole,
)
from ..access import Scope, as_role, apply_scope
from ..errors import IncompleteData, InvalidShares


def validate_shares(officer_share_pct: float, authority_share_pct: float) -> None:
    """Raise InvalidShares unless both are non-negative and sum to at most 100."""
    errors = {}
    for name, value in (("officer_share_pct", officer_share_pct), ("authority_share_pct", authority_share_pct)):
        if value is None or not math.isfinite(value):
            errors[name] = "must be a finite number"
        elif value < 0:
            errors[name] = "must be non-negative"
    if not errors and officer_share_pct + authority_share_pct > 100:
        errors["shares"] = f"sum {officer_share_pct + authority_share_pct:g} exceeds 100"
    if errors:
        raise InvalidShares("Invalid share percentages", errors)


def compute_shares(total_credits: float, officer_share_pct: float, authority_share_pct: float) -> Tuple[float, float]:
    """
    Split `total_credits` between officer and authority.

    Returns (officer_credits, authority_credits). The remainder is reserved.
    """
    validate_shares(officer_share_pct, authority_share_pct)
    if total_credits is None or not math.isfinite(total_credits) or total_credits < 0:
        raise IncompleteData("Invalid credit total", {"total_credits": "must be a non-negative number"})

    officer_credits = total_credits * officer_share_pct / 100
    authority_credits = total_credits * authority_share_pct / 100
    return officer_credits, authority_credits


class CreditAggregator:
    """Per-role {totalCredits, availableCredits} figures."""

    def __init__(self, db: Session):
        self.db = db

    def aggregate_for_role(self, role, caller_id: str) -> Dict[str, float]:
        role = as_role(role)
        if role == UserRole.ADMIN:
            return self._ledger_totals()

        share_column = (
            CreditDistributionDB.officer_share_pct
            if role == UserRole.OFFICER
            else CreditDistributionDB.authority_share_pct
        )
        query = self.db.query(
            func.coalesce(func.sum(CreditDistributionDB.total_credits * share_column / 100.0), 0.0)
        ).filter(CreditDistributionDB.status == DistributionStatus.DISTRIBUTED)
        total = apply_scope(query, Scope.DISTRIBUTIONS, role, caller_id).scalar() or 0.0

        # Distributed shares are immediately available; there is no withdrawal model
        return {"totalCredits": float(total), "availableCredits": float(total)}

    def _ledger_totals(self) -> Dict[str, float]:
        total = self.db.query(func.coalesce(func.sum(CarbonCreditDB.amount), 0.0)).scalar() or 0.0
        available = (
            self.db.query(func.coalesce(func.sum(CarbonCreditDB.amount), 0.0))
            .filter(CarbonCreditDB.status == CreditStatus.AVAILABLE)
            .scalar()
        ) or 0.0
        return {"totalCredits": float(total), "availableCredits": float(available)}
