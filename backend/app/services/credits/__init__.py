"""
Credit Services

- compute_shares / CreditAggregator: share arithmetic and per-role credit figures
- DistributionService: distribution records and idempotent finalization
- CreditLedgerService: issued credit lots (admin supply figures)
"""

from .calculator import CreditAggregator, compute_shares, validate_shares
from .distribution_service import (
    DistributionService, NullSettlementGateway, SettlementGateway, distribution_shares,
)
from .ledger import CreditLedgerService

__all__ = [
    'CreditAggregator',
    'compute_shares',
    'validate_shares',
    'DistributionService',
    'NullSettlementGateway',
    'SettlementGateway',
    'distribution_shares',
    'CreditLedgerService',
]
