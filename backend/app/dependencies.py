"""
Carbon Registry - Collaborator Dependencies
Process-wide object storage and settlement gateway, overridable in tests
via app.dependency_overrides.
"""
from functools import lru_cache

from .services.credits import NullSettlementGateway, SettlementGateway
from .services.storage import LocalObjectStorage, ObjectStorage


@lru_cache
def get_storage() -> ObjectStorage:
    return LocalObjectStorage()


@lru_cache
def get_settlement_gateway() -> SettlementGateway:
    return NullSettlementGateway()
