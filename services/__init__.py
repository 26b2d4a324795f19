"""
Business logic services.

Each service handles one stage of the entity store / import pipeline.
"""

from services.entity_store import EntityStore, get_entity_store
from services.import_data_service import ImportDataService, get_import_data_service
from services.row_resolver import RowResolver, RowResolution, get_row_resolver
from services.shipment_matcher import ShipmentMatcher, MatchResult, get_shipment_matcher
from services.reconciliation_service import (
    ReconciliationService,
    ReconciliationResult,
    get_reconciliation_service,
)
from services.import_processor import ImportProcessor, get_import_processor
from services.import_scheduler import ImportScheduler, get_import_scheduler

__all__ = [
    "EntityStore",
    "get_entity_store",
    "ImportDataService",
    "get_import_data_service",
    "RowResolver",
    "RowResolution",
    "get_row_resolver",
    "ShipmentMatcher",
    "MatchResult",
    "get_shipment_matcher",
    "ReconciliationService",
    "ReconciliationResult",
    "get_reconciliation_service",
    "ImportProcessor",
    "get_import_processor",
    "ImportScheduler",
    "get_import_scheduler",
]
