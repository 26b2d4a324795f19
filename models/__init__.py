"""
Pydantic models for validation and serialization.
"""

from models.base import (
    BaseSchema,
    SubRecord,
    TimestampMixin,
    PaginationParams,
    PaginatedResponse
)
from models.entity_schema import (
    FieldType,
    UpdateMode,
    EntitySchema,
    EntityResult,
    QueryResult,
    DEFAULT_SCHEMAS,
)
from models.line_item import (
    SizeBreakdownEntry,
    AllocationSize,
    ShipmentAllocation,
    LineItem,
)
from models.shipment import (
    ShippingMode,
    SuspectedProduct,
    Shipment,
    modes_match,
)
from models.purchase_order import PurchaseOrder, Product
from models.import_data import (
    RowStatus,
    ProcessingStatus,
    ImportCounts,
    ImportJob,
    ImportRow,
    RowOutcome,
    JobProgress,
    ProcessRunReport,
    ImportUploadResponse,
    ImportJobResponse,
    ImportRowListResponse,
    is_valid_row_transition,
)
from models.notification import Notification, WebhookOperation

__all__ = [
    # Base
    "BaseSchema",
    "SubRecord",
    "TimestampMixin",
    "PaginationParams",
    "PaginatedResponse",

    # Entity store
    "FieldType",
    "UpdateMode",
    "EntitySchema",
    "EntityResult",
    "QueryResult",
    "DEFAULT_SCHEMAS",

    # Line items
    "SizeBreakdownEntry",
    "AllocationSize",
    "ShipmentAllocation",
    "LineItem",

    # Shipments
    "ShippingMode",
    "SuspectedProduct",
    "Shipment",
    "modes_match",

    # Purchase orders / products
    "PurchaseOrder",
    "Product",

    # Import
    "RowStatus",
    "ProcessingStatus",
    "ImportCounts",
    "ImportJob",
    "ImportRow",
    "RowOutcome",
    "JobProgress",
    "ProcessRunReport",
    "ImportUploadResponse",
    "ImportJobResponse",
    "ImportRowListResponse",
    "is_valid_row_transition",

    # Notifications
    "Notification",
    "WebhookOperation",
]
