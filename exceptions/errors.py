"""
Custom exception classes for the application.

Row-level errors raised by the import pipeline inherit from
RowProcessingError; their message is what gets written to the row.
"""

from typing import Optional, Any
from datetime import datetime


class AppError(Exception):
    """
    Base exception for all application errors.

    All custom exceptions inherit from this.

    Attributes:
        code: Error code (e.g., "PO_NOT_FOUND")
        message: Human-readable message
        status_code: HTTP status code
        details: Additional context
    """

    def __init__(
        self,
        code: str,
        message: str,
        status_code: int = 500,
        details: Optional[dict[str, Any]] = None
    ):
        self.code = code
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        self.timestamp = datetime.utcnow().isoformat()
        super().__init__(message)

    def to_dict(self) -> dict:
        """Convert to API response format."""
        return {
            "error": {
                "code": self.code,
                "message": self.message,
                "details": self.details,
                "timestamp": self.timestamp
            }
        }


class NotFoundError(AppError):
    """Resource not found (404)."""

    def __init__(
        self,
        resource: str,
        identifier: str,
        code: Optional[str] = None
    ):
        super().__init__(
            code=code or f"{resource.upper()}_NOT_FOUND",
            message=f"{resource} not found",
            status_code=404,
            details={"id": identifier}
        )


class ValidationError(AppError):
    """Validation failed (422)."""

    def __init__(
        self,
        message: str,
        code: str = "VALIDATION_ERROR",
        details: Optional[dict] = None
    ):
        super().__init__(
            code=code,
            message=message,
            status_code=422,
            details=details
        )


class DatabaseError(AppError):
    """Database operation failed (500)."""

    def __init__(
        self,
        operation: str,
        message: str,
        details: Optional[dict] = None
    ):
        super().__init__(
            code="DATABASE_ERROR",
            message=f"Database {operation} failed: {message}",
            status_code=500,
            details={"operation": operation, **(details or {})}
        )


# ===================
# ENTITY STORE ERRORS
# ===================

class EntitySchemaNotFoundError(NotFoundError):
    """No schema registered for an entity type."""

    def __init__(self, entity_type: str):
        super().__init__(
            resource="Entity schema",
            identifier=entity_type,
            code="ENTITY_SCHEMA_NOT_FOUND"
        )


class EntityNotFoundError(NotFoundError):
    """Entity record not found."""

    def __init__(self, entity_type: str, entity_id: str):
        super().__init__(
            resource=entity_type,
            identifier=entity_id,
            code="ENTITY_NOT_FOUND"
        )


class EntityValidationError(ValidationError):
    """Payload failed schema validation."""

    def __init__(self, entity_type: str, errors: list[str]):
        super().__init__(
            code="ENTITY_VALIDATION_FAILED",
            message=f"Validation failed for {entity_type}",
            details={"entity_type": entity_type, "errors": errors}
        )


class EntityWriteError(AppError):
    """Entity Store write reported success=False."""

    def __init__(self, entity_type: str, operation: str, message: str, errors: Optional[list] = None):
        super().__init__(
            code="ENTITY_WRITE_FAILED",
            message=message or f"Failed to {operation} {entity_type}",
            status_code=500,
            details={"entity_type": entity_type, "operation": operation, "errors": errors or []}
        )


# ===================
# IMPORT JOB ERRORS
# ===================

class ImportDataNotFoundError(NotFoundError):
    """Import job not found."""

    def __init__(self, import_data_id: str):
        super().__init__(
            resource="ImportData",
            identifier=import_data_id,
            code="IMPORT_DATA_NOT_FOUND"
        )


class ImportFileParseError(ValidationError):
    """Uploaded import file could not be read."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(
            code="IMPORT_FILE_PARSE_ERROR",
            message=message,
            details=details
        )


# ===================
# ROW PROCESSING ERRORS
# ===================

class RowProcessingError(AppError):
    """
    Classified failure of a single import row.

    Raised by the row resolver and shipment matcher. The orchestrator
    writes `message` to the row and marks it failure.
    """

    def __init__(self, code: str, message: str, details: Optional[dict] = None):
        super().__init__(
            code=code,
            message=message,
            status_code=422,
            details=details
        )


class MissingFieldsError(RowProcessingError):
    """Row is missing one or more required logical fields."""

    def __init__(self, fields: list[str]):
        super().__init__(
            code="MISSING_REQUIRED_FIELDS",
            message=f"Missing required fields: {', '.join(fields)}",
            details={"fields": fields}
        )


class InvalidQuantityError(RowProcessingError):
    """Quantity is not an integer."""

    def __init__(self, value: Any):
        super().__init__(
            code="INVALID_QUANTITY",
            message=f"Invalid quantity: {value}",
            details={"value": str(value)}
        )


class PurchaseOrderNotFoundError(RowProcessingError):
    """No purchase order with this PO number."""

    def __init__(self, po_name: str):
        super().__init__(
            code="PO_NOT_FOUND",
            message=f"PO not found: {po_name}",
            details={"po_name": po_name}
        )


class MultiplePurchaseOrdersError(RowProcessingError):
    """More than one purchase order shares this PO number."""

    def __init__(self, po_name: str, count: int):
        super().__init__(
            code="MULTIPLE_POS",
            message=f"Multiple POs found with PO number: {po_name}",
            details={"po_name": po_name, "count": count}
        )


class MultipleProductsError(RowProcessingError):
    """More than one product shares this SKU."""

    def __init__(self, sku: str):
        super().__init__(
            code="MULTIPLE_PRODUCTS",
            message=f"Multiple products found with SKU: {sku}",
            details={"sku": sku}
        )


class LineItemNotFoundError(RowProcessingError):
    """No line item joins this PO and product."""

    def __init__(self, po_name: str, sku: str):
        super().__init__(
            code="LINE_ITEM_NOT_FOUND",
            message=f"No line items found for PO: {po_name} and SKU: {sku}",
            details={"po_name": po_name, "sku": sku}
        )


class MultipleLineItemsError(RowProcessingError):
    """More than one line item joins this PO and product."""

    def __init__(self, po_name: str, sku: str):
        super().__init__(
            code="MULTIPLE_LINE_ITEMS",
            message=f"Multiple line items found for PO: {po_name} and SKU: {sku}",
            details={"po_name": po_name, "sku": sku}
        )


class SizeSkuNotFoundError(RowProcessingError):
    """SKU is neither a product nor a size csmSku under this PO."""

    def __init__(self, po_name: str, sku: str):
        super().__init__(
            code="SIZE_SKU_NOT_FOUND",
            message=f"No line item found with matching csmSku: {sku} for PO: {po_name}",
            details={"po_name": po_name, "sku": sku}
        )


class AmbiguousSizeError(RowProcessingError):
    """Several sizes of one line item share the SKU and none can be picked."""

    def __init__(self, sku: str, size_names: list[str]):
        super().__init__(
            code="AMBIGUOUS_SIZE",
            message=(
                f"Multiple sizes found with same SKU: {sku} in line item "
                f"({', '.join(size_names)}). Please specify size or quantity"
            ),
            details={"sku": sku, "sizes": size_names}
        )


class LineItemLockedError(RowProcessingError):
    """Line item status blocks further shipment allocation."""

    def __init__(self, status: str):
        super().__init__(
            code="LINE_ITEM_LOCKED",
            message=(
                f"Line item has invalid status ({status}). "
                "Cannot update line items with status Invoiced or Delivered."
            ),
            details={"status": status}
        )


class MultipleShipmentsError(RowProcessingError):
    """More than one shipment shares this shipping number."""

    def __init__(self, shipping_number: str):
        super().__init__(
            code="MULTIPLE_SHIPMENTS",
            message=f"Multiple shipments found with shipping number: {shipping_number}",
            details={"shipping_number": shipping_number}
        )


class ShipmentAllocationGrewError(AppError):
    """
    Line item shipments list grew during matching.

    Matching only updates allocation entries in place; growth means a
    matching bug. Not a RowProcessingError: the row is failed with the stack.
    """

    def __init__(self, line_item_id: str, before: int, after: int):
        super().__init__(
            code="SHIPMENT_ALLOCATION_GREW",
            message=(
                f"Consistency check failed: shipments on line item {line_item_id} "
                f"grew from {before} to {after} during matching"
            ),
            status_code=500,
            details={"line_item_id": line_item_id, "before": before, "after": after}
        )

