"""
Custom exceptions module.
"""

from exceptions.errors import (
    # Base exceptions
    AppError,
    NotFoundError,
    ValidationError,
    DatabaseError,

    # Entity store
    EntitySchemaNotFoundError,
    EntityNotFoundError,
    EntityValidationError,
    EntityWriteError,

    # Import jobs
    ImportDataNotFoundError,
    ImportFileParseError,

    # Row processing
    RowProcessingError,
    MissingFieldsError,
    InvalidQuantityError,
    PurchaseOrderNotFoundError,
    MultiplePurchaseOrdersError,
    MultipleProductsError,
    LineItemNotFoundError,
    MultipleLineItemsError,
    SizeSkuNotFoundError,
    AmbiguousSizeError,
    LineItemLockedError,
    MultipleShipmentsError,
    ShipmentAllocationGrewError,
)

__all__ = [
    # Base
    "AppError",
    "NotFoundError",
    "ValidationError",
    "DatabaseError",

    # Entity store
    "EntitySchemaNotFoundError",
    "EntityNotFoundError",
    "EntityValidationError",
    "EntityWriteError",

    # Import jobs
    "ImportDataNotFoundError",
    "ImportFileParseError",

    # Row processing
    "RowProcessingError",
    "MissingFieldsError",
    "InvalidQuantityError",
    "PurchaseOrderNotFoundError",
    "MultiplePurchaseOrdersError",
    "MultipleProductsError",
    "LineItemNotFoundError",
    "MultipleLineItemsError",
    "SizeSkuNotFoundError",
    "AmbiguousSizeError",
    "LineItemLockedError",
    "MultipleShipmentsError",
    "ShipmentAllocationGrewError",
]
