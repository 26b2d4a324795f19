"""
Entity schema definitions for the generic entity store.

A schema names the table an entity lives in, the declared type of each
field, which fields are required on create and which are hashed before
storage. Custom fields are nested under the `custom_fields` column.
"""

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field

from models.base import PaginationParams


class FieldType(str, Enum):
    """Declared field types understood by the validator."""
    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"
    DATE = "date"
    OBJECT_ID = "ObjectId"
    ARRAY = "array"
    OBJECT = "object"


class UpdateMode(str, Enum):
    """How array fields are written on update."""
    REPLACE = "replace"
    APPEND = "append"


class EntitySchema(BaseModel):
    """Schema for one entity type."""

    entity: str = Field(..., description="Entity type name, e.g. 'lineItem'")
    table: str = Field(..., description="Backing table name")
    basic_fields: dict[str, FieldType] = Field(default_factory=dict)
    custom_fields: dict[str, FieldType] = Field(default_factory=dict)
    required_fields: list[str] = Field(default_factory=list)
    hashed_fields: list[str] = Field(default_factory=list)

    def field_type(self, field: str) -> Optional[FieldType]:
        """Declared type of a basic or custom field, None if undeclared."""
        return self.basic_fields.get(field) or self.custom_fields.get(field)

    def is_custom(self, field: str) -> bool:
        return field in self.custom_fields and field not in self.basic_fields

    @property
    def date_fields(self) -> list[str]:
        return [
            name for name, kind in {**self.custom_fields, **self.basic_fields}.items()
            if kind == FieldType.DATE
        ]


class EntityResult(BaseModel):
    """Outcome of a create/update/delete through the entity store."""
    success: bool
    message: str = ""
    id: Optional[str] = None
    entity_type: Optional[str] = None
    errors: list[str] = Field(default_factory=list)
    data: Optional[dict[str, Any]] = None


class QueryResult(BaseModel):
    """Rows returned by an entity store query."""
    data: list[dict[str, Any]] = Field(default_factory=list)
    total: int = 0
    pagination: PaginationParams = Field(default_factory=PaginationParams)


# ===================
# BUILT-IN SCHEMAS
# ===================
# Used when the entity_schemas table has no row for the entity.

DEFAULT_SCHEMAS: dict[str, EntitySchema] = {
    "PO": EntitySchema(
        entity="PO",
        table="purchase_orders",
        basic_fields={
            "po_number": FieldType.STRING,
            "client_id": FieldType.OBJECT_ID,
            "status": FieldType.STRING,
        },
        required_fields=["po_number"],
    ),
    "Product": EntitySchema(
        entity="Product",
        table="products",
        basic_fields={
            "sku": FieldType.STRING,
            "name": FieldType.STRING,
        },
        required_fields=["sku"],
    ),
    "lineItem": EntitySchema(
        entity="lineItem",
        table="line_items",
        basic_fields={
            "po_id": FieldType.OBJECT_ID,
            "product_id": FieldType.OBJECT_ID,
            "status": FieldType.STRING,
            "quantity": FieldType.NUMBER,
            "size_breakdown": FieldType.ARRAY,
            "shipments": FieldType.ARRAY,
        },
        required_fields=["po_id"],
    ),
    "Shipment": EntitySchema(
        entity="Shipment",
        table="shipments",
        basic_fields={
            "shipping_number": FieldType.STRING,
            "shipping_mode": FieldType.STRING,
            "ship_date": FieldType.DATE,
            "exfactory_date": FieldType.DATE,
            "eta": FieldType.DATE,
            "suspected_products": FieldType.ARRAY,
        },
        required_fields=["shipping_number"],
    ),
}
