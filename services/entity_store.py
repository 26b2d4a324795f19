"""
Generic entity store over Supabase tables.

Every entity type has a schema (from the entity_schemas table, falling
back to the built-in DEFAULT_SCHEMAS) that declares field types, required
fields, hashed fields and custom fields. Writes are validated and
converted against the schema; validation failures come back as
EntityResult(success=False, errors=[...]) instead of raising.
"""

import json
import re
import uuid
from datetime import date, datetime, timezone
from typing import Any, Optional

import structlog
from passlib.context import CryptContext

from config import get_supabase_client
from models.base import PaginationParams
from models.entity_schema import (
    DEFAULT_SCHEMAS,
    EntityResult,
    EntitySchema,
    FieldType,
    QueryResult,
    UpdateMode,
)
from exceptions import EntitySchemaNotFoundError
from utils.date_utils import parse_date

logger = structlog.get_logger(__name__)

_HEX_OBJECT_ID = re.compile(r"^[0-9a-fA-F]{24}$")

# Query operators accepted in filter dicts -> PostgREST builder method
_FILTER_OPERATORS = {
    "$eq": "eq",
    "$ne": "neq",
    "$gt": "gt",
    "$gte": "gte",
    "$lt": "lt",
    "$lte": "lte",
    "$in": "in_",
    "$contains": "contains",
}

CUSTOM_FIELDS_COLUMN = "custom_fields"


def is_object_id(value: Any) -> bool:
    """True for UUIDs and 24-hex document ids."""
    if isinstance(value, uuid.UUID):
        return True
    if not isinstance(value, str):
        return False
    if _HEX_OBJECT_ID.match(value):
        return True
    try:
        uuid.UUID(value)
        return True
    except ValueError:
        return False


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class EntityStore:
    """
    Schema-driven CRUD for named entity types.

    Handles schema lookup, validation/conversion, sensitive-field hashing
    and custom-field nesting for create, update, query and delete.
    """

    def __init__(self):
        self.db = get_supabase_client()
        self.schema_table = "entity_schemas"
        self._schemas: dict[str, EntitySchema] = {}
        self._pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

    # ===================
    # SCHEMAS
    # ===================

    def get_schema(self, entity_type: str) -> EntitySchema:
        """
        Load the schema for an entity type.

        Raises:
            EntitySchemaNotFoundError: No stored or built-in schema exists
        """
        if entity_type in self._schemas:
            return self._schemas[entity_type]

        result = (
            self.db.table(self.schema_table)
            .select("*")
            .eq("entity", entity_type)
            .limit(1)
            .execute()
        )

        if result.data:
            row = result.data[0]
            schema = EntitySchema(
                entity=row["entity"],
                table=row.get("table_name") or row["entity"],
                basic_fields=row.get("basic_fields") or {},
                custom_fields=row.get("custom_fields") or {},
                required_fields=row.get("required_fields") or [],
                hashed_fields=row.get("hashed_fields") or [],
            )
        elif entity_type in DEFAULT_SCHEMAS:
            schema = DEFAULT_SCHEMAS[entity_type]
        else:
            raise EntitySchemaNotFoundError(entity_type)

        self._schemas[entity_type] = schema
        logger.debug("entity_schema_loaded", entity_type=entity_type, table=schema.table)
        return schema

    def clear_schema_cache(self) -> None:
        self._schemas.clear()

    # ===================
    # VALIDATION
    # ===================

    def _convert(self, field: str, kind: FieldType, value: Any) -> tuple[Any, Optional[str]]:
        """Convert one value to its stored form, or return an error message."""
        actual = type(value).__name__
        mismatch = f"Field {field} should be of type {kind.value}, not {actual}"

        if kind == FieldType.STRING:
            return (value, None) if isinstance(value, str) else (None, mismatch)

        if kind == FieldType.NUMBER:
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                return None, mismatch
            return value, None

        if kind == FieldType.BOOLEAN:
            return (value, None) if isinstance(value, bool) else (None, mismatch)

        if kind == FieldType.DATE:
            if isinstance(value, datetime):
                return value.isoformat(), None
            if isinstance(value, date):
                return value.isoformat(), None
            if isinstance(value, str):
                try:
                    return datetime.fromisoformat(value.replace("Z", "+00:00")).isoformat(), None
                except ValueError:
                    parsed = parse_date(value)
                    if parsed is not None:
                        return parsed.isoformat(), None
            return None, mismatch

        if kind == FieldType.OBJECT_ID:
            if is_object_id(value):
                return str(value), None
            return None, mismatch

        if kind == FieldType.ARRAY:
            if isinstance(value, (list, tuple)):
                return list(value), None
            return None, mismatch

        if kind == FieldType.OBJECT:
            return (value, None) if isinstance(value, dict) else (None, mismatch)

        return value, None

    def validate(
        self,
        schema: EntitySchema,
        data: dict[str, Any],
        check_required: bool,
    ) -> tuple[dict[str, Any], list[str]]:
        """
        Validate a payload against a schema.

        Undeclared fields pass through untouched; None is accepted for
        every declared type.

        Returns:
            (converted copy of data, list of error messages)
        """
        errors: list[str] = []
        converted: dict[str, Any] = {}

        if check_required:
            for field in schema.required_fields:
                if field not in data:
                    errors.append(f"{field} is required.")

        for field, value in data.items():
            kind = schema.field_type(field)
            if kind is None or value is None:
                converted[field] = value
                continue
            new_value, error = self._convert(field, kind, value)
            if error:
                errors.append(error)
            else:
                converted[field] = new_value

        return converted, errors

    def hash_sensitive_fields(self, schema: EntitySchema, data: dict[str, Any]) -> dict[str, Any]:
        """Replace hashed fields with their bcrypt hash."""
        for field in schema.hashed_fields:
            if data.get(field) is not None:
                data[field] = self._pwd_context.hash(str(data[field]))
        return data

    def verify_hashed(self, plain: str, hashed: str) -> bool:
        return self._pwd_context.verify(plain, hashed)

    def _nest_custom_fields(
        self,
        schema: EntitySchema,
        data: dict[str, Any],
        existing: Optional[dict[str, Any]] = None,
    ) -> dict[str, Any]:
        custom = {field: data.pop(field) for field in list(data) if schema.is_custom(field)}
        if custom:
            data[CUSTOM_FIELDS_COLUMN] = {**(existing or {}), **custom}
        return data

    def _prepare(
        self,
        schema: EntitySchema,
        data: dict[str, Any],
        check_required: bool,
    ) -> tuple[dict[str, Any], list[str]]:
        converted, errors = self.validate(schema, data, check_required)
        if errors:
            return converted, errors
        return self.hash_sensitive_fields(schema, converted), []

    # ===================
    # WRITE OPERATIONS
    # ===================

    def create(self, entity_type: str, record: dict[str, Any]) -> EntityResult:
        """
        Create an entity.

        Returns:
            EntityResult with the new id, or success=False with errors
        """
        schema = self.get_schema(entity_type)
        data, errors = self._prepare(schema, dict(record), check_required=True)
        if errors:
            logger.warning("entity_validation_failed", entity_type=entity_type, errors=errors)
            return EntityResult(success=False, message="Validation failed", errors=errors, entity_type=entity_type)

        data = self._nest_custom_fields(schema, data)
        now = _now_iso()
        data.setdefault("created_at", now)
        data.setdefault("updated_at", now)

        try:
            result = self.db.table(schema.table).insert(data).execute()
        except Exception as e:
            logger.error("create_entity_failed", entity_type=entity_type, error=str(e))
            return EntityResult(success=False, message="Error creating entity", errors=[str(e)], entity_type=entity_type)

        row = result.data[0] if result.data else {}
        entity_id = str(row["id"]) if row.get("id") is not None else None

        logger.info("entity_created", entity_type=entity_type, entity_id=entity_id)

        return EntityResult(
            success=entity_id is not None,
            message="Entity created successfully" if entity_id else "Insert returned no row",
            id=entity_id,
            entity_type=entity_type,
            data=row or None,
        )

    def update(
        self,
        entity_type: str,
        entity_id: str,
        partial: dict[str, Any],
        mode: UpdateMode = UpdateMode.REPLACE,
    ) -> EntityResult:
        """
        Update an entity.

        In APPEND mode, array fields are concatenated onto the stored
        value instead of replacing it.
        """
        schema = self.get_schema(entity_type)
        data, errors = self._prepare(schema, dict(partial), check_required=False)
        if errors:
            logger.warning("entity_validation_failed", entity_type=entity_type, entity_id=entity_id, errors=errors)
            return EntityResult(success=False, message="Validation failed", errors=errors, entity_type=entity_type)

        try:
            existing = None
            needs_existing = mode == UpdateMode.APPEND or any(schema.is_custom(f) for f in data)
            if needs_existing:
                existing = self.get(entity_type, entity_id)
                if existing is None:
                    return EntityResult(
                        success=False,
                        message="No entity found with the provided ID.",
                        entity_type=entity_type,
                    )

            if mode == UpdateMode.APPEND:
                for field, value in list(data.items()):
                    if schema.field_type(field) == FieldType.ARRAY and isinstance(value, list):
                        current = self._read_field(schema, existing, field) or []
                        data[field] = list(current) + value

            data = self._nest_custom_fields(
                schema, data, (existing or {}).get(CUSTOM_FIELDS_COLUMN)
            )
            data["updated_at"] = _now_iso()

            result = (
                self.db.table(schema.table)
                .update(data)
                .eq("id", str(entity_id))
                .execute()
            )
        except Exception as e:
            logger.error("update_entity_failed", entity_type=entity_type, entity_id=entity_id, error=str(e))
            return EntityResult(success=False, message="Error updating entity", errors=[str(e)], entity_type=entity_type)

        if not result.data:
            return EntityResult(
                success=False,
                message="No entity found with the provided ID.",
                entity_type=entity_type,
            )

        logger.info(
            "entity_updated",
            entity_type=entity_type,
            entity_id=entity_id,
            fields=list(partial.keys()),
            mode=mode.value,
        )

        return EntityResult(
            success=True,
            message="Entity updated successfully",
            id=str(entity_id),
            entity_type=entity_type,
            data=result.data[0],
        )

    def delete(self, entity_type: str, entity_id: str) -> EntityResult:
        """Hard delete an entity by id."""
        schema = self.get_schema(entity_type)
        try:
            result = self.db.table(schema.table).delete().eq("id", str(entity_id)).execute()
        except Exception as e:
            logger.error("delete_entity_failed", entity_type=entity_type, entity_id=entity_id, error=str(e))
            return EntityResult(success=False, message="Error deleting entity", errors=[str(e)], entity_type=entity_type)

        if not result.data:
            return EntityResult(success=False, message="No entity found with the provided ID.", entity_type=entity_type)

        logger.info("entity_deleted", entity_type=entity_type, entity_id=entity_id)
        return EntityResult(success=True, message="Entity deleted successfully", id=str(entity_id), entity_type=entity_type)

    # ===================
    # READ OPERATIONS
    # ===================

    def _read_field(self, schema: EntitySchema, row: dict, field: str) -> Any:
        if schema.is_custom(field):
            return (row.get(CUSTOM_FIELDS_COLUMN) or {}).get(field)
        return row.get(field)

    def get(self, entity_type: str, entity_id: str) -> Optional[dict[str, Any]]:
        """Fetch one entity by id, None if absent."""
        schema = self.get_schema(entity_type)
        result = (
            self.db.table(schema.table)
            .select("*")
            .eq("id", str(entity_id))
            .limit(1)
            .execute()
        )
        return result.data[0] if result.data else None

    def _column(self, schema: EntitySchema, field: str) -> str:
        if schema.is_custom(field):
            return f"{CUSTOM_FIELDS_COLUMN}->>{field}"
        return field

    def _filter_value(self, schema: EntitySchema, field: str, value: Any) -> tuple[Any, bool]:
        """Convert a filter operand; second item False if it can never match."""
        kind = schema.field_type(field)
        if field == "id" or kind == FieldType.OBJECT_ID:
            if not is_object_id(value):
                logger.warning("invalid_object_id_filter", field=field, value=str(value))
                return None, False
            return str(value), True
        if kind == FieldType.DATE and isinstance(value, (str, date, datetime)):
            converted, error = self._convert(field, kind, value)
            return (converted, True) if error is None else (None, False)
        return value, True

    def query(
        self,
        entity_type: str,
        filter: Optional[dict[str, Any]] = None,
        sort: Optional[list[dict[str, str]]] = None,
        pagination: Optional[PaginationParams] = None,
    ) -> QueryResult:
        """
        Query entities.

        Filter values: a scalar means equality, a list means membership,
        None means IS NULL, and a dict holds operators ($eq, $ne, $gt, $gte,
        $lt, $lte, $in, $contains). Sort is a list of {field: "asc"|"desc"}.
        """
        schema = self.get_schema(entity_type)
        pagination = pagination or PaginationParams()
        query = self.db.table(schema.table).select("*", count="exact")

        for field, value in (filter or {}).items():
            column = self._column(schema, field)

            if isinstance(value, dict):
                operations = value.items()
            elif isinstance(value, (list, tuple)):
                operations = [("$in", list(value))]
            elif value is None:
                query = query.is_(column, "null")
                continue
            else:
                operations = [("$eq", value)]

            for operator, operand in operations:
                method = _FILTER_OPERATORS.get(operator)
                if method is None:
                    logger.warning("unsupported_filter_operator", field=field, operator=operator)
                    continue

                if method == "in_":
                    converted = []
                    for item in operand:
                        item_value, ok = self._filter_value(schema, field, item)
                        if ok:
                            converted.append(item_value)
                    if not converted:
                        return QueryResult(data=[], total=0, pagination=pagination)
                    query = query.in_(column, converted)
                elif method == "contains":
                    # JSONB containment takes a JSON literal
                    if isinstance(operand, (list, dict)):
                        operand = json.dumps(operand)
                    query = query.contains(column, operand)
                else:
                    operand_value, ok = self._filter_value(schema, field, operand)
                    if not ok:
                        return QueryResult(data=[], total=0, pagination=pagination)
                    query = getattr(query, method)(column, operand_value)

        for item in sort or []:
            for field, direction in item.items():
                query = query.order(self._column(schema, field), desc=str(direction).lower() == "desc")

        query = query.range(pagination.offset, pagination.offset + pagination.limit - 1)

        result = query.execute()
        data = result.data or []

        logger.debug(
            "entities_queried",
            entity_type=entity_type,
            count=len(data),
            total=result.count,
        )

        return QueryResult(
            data=data,
            total=result.count if result.count is not None else len(data),
            pagination=pagination,
        )

    def count(self, entity_type: str, filter: Optional[dict[str, Any]] = None) -> int:
        """Number of entities matching a filter."""
        return self.query(entity_type, filter, pagination=PaginationParams(page_size=1)).total


# Singleton instance
_entity_store: Optional[EntityStore] = None


def get_entity_store() -> EntityStore:
    """Get or create EntityStore instance."""
    global _entity_store
    if _entity_store is None:
        _entity_store = EntityStore()
    return _entity_store
