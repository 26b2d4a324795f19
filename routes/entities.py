"""
Generic entity API routes.

CRUD over any entity type known to the entity store. Writes are
announced through the outbound webhook after they commit.
"""

import json
from typing import Any, Optional

from fastapi import APIRouter, Body, Query
from fastapi.responses import JSONResponse
import structlog

from integrations.webhook import get_webhook_notifier
from models.base import PaginatedResponse, PaginationParams
from models.entity_schema import EntityResult, UpdateMode
from models.notification import Notification, WebhookOperation
from services.entity_store import get_entity_store
from exceptions import (
    AppError,
    EntityNotFoundError,
    EntityValidationError,
    EntityWriteError,
    ValidationError,
)

logger = structlog.get_logger(__name__)

router = APIRouter()

NOT_FOUND_MESSAGE = "No entity found with the provided ID."


# ===================
# EXCEPTION HANDLER
# ===================

def handle_error(e: Exception) -> JSONResponse:
    """Convert exception to JSON response."""
    if isinstance(e, AppError):
        return JSONResponse(
            status_code=e.status_code,
            content=e.to_dict()
        )
    logger.error("unexpected_error", error=str(e), type=type(e).__name__)
    return JSONResponse(
        status_code=500,
        content={
            "error": {
                "code": "INTERNAL_ERROR",
                "message": "An unexpected error occurred"
            }
        }
    )


def _json_param(raw: Optional[str], name: str, expected: type) -> Any:
    if not raw:
        return None
    try:
        value = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ValidationError(message=f"{name} must be valid JSON", details={"error": str(e)})
    if not isinstance(value, expected):
        raise ValidationError(message=f"{name} must be a JSON {expected.__name__}")
    return value


def _raise_for_result(entity_type: str, entity_id: Optional[str], result: EntityResult, operation: str) -> None:
    if result.success:
        return
    if result.message == NOT_FOUND_MESSAGE:
        raise EntityNotFoundError(entity_type, entity_id or "")
    if result.message == "Validation failed":
        raise EntityValidationError(entity_type, result.errors)
    raise EntityWriteError(entity_type, operation, result.message, result.errors)


def _notify(entity_type: str, operation: WebhookOperation, payload: dict, entity_id: Optional[str]) -> None:
    get_webhook_notifier().dispatch([
        Notification(
            entity_type=entity_type,
            operation=operation,
            payload=payload,
            entity_id=entity_id,
            response_meta={"id": entity_id},
        )
    ])


# ===================
# ROUTES
# ===================

@router.get("/{entity_type}", response_model=PaginatedResponse)
def query_entities(
    entity_type: str,
    filter: Optional[str] = Query(None, description='JSON filter, e.g. {"status": {"$ne": "Delivered"}}'),
    sort: Optional[str] = Query(None, description='JSON list, e.g. [{"created_at": "desc"}]'),
    page: int = Query(1, ge=1, description="Page number"),
    page_size: int = Query(20, ge=1, le=1000, description="Items per page"),
):
    """
    Query entities of a type.

    Raises:
        404: Unknown entity type
        422: Malformed filter or sort
    """
    try:
        store = get_entity_store()
        result = store.query(
            entity_type,
            _json_param(filter, "filter", dict),
            _json_param(sort, "sort", list),
            PaginationParams(page=page, page_size=page_size),
        )
        return PaginatedResponse.create(result.data, result.total, page, page_size)

    except Exception as e:
        return handle_error(e)


@router.get("/{entity_type}/{entity_id}")
def get_entity(entity_type: str, entity_id: str):
    """
    Get one entity.

    Raises:
        404: Unknown entity type or id
    """
    try:
        entity = get_entity_store().get(entity_type, entity_id)
        if entity is None:
            raise EntityNotFoundError(entity_type, entity_id)
        return entity

    except Exception as e:
        return handle_error(e)


@router.post("/{entity_type}", response_model=EntityResult, status_code=201)
def create_entity(entity_type: str, record: dict[str, Any] = Body(...)):
    """
    Create an entity.

    Raises:
        422: Schema validation failed
    """
    try:
        result = get_entity_store().create(entity_type, record)
        _raise_for_result(entity_type, None, result, "create")
        _notify(entity_type, WebhookOperation.POST, record, result.id)
        return result

    except Exception as e:
        return handle_error(e)


@router.patch("/{entity_type}/{entity_id}", response_model=EntityResult)
def update_entity(
    entity_type: str,
    entity_id: str,
    partial: dict[str, Any] = Body(...),
    mode: UpdateMode = Query(UpdateMode.REPLACE, description="replace or append array fields"),
):
    """
    Update an entity.

    Raises:
        404: Entity not found
        422: Schema validation failed
    """
    try:
        result = get_entity_store().update(entity_type, entity_id, partial, mode)
        _raise_for_result(entity_type, entity_id, result, "update")
        _notify(entity_type, WebhookOperation.PUT, partial, entity_id)
        return result

    except Exception as e:
        return handle_error(e)


@router.delete("/{entity_type}/{entity_id}", response_model=EntityResult)
def delete_entity(entity_type: str, entity_id: str):
    """
    Delete an entity.

    Raises:
        404: Entity not found
    """
    try:
        result = get_entity_store().delete(entity_type, entity_id)
        _raise_for_result(entity_type, entity_id, result, "delete")
        _notify(entity_type, WebhookOperation.DELETE, {}, entity_id)
        return result

    except Exception as e:
        return handle_error(e)
