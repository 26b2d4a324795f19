"""
Post-commit side effects returned by pipeline operations.

Core operations persist their writes and return the notifications that
should follow; the orchestrator dispatches them afterwards.
"""

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field


class WebhookOperation(str, Enum):
    POST = "POST"
    PUT = "PUT"
    DELETE = "DELETE"


class Notification(BaseModel):
    """One outbound webhook call to make after a write."""
    entity_type: str
    operation: WebhookOperation
    payload: dict[str, Any] = Field(default_factory=dict)
    entity_id: Optional[str] = None
    response_meta: Optional[dict[str, Any]] = None
