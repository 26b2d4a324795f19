"""
Outbound webhook notifications.

Every entity write made by the import pipeline is announced to an
external automation endpoint. Calls are best-effort: failures are logged
(and recorded in webhook_logs) but never raised to the caller.
"""

import json
from datetime import datetime, timezone
from typing import Any, Iterable, Optional

import requests
import structlog

from config import get_supabase_client, settings
from models.notification import Notification, WebhookOperation

logger = structlog.get_logger(__name__)


def _json_ready(payload: dict[str, Any]) -> dict[str, Any]:
    """Round-trip through json so datetimes and UUIDs become strings."""
    return json.loads(json.dumps(payload, default=str))


def build_webhook_body(
    entity_type: str,
    operation: WebhookOperation,
    payload: dict[str, Any],
    response_meta: Optional[dict[str, Any]] = None,
    entity_id: Optional[str] = None,
    action_type: Optional[str] = None,
) -> tuple[dict[str, Any], Optional[str]]:
    """
    Build the request body sent to the webhook endpoint.

    The entity id falls back to response_meta["id"], then payload["id"].
    PUT and DELETE address /<entity_type>/<id>; POST addresses /<entity_type>.

    Returns:
        (body, resolved entity id)
    """
    final_id = entity_id
    if not final_id and response_meta:
        final_id = response_meta.get("id")
    if not final_id:
        final_id = payload.get("id")
    final_id = str(final_id) if final_id else None

    endpoint = f"/{entity_type}"
    if final_id and operation in (WebhookOperation.PUT, WebhookOperation.DELETE):
        endpoint = f"/{entity_type}/{final_id}"

    data = dict(payload)
    if final_id and "id" not in data:
        data["id"] = final_id

    body = {
        "request_type": operation.value,
        "endpoint": endpoint,
        "data": _json_ready(data),
    }
    if action_type:
        body["actiontype"] = action_type

    return body, final_id


class WebhookNotifier:
    """Sends entity-change notifications to the configured webhook."""

    def __init__(
        self,
        url: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout: Optional[float] = None,
        log_enabled: Optional[bool] = None,
    ):
        self.url = url if url is not None else settings.webhook_url
        self.api_key = api_key if api_key is not None else settings.webhook_api_key
        self.timeout = timeout or settings.webhook_timeout_seconds
        self.log_enabled = settings.webhook_log_enabled if log_enabled is None else log_enabled
        self.log_table = "webhook_logs"

    @property
    def configured(self) -> bool:
        return bool(self.url)

    def notify(
        self,
        entity_type: str,
        operation: WebhookOperation,
        payload: dict[str, Any],
        response_meta: Optional[dict[str, Any]] = None,
        entity_id: Optional[str] = None,
        action_type: Optional[str] = None,
    ) -> Optional[Any]:
        """
        Send one notification.

        Returns:
            Parsed response body, or None if skipped or failed
        """
        if not self.configured:
            logger.debug("webhook_not_configured_skipping", entity_type=entity_type)
            return None

        body, final_id = build_webhook_body(
            entity_type, operation, payload, response_meta, entity_id, action_type
        )
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["x-make-apikey"] = self.api_key

        try:
            logger.info(
                "sending_webhook",
                entity_type=entity_type,
                operation=operation.value,
                entity_id=final_id,
            )
            response = requests.post(self.url, json=body, headers=headers, timeout=self.timeout)
            response.raise_for_status()

            try:
                response_data = response.json()
            except ValueError:
                response_data = response.text

            logger.info("webhook_sent", entity_type=entity_type, operation=operation.value, status=response.status_code)
            self._save_log(operation, entity_type, final_id, {
                "status": response.status_code,
                "response_data": response_data,
            }, "SUCCESS")
            return response_data

        except requests.exceptions.RequestException as e:
            logger.error(
                "webhook_request_failed",
                entity_type=entity_type,
                operation=operation.value,
                entity_id=final_id,
                error=str(e),
            )
            self._save_log(operation, entity_type, final_id, {"error": str(e)}, "FAILED")
            return None

    def dispatch(self, notifications: Iterable[Notification]) -> int:
        """Send a batch of post-commit notifications; returns how many were delivered."""
        delivered = 0
        for notification in notifications:
            result = self.notify(
                notification.entity_type,
                notification.operation,
                notification.payload,
                notification.response_meta,
                notification.entity_id,
            )
            if result is not None:
                delivered += 1
        return delivered

    def _save_log(
        self,
        operation: WebhookOperation,
        entity_type: str,
        entity_id: Optional[str],
        data: dict[str, Any],
        status: str,
    ) -> None:
        if not self.log_enabled:
            return
        try:
            get_supabase_client().table(self.log_table).insert({
                "operation": operation.value,
                "entity_type": entity_type,
                "entity_id": entity_id,
                "data": _json_ready(data),
                "status": status,
                "timestamp": datetime.now(timezone.utc).isoformat(),
            }).execute()
        except Exception as log_err:
            # Never let audit logging break the caller
            logger.warning("webhook_log_failed", error=str(log_err))


# Singleton instance
_notifier: Optional[WebhookNotifier] = None


def get_webhook_notifier() -> WebhookNotifier:
    """Get or create WebhookNotifier instance."""
    global _notifier
    if _notifier is None:
        _notifier = WebhookNotifier()
    return _notifier
