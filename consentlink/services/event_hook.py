# consentlink/services/event_hook.py
"""
"This event happened" hook for the notification dispatcher.

Events are published to Redis after the transaction that produced them has
committed. Delivery (email/push) is owned by the dispatcher; without Redis the
event is logged and dropped.
"""

import json
import logging

from consentlink.core.config import get_settings
from consentlink.core.redis import publish
from consentlink.models.sharing_audit import AuditEventType
from consentlink.utils.datetime_utils import utc_now

logger = logging.getLogger(__name__)

NOTIFIABLE_EVENTS = frozenset(
    {
        "connection_created",
        "connection_accepted",
        "connection_rejected",
        "connection_revoked",
        "grant_created",
        "grant_revoked",
    }
)


def sharing_event(
    event_type: AuditEventType,
    *,
    actor_tenant_id: str | None = None,
    target_tenant_id: str | None = None,
    connection_id: str | None = None,
    grant_id: str | None = None,
) -> dict:
    return {
        "event_type": AuditEventType(event_type).value,
        "actor_tenant_id": actor_tenant_id,
        "target_tenant_id": target_tenant_id,
        "connection_id": connection_id,
        "grant_id": grant_id,
        "occurred_at": utc_now().isoformat(),
    }


def publish_sharing_event(payload: dict) -> bool:
    """Publish one event payload. Returns False when the event was dropped."""
    if payload.get("event_type") not in NOTIFIABLE_EVENTS:
        return False

    settings = get_settings()
    published = publish(settings.sharing_events_channel, json.dumps(payload))
    if not published:
        logger.info(
            f"Sharing event {payload.get('event_type')} not published: Redis unavailable"
        )
    return published
