# consentlink/services/connection_message_service.py
"""
Message thread between the two parties of a connection.

Anyone who is a party can read the thread whatever the connection status;
posting needs a connection that is still pending or accepted.
"""

import logging
from datetime import datetime

from sqlalchemy.orm import Session

from consentlink.core.caller import Caller
from consentlink.core.exceptions import InvalidState, ValidationError
from consentlink.core.transaction import atomic
from consentlink.models.connection import TERMINAL_CONNECTION_STATUSES
from consentlink.models.connection_message import ConnectionMessage
from consentlink.services.connection_service import effective_status, get_connection
from consentlink.utils.datetime_utils import utc_now

logger = logging.getLogger(__name__)

MAX_MESSAGE_LENGTH = 4000


def post_message(
    db: Session,
    *,
    caller: Caller,
    connection_id: str,
    body: str,
    now: datetime | None = None,
) -> ConnectionMessage:
    now = now or utc_now()
    connection = get_connection(db, caller=caller, connection_id=connection_id)

    body = (body or "").strip()
    if not body:
        raise ValidationError("Message body is required.")
    if len(body) > MAX_MESSAGE_LENGTH:
        raise ValidationError(f"Message body must be at most {MAX_MESSAGE_LENGTH} characters.")

    status = effective_status(connection, now)
    if status in TERMINAL_CONNECTION_STATUSES:
        raise InvalidState(f"Cannot send messages on a {status.value} connection.")

    # Tenant side speaks for its tenant, an individual recipient for its profile
    speaks_for_tenant = caller.tenant_id in connection.tenant_parties()
    message = ConnectionMessage(
        connection_id=connection.id,
        sender_user_id=caller.user_id,
        sender_tenant_id=caller.tenant_id if speaks_for_tenant else None,
        sender_profile_id=None if speaks_for_tenant else caller.profile_id,
        body=body,
        created_at=now,
    )
    with atomic(db):
        db.add(message)

    db.refresh(message)
    logger.info(f"Message {message.id} posted on connection {connection.id}")
    return message


def list_messages(
    db: Session,
    *,
    caller: Caller,
    connection_id: str,
) -> list[ConnectionMessage]:
    """Thread of a connection the caller is a party of, oldest first."""
    connection = get_connection(db, caller=caller, connection_id=connection_id)
    return (
        db.query(ConnectionMessage)
        .filter(ConnectionMessage.connection_id == connection.id)
        .order_by(ConnectionMessage.created_at.asc(), ConnectionMessage.id.asc())
        .all()
    )
