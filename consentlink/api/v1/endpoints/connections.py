# consentlink/api/v1/endpoints/connections.py
from fastapi import APIRouter, BackgroundTasks, Depends, Query, status
from sqlalchemy.orm import Session

from consentlink.background.tasks import enqueue_task
from consentlink.core.caller import Caller
from consentlink.core.database import get_db
from consentlink.dependencies.caller import get_caller
from consentlink.models.connection import Connection, ConnectionStatus
from consentlink.models.sharing_audit import AuditEventType
from consentlink.schemas.connection import (
    ConnectionAccepted,
    ConnectionCreate,
    ConnectionResponse,
    ConnectionTokenAction,
)
from consentlink.schemas.connection_message import ConnectionMessageResponse, MessageCreate
from consentlink.services.connection_message_service import list_messages, post_message
from consentlink.services.connection_service import (
    accept_connection,
    counterpart_tenant_id,
    create_connection,
    get_connection,
    list_connections,
    reject_connection,
    revoke_connection,
)
from consentlink.services.event_hook import publish_sharing_event, sharing_event

router = APIRouter()


def _notify(
    background_tasks: BackgroundTasks,
    event_type: AuditEventType,
    connection: Connection,
    caller: Caller,
) -> None:
    target = (
        counterpart_tenant_id(connection, caller.tenant_id)
        if caller.tenant_id is not None
        else connection.initiator_tenant_id
    )
    payload = sharing_event(
        event_type,
        actor_tenant_id=caller.tenant_id,
        target_tenant_id=target,
        connection_id=connection.id,
    )
    enqueue_task(background_tasks, publish_sharing_event, payload)


@router.post(
    "",
    response_model=ConnectionResponse,
    status_code=status.HTTP_201_CREATED,
    tags=["connections"],
)
def create_connection_endpoint(
    payload: ConnectionCreate,
    background_tasks: BackgroundTasks,
    caller: Caller = Depends(get_caller),
    db: Session = Depends(get_db),
) -> ConnectionResponse:
    """
    Invite a recipient (tenant, profile, email or phone) to connect.
    The response carries the invitation token; deliver it out of band.
    """
    connection = create_connection(
        db,
        caller=caller,
        initiator_tenant_id=caller.tenant_id,
        connection_type=payload.connection_type,
        recipient_tenant_id=payload.recipient_tenant_id,
        recipient_profile_id=payload.recipient_profile_id,
        recipient_email=payload.recipient_email,
        recipient_phone=payload.recipient_phone,
        expires_at=payload.expires_at,
        metadata=payload.metadata,
    )
    _notify(background_tasks, AuditEventType.CONNECTION_CREATED, connection, caller)
    return ConnectionResponse.from_connection(connection)


@router.get("", response_model=list[ConnectionResponse], tags=["connections"])
def list_connections_endpoint(
    status_filter: ConnectionStatus | None = Query(None, alias="status"),
    caller: Caller = Depends(get_caller),
    db: Session = Depends(get_db),
) -> list[ConnectionResponse]:
    """Connections the caller is a party of, newest first."""
    connections = list_connections(db, caller=caller, status=status_filter)
    return [ConnectionResponse.from_connection(c) for c in connections]


@router.post("/accept", response_model=ConnectionAccepted, tags=["connections"])
def accept_connection_endpoint(
    payload: ConnectionTokenAction,
    background_tasks: BackgroundTasks,
    caller: Caller = Depends(get_caller),
    db: Session = Depends(get_db),
) -> ConnectionAccepted:
    connection_id = accept_connection(db, caller=caller, token=payload.token)
    connection = db.get(Connection, connection_id)
    _notify(background_tasks, AuditEventType.CONNECTION_ACCEPTED, connection, caller)
    return ConnectionAccepted(connection_id=connection_id)


@router.post("/reject", status_code=status.HTTP_204_NO_CONTENT, tags=["connections"])
def reject_connection_endpoint(
    payload: ConnectionTokenAction,
    background_tasks: BackgroundTasks,
    caller: Caller = Depends(get_caller),
    db: Session = Depends(get_db),
) -> None:
    connection = reject_connection(db, caller=caller, token=payload.token)
    _notify(background_tasks, AuditEventType.CONNECTION_REJECTED, connection, caller)


@router.post("/revoke", status_code=status.HTTP_204_NO_CONTENT, tags=["connections"])
def revoke_connection_endpoint(
    payload: ConnectionTokenAction,
    background_tasks: BackgroundTasks,
    caller: Caller = Depends(get_caller),
    db: Session = Depends(get_db),
) -> None:
    """Revoke a connection; every active grant on it is revoked with it."""
    connection = revoke_connection(db, caller=caller, token=payload.token)
    _notify(background_tasks, AuditEventType.CONNECTION_REVOKED, connection, caller)


@router.get("/{connection_id}", response_model=ConnectionResponse, tags=["connections"])
def get_connection_endpoint(
    connection_id: str,
    caller: Caller = Depends(get_caller),
    db: Session = Depends(get_db),
) -> ConnectionResponse:
    connection = get_connection(db, caller=caller, connection_id=connection_id)
    return ConnectionResponse.from_connection(connection)


@router.post(
    "/{connection_id}/messages",
    response_model=ConnectionMessageResponse,
    status_code=status.HTTP_201_CREATED,
    tags=["connections"],
)
def post_message_endpoint(
    connection_id: str,
    payload: MessageCreate,
    caller: Caller = Depends(get_caller),
    db: Session = Depends(get_db),
) -> ConnectionMessageResponse:
    message = post_message(db, caller=caller, connection_id=connection_id, body=payload.body)
    return ConnectionMessageResponse.model_validate(message)


@router.get(
    "/{connection_id}/messages",
    response_model=list[ConnectionMessageResponse],
    tags=["connections"],
)
def list_messages_endpoint(
    connection_id: str,
    caller: Caller = Depends(get_caller),
    db: Session = Depends(get_db),
) -> list[ConnectionMessageResponse]:
    """Messages between the parties of a connection, oldest first."""
    messages = list_messages(db, caller=caller, connection_id=connection_id)
    return [ConnectionMessageResponse.model_validate(m) for m in messages]
