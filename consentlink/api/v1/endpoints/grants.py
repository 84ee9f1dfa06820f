# consentlink/api/v1/endpoints/grants.py
from datetime import date

from fastapi import APIRouter, BackgroundTasks, Depends, Query, status
from sqlalchemy.orm import Session

from consentlink.background.tasks import enqueue_task
from consentlink.core.caller import Caller
from consentlink.core.database import get_db
from consentlink.dependencies.caller import get_caller
from consentlink.models.consent_grant import ConsentGrant
from consentlink.models.sharing_audit import AuditEventType
from consentlink.schemas.access import FilteredView
from consentlink.schemas.consent_grant import GrantCreate, GrantCreated, GrantResponse
from consentlink.services.access_resolver_service import resolve_grant
from consentlink.services.connection_service import counterpart_tenant_id
from consentlink.services.consent_grant_service import (
    create_grant,
    get_grant,
    list_grants,
    revoke_grant,
)
from consentlink.services.event_hook import publish_sharing_event, sharing_event
from consentlink.services.resource_store import ResourceStore, get_resource_store

# Mounted twice: nested under /connections and standalone under /grants
connection_grants_router = APIRouter()
router = APIRouter()


def _notify(background_tasks: BackgroundTasks, event_type: AuditEventType, grant: ConsentGrant) -> None:
    payload = sharing_event(
        event_type,
        actor_tenant_id=grant.grantor_tenant_id,
        target_tenant_id=counterpart_tenant_id(grant.connection, grant.grantor_tenant_id),
        connection_id=grant.connection_id,
        grant_id=grant.id,
    )
    enqueue_task(background_tasks, publish_sharing_event, payload)


@connection_grants_router.post(
    "/{connection_id}/grants",
    response_model=GrantCreated,
    status_code=status.HTTP_201_CREATED,
    tags=["grants"],
)
def create_grant_endpoint(
    connection_id: str,
    payload: GrantCreate,
    background_tasks: BackgroundTasks,
    caller: Caller = Depends(get_caller),
    db: Session = Depends(get_db),
) -> GrantCreated:
    """
    Grant the other party of an accepted connection read access to one
    resource type, optionally narrowed by ids and a date window.
    """
    grant_id = create_grant(
        db,
        caller=caller,
        connection_id=connection_id,
        resource_type=payload.resource_type,
        resource_ids=payload.resource_ids,
        access_level=payload.access_level,
        date_from=payload.date_from,
        date_to=payload.date_to,
        forward_only=payload.forward_only,
        excluded_fields=payload.excluded_fields,
        expires_at=payload.expires_at,
        metadata=payload.metadata,
    )
    _notify(background_tasks, AuditEventType.GRANT_CREATED, db.get(ConsentGrant, grant_id))
    return GrantCreated(grant_id=grant_id)


@connection_grants_router.get(
    "/{connection_id}/grants",
    response_model=list[GrantResponse],
    tags=["grants"],
)
def list_grants_endpoint(
    connection_id: str,
    as_recipient: bool = Query(False, description="True: grants you received; False: grants you issued"),
    caller: Caller = Depends(get_caller),
    db: Session = Depends(get_db),
) -> list[GrantResponse]:
    grants = list_grants(db, caller=caller, connection_id=connection_id, as_recipient=as_recipient)
    return [GrantResponse.from_grant(g) for g in grants]


@router.get("/{grant_id}", response_model=GrantResponse, tags=["grants"])
def get_grant_endpoint(
    grant_id: str,
    caller: Caller = Depends(get_caller),
    db: Session = Depends(get_db),
) -> GrantResponse:
    return GrantResponse.from_grant(get_grant(db, caller=caller, grant_id=grant_id))


@router.post("/{grant_id}/revoke", status_code=status.HTTP_204_NO_CONTENT, tags=["grants"])
def revoke_grant_endpoint(
    grant_id: str,
    background_tasks: BackgroundTasks,
    caller: Caller = Depends(get_caller),
    db: Session = Depends(get_db),
) -> None:
    revoke_grant(db, caller=caller, grant_id=grant_id)
    _notify(background_tasks, AuditEventType.GRANT_REVOKED, db.get(ConsentGrant, grant_id))


@router.get("/{grant_id}/data", response_model=FilteredView, tags=["grants"])
def read_granted_data(
    grant_id: str,
    date_from: date | None = Query(None, description="Narrow the grant's window (inclusive)"),
    date_to: date | None = Query(None),
    caller: Caller = Depends(get_caller),
    db: Session = Depends(get_db),
    store: ResourceStore = Depends(get_resource_store),
) -> FilteredView:
    """
    The records this grant currently lets you read. Every call is audited.
    """
    return resolve_grant(
        db,
        caller=caller,
        grant_id=grant_id,
        store=store,
        date_from=date_from,
        date_to=date_to,
    )
