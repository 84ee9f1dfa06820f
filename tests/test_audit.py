from datetime import timedelta

import pytest

from consentlink.core.exceptions import NotAuthorized, ValidationError
from consentlink.models.sharing_audit import AuditEventType, AuditLogImmutableError, SharingAuditLog
from consentlink.services.audit_service import MAX_PAGE_SIZE, list_audit_entries, record_event
from consentlink.services.connection_service import revoke_connection
from consentlink.services.consent_grant_service import create_grant
from tests.conftest import CLINIC, LAB


def test_entries_cannot_be_updated(db, now):
    entry = record_event(db, event_type=AuditEventType.SHARE_CREATED, actor_tenant_id=CLINIC, now=now)
    db.commit()

    entry.detail = {"tampered": True}
    with pytest.raises(AuditLogImmutableError):
        db.flush()
    db.rollback()


def test_entries_cannot_be_deleted(db, now):
    entry = record_event(db, event_type=AuditEventType.SHARE_CREATED, actor_tenant_id=CLINIC, now=now)
    db.commit()

    db.delete(entry)
    with pytest.raises(AuditLogImmutableError):
        db.flush()
    db.rollback()
    assert db.query(SharingAuditLog).count() == 1


def test_record_event_does_not_commit(db, now):
    record_event(db, event_type=AuditEventType.SHARE_CREATED, actor_tenant_id=CLINIC, now=now)
    db.rollback()
    assert db.query(SharingAuditLog).count() == 0


def test_listing_is_scoped_to_the_callers_tenant(db, accepted_connection, clinic, lab, stranger):
    clinic_events = {e.event_type for e in list_audit_entries(db, caller=clinic)}
    lab_events = {e.event_type for e in list_audit_entries(db, caller=lab)}

    assert clinic_events == {"connection_created", "connection_accepted"}
    assert lab_events == {"connection_created", "connection_accepted"}
    assert list_audit_entries(db, caller=stranger) == []


def test_cursor_pagination(db, clinic, now):
    for i in range(5):
        record_event(
            db,
            event_type=AuditEventType.SHARE_CREATED,
            actor_tenant_id=CLINIC,
            detail={"n": i},
            now=now + timedelta(seconds=i),
        )
    db.commit()

    first = list_audit_entries(db, caller=clinic, limit=2)
    second = list_audit_entries(db, caller=clinic, limit=2, before=first[-1].created_at)
    third = list_audit_entries(db, caller=clinic, limit=2, before=second[-1].created_at)

    assert [e.detail["n"] for e in first + second + third] == [4, 3, 2, 1, 0]


def test_listing_validation(db, accepted_connection, clinic, stranger, rider):
    with pytest.raises(ValidationError):
        list_audit_entries(db, caller=clinic, limit=0)
    with pytest.raises(NotAuthorized):
        list_audit_entries(db, caller=stranger, connection_id=accepted_connection.id)
    with pytest.raises(NotAuthorized):
        list_audit_entries(db, caller=rider)

    entries = list_audit_entries(db, caller=clinic, connection_id=accepted_connection.id)
    assert {e.connection_id for e in entries} == {accepted_connection.id}
    assert LAB in {e.target_tenant_id for e in entries}


def test_cursor_pagination_keeps_entries_sharing_a_timestamp(db, accepted_connection, clinic, now):
    for resource_type in ("vet_records", "lab_results", "breeding_records"):
        create_grant(
            db, caller=clinic, connection_id=accepted_connection.id, resource_type=resource_type, now=now
        )
    # One connection_revoked plus one grant_revoked per grant, all at the same instant
    revoke_connection(db, caller=clinic, token=accepted_connection.token, now=now + timedelta(hours=1))

    everything = list_audit_entries(db, caller=clinic, limit=MAX_PAGE_SIZE)
    paged = []
    before = before_id = None
    while True:
        page = list_audit_entries(db, caller=clinic, limit=2, before=before, before_id=before_id)
        paged.extend(page)
        if len(page) < 2:
            break
        before, before_id = page[-1].created_at, page[-1].id

    assert len(everything) == 9
    assert [e.id for e in paged] == [e.id for e in everything]
