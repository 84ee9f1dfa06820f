import random
from datetime import timedelta

import pytest

from consentlink.core.caller import ANONYMOUS, Caller
from consentlink.core.exceptions import (
    Expired,
    InvalidState,
    NotAuthorized,
    NotFound,
    ValidationError,
)
from consentlink.models.connection import TERMINAL_CONNECTION_STATUSES, Connection, ConnectionStatus
from consentlink.models.consent_grant import ConsentGrant, GrantStatus
from consentlink.models.sharing_audit import SharingAuditLog
from consentlink.services import connection_service
from consentlink.services.connection_service import (
    accept_connection,
    create_connection,
    effective_status,
    expire_stale_connections,
    get_connection,
    list_connections,
    reject_connection,
    revoke_connection,
)
from consentlink.services.consent_grant_service import create_grant, revoke_grant
from tests.conftest import CLINIC, LAB


def _events(db, connection_id, event_type):
    return (
        db.query(SharingAuditLog)
        .filter(
            SharingAuditLog.connection_id == connection_id,
            SharingAuditLog.event_type == event_type,
        )
        .all()
    )


def _invite(db, clinic, now, **recipient):
    recipient = recipient or {"recipient_tenant_id": LAB}
    return create_connection(
        db,
        caller=clinic,
        initiator_tenant_id=CLINIC,
        connection_type="veterinary",
        now=now,
        **recipient,
    )


class TestCreateConnection:
    def test_creates_pending_connection_with_token_and_default_expiry(self, db, clinic, now):
        connection = _invite(db, clinic, now, recipient_tenant_id=LAB)

        assert connection.status == ConnectionStatus.PENDING
        assert len(connection.token) == 43
        assert connection.token != connection.id
        assert effective_status(connection, now + timedelta(days=6)) == ConnectionStatus.PENDING
        assert effective_status(connection, now + timedelta(days=8)) == ConnectionStatus.EXPIRED
        assert len(_events(db, connection.id, "connection_created")) == 1

    def test_metadata_is_stored_verbatim(self, db, clinic, now):
        connection = create_connection(
            db,
            caller=clinic,
            initiator_tenant_id=CLINIC,
            connection_type="laboratory",
            recipient_tenant_id=LAB,
            metadata={"note": "spring checkups", "priority": 2},
            now=now,
        )
        assert connection.metadata_json == {"note": "spring checkups", "priority": 2}

    @pytest.mark.parametrize(
        "recipient",
        [
            {},
            {"recipient_tenant_id": LAB, "recipient_email": "vet@horsemail.org"},
            {"recipient_email": "not-an-email"},
            {"recipient_email": "a@b."},
            {"recipient_phone": "call me"},
            {"recipient_tenant_id": CLINIC},
        ],
    )
    def test_rejects_bad_recipients(self, db, clinic, now, recipient):
        with pytest.raises(ValidationError):
            create_connection(
                db,
                caller=clinic,
                initiator_tenant_id=CLINIC,
                connection_type="veterinary",
                now=now,
                **recipient,
            )
        assert db.query(Connection).count() == 0
        assert db.query(SharingAuditLog).count() == 0

    def test_cannot_create_for_another_tenant(self, db, lab, now):
        with pytest.raises(NotAuthorized):
            create_connection(
                db,
                caller=lab,
                initiator_tenant_id=CLINIC,
                connection_type="veterinary",
                recipient_tenant_id=LAB,
                now=now,
            )

    def test_expiry_must_be_in_the_future(self, db, clinic, now):
        with pytest.raises(ValidationError):
            create_connection(
                db,
                caller=clinic,
                initiator_tenant_id=CLINIC,
                connection_type="veterinary",
                recipient_tenant_id=LAB,
                expires_at=now - timedelta(minutes=1),
                now=now,
            )

    def test_email_is_normalised(self, db, clinic, now):
        connection = _invite(db, clinic, now, recipient_email="  Rider@HorseMail.org ")
        assert connection.recipient_email == "rider@horsemail.org"
        assert connection.recipient_kind == "email"


class TestAcceptConnection:
    def test_recipient_tenant_accepts(self, db, clinic, lab, now):
        connection = _invite(db, clinic, now)

        connection_id = accept_connection(db, caller=lab, token=connection.token, now=now)

        db.refresh(connection)
        assert connection_id == connection.id
        assert connection.status == ConnectionStatus.ACCEPTED
        assert connection.accepted_at is not None

    def test_accept_is_idempotent(self, db, clinic, lab, now):
        connection = _invite(db, clinic, now)

        first = accept_connection(db, caller=lab, token=connection.token, now=now)
        second = accept_connection(db, caller=lab, token=connection.token, now=now + timedelta(hours=1))

        assert first == second
        assert len(_events(db, connection.id, "connection_accepted")) == 1

    def test_only_recipient_can_accept(self, db, clinic, stranger, now):
        connection = _invite(db, clinic, now)
        with pytest.raises(NotAuthorized):
            accept_connection(db, caller=stranger, token=connection.token, now=now)
        with pytest.raises(NotAuthorized):
            accept_connection(db, caller=clinic, token=connection.token, now=now)

    def test_unknown_token(self, db, lab, now):
        with pytest.raises(NotFound):
            accept_connection(db, caller=lab, token="x" * 43, now=now)
        with pytest.raises(NotFound):
            accept_connection(db, caller=lab, token="garbage", now=now)

    def test_stale_invitation_expires_on_accept(self, db, clinic, lab, now):
        connection = _invite(db, clinic, now)

        with pytest.raises(Expired):
            accept_connection(db, caller=lab, token=connection.token, now=now + timedelta(days=8))

        db.refresh(connection)
        assert connection.status == ConnectionStatus.EXPIRED
        assert len(_events(db, connection.id, "connection_expired")) == 1
        assert _events(db, connection.id, "connection_accepted") == []

    def test_email_invitation_binds_accepting_profile(self, db, clinic, rider, now):
        connection = _invite(db, clinic, now, recipient_email="rider@horsemail.org")

        accept_connection(db, caller=rider, token=connection.token, now=now)

        db.refresh(connection)
        assert connection.accepted_profile_id == rider.profile_id
        assert get_connection(db, caller=rider, connection_id=connection.id).id == connection.id

    def test_email_invitation_cannot_be_accepted_twice_by_different_profiles(
        self, db, clinic, rider, now
    ):
        connection = _invite(db, clinic, now, recipient_email="rider@horsemail.org")
        accept_connection(db, caller=rider, token=connection.token, now=now)

        other = Caller(user_id="u-2", profile_id="profile-2")
        with pytest.raises(InvalidState):
            accept_connection(db, caller=other, token=connection.token, now=now)

    def test_email_invitation_needs_a_profile(self, db, clinic, lab, now):
        connection = _invite(db, clinic, now, recipient_email="rider@horsemail.org")
        with pytest.raises(NotAuthorized):
            accept_connection(db, caller=lab, token=connection.token, now=now)

    @staticmethod
    def _accept_concurrently(monkeypatch, now, **winner):
        """Let another request accept the connection right before our guarded update."""
        check = connection_service._fail_if_stale

        def accepted_elsewhere(session, connection, at):
            check(session, connection, at)
            session.query(Connection).filter(Connection.id == connection.id).update(
                {"status": ConnectionStatus.ACCEPTED, "accepted_at": now, **winner},
                synchronize_session=False,
            )
            session.commit()

        monkeypatch.setattr(connection_service, "_fail_if_stale", accepted_elsewhere)

    def test_losing_a_race_to_the_same_recipient_is_a_repeat(self, db, clinic, lab, now, monkeypatch):
        connection = _invite(db, clinic, now)
        self._accept_concurrently(monkeypatch, now)

        assert accept_connection(db, caller=lab, token=connection.token, now=now) == connection.id
        db.refresh(connection)
        assert connection.status == ConnectionStatus.ACCEPTED
        assert _events(db, connection.id, "connection_accepted") == []

    def test_losing_a_race_to_another_profile_still_fails(self, db, clinic, rider, now, monkeypatch):
        connection = _invite(db, clinic, now, recipient_email="rider@horsemail.org")
        self._accept_concurrently(monkeypatch, now, accepted_profile_id="profile-2")

        with pytest.raises(InvalidState):
            accept_connection(db, caller=rider, token=connection.token, now=now)
        db.refresh(connection)
        assert connection.accepted_profile_id == "profile-2"


class TestRejectConnection:
    def test_reject_pending(self, db, clinic, lab, now):
        connection = _invite(db, clinic, now)

        reject_connection(db, caller=lab, token=connection.token, now=now)

        db.refresh(connection)
        assert connection.status == ConnectionStatus.REJECTED
        assert len(_events(db, connection.id, "connection_rejected")) == 1

    def test_reject_accepted_fails(self, db, accepted_connection, lab, now):
        with pytest.raises(InvalidState):
            reject_connection(db, caller=lab, token=accepted_connection.token, now=now)

    def test_phone_invitee_can_reject_with_token_alone(self, db, clinic, now):
        connection = _invite(db, clinic, now, recipient_phone="+44 7700 900123")
        reject_connection(db, caller=ANONYMOUS, token=connection.token, now=now)

        db.refresh(connection)
        assert connection.status == ConnectionStatus.REJECTED


class TestRevokeConnection:
    def test_initiator_revokes_pending(self, db, clinic, now):
        connection = _invite(db, clinic, now)

        revoke_connection(db, caller=clinic, token=connection.token, now=now)

        db.refresh(connection)
        assert connection.status == ConnectionStatus.REVOKED
        assert connection.revoked_at is not None

    def test_recipient_cannot_revoke_pending(self, db, clinic, lab, now):
        connection = _invite(db, clinic, now)
        with pytest.raises(NotAuthorized):
            revoke_connection(db, caller=lab, token=connection.token, now=now)

    def test_either_party_revokes_accepted(self, db, accepted_connection, lab, now):
        revoke_connection(db, caller=lab, token=accepted_connection.token, now=now)
        db.refresh(accepted_connection)
        assert accepted_connection.status == ConnectionStatus.REVOKED

    def test_stranger_cannot_revoke(self, db, accepted_connection, stranger, now):
        with pytest.raises(NotAuthorized):
            revoke_connection(db, caller=stranger, token=accepted_connection.token, now=now)

    def test_revoke_twice_fails(self, db, accepted_connection, clinic, now):
        revoke_connection(db, caller=clinic, token=accepted_connection.token, now=now)
        with pytest.raises(InvalidState):
            revoke_connection(db, caller=clinic, token=accepted_connection.token, now=now)

    def test_revoke_cascades_to_every_active_grant(self, db, accepted_connection, clinic, lab, now):
        grant_ids = [
            create_grant(
                db,
                caller=clinic,
                connection_id=accepted_connection.id,
                resource_type=resource_type,
                now=now,
            )
            for resource_type in ("vet_records", "lab_results")
        ]
        grant_ids.append(
            create_grant(
                db,
                caller=lab,
                connection_id=accepted_connection.id,
                resource_type="lab_results",
                now=now,
            )
        )
        revoke_grant(db, caller=clinic, grant_id=grant_ids[0], now=now)

        revoke_connection(db, caller=clinic, token=accepted_connection.token, now=now)

        db.expire_all()
        grants = db.query(ConsentGrant).filter(ConsentGrant.connection_id == accepted_connection.id).all()
        assert len(grants) == 3
        assert all(g.status == GrantStatus.REVOKED for g in grants)

        cascaded = [
            e
            for e in _events(db, accepted_connection.id, "grant_revoked")
            if e.detail.get("cascade")
        ]
        assert {e.grant_id for e in cascaded} == set(grant_ids[1:])
        revoked_event = _events(db, accepted_connection.id, "connection_revoked")[0]
        assert revoked_event.detail == {"revoked_grants": 2}


class TestListing:
    def test_lists_connections_of_both_sides(self, db, accepted_connection, clinic, lab, stranger):
        assert [c.id for c in list_connections(db, caller=clinic)] == [accepted_connection.id]
        assert [c.id for c in list_connections(db, caller=lab)] == [accepted_connection.id]
        assert list_connections(db, caller=stranger) == []

    def test_status_filter_uses_effective_status(self, db, clinic, now):
        connection = _invite(db, clinic, now)
        later = now + timedelta(days=30)

        expired = list_connections(db, caller=clinic, status=ConnectionStatus.EXPIRED, now=later)
        pending = list_connections(db, caller=clinic, status=ConnectionStatus.PENDING, now=later)

        assert [c.id for c in expired] == [connection.id]
        assert pending == []

    def test_get_connection_hides_from_strangers(self, db, accepted_connection, stranger):
        with pytest.raises(NotAuthorized):
            get_connection(db, caller=stranger, connection_id=accepted_connection.id)
        with pytest.raises(NotFound):
            get_connection(db, caller=stranger, connection_id="missing")


def test_sweeper_expires_only_stale_pending_connections(db, clinic, lab, now):
    stale = _invite(db, clinic, now - timedelta(days=10))
    fresh = _invite(db, clinic, now)
    accepted = _invite(db, clinic, now - timedelta(days=10))
    accept_connection(db, caller=lab, token=accepted.token, now=now - timedelta(days=9))

    assert expire_stale_connections(db, now=now) == 1
    assert expire_stale_connections(db, now=now) == 0

    db.expire_all()
    assert db.get(Connection, stale.id).status == ConnectionStatus.EXPIRED
    assert db.get(Connection, fresh.id).status == ConnectionStatus.PENDING
    assert db.get(Connection, accepted.id).status == ConnectionStatus.ACCEPTED
    assert _events(db, stale.id, "connection_expired")[0].detail == {"sweeper": True}


OPERATIONS = {
    "accept": (accept_connection, ConnectionStatus.ACCEPTED),
    "reject": (reject_connection, ConnectionStatus.REJECTED),
    "revoke": (revoke_connection, ConnectionStatus.REVOKED),
}


def _expected_error(operation, actor, stored, stale):
    """Error an operation must raise against the stored status, or None if it applies."""
    if actor == "stranger" or (operation != "revoke" and actor == "clinic"):
        return NotAuthorized
    if operation == "revoke" and actor == "lab" and stored == ConnectionStatus.PENDING:
        return NotAuthorized
    if stored in TERMINAL_CONNECTION_STATUSES:
        return InvalidState
    if stored == ConnectionStatus.ACCEPTED:
        return InvalidState if operation == "reject" else None
    return Expired if stale else None


@pytest.mark.parametrize("seed", range(20))
def test_random_operation_sequences_only_follow_the_lifecycle(db, clinic, lab, stranger, now, seed):
    rng = random.Random(seed)
    callers = {"clinic": clinic, "lab": lab, "stranger": stranger}
    connection = create_connection(
        db,
        caller=clinic,
        initiator_tenant_id=CLINIC,
        connection_type="veterinary",
        recipient_tenant_id=LAB,
        expires_at=now + timedelta(days=1),
        now=now,
    )
    token = connection.token
    clock = now

    for _ in range(12):
        if rng.random() < 0.2:
            clock = clock + timedelta(hours=rng.choice([1, 12, 36]))
            continue

        operation = rng.choice(sorted(OPERATIONS))
        actor = rng.choice(sorted(callers))
        db.expire_all()
        stored = db.get(Connection, connection.id).status
        stale = stored == ConnectionStatus.PENDING and clock > now + timedelta(days=1)
        expected = _expected_error(operation, actor, stored, stale)

        func, target = OPERATIONS[operation]
        if expected is None:
            func(db, caller=callers[actor], token=token, now=clock)
        else:
            with pytest.raises(expected):
                func(db, caller=callers[actor], token=token, now=clock)

        db.expire_all()
        after = db.get(Connection, connection.id).status
        if expected is None:
            assert after == target
        elif expected is Expired:
            assert after == ConnectionStatus.EXPIRED
        else:
            assert after == stored
