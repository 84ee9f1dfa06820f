from datetime import date, timedelta

import pytest

from consentlink.core.caller import Caller
from consentlink.core.exceptions import NotAuthorized, NotFound, ValidationError
from consentlink.models.share_token import ShareStatus, ShareToken
from consentlink.models.sharing_audit import SharingAuditLog
from consentlink.schemas.access import ShareFailureReason
from consentlink.services.access_resolver_service import resolve_share_token
from consentlink.services.share_token_service import (
    MAX_EXPIRY_DAYS,
    compute_expires_at,
    create_share,
    derive_share_status,
    list_shares,
    resolve_pack_scope,
    revoke_share,
)
from tests.conftest import CLINIC

HORSE = "horse-1"


@pytest.fixture()
def horse_store(store):
    store.add("horses", CLINIC, [{"id": HORSE, "name": "Comet", "breed": "Arabian"}])
    store.add(
        "vet_records",
        CLINIC,
        [
            {"id": "v1", "subject_id": HORSE, "date": "2024-02-01", "diagnosis": "colic"},
            {"id": "v2", "subject_id": HORSE, "date": "2023-06-01", "diagnosis": "checkup"},
            {"id": "v3", "subject_id": "horse-2", "date": "2024-02-01", "diagnosis": "other horse"},
        ],
    )
    store.add("lab_results", CLINIC, [{"id": "l1", "subject_id": HORSE, "date": "2024-02-03", "value": 4.2}])
    store.add("files", CLINIC, [{"id": "f1", "subject_id": HORSE, "date": "2024-02-05", "name": "xray.png"}])
    return store


def _share(db, caller, now, **kwargs):
    kwargs.setdefault("pack_key", "medical_summary")
    return create_share(
        db,
        caller=caller,
        owner_tenant_id=CLINIC,
        subject_resource_id=HORSE,
        now=now,
        **kwargs,
    )


class TestPacks:
    def test_pack_defaults(self):
        assert resolve_pack_scope("medical_summary") == {
            "includeVet": True,
            "includeLab": True,
            "includeFiles": False,
        }
        assert resolve_pack_scope("custom") == {
            "includeVet": False,
            "includeLab": False,
            "includeFiles": False,
        }

    def test_overrides_apply_per_flag(self):
        scope = resolve_pack_scope("vet_only", {"includeFiles": True, "includeVet": None})
        assert scope == {"includeVet": True, "includeLab": False, "includeFiles": True}

    def test_unknown_pack_or_flag(self):
        with pytest.raises(ValidationError):
            resolve_pack_scope("everything")
        with pytest.raises(ValidationError):
            resolve_pack_scope("custom", {"includeXrays": True})


class TestExpiry:
    def test_default_and_explicit_days(self, now):
        assert compute_expires_at(None, now) == now + timedelta(days=7)
        assert compute_expires_at("3", now) == now + timedelta(days=3)
        assert compute_expires_at(30, now) == now + timedelta(days=30)

    def test_never(self, now):
        assert compute_expires_at("never", now) is None
        assert compute_expires_at("NEVER", now) is None

    def test_upper_bound(self, now):
        assert compute_expires_at(MAX_EXPIRY_DAYS, now) == now + timedelta(days=MAX_EXPIRY_DAYS)
        with pytest.raises(ValidationError):
            compute_expires_at(MAX_EXPIRY_DAYS + 1, now)

    @pytest.mark.parametrize(
        "value",
        [0, -1, "0", "soon", True, 1.5, 10**10, "99999999999", timedelta(days=10**8)],
    )
    def test_invalid(self, now, value):
        with pytest.raises(ValidationError):
            compute_expires_at(value, now)


class TestCreateShare:
    def test_create_share(self, db, clinic, now):
        share = _share(db, clinic, now, expires_in="7", recipient_email=" Vet@HorseMail.org ")

        assert share.status == ShareStatus.ACTIVE
        assert share.scope == {"includeVet": True, "includeLab": True, "includeFiles": False}
        assert share.recipient_email == "vet@horsemail.org"
        assert len(share.token) == 43
        entry = db.query(SharingAuditLog).filter(SharingAuditLog.share_id == share.id).one()
        assert entry.event_type == "share_created"
        assert entry.detail["email_locked"] is True

    def test_requires_manager_role_in_owning_tenant(self, db, stranger, now):
        staff = Caller(tenant_id=CLINIC, user_id="u-staff", roles=frozenset({"viewer"}))
        with pytest.raises(NotAuthorized):
            _share(db, staff, now)
        with pytest.raises(NotAuthorized):
            _share(db, stranger, now)
        assert db.query(ShareToken).count() == 0

    def test_invalid_window(self, db, clinic, now):
        with pytest.raises(ValidationError):
            _share(db, clinic, now, date_from=date(2024, 5, 1), date_to=date(2024, 1, 1))

    def test_out_of_range_expiry_writes_nothing(self, db, clinic, now):
        with pytest.raises(ValidationError):
            _share(db, clinic, now, expires_in=10**10)
        assert db.query(ShareToken).count() == 0

    @pytest.mark.parametrize("email", ["a@b.", "a@", "@horsemail.org", "vet@horse mail.org", "vet"])
    def test_malformed_recipient_email(self, db, clinic, now, email):
        with pytest.raises(ValidationError):
            _share(db, clinic, now, recipient_email=email)
        assert db.query(ShareToken).count() == 0


class TestResolveShareToken:
    def test_medical_summary_scenario(self, db, clinic, horse_store, now):
        share = _share(db, clinic, now, expires_in="7")

        result = resolve_share_token(db, token=share.token, store=horse_store, now=now)

        assert result.success
        assert result.share.scope == resolve_pack_scope("medical_summary")
        assert result.data.subject["name"] == "Comet"
        assert [r["id"] for r in result.data.vet_records] == ["v1", "v2"]
        assert [r["id"] for r in result.data.lab_results] == ["l1"]
        assert result.data.files == []

        later = resolve_share_token(db, token=share.token, store=horse_store, now=now + timedelta(days=8))

        assert not later.success
        assert later.error == ShareFailureReason.EXPIRED
        db.refresh(share)
        # Expiry is derived, never written back
        assert share.status == ShareStatus.ACTIVE
        assert derive_share_status(share, now + timedelta(days=8)) == ShareStatus.EXPIRED

    def test_date_window_applies_to_categories(self, db, clinic, horse_store, now):
        share = _share(db, clinic, now, pack_key="full_record", date_from=date(2024, 1, 1))

        result = resolve_share_token(db, token=share.token, store=horse_store, now=now)

        assert [r["id"] for r in result.data.vet_records] == ["v1"]
        assert [r["id"] for r in result.data.files] == ["f1"]

    def test_unknown_tokens(self, db, horse_store, now):
        for token in ("", "nope", "a" * 43):
            result = resolve_share_token(db, token=token, store=horse_store, now=now)
            assert result.error == ShareFailureReason.NOT_FOUND

    def test_revoked(self, db, clinic, horse_store, now):
        share = _share(db, clinic, now)
        revoke_share(db, caller=clinic, share_id=share.id, now=now)

        result = resolve_share_token(db, token=share.token, store=horse_store, now=now)

        assert result.error == ShareFailureReason.REVOKED

    @pytest.mark.parametrize(
        "share_kwargs",
        [
            {"pack_key": "medical_summary"},
            {"pack_key": "vet_only"},
            {"pack_key": "lab_only"},
            {"pack_key": "full_record"},
            {"pack_key": "custom"},
            {"pack_key": "custom", "scope": {"includeVet": True, "includeFiles": True}},
            {"pack_key": "vet_only", "scope": {"includeVet": False, "includeLab": True}},
        ],
    )
    def test_email_lock(self, db, clinic, horse_store, now, share_kwargs):
        share = _share(db, clinic, now, recipient_email="vet@horsemail.org", **share_kwargs)

        anonymous = resolve_share_token(db, token=share.token, store=horse_store, now=now)
        wrong = resolve_share_token(
            db, token=share.token, store=horse_store, presented_email="thief@horsemail.org", now=now
        )
        malformed = resolve_share_token(
            db, token=share.token, store=horse_store, presented_email="vet@horsemail.", now=now
        )
        right = resolve_share_token(
            db, token=share.token, store=horse_store, presented_email="VET@horsemail.org", now=now
        )

        assert anonymous.error == ShareFailureReason.EMAIL_LOCK_REQUIRES_LOGIN
        for denied in (wrong, malformed):
            assert denied.error == ShareFailureReason.EMAIL_MISMATCH
        for denied in (anonymous, wrong, malformed):
            assert not denied.success
            assert denied.data is None
            assert denied.share is None
        assert right.success
        assert right.data.subject["id"] == HORSE
        accesses = (
            db.query(SharingAuditLog)
            .filter(SharingAuditLog.share_id == share.id, SharingAuditLog.event_type == "data_accessed")
            .count()
        )
        assert accesses == 1

    def test_missing_subject_is_not_found(self, db, clinic, store, now):
        share = _share(db, clinic, now)
        result = resolve_share_token(db, token=share.token, store=store, now=now)
        assert result.error == ShareFailureReason.NOT_FOUND

    def test_successful_views_are_audited(self, db, clinic, horse_store, now):
        share = _share(db, clinic, now)
        resolve_share_token(db, token=share.token, store=horse_store, now=now)

        entry = (
            db.query(SharingAuditLog)
            .filter(SharingAuditLog.share_id == share.id, SharingAuditLog.event_type == "data_accessed")
            .one()
        )
        assert entry.target_tenant_id == CLINIC
        assert entry.detail == {
            "subject_resource_id": HORSE,
            "vet_records": 2,
            "lab_results": 1,
            "files": 0,
        }


class TestRevokeAndList:
    def test_revoke_is_idempotent(self, db, clinic, now):
        share = _share(db, clinic, now)

        revoke_share(db, caller=clinic, share_id=share.id, now=now)
        revoke_share(db, caller=clinic, share_id=share.id, now=now)

        revocations = (
            db.query(SharingAuditLog)
            .filter(SharingAuditLog.share_id == share.id, SharingAuditLog.event_type == "share_revoked")
            .count()
        )
        assert revocations == 1

    def test_revoke_checks_ownership(self, db, clinic, stranger, now):
        share = _share(db, clinic, now)
        with pytest.raises(NotAuthorized):
            revoke_share(db, caller=stranger, share_id=share.id, now=now)
        with pytest.raises(NotFound):
            revoke_share(db, caller=clinic, share_id="missing", now=now)

    def test_list_partitions_by_derived_status(self, db, clinic, now):
        active = _share(db, clinic, now, expires_in="never")
        expiring = _share(db, clinic, now, expires_in=1)
        revoked = _share(db, clinic, now)
        revoke_share(db, caller=clinic, share_id=revoked.id, now=now)

        partition = list_shares(db, caller=clinic, subject_resource_id=HORSE, now=now + timedelta(days=2))

        assert [s.id for s in partition.active] == [active.id]
        assert {s.id for s in partition.inactive} == {expiring.id, revoked.id}
