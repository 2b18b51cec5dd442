"""
Tests for CredentialService.

Covers provisioning, scoped lookups, validation, the backup-code vault and
the usage events each operation leaves behind.
"""

import threading
import time

import pytest
from pydantic import ValidationError as PydanticValidationError

from fortikey_core.constants import EventType
from fortikey_core.context.access_scope import tenant_scope
from fortikey_core.db import DatabaseConfig, DatabaseManager, TOTPCredential, UsageEvent
from fortikey_core.exceptions import (
    CredentialNotFoundError,
    DuplicateCredentialError,
    ErrorCode,
    ServiceError,
    ValidationError,
)
from fortikey_core.schemas.credential_schemas import CredentialUpdate
from fortikey_core.services.credential_service import CredentialService
from fortikey_core.services.usage_service import UsageService
from fortikey_core.utils.totp_utils import generate_totp_token
from tests.fixtures.factories import TOTPCredentialFactory, UsageEventFactory


def _events(session, event_type=None):
    query = session.query(UsageEvent)
    if event_type is not None:
        query = query.filter(UsageEvent.event_type == EventType(event_type).value)
    return query.order_by(UsageEvent.timestamp).all()


def _wrong_token(secret):
    now = int(time.time())
    window = {generate_totp_token(secret, for_time=now + offset) for offset in (-60, -30, 0, 30, 60)}
    return next(t for t in ("000000", "111111", "222222", "333333") if t not in window)


@pytest.fixture
def provisioned(credential_service, sample_tenant_id):
    """A credential created through the service with known backup codes."""
    return credential_service.create_credential(
        tenant_id=sample_tenant_id,
        external_user_id="alice@example.com",
        tenant_label="Acme Corp",
        backup_codes=["AAAA111111", "BBBB222222", "CCCC333333"],
    )


class TestCreateCredential:
    """Provisioning."""

    def test_create_returns_plaintext_material(self, credential_service, sample_tenant_id):
        result = credential_service.create_credential(
            tenant_id=sample_tenant_id,
            external_user_id="alice@example.com",
            tenant_label="Acme Corp",
        )

        assert result.id
        assert result.tenant_id == sample_tenant_id
        assert result.uri.startswith("otpauth://totp/")
        assert "issuer=Acme%20Corp" in result.uri
        assert len(result.backup_codes) == 8
        assert all(len(code) == 10 for code in result.backup_codes)

    def test_stored_material_is_encrypted(self, credential_service, db_session, codec, provisioned):
        stored = db_session.query(TOTPCredential).filter_by(id=provisioned.id).one()

        assert stored.secret != provisioned.secret
        assert codec.decrypt(stored.secret) == provisioned.secret
        assert "AAAA111111" not in stored.backup_codes
        assert codec.decrypt_many(stored.backup_codes) == provisioned.backup_codes
        assert stored.version == 1
        assert stored.context == {"company": "Acme Corp", "created_by": None}

    def test_explicit_backup_codes_are_normalized(self, credential_service, sample_tenant_id):
        result = credential_service.create_credential(
            tenant_id=sample_tenant_id,
            external_user_id="bob",
            tenant_label="Acme",
            backup_codes=[" abcd 123456 "],
        )

        assert result.backup_codes == ["ABCD123456"]

    def test_records_setup_event(self, db_session, provisioned, sample_tenant_id):
        events = _events(db_session, EventType.TOTP_SETUP)

        assert len(events) == 1
        assert events[0].success is True
        assert events[0].tenant_id == sample_tenant_id
        assert events[0].external_user_id == "alice@example.com"

    def test_duplicate_rejected(self, credential_service, db_session, provisioned, sample_tenant_id):
        with pytest.raises(DuplicateCredentialError) as exc_info:
            credential_service.create_credential(
                tenant_id=sample_tenant_id,
                external_user_id="alice@example.com",
                tenant_label="Acme Corp",
            )

        assert exc_info.value.error_code == ErrorCode.DUPLICATE
        assert exc_info.value.status_code == 409
        assert db_session.query(TOTPCredential).count() == 1

        failed = [e for e in _events(db_session, EventType.TOTP_SETUP) if not e.success]
        assert len(failed) == 1
        assert failed[0].details == {"reason": "already_exists"}

    def test_same_user_in_other_tenant_allowed(
        self, credential_service, provisioned, other_tenant_id
    ):
        other = credential_service.create_credential(
            tenant_id=other_tenant_id,
            external_user_id="alice@example.com",
            tenant_label="Other Corp",
        )

        assert other.id != provisioned.id
        assert other.secret != provisioned.secret

    @pytest.mark.parametrize(
        "tenant_id,external_user_id,tenant_label",
        [
            ("", "alice", "Acme"),
            ("tenant", "", "Acme"),
            ("tenant", "alice", ""),
            ("tenant", "   ", "Acme"),
        ],
    )
    def test_missing_inputs_rejected(
        self, credential_service, db_session, tenant_id, external_user_id, tenant_label
    ):
        with pytest.raises(ValidationError):
            credential_service.create_credential(
                tenant_id=tenant_id,
                external_user_id=external_user_id,
                tenant_label=tenant_label,
            )

        assert db_session.query(TOTPCredential).count() == 0

    @pytest.mark.parametrize(
        "codes", [["DUPE000001", "DUPE000001"], ["DUPE000001", " dupe000001 "]]
    )
    def test_repeated_backup_codes_rejected(self, credential_service, db_session, sample_tenant_id, codes):
        with pytest.raises(ValidationError) as exc_info:
            credential_service.create_credential(
                tenant_id=sample_tenant_id,
                external_user_id="dup",
                tenant_label="Acme",
                backup_codes=codes,
            )

        assert exc_info.value.error_code == ErrorCode.VALIDATION_FAILED
        assert "Backup codes must be unique" in exc_info.value.message
        assert db_session.query(TOTPCredential).count() == 0


class TestReadCredential:
    """Scoped reads."""

    def test_get_by_id_decrypts(self, credential_service, scope, provisioned):
        result = credential_service.get_credential(scope, provisioned.id)

        assert result.secret == provisioned.secret
        assert result.backup_codes == provisioned.backup_codes
        assert result.version == 1

    def test_get_by_external_user(self, credential_service, scope, provisioned):
        result = credential_service.get_credential_by_external_user(scope, "alice@example.com")

        assert result.id == provisioned.id

    def test_other_tenant_cannot_see_credential(
        self, credential_service, provisioned, other_tenant_id
    ):
        with pytest.raises(CredentialNotFoundError) as exc_info:
            credential_service.get_credential(tenant_scope(other_tenant_id), provisioned.id)

        assert exc_info.value.status_code == 404

    def test_admin_scope_sees_every_tenant(self, credential_service, admin_scope, provisioned):
        result = credential_service.get_credential(admin_scope, provisioned.id)

        assert result.id == provisioned.id

    def test_admin_lookup_by_ambiguous_user_conflicts(
        self, credential_service, admin_scope, provisioned, other_tenant_id
    ):
        credential_service.create_credential(
            tenant_id=other_tenant_id, external_user_id="alice@example.com", tenant_label="Other"
        )

        with pytest.raises(DuplicateCredentialError) as exc_info:
            credential_service.get_credential_by_external_user(admin_scope, "alice@example.com")

        assert exc_info.value.error_code == ErrorCode.CONFLICT

    def test_access_events_recorded(self, credential_service, db_session, scope, provisioned):
        credential_service.get_credential(scope, provisioned.id)
        with pytest.raises(CredentialNotFoundError):
            credential_service.get_credential(scope, "missing-id")

        events = _events(db_session, EventType.TOTP_ACCESS)
        assert [e.success for e in events] == [True, False]

    def test_unknown_scope_rejected(self, credential_service, provisioned):
        with pytest.raises(ValidationError) as exc_info:
            credential_service.get_credential("test-tenant-123", provisioned.id)

        assert exc_info.value.error_code == ErrorCode.TYPE_MISMATCH

    def test_list_is_scoped_and_newest_first(
        self, credential_service, scope, admin_scope, sample_tenant_id, other_tenant_id
    ):
        TOTPCredentialFactory(tenant_id=sample_tenant_id, external_user_id="first")
        TOTPCredentialFactory(tenant_id=sample_tenant_id, external_user_id="second")
        TOTPCredentialFactory(tenant_id=other_tenant_id, external_user_id="elsewhere")

        tenant_results = credential_service.list_credentials(scope)
        all_results = credential_service.list_credentials(admin_scope)

        assert {r.external_user_id for r in tenant_results} == {"first", "second"}
        assert len(all_results) == 3
        timestamps = [r.created_at for r in tenant_results]
        assert timestamps == sorted(timestamps, reverse=True)


class TestUpdateAndDelete:
    """Mutation and removal."""

    def test_update_context(self, credential_service, scope, provisioned):
        result = credential_service.update_credential(
            scope, provisioned.id, CredentialUpdate(context={"company": "Renamed"})
        )

        assert result.context == {"company": "Renamed"}
        assert result.secret == provisioned.secret
        assert result.version == 1

    def test_update_backup_codes_bumps_version(self, credential_service, scope, provisioned):
        result = credential_service.update_credential(
            scope, provisioned.id, CredentialUpdate(backup_codes=["zzzz999999"])
        )

        assert result.backup_codes == ["ZZZZ999999"]
        assert result.version == 2

    def test_update_other_tenant_not_found(self, credential_service, provisioned, other_tenant_id):
        with pytest.raises(CredentialNotFoundError):
            credential_service.update_credential(
                tenant_scope(other_tenant_id), provisioned.id, CredentialUpdate(context={})
            )

    def test_update_unknown_records_failure(self, credential_service, db_session, scope):
        with pytest.raises(CredentialNotFoundError):
            credential_service.update_credential(
                scope, "missing-id", CredentialUpdate(context={"company": "Renamed"})
            )

        events = _events(db_session, EventType.TOTP_UPDATE)
        assert [e.success for e in events] == [False]
        assert events[0].details == {"credential_id": "missing-id", "reason": "not_found"}

    def test_update_codes_and_context_in_one_write(self, credential_service, scope, provisioned):
        result = credential_service.update_credential(
            scope,
            provisioned.id,
            CredentialUpdate(context={"company": "Renamed"}, backup_codes=["NEW0000001"]),
        )

        assert result.context == {"company": "Renamed"}
        assert result.backup_codes == ["NEW0000001"]
        assert result.version == 2

    def test_conflicting_update_leaves_context_untouched(
        self, credential_service, db_session, scope, provisioned, monkeypatch
    ):
        monkeypatch.setattr(credential_service, "_compare_and_swap_codes", lambda *args: False)

        with pytest.raises(ServiceError) as exc_info:
            credential_service.update_credential(
                scope,
                provisioned.id,
                CredentialUpdate(context={"company": "Renamed"}, backup_codes=["NEW0000001"]),
            )

        assert exc_info.value.error_code == ErrorCode.CONFLICT
        stored = (
            db_session.query(TOTPCredential)
            .filter_by(id=provisioned.id)
            .populate_existing()
            .one()
        )
        assert stored.context == {"company": "Acme Corp", "created_by": None}
        assert stored.version == 1

    @pytest.mark.parametrize("codes", [["X1", "X1"], ["x1", "X1 "]])
    def test_update_rejects_repeated_codes(self, codes):
        with pytest.raises(PydanticValidationError, match="Backup codes must be unique"):
            CredentialUpdate(backup_codes=codes)

    def test_replaced_code_validates_once(self, credential_service, scope, provisioned):
        credential_service.update_credential(
            scope, provisioned.id, CredentialUpdate(backup_codes=["X1", "Y2"])
        )

        first = credential_service.validate_backup_code(scope, "alice@example.com", "x1")
        second = credential_service.validate_backup_code(scope, "alice@example.com", "X1")

        assert first.valid is True
        assert second.valid is False
        assert second.remaining_codes == 1

    def test_delete_cascades_user_events(
        self, credential_service, db_session, scope, provisioned, sample_tenant_id
    ):
        UsageEventFactory.create_batch(
            3, tenant_id=sample_tenant_id, external_user_id="alice@example.com"
        )
        UsageEventFactory(tenant_id=sample_tenant_id, external_user_id="bob")

        credential_service.delete_credential(scope, provisioned.id)

        assert db_session.query(TOTPCredential).count() == 0
        remaining = _events(db_session)
        assert all(e.external_user_id != "alice@example.com" for e in remaining)
        assert any(e.external_user_id == "bob" for e in remaining)

        deletes = _events(db_session, EventType.TOTP_DELETE)
        assert len(deletes) == 1
        assert deletes[0].external_user_id is None
        # three factory events plus the setup event
        assert deletes[0].details == {"credential_id": provisioned.id, "events_deleted": 4}

    def test_delete_survives_failed_cascade(
        self, credential_service, db_session, scope, provisioned, monkeypatch
    ):
        def explode(*args, **kwargs):
            raise RuntimeError("event store unavailable")

        monkeypatch.setattr(credential_service.usage_service, "delete_user_events", explode)

        credential_service.delete_credential(scope, provisioned.id)

        assert db_session.query(TOTPCredential).count() == 0
        deletes = _events(db_session, EventType.TOTP_DELETE)
        assert deletes[0].details["events_deleted"] == 0

    def test_delete_other_tenant_not_found(self, credential_service, db_session, provisioned, other_tenant_id):
        with pytest.raises(CredentialNotFoundError):
            credential_service.delete_credential(tenant_scope(other_tenant_id), provisioned.id)

        assert db_session.query(TOTPCredential).count() == 1


class TestValidateToken:
    """TOTP validation."""

    def test_current_token_valid(self, credential_service, db_session, scope, provisioned):
        token = generate_totp_token(provisioned.secret)

        result = credential_service.validate_token(scope, "alice@example.com", token)

        assert result.valid is True
        events = _events(db_session, EventType.TOTP_VALIDATION)
        assert [e.success for e in events] == [True]

    def test_wrong_token_invalid(self, credential_service, db_session, scope, provisioned):
        result = credential_service.validate_token(
            scope, "alice@example.com", _wrong_token(provisioned.secret)
        )

        assert result.valid is False
        events = _events(db_session, EventType.TOTP_VALIDATION)
        assert [e.success for e in events] == [False]

    def test_unknown_user_raises_and_records(self, credential_service, db_session, scope):
        with pytest.raises(CredentialNotFoundError):
            credential_service.validate_token(scope, "nobody", "123456")

        events = _events(db_session, EventType.TOTP_VALIDATION)
        assert len(events) == 1
        assert events[0].success is False
        assert events[0].details == {"reason": "not_found"}

    def test_other_tenant_cannot_validate(self, credential_service, provisioned, other_tenant_id):
        token = generate_totp_token(provisioned.secret)

        with pytest.raises(CredentialNotFoundError):
            credential_service.validate_token(
                tenant_scope(other_tenant_id), "alice@example.com", token
            )


class TestBackupCodes:
    """The single-use backup code vault."""

    def test_code_consumed_once(self, credential_service, scope, provisioned):
        first = credential_service.validate_backup_code(scope, "alice@example.com", "BBBB222222")
        second = credential_service.validate_backup_code(scope, "alice@example.com", "BBBB222222")

        assert (first.valid, first.remaining_codes) == (True, 2)
        assert (second.valid, second.remaining_codes) == (False, 2)

        stored = credential_service.get_credential(scope, provisioned.id)
        assert stored.backup_codes == ["AAAA111111", "CCCC333333"]
        assert stored.version == 2

    def test_code_input_is_normalized(self, credential_service, scope, provisioned):
        result = credential_service.validate_backup_code(scope, "alice@example.com", " aaaa 111111 ")

        assert result.valid is True

    @pytest.mark.parametrize("code", ["", "   ", "NOTACODE00"])
    def test_unknown_code_invalid(self, credential_service, db_session, scope, provisioned, code):
        result = credential_service.validate_backup_code(scope, "alice@example.com", code)

        assert result.valid is False
        assert result.remaining_codes == 3
        event = _events(db_session, EventType.BACKUP_CODE_USED)[-1]
        assert event.success is False
        assert event.details == {"reason": "invalid_code"}

    def test_success_event_carries_remaining_count(self, credential_service, db_session, scope, provisioned):
        credential_service.validate_backup_code(scope, "alice@example.com", "CCCC333333")

        event = _events(db_session, EventType.BACKUP_CODE_USED)[-1]
        assert event.success is True
        assert event.details == {"remaining_codes": 2}

    def test_exhausting_every_code(self, credential_service, scope, provisioned):
        for code in provisioned.backup_codes:
            assert credential_service.validate_backup_code(scope, "alice@example.com", code).valid

        result = credential_service.validate_backup_code(scope, "alice@example.com", "AAAA111111")
        assert (result.valid, result.remaining_codes) == (False, 0)

    def test_regenerate_replaces_codes(self, credential_service, db_session, scope, provisioned):
        result = credential_service.regenerate_backup_codes(scope, "alice@example.com")

        assert len(result.backup_codes) == 8
        assert not set(result.backup_codes) & set(provisioned.backup_codes)
        old = credential_service.validate_backup_code(scope, "alice@example.com", "AAAA111111")
        assert old.valid is False
        new = credential_service.validate_backup_code(
            scope, "alice@example.com", result.backup_codes[0]
        )
        assert new.valid is True
        assert len(_events(db_session, EventType.BACKUP_CODES_REGENERATED)) == 1

    def test_lost_race_is_retried(self, credential_service, scope, provisioned, monkeypatch):
        original = credential_service._compare_and_swap_codes
        calls = []

        def lose_first(credential_id, seen_version, encrypted_codes):
            calls.append(seen_version)
            if len(calls) == 1:
                return False
            return original(credential_id, seen_version, encrypted_codes)

        monkeypatch.setattr(credential_service, "_compare_and_swap_codes", lose_first)

        result = credential_service.validate_backup_code(scope, "alice@example.com", "AAAA111111")

        assert result.valid is True
        assert len(calls) == 2

    def test_persistent_contention_raises_conflict(
        self, credential_service, scope, provisioned, monkeypatch
    ):
        monkeypatch.setattr(credential_service, "_compare_and_swap_codes", lambda *args: False)

        with pytest.raises(ServiceError) as exc_info:
            credential_service.validate_backup_code(scope, "alice@example.com", "AAAA111111")

        assert exc_info.value.error_code == ErrorCode.CONFLICT

    def test_stale_version_write_loses(self, credential_service, db_session, provisioned):
        assert credential_service._compare_and_swap_codes(provisioned.id, 1, []) is True
        assert credential_service._compare_and_swap_codes(provisioned.id, 1, ["x"]) is False

        stored = db_session.query(TOTPCredential).filter_by(id=provisioned.id).one()
        assert stored.backup_codes == []
        assert stored.version == 2


class TestCredentialLifecycle:
    """Provision, authenticate and remove a single user."""

    def test_full_lifecycle(self, credential_service, db_session, scope, sample_tenant_id):
        provisioned = credential_service.create_credential(
            tenant_id=sample_tenant_id,
            external_user_id="carol",
            tenant_label="Acme Corp",
        )
        assert len(provisioned.backup_codes) == 8

        token = generate_totp_token(provisioned.secret)
        assert credential_service.validate_token(scope, "carol", token).valid is True

        code = provisioned.backup_codes[0]
        first = credential_service.validate_backup_code(scope, "carol", code)
        assert first.valid is True
        assert first.remaining_codes == 7

        replay = credential_service.validate_backup_code(scope, "carol", code)
        assert replay.valid is False
        assert replay.remaining_codes == 7

        credential_service.delete_credential(scope, provisioned.id)

        user_events = (
            db_session.query(UsageEvent)
            .filter(
                UsageEvent.tenant_id == sample_tenant_id,
                UsageEvent.external_user_id == "carol",
            )
            .count()
        )
        assert user_events == 0
        assert db_session.query(TOTPCredential).count() == 0


class TestConcurrentBackupCodeUse:
    """Two sessions racing on the same code against a shared database file."""

    @pytest.fixture
    def file_db(self, tmp_path):
        manager = DatabaseManager(
            DatabaseConfig(
                db_type="sqlite", database=str(tmp_path / "vault.db"), development_mode=True
            )
        )
        manager.create_tables()
        yield manager
        manager.close()

    def test_same_code_succeeds_exactly_once(self, file_db, codec, app_config, sample_tenant_id):
        setup_session = file_db.new_session()
        setup = CredentialService(
            setup_session, codec, usage_service=UsageService(session=setup_session), config=app_config
        )
        setup.create_credential(
            tenant_id=sample_tenant_id,
            external_user_id="alice@example.com",
            tenant_label="Acme",
            backup_codes=["RACE000001", "RACE000002"],
        )
        setup_session.close()

        workers = 4
        barrier = threading.Barrier(workers)
        results = []
        errors = []

        def present_code():
            session = file_db.new_session()
            service = CredentialService(
                session, codec, usage_service=UsageService(session=session), config=app_config
            )
            try:
                barrier.wait()
                result = service.validate_backup_code(
                    tenant_scope(sample_tenant_id), "alice@example.com", "RACE000001"
                )
                results.append(result.valid)
            except Exception as e:
                errors.append(e)
            finally:
                session.close()

        threads = [threading.Thread(target=present_code) for _ in range(workers)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert not errors
        assert results.count(True) == 1
        assert results.count(False) == workers - 1

        check_session = file_db.new_session()
        stored = check_session.query(TOTPCredential).one()
        assert codec.decrypt_many(stored.backup_codes) == ["RACE000002"]
        check_session.close()
