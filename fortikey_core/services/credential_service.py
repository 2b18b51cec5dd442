"""
Service for provisioning and validating TOTP credentials.

This service owns the credential store: secrets and backup codes are
encrypted with the injected SecretCodec before they reach the database and
decrypted on the way out. Every operation takes an explicit AccessScope and
records a usage event once its primary effect has been committed.
"""

from typing import Any, Dict, List, Optional

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.orm import Session

from ..config import AppConfig, get_config
from ..constants import EventType, Limits
from ..context.access_scope import AccessScope, AllTenantsScope, TenantScope
from ..context.operation_context import operation
from ..db.db_base import utc_now
from ..db.db_credential_models import TOTPCredential
from ..exceptions import (
    CredentialNotFoundError,
    DuplicateCredentialError,
    ErrorCode,
    RepositoryError,
    ServiceError,
    ValidationError,
)
from ..schemas.credential_schemas import (
    BackupCodesRegenerated,
    BackupCodeValidationResult,
    CredentialCreate,
    CredentialProvisioned,
    CredentialRead,
    CredentialUpdate,
    TokenValidationResult,
)
from ..utils.backup_code_utils import generate_backup_codes, normalize_backup_code
from ..utils.crud_helpers import create_record, delete_record, list_records
from ..utils.encryption_utils import SecretCodec
from ..utils.totp_utils import generate_totp_secret, validate_totp_token
from .base_service import SessionManagedService
from .usage_service import UsageService


class CredentialService(SessionManagedService):
    """
    Tenant-scoped CRUD and validation for TOTP credentials.

    This service provides:
    - Provisioning of secrets, otpauth URIs and backup codes
    - Drift-tolerant TOTP validation
    - Single-use backup codes guarded by a versioned compare-and-swap write
    - Cascade removal of a user's usage events on delete
    """

    def __init__(
        self,
        session: Optional[Session],
        codec: SecretCodec,
        usage_service: Optional[UsageService] = None,
        config: Optional[AppConfig] = None,
    ):
        """Initialize with a session, the process-wide codec and an optional recorder."""
        super().__init__(session=session)
        self.codec = codec
        self.usage_service = usage_service or UsageService(session=self.session)
        self.config = config or get_config()

    # ==================== HELPERS ====================

    @staticmethod
    def _tenant_filter(scope: AccessScope) -> Optional[str]:
        if not isinstance(scope, (TenantScope, AllTenantsScope)):
            raise ValidationError(
                f"Unsupported access scope: {type(scope).__name__}",
                field="scope",
                error_code=ErrorCode.TYPE_MISMATCH,
            )
        return scope.tenant_filter()

    def _scoped_query(self, scope: AccessScope):
        query = self.session.query(TOTPCredential)
        tenant_id = self._tenant_filter(scope)
        if tenant_id is not None:
            query = query.filter(TOTPCredential.tenant_id == tenant_id)
        return query

    def _find_by_id(self, scope: AccessScope, credential_id: str) -> TOTPCredential:
        credential = (
            self._scoped_query(scope)
            .filter(TOTPCredential.id == credential_id)
            .populate_existing()
            .first()
        )
        if credential is None:
            raise CredentialNotFoundError(
                credential_id=credential_id, tenant_id=self._tenant_filter(scope)
            )
        return credential

    def _find_by_external_user(self, scope: AccessScope, external_user_id: str) -> TOTPCredential:
        matches = (
            self._scoped_query(scope)
            .filter(TOTPCredential.external_user_id == external_user_id)
            .populate_existing()
            .limit(2)
            .all()
        )
        if not matches:
            raise CredentialNotFoundError(
                external_user_id=external_user_id, tenant_id=self._tenant_filter(scope)
            )
        if len(matches) > 1:
            raise DuplicateCredentialError(
                "External user id matches credentials in several tenants",
                error_code=ErrorCode.CONFLICT,
                external_user_id=external_user_id,
            )
        return matches[0]

    def _to_read(self, credential: TOTPCredential) -> CredentialRead:
        return CredentialRead(
            id=credential.id,
            tenant_id=credential.tenant_id,
            external_user_id=credential.external_user_id,
            secret=self.codec.decrypt(credential.secret),
            backup_codes=self.codec.decrypt_many(credential.backup_codes or []),
            context=credential.context,
            version=credential.version,
            created_at=credential.created_at,
            updated_at=credential.updated_at,
        )

    def _record(
        self,
        tenant_id: Optional[str],
        event_type: EventType,
        success: bool,
        external_user_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.usage_service.record_event(
            tenant_id=tenant_id,
            event_type=event_type,
            success=success,
            external_user_id=external_user_id,
            details=details,
        )

    def _compare_and_swap_codes(
        self,
        credential_id: str,
        seen_version: int,
        encrypted_codes: List[str],
        context: Optional[Dict[str, Any]] = None,
    ) -> bool:
        """
        Write a new backup-code list only if nobody else has written since seen_version.

        A context given alongside is written in the same statement.

        Returns:
            True if this write won, False if the version had already moved on
        """
        changes = {
            TOTPCredential.backup_codes: encrypted_codes,
            TOTPCredential.version: seen_version + 1,
            TOTPCredential.updated_at: utc_now(),
        }
        if context is not None:
            changes[TOTPCredential.context] = context
        try:
            updated = (
                self.session.query(TOTPCredential)
                .filter(
                    TOTPCredential.id == credential_id,
                    TOTPCredential.version == seen_version,
                )
                .update(
                    changes,
                    synchronize_session=False,
                )
            )
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise
        return updated == 1

    def _replace_backup_codes(
        self,
        scope: AccessScope,
        credential_id: str,
        codes: List[str],
        context: Optional[Dict[str, Any]] = None,
    ) -> None:
        encrypted = self.codec.encrypt_many(codes)
        for attempt in range(Limits.BACKUP_CODE_CAS_RETRIES):
            credential = self._find_by_id(scope, credential_id)
            if self._compare_and_swap_codes(credential.id, credential.version, encrypted, context):
                return
            self.logger.info(
                "Backup code list changed concurrently, retrying replacement",
                extra={"credential_id": credential_id, "attempt": attempt + 1},
            )
        raise ServiceError(
            "Backup codes were modified concurrently, please retry",
            error_code=ErrorCode.CONFLICT,
            operation="replace_backup_codes",
            credential_id=credential_id,
        )

    # ==================== CREATE ====================

    @operation()
    def create_credential(
        self,
        tenant_id: str,
        external_user_id: str,
        tenant_label: str,
        backup_codes: Optional[List[str]] = None,
        created_by: Optional[str] = None,
    ) -> CredentialProvisioned:
        """
        Provision a TOTP credential for an external user of a tenant.

        Args:
            tenant_id: Owning tenant
            external_user_id: Tenant-controlled user identifier
            tenant_label: Display name shown as issuer in authenticator apps
            backup_codes: Explicit backup codes; generated when omitted
            created_by: Optional actor recorded in the credential context

        Returns:
            CredentialProvisioned with the plaintext secret, URI and backup codes

        Raises:
            ValidationError: If any input is missing or malformed
            DuplicateCredentialError: If the user already has a credential in this tenant
        """
        try:
            payload = CredentialCreate(
                tenant_id=tenant_id,
                external_user_id=external_user_id,
                tenant_label=tenant_label,
                backup_codes=backup_codes,
                created_by=created_by,
            )
        except PydanticValidationError as e:
            raise ValidationError(
                f"Invalid credential data: {str(e)}",
                error_code=ErrorCode.VALIDATION_FAILED,
                cause=e,
                validation_errors=[err.get("msg") for err in e.errors()],
            ) from e

        try:
            exists = (
                self.session.query(TOTPCredential.id)
                .filter(
                    TOTPCredential.tenant_id == payload.tenant_id,
                    TOTPCredential.external_user_id == payload.external_user_id,
                )
                .first()
            )
            if exists:
                raise DuplicateCredentialError(
                    tenant_id=payload.tenant_id, external_user_id=payload.external_user_id
                )

            bundle = generate_totp_secret(
                payload.tenant_label, payload.external_user_id, issuer=self.config.totp.issuer
            )
            codes = payload.backup_codes or generate_backup_codes(
                self.config.totp.backup_code_count, self.config.totp.backup_code_length
            )

            try:
                credential = create_record(
                    self.session,
                    TOTPCredential,
                    {
                        "tenant_id": payload.tenant_id,
                        "external_user_id": payload.external_user_id,
                        "secret": self.codec.encrypt(bundle.secret),
                        "backup_codes": self.codec.encrypt_many(codes),
                        "version": 1,
                        "context": {
                            "company": payload.tenant_label,
                            "created_by": payload.created_by,
                        },
                    },
                )
            except RepositoryError as e:
                if e.error_code != ErrorCode.DUPLICATE:
                    raise
                raise DuplicateCredentialError(
                    tenant_id=payload.tenant_id,
                    external_user_id=payload.external_user_id,
                    cause=e,
                ) from e

        except DuplicateCredentialError:
            self._record(
                payload.tenant_id,
                EventType.TOTP_SETUP,
                False,
                external_user_id=payload.external_user_id,
                details={"reason": "already_exists"},
            )
            raise
        except Exception as e:
            self._handle_service_exception("create_credential", e)

        self._record(
            payload.tenant_id,
            EventType.TOTP_SETUP,
            True,
            external_user_id=payload.external_user_id,
            details={"credential_id": credential.id},
        )

        return CredentialProvisioned(
            id=credential.id,
            tenant_id=credential.tenant_id,
            external_user_id=credential.external_user_id,
            secret=bundle.secret,
            uri=bundle.uri,
            backup_codes=codes,
            created_at=credential.created_at,
        )

    # ==================== READ ====================

    @operation()
    def get_credential(self, scope: AccessScope, credential_id: str) -> CredentialRead:
        """
        Get a decrypted credential by id.

        Raises:
            CredentialNotFoundError: If no credential with this id is visible to the scope
        """
        try:
            credential = self._find_by_id(scope, credential_id)
            result = self._to_read(credential)
        except CredentialNotFoundError:
            self._record(
                self._tenant_filter(scope),
                EventType.TOTP_ACCESS,
                False,
                details={"credential_id": credential_id},
            )
            raise
        except Exception as e:
            self._handle_service_exception("get_credential", e)

        self._record(
            result.tenant_id,
            EventType.TOTP_ACCESS,
            True,
            external_user_id=result.external_user_id,
        )
        return result

    @operation()
    def get_credential_by_external_user(
        self, scope: AccessScope, external_user_id: str
    ) -> CredentialRead:
        """
        Get a decrypted credential by the tenant's user identifier.

        Raises:
            CredentialNotFoundError: If the user has no credential visible to the scope
            DuplicateCredentialError: CONFLICT when an all-tenants lookup is ambiguous
        """
        try:
            credential = self._find_by_external_user(scope, external_user_id)
            result = self._to_read(credential)
        except CredentialNotFoundError:
            self._record(
                self._tenant_filter(scope),
                EventType.TOTP_ACCESS,
                False,
                external_user_id=external_user_id,
            )
            raise
        except Exception as e:
            self._handle_service_exception("get_credential_by_external_user", e)

        self._record(
            result.tenant_id,
            EventType.TOTP_ACCESS,
            True,
            external_user_id=result.external_user_id,
        )
        return result

    @operation()
    def list_credentials(
        self, scope: AccessScope, limit: int = Limits.DEFAULT_PAGE_SIZE, offset: int = 0
    ) -> List[CredentialRead]:
        """List decrypted credentials visible to the scope, newest first."""
        limit = max(1, min(limit, Limits.MAX_PAGE_SIZE))
        offset = max(0, offset)
        try:
            credentials = list_records(
                self.session,
                TOTPCredential,
                tenant_id=self._tenant_filter(scope),
                limit=limit,
                offset=offset,
                order_by="-created_at",
            )
            return [self._to_read(credential) for credential in credentials]
        except Exception as e:
            self._handle_service_exception("list_credentials", e)

    # ==================== UPDATE / DELETE ====================

    @operation()
    def update_credential(
        self, scope: AccessScope, credential_id: str, update: CredentialUpdate
    ) -> CredentialRead:
        """
        Update the mutable parts of a credential.

        Only the context metadata and the full backup-code list can change.
        The secret is immutable.

        Raises:
            CredentialNotFoundError: If no credential with this id is visible to the scope
        """
        try:
            credential = self._find_by_id(scope, credential_id)

            if update.backup_codes is not None:
                self._replace_backup_codes(
                    scope, credential_id, update.backup_codes, context=update.context
                )
            elif update.context is not None:
                credential.context = update.context
                credential.updated_at = utc_now()
                self.session.commit()

            result = self._to_read(self._find_by_id(scope, credential_id))
        except CredentialNotFoundError:
            self._record(
                self._tenant_filter(scope),
                EventType.TOTP_UPDATE,
                False,
                details={"credential_id": credential_id, "reason": "not_found"},
            )
            raise
        except Exception as e:
            self.session.rollback()
            self._handle_service_exception("update_credential", e)

        self._record(
            result.tenant_id,
            EventType.TOTP_UPDATE,
            True,
            external_user_id=result.external_user_id,
            details={
                "context_updated": update.context is not None,
                "backup_codes_replaced": update.backup_codes is not None,
            },
        )
        return result

    @operation()
    def delete_credential(self, scope: AccessScope, credential_id: str) -> None:
        """
        Delete a credential and cascade-delete its user's usage events.

        A failed cascade is logged and does not undo the credential deletion.

        Raises:
            CredentialNotFoundError: If no credential with this id is visible to the scope
        """
        try:
            credential = self._find_by_id(scope, credential_id)
            tenant_id = credential.tenant_id
            external_user_id = credential.external_user_id
            delete_record(self.session, TOTPCredential, credential_id, tenant_id=tenant_id)
        except Exception as e:
            self._handle_service_exception("delete_credential", e)

        events_deleted = 0
        try:
            events_deleted = self.usage_service.delete_user_events(tenant_id, external_user_id)
        except Exception as e:
            self.logger.error(
                "Failed to delete usage events for deleted credential",
                extra={
                    "credential_id": credential_id,
                    "tenant_id": tenant_id,
                    "error_type": type(e).__name__,
                    "error": str(e),
                },
            )

        # Tenant-level event; the user's own history is gone
        self._record(
            tenant_id,
            EventType.TOTP_DELETE,
            True,
            details={"credential_id": credential_id, "events_deleted": events_deleted},
        )

    # ==================== VALIDATION ====================

    @operation()
    def validate_token(
        self, scope: AccessScope, external_user_id: str, token: str
    ) -> TokenValidationResult:
        """
        Validate a TOTP token for an external user.

        A wrong token is an ordinary valid=False result, not an error.

        Raises:
            CredentialNotFoundError: If the user has no credential visible to the scope
        """
        try:
            credential = self._find_by_external_user(scope, external_user_id)
            secret = self.codec.decrypt(credential.secret)
            valid = validate_totp_token(secret, token, drift_steps=self.config.totp.drift_steps)
        except CredentialNotFoundError:
            self._record(
                self._tenant_filter(scope),
                EventType.TOTP_VALIDATION,
                False,
                external_user_id=external_user_id,
                details={"reason": "not_found"},
            )
            raise
        except Exception as e:
            self._handle_service_exception("validate_token", e)

        self._record(
            credential.tenant_id,
            EventType.TOTP_VALIDATION,
            valid,
            external_user_id=external_user_id,
        )
        return TokenValidationResult(valid=valid)

    @operation()
    def validate_backup_code(
        self, scope: AccessScope, external_user_id: str, code: str
    ) -> BackupCodeValidationResult:
        """
        Consume a backup code if it is still unused.

        The removal is a compare-and-swap on the credential version, so two
        concurrent presentations of the same code yield exactly one success.

        Raises:
            CredentialNotFoundError: If the user has no credential visible to the scope
            ServiceError: CONFLICT if the list kept changing across every retry
        """
        candidate = normalize_backup_code(code)
        try:
            for attempt in range(Limits.BACKUP_CODE_CAS_RETRIES):
                credential = self._find_by_external_user(scope, external_user_id)
                stored = list(credential.backup_codes or [])
                plaintexts = self.codec.decrypt_many(stored)

                if not candidate or candidate not in plaintexts:
                    valid, remaining = False, len(stored)
                    break

                index = plaintexts.index(candidate)
                remaining_codes = stored[:index] + stored[index + 1 :]
                if self._compare_and_swap_codes(credential.id, credential.version, remaining_codes):
                    valid, remaining = True, len(remaining_codes)
                    break

                self.logger.info(
                    "Backup code list changed concurrently, re-reading",
                    extra={"credential_id": credential.id, "attempt": attempt + 1},
                )
            else:
                raise ServiceError(
                    "Backup codes were modified concurrently, please retry",
                    error_code=ErrorCode.CONFLICT,
                    operation="validate_backup_code",
                    external_user_id=external_user_id,
                )
        except CredentialNotFoundError:
            self._record(
                self._tenant_filter(scope),
                EventType.BACKUP_CODE_USED,
                False,
                external_user_id=external_user_id,
                details={"reason": "not_found"},
            )
            raise
        except Exception as e:
            self._handle_service_exception("validate_backup_code", e)

        self._record(
            credential.tenant_id,
            EventType.BACKUP_CODE_USED,
            valid,
            external_user_id=external_user_id,
            details={"remaining_codes": remaining} if valid else {"reason": "invalid_code"},
        )
        if not valid:
            self.logger.info(
                "Invalid backup code",
                extra={"tenant_id": credential.tenant_id, "external_user_id": external_user_id},
            )
        return BackupCodeValidationResult(valid=valid, remaining_codes=remaining)

    @operation()
    def regenerate_backup_codes(
        self, scope: AccessScope, external_user_id: str
    ) -> BackupCodesRegenerated:
        """
        Replace the whole backup-code list with fresh codes.

        Old codes stop validating as soon as the write commits.

        Raises:
            CredentialNotFoundError: If the user has no credential visible to the scope
        """
        try:
            credential = self._find_by_external_user(scope, external_user_id)
            codes = generate_backup_codes(
                self.config.totp.backup_code_count, self.config.totp.backup_code_length
            )
            self._replace_backup_codes(scope, credential.id, codes)
        except Exception as e:
            self._handle_service_exception("regenerate_backup_codes", e)

        self._record(
            credential.tenant_id,
            EventType.BACKUP_CODES_REGENERATED,
            True,
            external_user_id=external_user_id,
            details={"count": len(codes)},
        )
        return BackupCodesRegenerated(backup_codes=codes)
