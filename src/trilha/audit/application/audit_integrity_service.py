"""Issuing and checking integrity signatures of stored audit logs."""

from typing import Iterable
from uuid import UUID

from trilha.audit.domain.audit_log import AuditLog
from trilha.audit.domain.repositories.audit_log_repository import AuditLogRepository
from trilha.audit.domain.repositories.signature_repository import AuditSignatureRepository
from trilha.audit.domain.signature import (
    SignatureRecord,
    VerificationFailure,
    VerificationResult,
)
from trilha.audit.infrastructure.signature_service import SignatureService
from trilha.main.exceptions import IntegrityViolation
from trilha.main.logging import get_logger

logger = get_logger(__name__)


class AuditIntegrityService:
    def __init__(
        self,
        audit_log_repo: AuditLogRepository,
        signature_repo: AuditSignatureRepository,
        signature_service: SignatureService,
    ):
        self.audit_log_repo = audit_log_repo
        self.signature_repo = signature_repo
        self.signature_service = signature_service

    async def sign_records(self, audit_logs: Iterable[AuditLog]) -> list[SignatureRecord]:
        signatures = [self.signature_service.issue(audit_log) for audit_log in audit_logs]
        await self.signature_repo.save_many(signatures)
        return signatures

    def _report(self, result: VerificationResult) -> VerificationResult:
        if not result.intact and result.reason in (
            VerificationFailure.INVALID_TOKEN,
            VerificationFailure.ID_MISMATCH,
            VerificationFailure.HASH_MISMATCH,
        ):
            # Never corrected automatically, only surfaced
            logger.error(
                "Audit log integrity violation",
                extra={
                    "audit_log_id": str(result.id),
                    "reason": result.reason.value,
                    "security_finding": True,
                },
            )
        return result

    async def verify_log(self, audit_log_id: UUID) -> VerificationResult:
        audit_log = await self.audit_log_repo.get_by_id(audit_log_id)
        if audit_log is None:
            return VerificationResult(
                id=audit_log_id, intact=False, reason=VerificationFailure.NOT_FOUND
            )

        signature = await self.signature_repo.get(audit_log_id)
        if signature is None:
            return VerificationResult(
                id=audit_log_id, intact=False, reason=VerificationFailure.UNSIGNED
            )

        return self._report(self.signature_service.check(audit_log, signature.token))

    async def verify_logs(self, audit_log_ids: list[UUID]) -> list[VerificationResult]:
        """Verify several stored logs. Each id gets its own result, in input order."""
        signatures = await self.signature_repo.get_many(audit_log_ids)

        results = []
        for audit_log_id in audit_log_ids:
            audit_log = await self.audit_log_repo.get_by_id(audit_log_id)
            if audit_log is None:
                results.append(
                    VerificationResult(
                        id=audit_log_id, intact=False, reason=VerificationFailure.NOT_FOUND
                    )
                )
                continue

            signature = signatures.get(audit_log_id)
            if signature is None:
                results.append(
                    VerificationResult(
                        id=audit_log_id, intact=False, reason=VerificationFailure.UNSIGNED
                    )
                )
                continue

            (result,) = self.signature_service.verify_batch([(audit_log, signature.token)])
            results.append(self._report(result))

        return results

    async def assert_intact(self, audit_log_id: UUID) -> None:
        """
        Raises:
            IntegrityViolation: If the log is missing, unsigned or does not match its signature.
        """
        result = await self.verify_log(audit_log_id)
        if not result.intact:
            raise IntegrityViolation(audit_log_id, result.reason.value)
