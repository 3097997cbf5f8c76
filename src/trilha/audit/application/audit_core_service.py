"""Audit core service: the single persistence entry point for audit logs."""

from datetime import datetime, timezone, tzinfo
from typing import Any, Iterable, Optional
from uuid import UUID, uuid4

from pydantic import ValidationError

from trilha.audit.application.risk_classifier import RiskFactors, classify_risk
from trilha.audit.domain.audit_log import AuditLog, AuditLogDraft
from trilha.audit.domain.constants import DEFAULT_FIND_BY_USER_LIMIT
from trilha.audit.domain.event_types import AuditTopic
from trilha.audit.domain.reports import (
    AuditLogPage,
    AuditLogQuery,
    AuditStatistics,
    SensitiveAccessReport,
)
from trilha.audit.domain.repositories.audit_log_repository import AuditLogRepository
from trilha.audit.domain.risk_level import RiskLevel
from trilha.audit.infrastructure.event_bus import InMemoryEventBus, NotificationOutbox
from trilha.main.exceptions import AuditValidationError
from trilha.main.logging import get_logger

logger = get_logger(__name__)


def _validation_message(error: ValidationError) -> str:
    return "; ".join(
        f"{'.'.join(str(part) for part in item['loc']) or 'draft'}: {item['msg']}"
        for item in error.errors()
    )


def validate_draft(draft: AuditLogDraft | dict[str, Any]) -> AuditLogDraft:
    """Coerce a draft (or its job payload form) into a validated AuditLogDraft.

    Raises:
        AuditValidationError: If required fields are missing or malformed.
    """
    try:
        if isinstance(draft, AuditLogDraft):
            # Re-validate: drafts may have been built with model_construct or mutated
            return AuditLogDraft.model_validate(draft.model_dump())
        return AuditLogDraft.model_validate(draft)
    except ValidationError as e:
        raise AuditValidationError(_validation_message(e)) from e


def default_description(draft: AuditLogDraft) -> str:
    description = f"{draft.operation_type.value.upper()} on {draft.affected_entity}"
    if draft.affected_entity_id:
        description += f" (id={draft.affected_entity_id})"
    if draft.user_id:
        description += f" by user {draft.user_id}"
    return description


class AuditCoreService:
    """Validates, enriches and persists audit logs.

    Both the queue worker and the synchronous fallback path go through this
    service, so there is exactly one way an audit log reaches storage.
    """

    def __init__(
        self,
        repository: AuditLogRepository,
        event_bus: Optional[InMemoryEventBus] = None,
        batch_max_size: int = 100,
        local_timezone: Optional[tzinfo] = None,
        outbox: Optional[NotificationOutbox] = None,
    ):
        self.repository = repository
        self.event_bus = event_bus
        self.outbox = outbox
        self.batch_max_size = batch_max_size
        self.local_timezone = local_timezone

    def _build(self, draft: AuditLogDraft) -> AuditLog:
        occurred_at = draft.occurred_at or datetime.now(timezone.utc)
        if occurred_at.tzinfo is None:
            occurred_at = occurred_at.replace(tzinfo=timezone.utc)

        sensitive_fields = draft.sensitive_fields_accessed or None

        risk_level = draft.risk_level
        if risk_level is None:
            risk_level = classify_risk(
                RiskFactors(
                    occurred_at=occurred_at,
                    operation_name=draft.operation_type.value,
                    sensitive_data_accessed=bool(sensitive_fields),
                ),
                tz=self.local_timezone,
            )

        lgpd_relevant = draft.lgpd_relevant
        if lgpd_relevant is None:
            lgpd_relevant = bool(sensitive_fields)

        # Stored as JSONB, so nested values must already be JSON types
        payload = draft.model_dump(mode="json", include={"previous_data", "new_data", "metadata"})

        return AuditLog(
            id=uuid4(),
            operation_type=draft.operation_type,
            affected_entity=draft.affected_entity,
            affected_entity_id=draft.affected_entity_id,
            previous_data=payload["previous_data"],
            new_data=payload["new_data"],
            user_id=draft.user_id,
            source_ip=draft.source_ip,
            user_agent=draft.user_agent,
            endpoint=draft.endpoint,
            http_method=draft.http_method.upper() if draft.http_method else None,
            sensitive_fields_accessed=sensitive_fields,
            risk_level=risk_level,
            lgpd_relevant=lgpd_relevant,
            reason=draft.reason,
            description=draft.description or default_description(draft),
            metadata=payload["metadata"],
            occurred_at=occurred_at,
        )

    async def _notify(self, audit_logs: Iterable[AuditLog]) -> None:
        """Queue the notifications for stored logs.

        With an outbox they wait there for the caller's commit. Without one
        they are published right away.
        """
        if self.outbox is None and self.event_bus is None:
            return

        outbox = self.outbox or NotificationOutbox(self.event_bus)
        for audit_log in audit_logs:
            outbox.add(AuditTopic.LOG_CREATED.value, audit_log)
            if audit_log.risk_level == RiskLevel.CRITICAL:
                outbox.add(AuditTopic.CRITICAL_EVENT.value, audit_log)
            if audit_log.lgpd_relevant:
                outbox.add(AuditTopic.LGPD_EVENT.value, audit_log)

        if self.outbox is None:
            await outbox.flush()

    async def create_audit_log(self, draft: AuditLogDraft | dict[str, Any]) -> AuditLog:
        """
        Persist exactly one audit log.

        Args:
            draft: The log to create, as a draft or its job payload form

        Returns:
            The stored audit log, with its id and creation time

        Raises:
            AuditValidationError: If the draft is invalid (nothing is stored)
            TransientStorageError: If storage failed in a retryable way
        """
        audit_log = self._build(validate_draft(draft))
        created = await self.repository.create(audit_log)

        logger.debug(
            "Audit log created",
            extra={
                "audit_log_id": str(created.id),
                "operation_type": created.operation_type.value,
                "risk_level": created.risk_level.value if created.risk_level else None,
            },
        )

        await self._notify([created])
        return created

    async def create_audit_logs_batch(
        self, drafts: list[AuditLogDraft | dict[str, Any]]
    ) -> list[AuditLog]:
        """
        Persist a list of audit logs as one unit.

        Every draft is validated before anything is written, so one invalid
        draft means none of the batch is stored.

        Raises:
            AuditValidationError: If the batch is too large or any draft is invalid
        """
        if len(drafts) > self.batch_max_size:
            raise AuditValidationError(
                f"Batch of {len(drafts)} audit logs exceeds the maximum of {self.batch_max_size}"
            )

        validated = []
        for index, draft in enumerate(drafts):
            try:
                validated.append(validate_draft(draft))
            except AuditValidationError as e:
                raise AuditValidationError(f"Invalid draft at index {index}: {e}") from e

        if not validated:
            return []

        created = await self.repository.create_many([self._build(draft) for draft in validated])

        logger.info("Audit log batch created", extra={"count": len(created)})

        await self._notify(created)
        return created

    async def find_by_filters(self, query: AuditLogQuery) -> AuditLogPage:
        items, total = await self.repository.find(query)
        return AuditLogPage(items=items, total=total, page=query.page, page_size=query.page_size)

    async def find_by_id(self, audit_log_id: UUID) -> Optional[AuditLog]:
        return await self.repository.get_by_id(audit_log_id)

    async def find_by_entity(
        self, affected_entity: str, affected_entity_id: Optional[str] = None
    ) -> list[AuditLog]:
        return await self.repository.find_by_entity(affected_entity, affected_entity_id)

    async def find_by_user(
        self, user_id: str, limit: int = DEFAULT_FIND_BY_USER_LIMIT
    ) -> list[AuditLog]:
        return await self.repository.find_by_user(user_id, limit=limit)

    async def find_lgpd_relevant(
        self,
        from_date: Optional[datetime] = None,
        to_date: Optional[datetime] = None,
        page: int = 1,
        page_size: int = 50,
    ) -> AuditLogPage:
        return await self.find_by_filters(
            AuditLogQuery(
                lgpd_relevant=True,
                from_date=from_date,
                to_date=to_date,
                page=page,
                page_size=page_size,
            )
        )

    async def sensitive_access_report(
        self, from_date: datetime, to_date: datetime
    ) -> SensitiveAccessReport:
        if from_date > to_date:
            raise AuditValidationError("from_date must be before to_date")
        return await self.repository.sensitive_access_report(from_date, to_date)

    async def get_statistics(
        self,
        from_date: Optional[datetime] = None,
        to_date: Optional[datetime] = None,
    ) -> AuditStatistics:
        return await self.repository.get_statistics(from_date, to_date)
