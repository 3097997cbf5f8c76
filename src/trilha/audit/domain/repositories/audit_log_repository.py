"""Audit log repository interface."""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional
from uuid import UUID

from trilha.audit.domain.audit_log import AuditLog
from trilha.audit.domain.reports import AuditLogQuery, AuditStatistics, SensitiveAccessReport


class AuditLogRepository(ABC):
    """Append-only persistence for audit logs.

    Implementations must never drop a record silently: every failed write
    raises, so that the caller can retry.
    """

    @abstractmethod
    async def create(self, audit_log: AuditLog) -> AuditLog:
        """Insert one audit log and return it with server-assigned fields."""
        pass

    @abstractmethod
    async def create_many(self, audit_logs: list[AuditLog]) -> list[AuditLog]:
        """Insert all audit logs atomically, or none of them."""
        pass

    @abstractmethod
    async def get_by_id(self, audit_log_id: UUID) -> Optional[AuditLog]:
        pass

    @abstractmethod
    async def find(self, query: AuditLogQuery) -> tuple[list[AuditLog], int]:
        """
        Get audit logs matching the query.

        Returns:
            Tuple of (logs for the requested page, total_count)
        """
        pass

    @abstractmethod
    async def find_by_entity(
        self,
        affected_entity: str,
        affected_entity_id: Optional[str] = None,
        limit: int = 100,
    ) -> list[AuditLog]:
        pass

    @abstractmethod
    async def find_by_user(self, user_id: str, limit: int = 100) -> list[AuditLog]:
        pass

    @abstractmethod
    async def sensitive_access_report(
        self, from_date: datetime, to_date: datetime
    ) -> SensitiveAccessReport:
        pass

    @abstractmethod
    async def get_statistics(
        self,
        from_date: Optional[datetime] = None,
        to_date: Optional[datetime] = None,
        top: int = 10,
    ) -> AuditStatistics:
        pass
