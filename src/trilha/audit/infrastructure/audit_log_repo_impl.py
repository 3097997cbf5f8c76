"""SQLAlchemy implementation of the audit log repository."""

import time
from datetime import datetime
from typing import Optional
from uuid import UUID

import sqlalchemy as sa
from sqlalchemy.exc import DBAPIError, InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from trilha.audit.domain.audit_log import AuditLog
from trilha.audit.domain.operation_types import OperationType
from trilha.audit.domain.reports import (
    MAX_PAGE_SIZE,
    AuditLogQuery,
    AuditStatistics,
    SensitiveAccessReport,
)
from trilha.audit.domain.repositories.audit_log_repository import AuditLogRepository
from trilha.audit.domain.risk_level import RiskLevel
from trilha.database.tables.audit_log_table import AuditLog as AuditLogTable
from trilha.main.exceptions import TransientStorageError
from trilha.main.logging import get_logger

logger = get_logger(__name__)


def _is_transient(error: DBAPIError) -> bool:
    return isinstance(error, (OperationalError, InterfaceError)) or error.connection_invalidated


class AuditLogRepositoryImpl(AuditLogRepository):
    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_domain(self, table: AuditLogTable) -> AuditLog:
        return AuditLog(
            id=table.id,
            operation_type=OperationType(table.operation_type),
            affected_entity=table.affected_entity,
            affected_entity_id=table.affected_entity_id,
            previous_data=table.previous_data,
            new_data=table.new_data,
            user_id=table.user_id,
            source_ip=table.source_ip,
            user_agent=table.user_agent,
            endpoint=table.endpoint,
            http_method=table.http_method,
            sensitive_fields_accessed=list(table.sensitive_fields_accessed)
            if table.sensitive_fields_accessed is not None
            else None,
            risk_level=RiskLevel(table.risk_level) if table.risk_level else None,
            lgpd_relevant=table.lgpd_relevant,
            reason=table.reason,
            description=table.description,
            metadata=table.log_metadata or {},
            occurred_at=table.occurred_at,
            created_at=table.created_at,
        )

    def _to_values(self, audit_log: AuditLog) -> dict:
        return dict(
            id=audit_log.id,
            operation_type=audit_log.operation_type.value,
            affected_entity=audit_log.affected_entity,
            affected_entity_id=audit_log.affected_entity_id,
            previous_data=audit_log.previous_data,
            new_data=audit_log.new_data,
            user_id=audit_log.user_id,
            source_ip=audit_log.source_ip,
            user_agent=audit_log.user_agent,
            endpoint=audit_log.endpoint,
            http_method=audit_log.http_method,
            sensitive_fields_accessed=audit_log.sensitive_fields_accessed,
            risk_level=audit_log.risk_level.value if audit_log.risk_level else None,
            lgpd_relevant=audit_log.lgpd_relevant,
            reason=audit_log.reason,
            description=audit_log.description,
            log_metadata=audit_log.metadata,
            occurred_at=audit_log.occurred_at,
        )

    async def _insert(self, values: list[dict]) -> list[AuditLogTable]:
        query = sa.insert(AuditLogTable).values(values).returning(AuditLogTable)
        try:
            result = await self.session.scalars(query)
            return list(result)
        except DBAPIError as e:
            if _is_transient(e):
                raise TransientStorageError(f"Audit log write failed: {e.orig}") from e
            raise

    async def create(self, audit_log: AuditLog) -> AuditLog:
        (row,) = await self._insert([self._to_values(audit_log)])
        return self._to_domain(row)

    async def create_many(self, audit_logs: list[AuditLog]) -> list[AuditLog]:
        if not audit_logs:
            return []

        # One statement, so the batch is inserted entirely or not at all
        rows = await self._insert([self._to_values(audit_log) for audit_log in audit_logs])
        by_id = {row.id: row for row in rows}
        return [self._to_domain(by_id[audit_log.id]) for audit_log in audit_logs]

    async def get_by_id(self, audit_log_id: UUID) -> Optional[AuditLog]:
        query = sa.select(AuditLogTable).where(AuditLogTable.id == audit_log_id)
        result = await self.session.scalar(query)

        if result is None:
            return None

        return self._to_domain(result)

    def _apply_filters(self, query: sa.Select, filters: AuditLogQuery) -> sa.Select:
        if filters.operation_type:
            query = query.where(AuditLogTable.operation_type == filters.operation_type.value)

        if filters.affected_entity:
            query = query.where(AuditLogTable.affected_entity == filters.affected_entity)

        if filters.affected_entity_id:
            query = query.where(AuditLogTable.affected_entity_id == filters.affected_entity_id)

        if filters.user_id:
            query = query.where(AuditLogTable.user_id == filters.user_id)

        if filters.risk_level:
            query = query.where(AuditLogTable.risk_level == filters.risk_level.value)

        if filters.lgpd_relevant is not None:
            query = query.where(AuditLogTable.lgpd_relevant.is_(filters.lgpd_relevant))

        if filters.from_date:
            query = query.where(AuditLogTable.occurred_at >= filters.from_date)

        if filters.to_date:
            query = query.where(AuditLogTable.occurred_at <= filters.to_date)

        if filters.search:
            pattern = f"%{filters.search}%"
            query = query.where(
                sa.or_(
                    AuditLogTable.description.ilike(pattern),
                    AuditLogTable.endpoint.ilike(pattern),
                    AuditLogTable.affected_entity.ilike(pattern),
                )
            )

        return query

    async def find(self, query: AuditLogQuery) -> tuple[list[AuditLog], int]:
        statement = self._apply_filters(sa.select(AuditLogTable), query)

        count_query = sa.select(sa.func.count()).select_from(statement.subquery())
        count_start = time.time()
        total_count = await self.session.scalar(count_query)
        count_time = (time.time() - count_start) * 1000

        # Secondary id sort keeps pagination stable when timestamps collide
        page_size = min(query.page_size, MAX_PAGE_SIZE)
        statement = (
            statement.order_by(AuditLogTable.occurred_at.desc(), AuditLogTable.id.desc())
            .limit(page_size)
            .offset((query.page - 1) * page_size)
        )

        query_start = time.time()
        results = await self.session.scalars(statement)
        logs = [self._to_domain(result) for result in results]
        query_time = (time.time() - query_start) * 1000

        logger.debug(
            f"find: page={query.page}, page_size={page_size}, results={len(logs)}, "
            f"total={total_count}, count_time={count_time:.2f}ms, query_time={query_time:.2f}ms"
        )

        return logs, total_count or 0

    async def find_by_entity(
        self,
        affected_entity: str,
        affected_entity_id: Optional[str] = None,
        limit: int = 100,
    ) -> list[AuditLog]:
        query = sa.select(AuditLogTable).where(AuditLogTable.affected_entity == affected_entity)
        if affected_entity_id is not None:
            query = query.where(AuditLogTable.affected_entity_id == affected_entity_id)
        query = query.order_by(AuditLogTable.created_at.desc()).limit(min(limit, MAX_PAGE_SIZE))

        results = await self.session.scalars(query)
        return [self._to_domain(result) for result in results]

    async def find_by_user(self, user_id: str, limit: int = 100) -> list[AuditLog]:
        query = (
            sa.select(AuditLogTable)
            .where(AuditLogTable.user_id == user_id)
            .order_by(AuditLogTable.created_at.desc())
            .limit(min(limit, MAX_PAGE_SIZE))
        )
        results = await self.session.scalars(query)
        return [self._to_domain(result) for result in results]

    async def sensitive_access_report(
        self, from_date: datetime, to_date: datetime
    ) -> SensitiveAccessReport:
        in_period = sa.and_(
            AuditLogTable.occurred_at >= from_date,
            AuditLogTable.occurred_at <= to_date,
            sa.func.cardinality(AuditLogTable.sensitive_fields_accessed) > 0,
        )

        fields = (
            sa.select(sa.func.unnest(AuditLogTable.sensitive_fields_accessed).label("field"))
            .where(in_period)
            .subquery()
        )
        by_field_query = (
            sa.select(fields.c.field, sa.func.count().label("accesses"))
            .group_by(fields.c.field)
            .order_by(sa.desc("accesses"), fields.c.field)
        )
        by_field = {row.field: row.accesses for row in await self.session.execute(by_field_query)}

        user_key = sa.func.coalesce(AuditLogTable.user_id, "anonymous").label("user_key")
        by_user_query = (
            sa.select(user_key, sa.func.count().label("accesses"))
            .where(in_period)
            .group_by(user_key)
            .order_by(sa.desc("accesses"), user_key)
        )
        by_user = {row.user_key: row.accesses for row in await self.session.execute(by_user_query)}

        return SensitiveAccessReport(
            from_date=from_date,
            to_date=to_date,
            total_accesses=sum(by_user.values()),
            by_field=by_field,
            by_user=by_user,
        )

    async def get_statistics(
        self,
        from_date: Optional[datetime] = None,
        to_date: Optional[datetime] = None,
        top: int = 10,
    ) -> AuditStatistics:
        conditions = []
        if from_date:
            conditions.append(AuditLogTable.occurred_at >= from_date)
        if to_date:
            conditions.append(AuditLogTable.occurred_at <= to_date)
        where = sa.and_(sa.true(), *conditions)

        async def _grouped(column, limit: Optional[int] = None) -> list[tuple[str, int]]:
            query = (
                sa.select(column, sa.func.count().label("total"))
                .where(where)
                .where(column.is_not(None))
                .group_by(column)
                .order_by(sa.desc("total"), column)
            )
            if limit is not None:
                query = query.limit(limit)
            return [(row[0], row[1]) for row in await self.session.execute(query)]

        total = await self.session.scalar(
            sa.select(sa.func.count()).select_from(AuditLogTable).where(where)
        )
        lgpd_events = await self.session.scalar(
            sa.select(sa.func.count())
            .select_from(AuditLogTable)
            .where(where, AuditLogTable.lgpd_relevant.is_(True))
        )

        return AuditStatistics(
            total_events=total or 0,
            events_by_operation=dict(await _grouped(AuditLogTable.operation_type)),
            events_by_risk_level=dict(await _grouped(AuditLogTable.risk_level)),
            lgpd_events=lgpd_events or 0,
            top_entities=await _grouped(AuditLogTable.affected_entity, limit=top),
            top_users=await _grouped(AuditLogTable.user_id, limit=top),
        )
