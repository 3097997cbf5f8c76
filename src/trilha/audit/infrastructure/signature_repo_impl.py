from typing import Optional
from uuid import UUID

import sqlalchemy as sa
from sqlalchemy.ext.asyncio import AsyncSession

from trilha.audit.domain.repositories.signature_repository import AuditSignatureRepository
from trilha.audit.domain.signature import SignatureRecord
from trilha.database.tables.audit_log_table import AuditLogSignature


class AuditSignatureRepositoryImpl(AuditSignatureRepository):
    def __init__(self, session: AsyncSession):
        self.session = session

    @staticmethod
    def _to_domain(row: AuditLogSignature) -> SignatureRecord:
        return SignatureRecord(
            log_id=row.log_id,
            content_hash=row.content_hash,
            issued_at=row.issued_at,
            token=row.token,
        )

    async def save_many(self, signatures: list[SignatureRecord]) -> None:
        if not signatures:
            return

        query = sa.insert(AuditLogSignature).values(
            [
                dict(
                    log_id=signature.log_id,
                    content_hash=signature.content_hash,
                    token=signature.token,
                    issued_at=signature.issued_at,
                )
                for signature in signatures
            ]
        )
        await self.session.execute(query)

    async def get(self, log_id: UUID) -> Optional[SignatureRecord]:
        row = await self.session.scalar(
            sa.select(AuditLogSignature).where(AuditLogSignature.log_id == log_id)
        )
        return self._to_domain(row) if row is not None else None

    async def get_many(self, log_ids: list[UUID]) -> dict[UUID, SignatureRecord]:
        if not log_ids:
            return {}

        rows = await self.session.scalars(
            sa.select(AuditLogSignature).where(AuditLogSignature.log_id.in_(log_ids))
        )
        return {row.log_id: self._to_domain(row) for row in rows}
